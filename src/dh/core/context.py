"""Execution context for commands.

The ExecutionContext holds the runtime flags that affect how commands are
executed. It is passed to every command and service and consulted by the
safety framework, executor, and output systems.
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dh.core.config import AppConfig, DEFAULT_CONFIG_PATH
from dh.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Execution context passed to all commands.

    Attributes:
        dry_run: If True, show what would happen without executing
        force: If True, allow dangerous or destructive operations
        yes: If True, accept defaults and skip confirmation prompts
        verbosity: Output verbosity level (0-3)
        no_color: If True, disable colored output
        config_path: Path to configuration file
    """

    dry_run: bool = False
    force: bool = False
    yes: bool = False
    verbosity: int = 1
    no_color: bool = False

    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """Get application configuration (lazy loaded)."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def interactive(self) -> bool:
        """True when prompts can be shown (no --yes and a terminal on stdin)."""
        return not self.yes and sys.stdin.isatty()

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question, answering with the default under --yes."""
        if self.yes:
            return default
        return self._console.confirm(message, default=default)


def create_context(
    dry_run: bool = False,
    force: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create an execution context from CLI options.

    Args:
        dry_run: Preview changes without executing
        force: Allow dangerous operations
        yes: Skip confirmation prompts
        verbose: Increase verbosity (can be repeated)
        quiet: Suppress non-essential output
        no_color: Disable colored output
        config: Path to configuration file
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        force=force,
        yes=yes,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
