"""Option aliases and helpers shared by every command group."""

import os
from pathlib import Path
from typing import Annotated, Optional

import typer

from dh.core.config import DEFAULT_CONFIG_PATH
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.output import console as app_console


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without executing. Shows what would happen.",
        is_flag=True,
    ),
]

ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Allow dangerous operations and redo steps that look complete.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip confirmation prompts, answering each with its default.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

SiteArgument = Annotated[
    str,
    typer.Argument(help="Site name (also the site's Unix user)"),
]

DeployDirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--deploy-dir",
        "-d",
        help="Site directory. Default: <apps_dir>/<site>",
    ),
]


def handle_error(error: DHError) -> None:
    """Handle a DHError by printing formatted error and exiting."""
    app_console.error(error.message)

    if error.details:
        for detail in error.details:
            app_console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        app_console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def require_root(ctx: ExecutionContext, command: str) -> None:
    """Exit with code 6 unless running as root. Dry runs are allowed for anyone."""
    if os.geteuid() != 0 and not ctx.dry_run:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint(f"Run with: sudo {command}")
        raise typer.Exit(6)


def confirm_or_exit(ctx: ExecutionContext, message: str) -> None:
    """Ask before making changes; skipped under --yes and --dry-run."""
    if ctx.yes or ctx.dry_run:
        return
    if not ctx.console.confirm(message):
        ctx.console.warn("Operation cancelled")
        raise typer.Exit(0)


def site_dir(ctx: ExecutionContext, site: str, deploy_dir: Optional[Path]) -> Path:
    return deploy_dir or ctx.config.paths.apps_dir / site
