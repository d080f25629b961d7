"""Command execution with rollback support.

Provides:
- Safe command execution with output capture
- Dry-run aware file, directory and symlink writes
- Timestamped backups of files before they are replaced
- Rollback stack for transaction-like behavior
"""

import os
import shlex
import shutil
import subprocess
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Optional

from dh.core.context import ExecutionContext
from dh.core.exceptions import ExecutionError, RollbackError
from dh.core.files import AtomicFileWriter, config_matches, resolve_owner
from dh.core.output import console


@dataclass
class RollbackAction:
    """A single rollback action."""
    description: str
    action: Callable[[], None]
    critical: bool = False  # If True, failure stops rollback


class RollbackStack:
    """Stack of rollback actions for transaction-like behavior.

    Usage:
        with executor.transaction() as rollback:
            backup = executor.backup_file(path)
            rollback.add("Restore daemon.json", lambda: shutil.copy2(backup, path))

            executor.write_file(path, content)
            # If anything fails, rollback is triggered automatically
    """

    def __init__(self) -> None:
        self.actions: list[RollbackAction] = []
        self.committed = False

    def add(
        self,
        description: str,
        action: Callable[[], None],
        critical: bool = False,
    ) -> None:
        """Add a rollback action to the stack."""
        self.actions.append(RollbackAction(description, action, critical))

    def __len__(self) -> int:
        return len(self.actions)

    def commit(self) -> None:
        """Mark transaction as successful - rollback won't run."""
        self.committed = True
        self.actions.clear()

    def rollback(self) -> None:
        """Execute all rollback actions in reverse order."""
        if self.committed or not self.actions:
            return

        console.warn("Rolling back changes...")

        for action in reversed(self.actions):
            try:
                console.info(f"Rollback: {action.description}")
                action.action()
            except Exception as e:
                console.error(f"Rollback failed: {action.description}: {e}")
                if action.critical:
                    raise RollbackError(
                        f"Critical rollback action failed: {action.description}",
                        details=[str(e)],
                    ) from e


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture."""

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        capture: bool = True,
        as_user: Optional[str] = None,
        sensitive: bool = False,
        timeout: Optional[int] = None,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Path] = None,
        input_text: Optional[str] = None,
        read_only: bool = False,
    ) -> CommandResult:
        """Execute a command.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            capture: Capture stdout/stderr
            as_user: Run as different user (via sudo -H -u)
            sensitive: Don't log the actual command
            timeout: Command timeout in seconds
            env: Additional environment variables
            cwd: Working directory
            input_text: Data written to the command's stdin
            read_only: Command only inspects state, so it also runs in dry-run

        Raises:
            ExecutionError: If command fails and check=True
        """
        if as_user:
            command = ["sudo", "-H", "-u", as_user] + command

        if description:
            self.ctx.console.info(description)

        cmd_display = "<sensitive command>" if sensitive else shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run and not read_only:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(command=command, return_code=0, stdout="", stderr="")

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = subprocess.run(
                command,
                capture_output=capture,
                text=True,
                timeout=timeout,
                env=run_env,
                cwd=cwd,
                input=input_text,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
            ) from e
        except FileNotFoundError as e:
            if not check:
                return CommandResult(command=command, return_code=127, stdout="", stderr=str(e))
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                hint=f"Install the package that provides '{command[0]}'",
            ) from e

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout if capture else "",
            stderr=result.stderr if capture else "",
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=(result.stderr or "").strip() if capture else None,
            )

        return cmd_result

    def probe(self, command: list[str], **kwargs) -> CommandResult:
        """Run a read-only inspection command (never raises, runs in dry-run)."""
        return self.run(command, check=False, read_only=True, **kwargs)

    @staticmethod
    def which(binary: str) -> Optional[str]:
        return shutil.which(binary)

    @contextmanager
    def transaction(self) -> Generator[RollbackStack, None, None]:
        """Context manager for transaction-like behavior with rollback."""
        stack = RollbackStack()
        try:
            yield stack
            stack.commit()
        except Exception:
            stack.rollback()
            raise

    def systemctl(
        self,
        action: str,
        service: str,
        *,
        description: Optional[str] = None,
        check: bool = True,
    ) -> CommandResult:
        """Execute a systemctl action against a unit."""
        desc = description or f"{action.title()} {service}"
        return self.run(["systemctl", action, service], description=desc, check=check)

    def apt_install(
        self,
        packages: list[str],
        *,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Install packages via apt-get without prompts."""
        desc = description or f"Installing {', '.join(packages)}"
        return self.run(
            ["apt-get", "install", "-y", "--no-install-recommends"] + packages,
            description=desc,
            env={"DEBIAN_FRONTEND": "noninteractive"},
            capture=not self.ctx.is_verbose,
        )

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
        permissions: int = 0o644,
        owner: Optional[str] = None,
        group: Optional[str] = None,
        skip_if_unchanged: bool = True,
    ) -> bool:
        """Write content to a file atomically.

        Returns:
            True if the file was (or in dry-run would be) written, False if it
            already held the same content.
        """
        if skip_if_unchanged and config_matches(path, content):
            self.ctx.console.verbose(f"{path} already up to date")
            return False

        self.ctx.console.info(description or f"Writing {path}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Write {len(content)} bytes to {path} (mode {permissions:o})")
            if self.ctx.is_verbose:
                self.ctx.console.code(content, title=str(path))
            return True

        uid, gid = resolve_owner(owner, group)
        with AtomicFileWriter(path, permissions=permissions, owner_uid=uid, owner_gid=gid).open() as f:
            f.write(content)
        return True

    def ensure_dir(
        self,
        path: Path,
        *,
        permissions: int = 0o755,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> None:
        """mkdir -p with mode and ownership (applied even if it already exists)."""
        if self.ctx.dry_run:
            if not path.is_dir():
                self.ctx.console.dry_run_msg(f"Create directory {path}")
            return

        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, permissions)
        if owner or group:
            uid, gid = resolve_owner(owner, group)
            os.chown(path, -1 if uid is None else uid, -1 if gid is None else gid)

    def symlink(self, target: Path, link: Path) -> None:
        """ln -sf target link."""
        if link.is_symlink() and os.readlink(link) == str(target):
            return
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Link {link} -> {target}")
            return
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(target)

    def remove_file(self, path: Path) -> None:
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Remove {path}")
            return
        if path.is_symlink() or path.exists():
            path.unlink()

    def remove_tree(self, path: Path) -> None:
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Remove directory {path}")
            return
        if path.is_dir():
            shutil.rmtree(path)

    def backup_file(
        self,
        path: Path,
        *,
        marker: str = ".backup.",
        timestamped: bool = True,
        suffix: str = "",
    ) -> Optional[Path]:
        """Copy a file to '<path><marker><YYYYmmdd-HHMMSS><suffix>' before it is replaced.

        With timestamped=False the backup is '<path>.backup' and is only made
        once, preserving the distribution's original.

        Returns:
            Path to backup file, or None if the original doesn't exist
        """
        if not path.exists():
            return None

        if timestamped:
            backup_path = path.with_name(f"{path.name}{marker}{time.strftime('%Y%m%d-%H%M%S')}{suffix}")
        else:
            backup_path = path.with_name(f"{path.name}.backup")
            if backup_path.exists():
                return backup_path

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Back up {path} to {backup_path}")
            return backup_path

        shutil.copy2(path, backup_path)
        self.ctx.console.verbose(f"Backed up {path} to {backup_path}")
        return backup_path
