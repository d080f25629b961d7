"""Systemd service abstraction.

Provides a safe interface for managing the units dh touches (docker, nginx,
ssh, fail2ban, per-site compose units).
"""

from pathlib import Path
from typing import Optional

from dh.core.context import ExecutionContext
from dh.core.executor import CommandExecutor
from dh.core.exceptions import ExecutionError, ServiceError


SYSTEMD_SYSTEM_DIR = Path("/etc/systemd/system")


class SystemdService:
    """Safe interface for managing systemd services.

    State queries run even in dry-run mode so previews reflect the host;
    state changes respect dry-run.
    """

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def is_active(self, service: str) -> bool:
        return self.executor.probe(["systemctl", "is-active", "--quiet", service]).success

    def exists(self, service: str) -> bool:
        result = self.executor.probe(["systemctl", "list-unit-files", "--no-pager", f"{service}.service"])
        return f"{service}.service" in result.stdout

    def _action(self, action: str, service: str, message: str) -> None:
        try:
            self.executor.systemctl(action, service, description=message)
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to {action} {service}",
                hint=f"Check logs: journalctl -xeu {service}",
                details=e.details,
            ) from e

    def start(self, service: str, *, description: Optional[str] = None) -> None:
        self._action("start", service, description or f"Starting {service}")

    def stop(self, service: str, *, description: Optional[str] = None) -> None:
        self._action("stop", service, description or f"Stopping {service}")

    def restart(self, service: str, *, description: Optional[str] = None) -> None:
        self._action("restart", service, description or f"Restarting {service}")

    def reload(self, service: str, *, description: Optional[str] = None) -> None:
        """Reload a service, falling back to restart if reload is unsupported."""
        desc = description or f"Reloading {service}"
        try:
            self.executor.systemctl("reload", service, description=desc)
        except ExecutionError:
            self.ctx.console.warn(f"Reload failed for {service}, trying restart")
            self.restart(service)

    def enable(self, service: str, *, start: bool = False) -> None:
        """Enable a service at boot, optionally starting it now."""
        command = ["systemctl", "enable", service]
        if start:
            command.insert(2, "--now")
        try:
            self.executor.run(command, description=f"Enabling {service}")
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to enable {service}",
                hint=f"Check logs: journalctl -xeu {service}",
                details=e.details,
            ) from e

    def daemon_reload(self) -> None:
        self.executor.run(["systemctl", "daemon-reload"], description="Reloading systemd units")

    def journal_tail(self, service: str, lines: int = 30) -> str:
        """Last journal lines for a unit, for failure diagnostics."""
        result = self.executor.probe(
            ["journalctl", "-u", service, "-n", str(lines), "--no-pager"],
        )
        return result.stdout.strip()
