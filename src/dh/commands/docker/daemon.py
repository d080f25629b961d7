"""Docker daemon hardening and recovery."""

from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.executor import CommandExecutor
from dh.services.docker import DAEMON_JSON, DockerService


def run_harden(ctx: ExecutionContext, userns_remap: Optional[bool] = None) -> str:
    """Write the hardened daemon.json and restart Docker.

    Returns:
        "hardened" or "minimal"
    """
    audit = get_audit_logger()
    docker = DockerService(ctx, CommandExecutor(ctx))
    settings = ctx.config.docker
    remap = settings.userns_remap if userns_remap is None else userns_remap

    try:
        ctx.console.step("Hardening Docker daemon")
        active = docker.harden(settings, userns_remap=remap)

        ctx.console.summary("Docker Daemon", {
            "Configuration": active,
            "User namespace remap": remap and active == "hardened",
            "Inter-container communication": "disabled" if active == "hardened" else "default",
            "Log rotation": f"{settings.log_max_size} x {settings.log_max_file}",
        })
        if remap and active == "hardened":
            ctx.console.warn("User namespace remapping is on: existing volumes may need their ownership fixed")
            ctx.console.hint("Containers that need host namespaces can opt out with 'userns_mode: host'")
        if active == "minimal":
            ctx.console.hint("Run 'dh docker harden' again after fixing the cause shown in 'journalctl -u docker'")

        audit.log_success(
            AuditEventType.DOCKER_HARDEN,
            "docker",
            str(DAEMON_JSON),
            parameters={"config": active, "userns_remap": remap},
        )
        return active

    except DHError as e:
        audit.log_failure(AuditEventType.DOCKER_HARDEN, "docker", str(DAEMON_JSON), error=str(e))
        raise


def run_recover(ctx: ExecutionContext) -> None:
    """Restore the newest daemon.json backup and restart Docker."""
    audit = get_audit_logger()
    docker = DockerService(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step("Recovering Docker daemon configuration")
        backup = docker.recover()
        restored = str(backup) if backup else "minimal configuration"
        ctx.console.success(f"Docker recovered from {restored}")

        audit.log_success(
            AuditEventType.DOCKER_RECOVER,
            "docker",
            str(DAEMON_JSON),
            parameters={"restored": restored},
        )

    except DHError as e:
        audit.log_failure(AuditEventType.DOCKER_RECOVER, "docker", str(DAEMON_JSON), error=str(e))
        raise
