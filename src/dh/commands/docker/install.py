"""Docker installation functionality.

Installs Docker CE and the Compose plugin from download.docker.com.
"""

import os
from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.executor import CommandExecutor
from dh.services.docker import DockerService


def run_install(ctx: ExecutionContext, docker_user: Optional[str] = None) -> bool:
    """Install Docker.

    Args:
        ctx: Execution context
        docker_user: Login user added to the docker group. Default: $SUDO_USER

    Returns:
        False if Docker was already installed
    """
    audit = get_audit_logger()
    docker = DockerService(ctx, CommandExecutor(ctx))
    user = docker_user or os.environ.get("SUDO_USER")

    try:
        ctx.console.step("Installing Docker")
        installed = docker.install(docker_user=user)

        if not ctx.dry_run:
            versions = docker.versions()
            for name, version in versions.items():
                ctx.console.info(f"{name}: {version}")

        if installed:
            ctx.console.success("Docker installation complete")
            audit.log_success(
                AuditEventType.DOCKER_INSTALL,
                "docker",
                "engine",
                parameters={"docker_user": user},
            )
        return installed

    except DHError as e:
        audit.log_failure(AuditEventType.DOCKER_INSTALL, "docker", "engine", error=str(e))
        raise
