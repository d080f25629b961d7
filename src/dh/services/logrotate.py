"""Log rotation for sites and Docker container logs."""

from pathlib import Path
from typing import Optional

from dh.core.context import ExecutionContext
from dh.core.executor import CommandExecutor
from dh.services.templates import render_template


LOGROTATE_DIR = Path("/etc/logrotate.d")
DOCKER_SYSTEM_NAME = "docker-system"


class LogrotateService:
    """Render /etc/logrotate.d entries and dry-run them through logrotate."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def configure_site(self, site: str, user: str, deploy_dir: Path, site_log_dir: Path) -> Path:
        """Rotate the site's app logs, its compose nginx logs and /var/log/<site>."""
        path = LOGROTATE_DIR / site
        self.executor.write_file(
            path,
            render_template(
                "site/logrotate.j2",
                site_name=site,
                site_user=user,
                deploy_dir=deploy_dir,
                site_log_dir=site_log_dir,
            ),
            description=f"Configuring log rotation for {site}",
            permissions=0o644,
        )
        self.test(path)
        return path

    def configure_docker_system(self) -> Path:
        path = LOGROTATE_DIR / DOCKER_SYSTEM_NAME
        self.executor.write_file(
            path,
            render_template("logrotate/docker-system.j2"),
            description="Configuring Docker container log rotation",
            permissions=0o644,
        )
        self.test(path)
        return path

    def test(self, path: Path) -> Optional[bool]:
        """logrotate -d on one file. Problems are reported, never raised.

        Returns:
            None in dry-run, otherwise whether logrotate accepted the file
        """
        if self.ctx.dry_run:
            return None
        result = self.executor.probe(["logrotate", "-d", str(path)])
        if result.success:
            self.ctx.console.verbose(f"logrotate accepted {path}")
            return True
        self.ctx.console.warn(f"logrotate reported problems with {path}")
        for line in (result.stderr or result.stdout).strip().splitlines()[-5:]:
            self.ctx.console.verbose(line)
        return False
