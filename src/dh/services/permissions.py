"""Sudo-scoped Docker access for site users.

A site user may run 'docker compose' only against its own project
directory, plus test and reload the boundary Nginx. Helper scripts in
<deploy_dir>/bin wrap exactly those commands.
"""

from pathlib import Path

from dh.core.context import ExecutionContext
from dh.core.exceptions import ExecutionError, SiteError
from dh.core.executor import CommandExecutor
from dh.services.templates import render_template


SUDOERS_DIR = Path("/etc/sudoers.d")

HELPER_SCRIPTS = (
    "docker-up",
    "docker-down",
    "docker-restart",
    "docker-logs",
    "docker-ps",
    "docker-pull",
    "docker-exec",
    "nginx-reload",
    "nginx-status",
)


def sudoers_alias(site: str) -> str:
    """Cmnd_Alias prefix: uppercase letters, digits and underscores only."""
    return site.upper().replace("-", "_")


def sudoers_path(site: str) -> Path:
    return SUDOERS_DIR / f"docker-{site}"


def render_sudoers(site: str, user: str, deploy_dir: Path) -> str:
    return render_template(
        "sudoers/docker-site.j2",
        site_name=site,
        site_user=user,
        deploy_dir=deploy_dir,
        alias=sudoers_alias(site),
    )


class DockerPermissionService:
    """Write the sudoers drop-in and helper scripts for one site."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def install_sudoers(self, site: str, user: str, deploy_dir: Path) -> Path:
        """Write /etc/sudoers.d/docker-<site> and validate it with visudo.

        An invalid file is removed immediately: a broken sudoers drop-in
        disables sudo for everyone.

        Raises:
            SiteError: If visudo rejects the file
        """
        path = sudoers_path(site)
        content = render_sudoers(site, user, deploy_dir)
        if self.ctx.is_verbose:
            self.ctx.console.code(content, "text", str(path))

        self.executor.write_file(
            path, content,
            description=f"Writing sudo rules {path}",
            permissions=0o440,
            owner="root",
            group="root",
        )

        try:
            self.executor.run(["visudo", "-c", "-f", str(path)], description="Validating sudo rules")
        except ExecutionError as e:
            self.executor.remove_file(path)
            raise SiteError(
                f"visudo rejected {path}; the file was removed",
                hint="Check the site name and deploy directory for unusual characters",
                details=e.details,
            ) from e
        return path

    def install_helpers(self, site: str, user: str, deploy_dir: Path) -> Path:
        """Write <deploy_dir>/bin helper scripts and README.

        Returns:
            The bin directory
        """
        bin_dir = deploy_dir / "bin"
        self.executor.ensure_dir(bin_dir, permissions=0o755, owner=user)

        params = {"site_name": site, "site_user": user, "deploy_dir": deploy_dir}
        for script in HELPER_SCRIPTS:
            self.executor.write_file(
                bin_dir / script,
                render_template(f"site/bin/{script}.j2", **params),
                description=f"Writing helper {script}",
                permissions=0o755,
                owner=user,
            )
        self.executor.write_file(
            bin_dir / "README.md",
            render_template("site/README.md.j2", **params),
            permissions=0o644,
            owner=user,
        )
        return bin_dir
