"""Boundary Nginx management.

The boundary Nginx is the only process listening on 80/443. It terminates
TLS and proxies each hostname to the port a site publishes on 127.0.0.1.
"""

from dataclasses import dataclass
from pathlib import Path

from dh.core.config import NginxConfig, SSLConfig
from dh.core.context import ExecutionContext
from dh.core.exceptions import ExecutionError, NginxError, ServiceError, ValidationError
from dh.core.executor import CommandExecutor
from dh.core.validation import validate_hostname, validate_port
from dh.services.apt import AptService
from dh.services.envfile import EnvFile
from dh.services.ssl import CertificatePaths
from dh.services.systemd import SystemdService
from dh.services.templates import render_template


NGINX_DIR = Path("/etc/nginx")
NGINX_CONF = NGINX_DIR / "nginx.conf"
SITES_AVAILABLE = NGINX_DIR / "sites-available"
SITES_ENABLED = NGINX_DIR / "sites-enabled"
LOGROTATE_PATH = Path("/etc/logrotate.d/nginx-boundary")
HEALTH_SITE = "health-check"


@dataclass(frozen=True)
class SiteEndpoint:
    """Where a site is reachable: public hostname and local backend port."""
    hostname: str
    port: int


def read_site_endpoint(deploy_dir: Path) -> SiteEndpoint:
    """Read SITE_HOSTNAME and SITE_PORT from <deploy_dir>/.env.

    Raises:
        NginxError: If the file or either key is missing or invalid
    """
    env_path = deploy_dir / ".env"
    if not env_path.is_file():
        raise NginxError(
            f"No .env found in {deploy_dir}",
            hint="Deploy the site first, or create .env with SITE_HOSTNAME and SITE_PORT",
        )

    env = EnvFile.load(env_path)
    hostname = env.get("SITE_HOSTNAME")
    port = env.get("SITE_PORT")
    missing = [k for k, v in (("SITE_HOSTNAME", hostname), ("SITE_PORT", port)) if not v]
    if missing:
        raise NginxError(
            f"{env_path} is missing {', '.join(missing)}",
            hint="Set SITE_HOSTNAME=app.example.com and SITE_PORT=<published port> in .env",
        )

    try:
        return SiteEndpoint(hostname=validate_hostname(hostname), port=validate_port(int(port)))
    except ValueError as e:
        raise NginxError(f"SITE_PORT is not a number: {port}") from e
    except ValidationError as e:
        raise NginxError(e.message, hint=e.hint) from e


class NginxService:
    """Install the boundary Nginx and manage per-site vhosts."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        settings: NginxConfig,
        ssl_settings: SSLConfig,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.settings = settings
        self.ssl_settings = ssl_settings
        self.systemd = SystemdService(ctx, executor)

    def render_main_config(self) -> str:
        return render_template(
            "nginx/nginx.conf.j2",
            worker_connections=self.settings.worker_connections,
            client_max_body_size=self.settings.client_max_body_size,
            rate_limit=self.settings.rate_limit,
            proxy_timeout=self.settings.proxy_timeout,
            acme_webroot=self.ssl_settings.acme_webroot,
        )

    def render_site_config(self, site: str, endpoint: SiteEndpoint, certs: CertificatePaths, deploy_dir: Path) -> str:
        return render_template(
            "nginx/site.conf.j2",
            site_name=site,
            hostname=endpoint.hostname,
            site_port=endpoint.port,
            cert_dir=certs.directory,
            deploy_dir=deploy_dir,
            acme_webroot=self.ssl_settings.acme_webroot,
            rate_burst=self.settings.rate_burst,
        )

    def test_config(self) -> None:
        """Run nginx -t.

        Raises:
            NginxError: If the configuration is rejected
        """
        try:
            self.executor.run(["nginx", "-t"], description="Testing Nginx configuration")
        except ExecutionError as e:
            raise NginxError(
                "Nginx configuration test failed",
                hint="Run 'nginx -t' to see the offending file",
                details=e.details,
            ) from e

    def reload(self) -> None:
        self.systemd.reload("nginx")

    def enable_site(self, name: str) -> None:
        self.executor.symlink(SITES_AVAILABLE / name, SITES_ENABLED / name)

    def disable_site(self, name: str) -> None:
        self.executor.remove_file(SITES_ENABLED / name)

    def install(self) -> None:
        """Install and configure the boundary Nginx.

        Raises:
            NginxError: If the configuration test fails or nginx will not start
        """
        AptService(self.ctx, self.executor).install(["nginx"], description="Installing Nginx")

        # Keep nginx down while its config is replaced
        if self.systemd.is_active("nginx"):
            self.systemd.stop("nginx")

        backup = self.executor.backup_file(NGINX_CONF, timestamped=False)
        if backup:
            self.ctx.console.verbose(f"Original nginx.conf kept at {backup}")

        for directory in (SITES_AVAILABLE, SITES_ENABLED, Path("/var/log/nginx")):
            self.executor.ensure_dir(directory, permissions=0o755)
        self.executor.ensure_dir(self.ssl_settings.acme_webroot, permissions=0o755)

        # The distribution default site would shadow the 444 catch-all
        self.disable_site("default")

        self.executor.write_file(NGINX_CONF, self.render_main_config(), description="Writing boundary nginx.conf")
        self.executor.write_file(
            SITES_AVAILABLE / HEALTH_SITE,
            render_template("nginx/health-check.conf.j2"),
            description="Writing health-check site",
        )
        self.enable_site(HEALTH_SITE)

        self.test_config()

        try:
            self.systemd.enable("nginx", start=True)
        except ServiceError as e:
            raise NginxError(
                "Nginx failed to start",
                hint="Check logs: journalctl -xeu nginx",
                details=e.details,
            ) from e

        if not self.ctx.dry_run and not self.systemd.is_active("nginx"):
            raise NginxError(
                "Nginx is not running after start",
                details=[self.systemd.journal_tail("nginx")],
            )

        self.executor.write_file(
            LOGROTATE_PATH,
            render_template("nginx/logrotate.j2"),
            description="Configuring Nginx log rotation",
        )

    def configure_site(self, site: str, endpoint: SiteEndpoint, certs: CertificatePaths, deploy_dir: Path) -> Path:
        """Write and enable a site's vhost, then reload.

        A vhost that fails nginx -t is disabled again so the running
        configuration keeps working.

        Returns:
            Path of the vhost file in sites-available
        """
        vhost = SITES_AVAILABLE / site
        content = self.render_site_config(site, endpoint, certs, deploy_dir)
        if self.ctx.is_verbose:
            self.ctx.console.code(content, "nginx", str(vhost))

        self.executor.write_file(vhost, content, description=f"Writing vhost {vhost}")
        self.enable_site(site)

        try:
            self.test_config()
        except NginxError:
            self.ctx.console.error(f"Disabling {site} because the configuration test failed")
            self.disable_site(site)
            raise

        self.reload()
        return vhost
