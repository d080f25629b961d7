"""Boundary Nginx installation and per-site vhosts."""

from pathlib import Path
from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.executor import CommandExecutor
from dh.core.validation import validate_site_name
from dh.services.nginx import NginxService, read_site_endpoint
from dh.services.ssl import CertificatePaths, CertificateService


def _nginx(ctx: ExecutionContext, executor: CommandExecutor) -> NginxService:
    return NginxService(ctx, executor, ctx.config.nginx, ctx.config.ssl)


def run_install(ctx: ExecutionContext) -> None:
    """Install Nginx and replace its config with the boundary one."""
    audit = get_audit_logger()
    nginx = _nginx(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step("Installing boundary Nginx")
        nginx.install()
        ctx.console.success("Boundary Nginx is running")
        ctx.console.info("Health check: curl http://localhost/nginx-health")

        audit.log_success(AuditEventType.NGINX_INSTALL, "nginx", "boundary")

    except DHError as e:
        audit.log_failure(AuditEventType.NGINX_INSTALL, "nginx", "boundary", error=str(e))
        raise


def ensure_certificates(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    site: str,
    hostname: str,
    letsencrypt: bool = False,
    email: Optional[str] = None,
) -> CertificatePaths:
    """Existing certificates are reused; otherwise issue Let's Encrypt or self-signed."""
    certs = CertificateService(ctx, executor, ctx.config.ssl)
    if letsencrypt:
        return certs.letsencrypt(site, hostname, email)
    return certs.self_signed(site, hostname)


def run_site(
    ctx: ExecutionContext,
    site: str,
    deploy_dir: Path,
    letsencrypt: bool = False,
    email: Optional[str] = None,
) -> Path:
    """Route SITE_HOSTNAME from the site's .env to its SITE_PORT on 127.0.0.1.

    Returns:
        The vhost written to sites-available
    """
    audit = get_audit_logger()
    site = validate_site_name(site)
    executor = CommandExecutor(ctx)
    nginx = _nginx(ctx, executor)

    try:
        ctx.console.step(f"Configuring boundary Nginx for {site}")
        endpoint = read_site_endpoint(deploy_dir)
        ctx.console.info(f"{endpoint.hostname} -> 127.0.0.1:{endpoint.port}")

        paths = ensure_certificates(ctx, executor, site, endpoint.hostname, letsencrypt, email)
        vhost = nginx.configure_site(site, endpoint, paths, deploy_dir)
        ctx.console.success(f"https://{endpoint.hostname} is served by the boundary Nginx")

        audit.log_success(
            AuditEventType.NGINX_SITE_CONFIGURE,
            "site",
            site,
            parameters={"hostname": endpoint.hostname, "port": endpoint.port, "letsencrypt": letsencrypt},
        )
        return vhost

    except DHError as e:
        audit.log_failure(AuditEventType.NGINX_SITE_CONFIGURE, "site", site, error=str(e))
        raise
