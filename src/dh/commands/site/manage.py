"""Per-site operations that can be re-run after deployment.

Each function is one deployment step on its own: user, sudo helpers, log
rotation, directory layout, systemd unit and certificates.
"""

from pathlib import Path
from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError, SiteError
from dh.core.executor import CommandExecutor
from dh.core.validation import validate_hostname, validate_site_name
from dh.services.logrotate import LogrotateService
from dh.services.permissions import DockerPermissionService
from dh.services.site import SiteConfigurator, SiteRecord, SiteRegistry
from dh.services.ssl import CertificatePaths, CertificateService
from dh.services.users import SiteUserService


def _require_user(site: str) -> None:
    if not SiteUserService.user_exists(site):
        raise SiteError(
            f"User {site} does not exist",
            hint=f"Create it first with: dh site users {site}",
        )


def site_owner(ctx: ExecutionContext, site: str) -> str:
    """Owner of a deployed site.

    The user in the site record, else the site user when it exists, else root
    (sites deployed with --no-user).
    """
    record = SiteRegistry(ctx, CommandExecutor(ctx), ctx.config.paths.sites_state_dir).load(site)
    if record:
        return record.user
    return site if SiteUserService.user_exists(site) else "root"


def run_users(ctx: ExecutionContext, site: str, deploy_dir: Path) -> bool:
    """Create the site user and its log directory, then fix deploy dir ownership.

    Returns:
        True if the user was created
    """
    audit = get_audit_logger()
    site = validate_site_name(site)
    users = SiteUserService(ctx, CommandExecutor(ctx))
    paths = ctx.config.paths

    try:
        ctx.console.step(f"Setting up user {site}")
        created = users.ensure_user(site, paths.home_root / site)
        if created:
            audit.log_success(AuditEventType.USER_CREATE, "user", site)

        log_dir = users.ensure_log_dir(site, paths.site_log_root)
        ctx.console.info(f"Log directory: {log_dir}")

        if deploy_dir.is_dir() or ctx.dry_run:
            users.apply_permissions(deploy_dir, site)
            audit.log_success(AuditEventType.SITE_PERMISSIONS, "site", site, parameters={"deploy_dir": str(deploy_dir)})
        else:
            ctx.console.verbose(f"{deploy_dir} does not exist yet; ownership is set after cloning")

        ctx.console.info(f"{site} is not in the docker group; Docker access goes through sudo rules")
        return created

    except DHError as e:
        audit.log_failure(AuditEventType.USER_CREATE, "user", site, error=str(e))
        raise


def run_permissions(ctx: ExecutionContext, site: str, deploy_dir: Path) -> Path:
    """Install the site's sudoers drop-in and bin/ helper scripts.

    Returns:
        The helper bin directory
    """
    audit = get_audit_logger()
    site = validate_site_name(site)
    permissions = DockerPermissionService(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step(f"Setting up Docker permissions for {site}")
        if not ctx.dry_run:
            _require_user(site)
        sudoers = permissions.install_sudoers(site, site, deploy_dir)
        bin_dir = permissions.install_helpers(site, site, deploy_dir)
        ctx.console.success(f"Sudo rules in {sudoers}, helpers in {bin_dir}")

        audit.log_success(
            AuditEventType.SITE_PERMISSIONS,
            "site",
            site,
            parameters={"sudoers": str(sudoers), "bin_dir": str(bin_dir)},
        )
        return bin_dir

    except DHError as e:
        audit.log_failure(AuditEventType.SITE_PERMISSIONS, "site", site, error=str(e))
        raise


def run_logrotate(ctx: ExecutionContext, site: str, deploy_dir: Path) -> Path:
    audit = get_audit_logger()
    site = validate_site_name(site)
    logrotate = LogrotateService(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step(f"Setting up log rotation for {site}")
        path = logrotate.configure_site(site, site_owner(ctx, site), deploy_dir, ctx.config.paths.site_log_root / site)
        ctx.console.success(f"Log rotation configured: {path}")
        audit.log_success(AuditEventType.SITE_LOGROTATE, "site", site)
        return path

    except DHError as e:
        audit.log_failure(AuditEventType.SITE_LOGROTATE, "site", site, error=str(e))
        raise


def run_configure(ctx: ExecutionContext, site: str, deploy_dir: Path) -> None:
    audit = get_audit_logger()
    site = validate_site_name(site)
    configurator = SiteConfigurator(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step(f"Configuring site {site}")
        if not deploy_dir.is_dir() and not ctx.dry_run:
            raise SiteError(f"Deploy directory does not exist: {deploy_dir}", hint="Deploy the site first with 'dh deploy'")
        configurator.configure(site, deploy_dir, site_owner(ctx, site))
        ctx.console.success(f"Site configuration complete for {site}")
        audit.log_success(AuditEventType.SITE_CONFIGURE, "site", site)

    except DHError as e:
        audit.log_failure(AuditEventType.SITE_CONFIGURE, "site", site, error=str(e))
        raise


def run_systemd(ctx: ExecutionContext, site: str, deploy_dir: Path) -> Path:
    audit = get_audit_logger()
    site = validate_site_name(site)
    configurator = SiteConfigurator(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step(f"Installing systemd unit for {site}")
        unit = configurator.install_systemd_unit(site, deploy_dir, site_owner(ctx, site))
        ctx.console.success(f"{unit.name} installed and enabled")
        ctx.console.info(f"Start it with: systemctl start {unit.name}")
        audit.log_success(AuditEventType.SITE_SYSTEMD, "site", site, parameters={"unit": str(unit)})
        return unit

    except DHError as e:
        audit.log_failure(AuditEventType.SITE_SYSTEMD, "site", site, error=str(e))
        raise


def run_ssl(
    ctx: ExecutionContext,
    site: str,
    hostname: str,
    letsencrypt: bool = False,
    email: Optional[str] = None,
    regenerate: bool = False,
) -> CertificatePaths:
    audit = get_audit_logger()
    site = validate_site_name(site)
    hostname = validate_hostname(hostname)
    certs = CertificateService(ctx, CommandExecutor(ctx), ctx.config.ssl)
    event = AuditEventType.CERT_LETSENCRYPT if letsencrypt else AuditEventType.CERT_SELF_SIGNED

    try:
        ctx.console.step(f"Setting up TLS certificate for {hostname}")
        if letsencrypt:
            paths = certs.letsencrypt(site, hostname, email)
        else:
            paths = certs.self_signed(site, hostname, regenerate=regenerate)

        if not ctx.dry_run:
            info = certs.describe(site)
            if info:
                for line in info.splitlines():
                    ctx.console.info(line)

        ctx.console.summary("Certificate", {
            "Certificate": paths.fullchain,
            "Private key": paths.privkey,
            "Chain": paths.chain,
        })
        audit.log_success(event, "certificate", site, parameters={"hostname": hostname})
        return paths

    except DHError as e:
        audit.log_failure(event, "certificate", site, error=str(e))
        raise


def list_sites(ctx: ExecutionContext) -> list[SiteRecord]:
    registry = SiteRegistry(ctx, CommandExecutor(ctx), ctx.config.paths.sites_state_dir)
    return registry.list()
