"""Server setup command.

One command to turn a fresh Debian server into a Docker host: packages,
Docker, boundary Nginx, firewall, security hardening, daemon hardening,
optional mail relay and log rotation.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.executor import CommandExecutor
from dh.core.safety import read_os_release, run_preflight_checks
from dh.core.validation import validate_hostname
from dh.services.email import MSMTPRC
from dh.services.logrotate import LogrotateService


@dataclass
class SetupOptions:
    """Which setup steps run. Everything runs by default except email."""
    packages: bool = True
    docker: bool = True
    nginx: bool = True
    firewall: bool = True
    security: bool = True
    ssh: bool = True
    docker_harden: bool = True
    userns_remap: Optional[bool] = None
    email: Optional[bool] = None
    list_file: Optional[Path] = None
    hostname: Optional[str] = None


def show_banner(ctx: ExecutionContext) -> None:
    os_release = read_os_release() or {}
    ctx.console.panel(
        "[bold]dockerhosting - Server Setup[/bold]\n"
        f"{os_release.get('PRETTY_NAME', 'Unknown OS')}",
        border_style="cyan",
    )


def set_hostname(ctx: ExecutionContext, executor: CommandExecutor, hostname: str) -> None:
    hostname = validate_hostname(hostname)
    ctx.console.step(f"Setting hostname to {hostname}")
    result = executor.run(["hostnamectl", "set-hostname", hostname], check=False)
    if result.success:
        ctx.console.success(f"Hostname set to {hostname}")
    else:
        ctx.console.warn(f"Failed to set hostname: {result.stderr.strip()}")


def show_final_summary(ctx: ExecutionContext, options: SetupOptions, completed: list[str]) -> None:
    ctx.console.print()
    ctx.console.rule("Server setup completed")
    ctx.console.print()

    if options.security and options.ssh:
        security = ctx.config.security
        ctx.console.warn("IMPORTANT SECURITY NOTICE:")
        if not security.password_authentication:
            ctx.console.warn("  - SSH password authentication is now DISABLED (keys only)")
        if security.permit_root_login == "no":
            ctx.console.warn("  - Root login via SSH is DISABLED")
        ctx.console.warn("  - Test SSH access in a NEW terminal before logging out!")
        ctx.console.print()

    ctx.console.summary("Completed Steps", {step: True for step in completed})
    if MSMTPRC.exists():
        ctx.console.info("Email notifications are configured")

    if options.docker:
        ctx.console.warn("Log out and back in for docker group membership to apply")

    ctx.console.print()
    ctx.console.print("[bold]Next steps:[/bold]")
    ctx.console.print("  1. Test SSH access in a NEW terminal window first")
    ctx.console.print("  2. Log out and log back in")
    ctx.console.print("  3. Deploy a site: sudo dh deploy")
    ctx.console.print()
    ctx.console.print("[bold]Useful commands:[/bold]")
    ctx.console.print("  docker --version")
    ctx.console.print("  sudo ufw status")
    ctx.console.print("  sudo ausearch -ts recent")
    ctx.console.print("  cat /var/log/unattended-upgrades/unattended-upgrades.log")


def run_setup(ctx: ExecutionContext, options: SetupOptions) -> list[str]:
    """Run the server bootstrap.

    Args:
        ctx: Execution context
        options: Steps to run

    Returns:
        Names of the completed steps
    """
    from dh.commands.docker.daemon import run_harden as run_docker_harden
    from dh.commands.docker.install import run_install as run_docker_install
    from dh.commands.nginx.setup import run_install as run_nginx_install
    from dh.commands.security.harden import run_harden
    from dh.commands.system.email import prompt_email_settings, run_email
    from dh.commands.system.firewall import plan_from_config, run_firewall
    from dh.commands.system.packages import run_packages

    audit = get_audit_logger()
    executor = CommandExecutor(ctx)
    completed: list[str] = []

    show_banner(ctx)

    try:
        ctx.console.step("Running pre-flight checks")
        run_preflight_checks(ctx.confirm, dry_run=ctx.dry_run, force=ctx.force, verbose=ctx.is_verbose)
        ctx.console.success("Pre-flight checks passed")

        hostname = options.hostname or ctx.config.config.hostname
        if hostname:
            set_hostname(ctx, executor, hostname)
            completed.append(f"Hostname ({hostname})")

        if options.packages:
            run_packages(ctx, list_file=options.list_file)
            completed.append("System packages")

        if options.docker:
            run_docker_install(ctx)
            completed.append("Docker")

        if options.nginx:
            run_nginx_install(ctx)
            completed.append("Boundary Nginx")

        if options.firewall:
            run_firewall(ctx, plan_from_config(ctx))
            completed.append("Firewall (UFW, default deny)")

        if options.security:
            run_harden(ctx, skip_ssh=True)
            completed += ["Kernel hardening", "Audit logging (auditd)", "Automatic security updates",
                          "Shared memory hardening", "fail2ban"]

        if options.docker_harden:
            remap = options.userns_remap
            if remap is None:
                remap = ctx.confirm(
                    "Enable Docker user namespace remapping? (recommended)",
                    default=ctx.config.docker.userns_remap,
                )
            run_docker_harden(ctx, userns_remap=remap)
            completed.append("Docker daemon hardening")

        email = options.email
        if email is None:
            ctx.console.print()
            ctx.console.info("Email notifications let the system send alerts, security notices and cron output")
            email = ctx.confirm("Configure email notifications?", default=False)
        if email:
            run_email(ctx, prompt_email_settings(ctx, ctx.config.email))
            completed.append("Email relay")
        else:
            ctx.console.info("Skipping email configuration")

        if options.security and options.ssh:
            ctx.console.warn("Hardening SSH: make sure your SSH key is installed before this step")
            run_harden(
                ctx,
                skip_kernel=True,
                skip_auditd=True,
                skip_upgrades=True,
                skip_shm=True,
                skip_fail2ban=True,
            )
            completed.append("SSH hardening")

        ctx.console.step("Configuring Docker log rotation")
        LogrotateService(ctx, executor).configure_docker_system()
        completed.append("Docker log rotation")

        ctx.console.step("Creating standard directories")
        paths = ctx.config.paths
        executor.ensure_dir(paths.apps_dir, permissions=0o755)
        executor.ensure_dir(paths.docker_sites_log_dir, permissions=0o755)
        completed.append(f"Directories ({paths.apps_dir}, {paths.docker_sites_log_dir})")

        show_final_summary(ctx, options, completed)

        audit.log_success(
            AuditEventType.SERVER_SETUP,
            "server",
            "setup",
            message=f"Server setup completed: {', '.join(completed)}",
        )
        return completed

    except DHError as e:
        audit.log_failure(
            AuditEventType.SERVER_SETUP,
            "server",
            "setup",
            error=str(e),
        )
        raise
