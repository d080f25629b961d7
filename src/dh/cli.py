"""Main CLI entry point using Typer.

This module defines the root CLI application and global options.
Command groups are registered from submodules.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from dh import __version__
from dh.commands.common import (
    ConfigOption,
    DeployDirOption,
    DryRunOption,
    ForceOption,
    NoColorOption,
    QuietOption,
    VerboseOption,
    YesOption,
    confirm_or_exit,
    handle_error,
    require_root,
)
from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.config import AppConfig, get_example_config, init_config
from dh.core.context import create_context
from dh.core.exceptions import DHError


# Create the main Typer app
app = typer.Typer(
    name="dh",
    help="dockerhosting - Debian provisioning for Docker-based site hosting.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

security_app = typer.Typer(
    name="security",
    help="Security hardening commands.",
    no_args_is_help=True,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

# Import sub-commands
from dh.commands.docker import app as docker_app
from dh.commands.nginx import app as nginx_app
from dh.commands.site import app as site_app
from dh.commands.system import app as system_app

# Register command groups
app.add_typer(system_app, name="system")
app.add_typer(docker_app, name="docker")
app.add_typer(nginx_app, name="nginx")
app.add_typer(site_app, name="site")
app.add_typer(security_app, name="security")
app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"dh version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """dockerhosting - Debian provisioning for Docker-based site hosting.

    Bootstraps a hardened Debian server for Docker and deploys Git-sourced
    sites onto it, each with its own user, network and Nginx vhost.

    [bold]Features:[/bold]
    - Dry-run mode to preview changes
    - Backups before every configuration file is replaced
    - Per-site isolation through sudo rules instead of docker group membership
    - Audit logging of all operations

    [bold]Examples:[/bold]
        sudo dh setup
        sudo dh deploy
        sudo dh site ssl myapp --hostname app.example.com
        dh config show
    """
    pass


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the loaded configuration from the config file.
    Secrets are not shown.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        # Show secrets status (not values)
        ctx.console.summary("Secrets (from environment)", {
            "DH_SMTP_PASSWORD": "Set" if app_config.secrets.smtp_password else "Not set",
            "DH_ENCRYPTION_KEY": "Set" if app_config.secrets.encryption_key else "Not set",
        })

    except DHError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with sensible defaults and comments.
    """
    ctx = create_context(force=force, no_color=no_color, config=config)

    try:
        init_config(ctx.config_path, force=force)
        get_audit_logger().log_success(
            AuditEventType.CONFIG_MODIFY,
            "config",
            str(ctx.config_path),
            message="Configuration file initialized",
        )
        ctx.console.success(f"Configuration file created: {ctx.config_path}")
        ctx.console.info("Edit the file to customize settings, then run commands.")
        ctx.console.hint("Set secrets via environment variables (DH_SMTP_PASSWORD, DH_ENCRYPTION_KEY)")

    except DHError as e:
        handle_error(e)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration file.

    Checks that the configuration file is valid YAML, that all values pass
    validation, and reports settings that are likely mistakes.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        # This will raise ConfigurationError if invalid
        app_config = AppConfig(config_path=ctx.config_path)

        if ctx.config_path.exists():
            ctx.console.success(f"Configuration is valid: {ctx.config_path}")
        else:
            ctx.console.info(f"{ctx.config_path} does not exist; defaults are in effect")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

        warnings = app_config.warnings()
        if warnings:
            ctx.console.print()
            for warning in warnings:
                ctx.console.warn(warning)

    except DHError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file.

    Outputs a complete example configuration with comments.
    Useful as a starting point for creating your own config.
    """
    ctx = create_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False, highlight=False)


# ============================================================================
# Security commands
# ============================================================================

@security_app.command("harden")
def security_harden(
    skip_kernel: Annotated[
        bool,
        typer.Option("--skip-kernel", help="Skip kernel (sysctl) hardening"),
    ] = False,
    skip_auditd: Annotated[
        bool,
        typer.Option("--skip-auditd", help="Skip auditd configuration"),
    ] = False,
    skip_upgrades: Annotated[
        bool,
        typer.Option("--skip-upgrades", help="Skip unattended-upgrades configuration"),
    ] = False,
    skip_shm: Annotated[
        bool,
        typer.Option("--skip-shm", help="Skip /dev/shm hardening"),
    ] = False,
    skip_fail2ban: Annotated[
        bool,
        typer.Option("--skip-fail2ban", help="Skip fail2ban configuration"),
    ] = False,
    skip_ssh: Annotated[
        bool,
        typer.Option("--skip-ssh", help="Skip SSH daemon hardening"),
    ] = False,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Apply the host security baseline.

    Installs and configures:
    - Kernel hardening sysctls
    - auditd rules for identity, sudo, SSH and Docker changes
    - unattended-upgrades for automatic security updates
    - noexec,nosuid,nodev /dev/shm
    - fail2ban for SSH brute-force protection
    - SSH daemon hardening (key-only login)

    SSH hardening refuses to run when no authorized_keys file is found,
    unless --force is given.

    [bold]Examples:[/bold]

        sudo dh security harden
        dh security harden --dry-run
        sudo dh security harden --skip-ssh
    """
    from dh.commands.security.harden import run_harden

    ctx = create_context(dry_run=dry_run, force=force, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh security harden")

    try:
        security = ctx.config.security

        ctx.console.print()
        ctx.console.print("[bold]Security Hardening Configuration[/bold]")
        ctx.console.print(f"  Kernel sysctls:      {'Skip' if skip_kernel else 'Enable'}")
        ctx.console.print(f"  auditd:              {'Skip' if skip_auditd else 'Enable'}")
        ctx.console.print(f"  unattended-upgrades: {'Skip' if skip_upgrades else 'Enable'}")
        ctx.console.print(f"  /dev/shm:            {'Skip' if skip_shm else 'Enable'}")
        ctx.console.print(f"  fail2ban:            {'Skip' if skip_fail2ban else 'Enable'}")
        if not skip_fail2ban:
            ctx.console.print(f"    - bantime:         {security.fail2ban_bantime}")
            ctx.console.print(f"    - maxretry:        {security.fail2ban_maxretry}")
        ctx.console.print(f"  SSH:                 {'Skip' if skip_ssh else 'Enable'}")
        if not skip_ssh:
            ctx.console.print(f"    - port:            {security.ssh_port}")
            ctx.console.print(f"    - root login:      {security.permit_root_login}")
            ctx.console.print(f"    - passwords:       {'Yes' if security.password_authentication else 'No'}")
        ctx.console.print()

        confirm_or_exit(ctx, "Proceed with security hardening?")
        run_harden(
            ctx,
            skip_kernel=skip_kernel,
            skip_auditd=skip_auditd,
            skip_upgrades=skip_upgrades,
            skip_shm=skip_shm,
            skip_fail2ban=skip_fail2ban,
            skip_ssh=skip_ssh,
        )
    except DHError as e:
        handle_error(e)


# ============================================================================
# Server setup command
# ============================================================================

@app.command("setup")
def setup_cmd(
    skip_packages: Annotated[
        bool,
        typer.Option("--skip-packages", help="Skip apt upgrade and package installation"),
    ] = False,
    skip_docker: Annotated[
        bool,
        typer.Option("--skip-docker", help="Skip Docker installation"),
    ] = False,
    skip_nginx: Annotated[
        bool,
        typer.Option("--skip-nginx", help="Skip boundary Nginx installation"),
    ] = False,
    skip_firewall: Annotated[
        bool,
        typer.Option("--skip-firewall", help="Skip UFW configuration"),
    ] = False,
    skip_security: Annotated[
        bool,
        typer.Option("--skip-security", help="Skip kernel, auditd, upgrades, /dev/shm, fail2ban and SSH hardening"),
    ] = False,
    skip_ssh: Annotated[
        bool,
        typer.Option("--skip-ssh", help="Skip SSH daemon hardening"),
    ] = False,
    skip_docker_harden: Annotated[
        bool,
        typer.Option("--skip-docker-harden", help="Skip Docker daemon hardening"),
    ] = False,
    userns_remap: Annotated[
        Optional[bool],
        typer.Option(
            "--userns-remap/--no-userns-remap",
            help="Docker user namespace remapping. Prompted when not given",
        ),
    ] = None,
    email: Annotated[
        Optional[bool],
        typer.Option(
            "--email/--no-email",
            help="Configure the email relay. Prompted when not given (default no)",
        ),
    ] = None,
    list_file: Annotated[
        Optional[Path],
        typer.Option(
            "--list-file",
            "-l",
            help="Extra package list, one per line",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    hostname: Annotated[
        Optional[str],
        typer.Option("--hostname", help="Set server hostname"),
    ] = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Set up a fresh Debian server for Docker hosting.

    One command to install and harden everything a hosting server needs:
    packages, Docker, boundary Nginx, UFW, kernel/auditd/fail2ban/SSH
    hardening, Docker daemon hardening, optional email relay and log
    rotation.

    [bold]Examples:[/bold]

        # Interactive setup
        sudo dh setup

        # Unattended, with email relay from config
        sudo dh setup --yes --email

        # Preview changes
        dh setup --dry-run
    """
    from dh.commands.setup import SetupOptions, run_setup

    ctx = create_context(
        dry_run=dry_run,
        force=force,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )
    require_root(ctx, "dh setup")

    options = SetupOptions(
        packages=not skip_packages,
        docker=not skip_docker,
        nginx=not skip_nginx,
        firewall=not skip_firewall,
        security=not skip_security,
        ssh=not skip_ssh,
        docker_harden=not skip_docker_harden,
        userns_remap=userns_remap,
        email=email,
        list_file=list_file,
        hostname=hostname,
    )

    confirm_or_exit(ctx, "Proceed with server setup?")

    try:
        run_setup(ctx, options)
    except DHError as e:
        handle_error(e)


# ============================================================================
# Site deployment command
# ============================================================================

@app.command("deploy")
def deploy_cmd(
    git_url: Annotated[
        Optional[str],
        typer.Option("--git-url", "-g", help="Git repository URL"),
    ] = None,
    name: Annotated[
        Optional[str],
        typer.Option("--name", "-n", help="Site name. Default: the repository name"),
    ] = None,
    deploy_dir: DeployDirOption = None,
    branch: Annotated[
        Optional[str],
        typer.Option("--branch", "-b", help="Git branch. Default: the remote's default branch"),
    ] = None,
    no_user: Annotated[
        bool,
        typer.Option("--no-user", help="Don't create a dedicated site user"),
    ] = False,
    no_logrotate: Annotated[
        bool,
        typer.Option("--no-logrotate", help="Don't configure log rotation"),
    ] = False,
    systemd: Annotated[
        bool,
        typer.Option("--systemd", help="Install a systemd unit that starts the site at boot"),
    ] = False,
    nginx: Annotated[
        bool,
        typer.Option("--nginx", help="Route SITE_HOSTNAME through the boundary Nginx"),
    ] = False,
    letsencrypt: Annotated[
        bool,
        typer.Option("--letsencrypt", help="Use Let's Encrypt for the Nginx certificate"),
    ] = False,
    le_email: Annotated[
        Optional[str],
        typer.Option("--email", help="Let's Encrypt account email"),
    ] = None,
    ssh_key_file: Annotated[
        Optional[Path],
        typer.Option(
            "--ssh-key-file",
            help="Private key for cloning private repositories",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    env: Annotated[
        Optional[list[str]],
        typer.Option("--env", "-e", help="Extra KEY=VALUE for .env (repeatable)"),
    ] = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Deploy a site from a Git repository.

    Prompts for anything not given as an option. With --yes nothing is
    prompted: --git-url is required and everything else takes its default.
    The encryption key is read from DH_ENCRYPTION_KEY or prompted for.

    [bold]Examples:[/bold]

        # Interactive wizard
        sudo dh deploy

        # Unattended
        sudo DH_ENCRYPTION_KEY=... dh deploy --yes \\
            --git-url git@github.com:acme/shop.git --ssh-key-file deploy_key --systemd
    """
    from dh.commands.deploy import SiteDeployWizard, run_deploy

    ctx = create_context(dry_run=dry_run, force=force, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh deploy")

    try:
        wizard = SiteDeployWizard(
            ctx,
            git_url=git_url,
            name=name,
            deploy_dir=deploy_dir,
            branch=branch,
            create_user=not no_user,
            setup_logrotate=not no_logrotate,
            setup_systemd=systemd,
            configure_nginx=nginx,
            ssh_key_file=ssh_key_file,
            env=env,
        )
        spec = wizard.run()
        if spec is None:
            raise typer.Exit(0)
        run_deploy(ctx, spec, letsencrypt=letsencrypt, le_email=le_email)
    except (KeyboardInterrupt, EOFError):
        ctx.console.print()
        ctx.console.warn("Deployment cancelled")
        raise typer.Exit(130)
    except DHError as e:
        handle_error(e)


# Entry point
if __name__ == "__main__":
    app()
