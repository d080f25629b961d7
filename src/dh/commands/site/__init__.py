"""Site commands: re-run individual deployment steps for one site."""

from typing import Annotated, Optional

import typer

from dh.commands.common import (
    ConfigOption,
    DeployDirOption,
    DryRunOption,
    ForceOption,
    NoColorOption,
    SiteArgument,
    VerboseOption,
    YesOption,
    handle_error,
    require_root,
    site_dir,
)
from dh.core.context import create_context
from dh.core.exceptions import DHError

app = typer.Typer(
    name="site",
    help="Per-site user, permissions, certificates and configuration.",
    no_args_is_help=True,
)


@app.command("users")
def users_cmd(
    site: SiteArgument,
    deploy_dir: DeployDirOption = None,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Create the site's Unix user and log directory and fix ownership.

    Directories become 755, files 644, *.sh 755 and .env* 600.
    """
    from dh.commands.site.manage import run_users

    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh site users {site}")

    try:
        run_users(ctx, site, site_dir(ctx, site, deploy_dir))
    except DHError as e:
        handle_error(e)


@app.command("permissions")
def permissions_cmd(
    site: SiteArgument,
    deploy_dir: DeployDirOption = None,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Allow the site user to run docker compose for its own directory only.

    Writes /etc/sudoers.d/docker-<site> (validated with visudo) and the
    helper scripts in <deploy_dir>/bin.
    """
    from dh.commands.site.manage import run_permissions

    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh site permissions {site}")

    try:
        run_permissions(ctx, site, site_dir(ctx, site, deploy_dir))
    except DHError as e:
        handle_error(e)


@app.command("logrotate")
def logrotate_cmd(
    site: SiteArgument,
    deploy_dir: DeployDirOption = None,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Rotate the site's application, compose nginx and /var/log/<site> logs."""
    from dh.commands.site.manage import run_logrotate

    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh site logrotate {site}")

    try:
        run_logrotate(ctx, site, site_dir(ctx, site, deploy_dir))
    except DHError as e:
        handle_error(e)


@app.command("configure")
def configure_cmd(
    site: SiteArgument,
    deploy_dir: DeployDirOption = None,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Create logs/data/backups and validate the site's compose file."""
    from dh.commands.site.manage import run_configure

    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh site configure {site}")

    try:
        run_configure(ctx, site, site_dir(ctx, site, deploy_dir))
    except DHError as e:
        handle_error(e)


@app.command("systemd")
def systemd_cmd(
    site: SiteArgument,
    deploy_dir: DeployDirOption = None,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Install /etc/systemd/system/<site>.service to run the site at boot."""
    from dh.commands.site.manage import run_systemd

    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh site systemd {site}")

    try:
        run_systemd(ctx, site, site_dir(ctx, site, deploy_dir))
    except DHError as e:
        handle_error(e)


@app.command("ssl")
def ssl_cmd(
    site: SiteArgument,
    hostname: Annotated[
        str,
        typer.Option("--hostname", "-H", help="Hostname the certificate is issued for"),
    ],
    letsencrypt: Annotated[
        bool,
        typer.Option("--letsencrypt", help="Use Let's Encrypt instead of a self-signed certificate", is_flag=True),
    ] = False,
    email: Annotated[
        Optional[str],
        typer.Option("--email", help="Let's Encrypt account email"),
    ] = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Create or obtain the TLS certificate for a site.

    Existing self-signed certificates are kept; --force regenerates them.

    [bold]Examples:[/bold]

        sudo dh site ssl myapp --hostname app.example.com
        sudo dh site ssl myapp --hostname app.example.com --letsencrypt
    """
    from dh.commands.site.manage import run_ssl

    ctx = create_context(dry_run=dry_run, force=force, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh site ssl {site}")

    try:
        run_ssl(ctx, site, hostname, letsencrypt=letsencrypt, email=email, regenerate=force)
    except DHError as e:
        handle_error(e)


@app.command("list")
def list_cmd(
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """List deployed sites."""
    from dh.commands.site.manage import list_sites

    ctx = create_context(no_color=no_color, config=config)

    try:
        records = list_sites(ctx)
    except DHError as e:
        handle_error(e)
        return

    if not records:
        ctx.console.info("No sites deployed yet")
        return

    ctx.console.table(
        "Deployed Sites",
        ["Site", "Directory", "Repository", "Branch", "Hostname", "Deployed"],
        [
            [
                r.name,
                str(r.deploy_dir),
                r.git_url,
                r.branch or "default",
                f"{r.hostname}:{r.port}" if r.hostname else "-",
                r.deployed_at.strftime("%Y-%m-%d %H:%M"),
            ]
            for r in records
        ],
    )
