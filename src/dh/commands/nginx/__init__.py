"""Boundary Nginx commands."""

from typing import Annotated, Optional

import typer

from dh.commands.common import (
    ConfigOption,
    DeployDirOption,
    DryRunOption,
    NoColorOption,
    SiteArgument,
    VerboseOption,
    YesOption,
    confirm_or_exit,
    handle_error,
    require_root,
    site_dir,
)
from dh.core.context import create_context
from dh.core.exceptions import DHError

app = typer.Typer(
    name="nginx",
    help="Boundary Nginx that routes hostnames to sites.",
    no_args_is_help=True,
)


@app.command("install")
def install_cmd(
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Install Nginx as the host's TLS-terminating reverse proxy.

    [bold]What this does:[/bold]
    - Keeps the distribution nginx.conf as nginx.conf.backup
    - Writes the boundary nginx.conf (catch-all server returns 444)
    - Adds a health-check site and log rotation
    - Enables and starts nginx

    [bold]Examples:[/bold]

        sudo dh nginx install
    """
    from dh.commands.nginx.setup import run_install

    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh nginx install")
    confirm_or_exit(ctx, "Install and configure the boundary Nginx?")

    try:
        run_install(ctx)
    except DHError as e:
        handle_error(e)


@app.command("site")
def site_cmd(
    site: SiteArgument,
    deploy_dir: DeployDirOption = None,
    letsencrypt: Annotated[
        bool,
        typer.Option("--letsencrypt", help="Request a Let's Encrypt certificate instead of self-signed", is_flag=True),
    ] = False,
    email: Annotated[
        Optional[str],
        typer.Option("--email", help="Let's Encrypt account email. Default: ssl.letsencrypt_email"),
    ] = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Configure the boundary vhost for a site.

    Reads SITE_HOSTNAME and SITE_PORT from <deploy_dir>/.env.

    [bold]Examples:[/bold]

        sudo dh nginx site myapp
        sudo dh nginx site myapp --letsencrypt --email ops@example.com
    """
    from dh.commands.nginx.setup import run_site

    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh nginx site {site}")

    try:
        run_site(ctx, site, site_dir(ctx, site, deploy_dir), letsencrypt=letsencrypt, email=email)
    except DHError as e:
        handle_error(e)
