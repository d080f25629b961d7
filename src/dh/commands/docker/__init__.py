"""Docker management commands.

Install the engine, harden or recover the daemon configuration, and give
each site its own bridge network.
"""

from typing import Annotated, Optional

import typer

from dh.commands.common import (
    ConfigOption,
    DryRunOption,
    ForceOption,
    NoColorOption,
    SiteArgument,
    VerboseOption,
    YesOption,
    confirm_or_exit,
    handle_error,
    require_root,
)
from dh.core.context import create_context
from dh.core.exceptions import DHError

# Create docker command group
app = typer.Typer(
    name="docker",
    help="Docker engine, daemon hardening and site networks.",
    no_args_is_help=True,
)


@app.command("install")
def install_cmd(
    user: Annotated[
        Optional[str],
        typer.Option("--user", "-u", help="Login user to add to the docker group. Default: $SUDO_USER"),
    ] = None,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Install Docker CE and the Compose plugin.

    [bold]What this does:[/bold]
    - Adds Docker's apt repository and signing key
    - Removes the legacy docker-compose package
    - Installs docker-ce, containerd.io, buildx and compose plugins
    - Enables and starts the docker service

    Skips installation if Docker is already present (use --force to reinstall).

    [bold]Examples:[/bold]

        sudo dh docker install
        dh docker install --dry-run
    """
    from dh.commands.docker.install import run_install

    ctx = create_context(dry_run=dry_run, force=force, yes=yes, verbose=verbose, no_color=no_color)
    require_root(ctx, "dh docker install")
    confirm_or_exit(ctx, "Proceed with Docker installation?")

    try:
        run_install(ctx, docker_user=user)
    except DHError as e:
        handle_error(e)


@app.command("harden")
def harden_cmd(
    userns_remap: Annotated[
        Optional[bool],
        typer.Option(
            "--userns-remap/--no-userns-remap",
            help="Run containers in a remapped user namespace. Default: from config",
        ),
    ] = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Apply the hardened /etc/docker/daemon.json.

    The current file is backed up as daemon.json.backup.<timestamp>. If
    Docker does not come back with the hardened configuration, a minimal
    one is written and Docker is restarted once more.

    [bold]Examples:[/bold]

        sudo dh docker harden
        sudo dh docker harden --no-userns-remap
    """
    from dh.commands.docker.daemon import run_harden

    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh docker harden")

    try:
        settings = ctx.config.docker
        remap = settings.userns_remap if userns_remap is None else userns_remap

        ctx.console.print()
        ctx.console.print("[bold]Docker Daemon Hardening[/bold]")
        ctx.console.print(f"  User namespace remap: {'Yes' if remap else 'No'}")
        ctx.console.print(f"  Log rotation:         {settings.log_max_size} x {settings.log_max_file}")
        ctx.console.print(f"  Metrics:              {settings.metrics_addr}")
        ctx.console.print()
        ctx.console.warn("Docker will be restarted; running containers restart with it unless live-restore is active")

        confirm_or_exit(ctx, "Proceed with Docker hardening?")
        run_harden(ctx, userns_remap=remap)
    except DHError as e:
        handle_error(e)


@app.command("recover")
def recover_cmd(
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Restore the most recent daemon.json backup and restart Docker.

    Writes the minimal configuration when no backup exists.
    """
    from dh.commands.docker.daemon import run_recover

    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color)
    require_root(ctx, "dh docker recover")
    confirm_or_exit(ctx, "Restore the previous Docker daemon configuration?")

    try:
        run_recover(ctx)
    except DHError as e:
        handle_error(e)


@app.command("network")
def network_cmd(
    site: SiteArgument,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Create an isolated bridge network '<site>-network'.

    The network gets a free /24 from the configured pool and has
    inter-container communication disabled.

    [bold]Examples:[/bold]

        sudo dh docker network myapp
    """
    from dh.commands.docker.network import run_network

    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, f"dh docker network {site}")

    try:
        run_network(ctx, site)
    except DHError as e:
        handle_error(e)
