"""Host system commands: packages, cleanup, firewall and email relay."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from dh.commands.common import (
    ConfigOption,
    DryRunOption,
    ForceOption,
    NoColorOption,
    VerboseOption,
    YesOption,
    confirm_or_exit,
    handle_error,
    require_root,
)
from dh.core.config import EmailConfig
from dh.core.context import create_context
from dh.core.exceptions import DHError

app = typer.Typer(
    name="system",
    help="Host packages, firewall and mail relay.",
    no_args_is_help=True,
)


@app.command("packages")
def packages_cmd(
    list_file: Annotated[
        Optional[Path],
        typer.Option(
            "--list-file",
            "-l",
            help="File with one package per line ('#' comments allowed)",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    no_upgrade: Annotated[
        bool,
        typer.Option("--no-upgrade", help="Skip 'apt-get upgrade'", is_flag=True),
    ] = False,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Install base and essential packages.

    [bold]Examples:[/bold]

        sudo dh system packages
        sudo dh system packages --list-file packages.txt
    """
    from dh.commands.system.packages import essential_packages, run_packages

    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh system packages")

    try:
        ctx.console.print()
        ctx.console.print("[bold]Package Installation[/bold]")
        ctx.console.print(f"  Upgrade first:  {'No' if no_upgrade else 'Yes'}")
        ctx.console.print(f"  Base:           {', '.join(ctx.config.packages.base)}")
        ctx.console.print(f"  Essential:      {len(essential_packages(ctx, list_file))} packages")
        ctx.console.print()

        confirm_or_exit(ctx, "Proceed with package installation?")
        run_packages(ctx, list_file=list_file, upgrade=not no_upgrade)
    except DHError as e:
        handle_error(e)


@app.command("cleanup")
def cleanup_cmd(
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Remove build tools, debugging utilities and NVM installs.

    Packages listed under packages.cleanup are purged if installed, NVM is
    removed from every home directory (rc files are backed up first), then
    apt autoremove and autoclean run.
    """
    from dh.commands.system.packages import run_cleanup

    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh system cleanup")

    try:
        ctx.console.print()
        ctx.console.warn("The following packages will be removed if installed:")
        ctx.console.print(f"  {', '.join(ctx.config.packages.cleanup)}")
        ctx.console.warn("NVM (Node Version Manager) will be removed from home directories")
        ctx.console.print()

        confirm_or_exit(ctx, "Continue with cleanup?")
        run_cleanup(ctx)
    except DHError as e:
        handle_error(e)


@app.command("firewall")
def firewall_cmd(
    port: Annotated[
        Optional[list[int]],
        typer.Option("--port", "-p", help="Extra TCP port to allow (repeatable)"),
    ] = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Configure UFW: deny incoming except SSH, HTTP, HTTPS and Docker ranges.

    [bold]Examples:[/bold]

        sudo dh system firewall
        sudo dh system firewall --port 8443
    """
    from dh.commands.system.firewall import plan_from_config, run_firewall

    ctx = create_context(dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh system firewall")

    try:
        plan = plan_from_config(ctx, port)

        ctx.console.print()
        ctx.console.print("[bold]Firewall Rules[/bold]")
        for rule in plan.rules():
            ctx.console.print(f"  allow {' '.join(rule.args):<24} {rule.comment}")
        ctx.console.print()

        confirm_or_exit(ctx, "Apply these firewall rules?")
        run_firewall(ctx, plan)
    except DHError as e:
        handle_error(e)


@app.command("email")
def email_cmd(
    root_email: Annotated[
        Optional[str],
        typer.Option("--root-email", help="Address that receives root's mail"),
    ] = None,
    smtp_host: Annotated[
        Optional[str],
        typer.Option("--smtp-host", help="SMTP relay host"),
    ] = None,
    smtp_port: Annotated[
        Optional[int],
        typer.Option("--smtp-port", help="SMTP relay port (587 STARTTLS, 465 TLS)"),
    ] = None,
    smtp_user: Annotated[
        Optional[str],
        typer.Option("--smtp-user", help="SMTP username"),
    ] = None,
    from_address: Annotated[
        Optional[str],
        typer.Option("--from", help="Sender address. Default: the SMTP user"),
    ] = None,
    no_test: Annotated[
        bool,
        typer.Option("--no-test", help="Don't send a test message", is_flag=True),
    ] = False,
    dry_run: DryRunOption = False,
    force: ForceOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Relay system mail through an external SMTP server with msmtp.

    The SMTP password is read from DH_SMTP_PASSWORD or prompted for.

    [bold]Examples:[/bold]

        sudo dh system email --root-email ops@example.com \\
            --smtp-host smtp.example.com --smtp-user relay@example.com
    """
    from dh.commands.system.email import prompt_email_settings, run_email

    ctx = create_context(dry_run=dry_run, force=force, yes=yes, verbose=verbose, no_color=no_color, config=config)
    require_root(ctx, "dh system email")

    try:
        overrides = {
            "root_email": root_email,
            "smtp_host": smtp_host,
            "smtp_port": smtp_port,
            "smtp_user": smtp_user,
            "from_address": from_address,
        }
        base = ctx.config.email.model_dump()
        base.update({k: v for k, v in overrides.items() if v is not None})
        settings = prompt_email_settings(ctx, EmailConfig.model_validate(base))

        ctx.console.print()
        ctx.console.summary("Email Relay", {
            "Notifications to": settings.root_email,
            "SMTP server": f"{settings.smtp_host}:{settings.smtp_port}",
            "SMTP user": settings.smtp_user,
            "From": settings.from_address,
            "TLS": settings.tls,
        })

        confirm_or_exit(ctx, "Configure the email relay?")
        run_email(ctx, settings, send_test=not no_test)
    except DHError as e:
        handle_error(e)
