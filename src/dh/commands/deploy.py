"""Site deployment wizard.

Deploys a Git-hosted Docker Compose application as an isolated site: its
own Unix user, sudo rules limited to its own compose project, a private
Docker network, a .env file, log rotation and, optionally, a systemd unit
and a boundary Nginx vhost.
"""

from pathlib import Path
from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError, NginxError, ValidationError
from dh.core.executor import CommandExecutor
from dh.core.validation import (
    detect_ssh_key_type,
    looks_like_git_url,
    normalize_site_name,
    validate_env_assignment,
    validate_site_name,
)
from dh.services.docker import DockerService
from dh.services.git import GitService
from dh.services.logrotate import LogrotateService
from dh.services.nginx import read_site_endpoint
from dh.services.site import SiteConfigurator, SiteRecord, SiteRegistry, SiteSpec, site_deploy_dir
from dh.services.users import SiteUserService


def default_site_name(git_url: str) -> str:
    """Repository name from a Git URL, normalised to a site name."""
    tail = git_url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    if tail.endswith(".git"):
        tail = tail[:-4]
    return normalize_site_name(tail)


def read_ssh_key_file(path: Path) -> str:
    try:
        key = path.read_text()
    except OSError as e:
        raise ValidationError(f"Cannot read SSH key file {path}: {e.strerror}") from e
    detect_ssh_key_type(key)
    return key


class SiteDeployWizard:
    """Collect deployment settings, prompting for whatever flags did not give.

    Without a terminal, or under --yes, nothing is prompted: the Git URL must
    come from flags and every other setting falls back to its default.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        *,
        git_url: Optional[str] = None,
        name: Optional[str] = None,
        deploy_dir: Optional[Path] = None,
        branch: Optional[str] = None,
        create_user: bool = True,
        setup_logrotate: bool = True,
        setup_systemd: bool = False,
        configure_nginx: bool = False,
        ssh_key_file: Optional[Path] = None,
        env: Optional[list[str]] = None,
    ):
        self.ctx = ctx
        self.git_url = git_url
        self.name = name
        self.deploy_dir = deploy_dir
        self.branch = branch
        self.create_user = create_user
        self.setup_logrotate = setup_logrotate
        self.setup_systemd = setup_systemd
        self.configure_nginx = configure_nginx
        self.ssh_key_file = ssh_key_file
        self.env = env or []

        self.encryption_key: Optional[str] = None
        self.encryption_key_from_env = False
        self.ssh_key: Optional[str] = None
        self.extra_env: list[tuple[str, str]] = []

    def run(self) -> Optional[SiteSpec]:
        """Gather settings and confirm.

        Returns:
            The site to deploy, or None if the operator cancelled
        """
        self._show_welcome()

        if not self._step_repository():
            return None
        self._step_site()
        self._step_options()
        self._step_secrets()
        self._step_environment()

        spec = SiteSpec(
            name=self.name,
            deploy_dir=self.deploy_dir,
            git_url=self.git_url,
            git_branch=self.branch or None,
            create_user=self.create_user,
            setup_logrotate=self.setup_logrotate,
            setup_systemd=self.setup_systemd,
            configure_nginx=self.configure_nginx,
            encryption_key=self.encryption_key or None,
            ssh_key=self.ssh_key,
            extra_env=self.extra_env,
        )
        if not self._review(spec):
            return None
        return spec

    def _ask(self, prompt: str, default: Optional[str] = None) -> str:
        return self.ctx.console.input(f"[bold]{prompt}[/bold]", default=default).strip()

    def _show_welcome(self) -> None:
        self.ctx.console.print()
        self.ctx.console.panel(
            "[bold]Site Deployment[/bold]\n\n"
            "Deploys a Docker Compose application from Git:\n\n"
            "  [cyan]1.[/cyan] Dedicated user, sudo rules and Docker network\n"
            "  [cyan]2.[/cyan] Repository clone and .env file\n"
            "  [cyan]3.[/cyan] Log rotation, systemd unit and boundary Nginx\n\n"
            "[dim]Press Enter to accept defaults.[/dim]",
            title="Welcome",
        )
        self.ctx.console.print()

    def _step_repository(self) -> bool:
        """Step 1: Git URL."""
        if not self.git_url:
            if not self.ctx.interactive:
                raise ValidationError(
                    "Git repository URL is required",
                    hint="Pass --git-url when running with --yes or without a terminal",
                )
            self.git_url = self._ask("Git repository URL")
        if not self.git_url:
            raise ValidationError("Git repository URL is required")

        if not looks_like_git_url(self.git_url):
            self.ctx.console.warn(f"'{self.git_url}' does not look like a Git URL")
            if not (self.ctx.force or self.ctx.confirm("Continue anyway?", default=False)):
                self.ctx.console.warn("Deployment cancelled")
                return False
        return True

    def _step_site(self) -> None:
        """Step 2: site name, directory and branch."""
        name = self.name
        if self.ctx.interactive:
            name = self._ask("Site name (lowercase, a-z 0-9 -)", default=name or default_site_name(self.git_url) or None)
        name = normalize_site_name(name or default_site_name(self.git_url))
        if not name:
            raise ValidationError("Site name is required", hint="Pass --name")
        self.name = validate_site_name(name)

        default_dir = self.deploy_dir or site_deploy_dir(self.ctx.config.paths.apps_dir, self.name)
        if self.ctx.interactive:
            self.deploy_dir = Path(self._ask("Deployment directory", default=str(default_dir)))
            self.branch = self._ask("Git branch (leave empty for default)", default=self.branch) or None
        else:
            self.deploy_dir = default_dir
        if not self.deploy_dir.is_absolute():
            raise ValidationError(f"Deployment directory must be absolute: {self.deploy_dir}")

    def _step_options(self) -> None:
        """Step 3: optional components."""
        if not self.ctx.interactive:
            return
        self.ctx.console.print()
        self.ctx.console.print("[bold]Optional configuration[/bold]")
        self.create_user = self.ctx.confirm("Create dedicated user for this site?", default=self.create_user)
        self.setup_logrotate = self.ctx.confirm("Setup log rotation?", default=self.setup_logrotate)
        self.setup_systemd = self.ctx.confirm("Setup systemd service?", default=self.setup_systemd)
        self.configure_nginx = self.ctx.confirm(
            "Route SITE_HOSTNAME through the boundary Nginx?",
            default=self.configure_nginx,
        )

    def _step_secrets(self) -> None:
        """Step 4: encryption key and Git deploy key."""
        env_key = self.ctx.config.secrets.encryption_key
        if env_key:
            self.encryption_key = env_key
            self.encryption_key_from_env = True
            self.ctx.console.info("Using ENCRYPTION_KEY from DH_ENCRYPTION_KEY")
        elif self.ctx.interactive:
            self.ctx.console.print()
            self.encryption_key = self.ctx.console.secret_input("Encryption key (leave empty to skip)") or None

        if self.ssh_key_file:
            self.ssh_key = read_ssh_key_file(self.ssh_key_file)
        elif self.ctx.interactive:
            self.ctx.console.print()
            self.ctx.console.print("[bold]Git SSH authentication[/bold] [dim](for private repositories)[/dim]")
            if self.ctx.confirm("Provide SSH private key for Git?", default=False):
                while True:
                    key = self.ctx.console.multiline_input("Paste the SSH private key")
                    if not key:
                        self.ctx.console.warn("No SSH key provided")
                        break
                    try:
                        detect_ssh_key_type(key)
                    except ValidationError as e:
                        self.ctx.console.error(e.message)
                        if e.hint:
                            self.ctx.console.hint(e.hint)
                        continue
                    self.ssh_key = key
                    self.ctx.console.info("SSH key captured, it will be installed for the site user")
                    break

        if self.ssh_key and not self.create_user:
            self.ctx.console.warn("The SSH key is only installed for a dedicated site user; it will not be used")
            self.ssh_key = None

    def _step_environment(self) -> None:
        """Step 5: extra KEY=VALUE variables."""
        self.extra_env = [validate_env_assignment(line) for line in self.env]
        if not self.ctx.interactive:
            return

        self.ctx.console.print()
        self.ctx.console.print("[bold]Additional environment variables[/bold] [dim](KEY=VALUE, empty line to finish)[/dim]")
        while True:
            line = self._ask("Variable")
            if not line:
                break
            try:
                self.extra_env.append(validate_env_assignment(line))
            except ValidationError as e:
                self.ctx.console.error(e.message)
                if e.hint:
                    self.ctx.console.hint(e.hint)

    def _review(self, spec: SiteSpec) -> bool:
        """Step 6: summary and confirmation."""
        self.ctx.console.print()
        self.ctx.console.summary("Deployment Summary", {
            "Git URL": spec.git_url,
            "Site name": spec.name,
            "Deploy directory": spec.deploy_dir,
            "Git branch": spec.git_branch or "default",
            "Create user": spec.create_user,
            "Git SSH key": "provided" if spec.ssh_key else "not provided",
            "Encryption key": ("from DH_ENCRYPTION_KEY" if self.encryption_key_from_env else "provided")
            if spec.encryption_key else "not set",
            "Extra variables": ", ".join(k for k, _ in spec.extra_env) or "none",
            "Log rotation": spec.setup_logrotate,
            "Systemd service": spec.setup_systemd,
            "Boundary Nginx": spec.configure_nginx,
        })
        self.ctx.console.print()

        if self.ctx.yes or self.ctx.dry_run:
            return True
        if not self.ctx.console.confirm("Proceed with deployment?"):
            self.ctx.console.warn("Deployment cancelled")
            return False
        return True


def clone_site(ctx: ExecutionContext, executor: CommandExecutor, spec: SiteSpec) -> bool:
    """Clone the repository into the deploy dir.

    An existing directory is kept unless the operator chooses to re-clone
    (--force re-clones without asking).

    Returns:
        True if a fresh clone was made
    """
    git = GitService(ctx, executor)
    deploy_dir = spec.deploy_dir

    if deploy_dir.exists() and any(deploy_dir.iterdir()):
        ctx.console.warn(f"Directory {deploy_dir} already exists")
        if ctx.force or ctx.confirm("Remove and re-clone?", default=False):
            executor.remove_tree(deploy_dir)
        else:
            ctx.console.info(f"Using existing directory {deploy_dir}")
            if not git.is_repository(deploy_dir):
                ctx.console.warn(f"{deploy_dir} is not a Git checkout")
            return False

    executor.ensure_dir(deploy_dir.parent, permissions=0o755)

    as_user = None
    if spec.create_user and spec.ssh_key:
        # git clone into an existing directory only works if it is empty and writable
        executor.ensure_dir(deploy_dir, permissions=0o755, owner=spec.user)
        as_user = spec.user

    ctx.console.step(f"Cloning repository{f' as user {as_user}' if as_user else ''}")
    git.clone(spec.git_url, deploy_dir, branch=spec.git_branch, as_user=as_user)
    ctx.console.success(f"Repository cloned to {deploy_dir}")
    return True


def run_deploy(
    ctx: ExecutionContext,
    spec: SiteSpec,
    letsencrypt: bool = False,
    le_email: Optional[str] = None,
) -> SiteRecord:
    """Deploy a site.

    Args:
        ctx: Execution context
        spec: What to deploy
        letsencrypt: Issue a Let's Encrypt certificate for the Nginx vhost
        le_email: Let's Encrypt account email

    Returns:
        The saved site record
    """
    from dh.commands.docker.network import run_network
    from dh.commands.nginx.setup import run_site
    from dh.commands.site.manage import run_permissions, run_users

    audit = get_audit_logger()
    executor = CommandExecutor(ctx)
    users = SiteUserService(ctx, executor)
    configurator = SiteConfigurator(ctx, executor)
    paths = ctx.config.paths
    site = spec.name
    deploy_dir = spec.deploy_dir

    ctx.console.print()
    ctx.console.print(f"[bold]Deploying {site}...[/bold]")

    try:
        # Step 1: user, log dir, network
        if spec.create_user:
            run_users(ctx, site, deploy_dir)
        else:
            executor.ensure_dir(paths.site_log_root / site, permissions=0o750, owner="root")

        network = None
        if DockerService(ctx, executor).is_installed() or ctx.dry_run:
            network = run_network(ctx, site, show_snippet=False)
        else:
            ctx.console.warn("Docker is not installed; skipping the site network")
            ctx.console.hint(f"Run 'dh setup' and then 'dh docker network {site}'")

        # Step 2: deploy key before cloning
        if spec.ssh_key:
            ctx.console.step("Installing Git SSH key")
            key_path = users.install_git_ssh_key(site, paths.home_root / site, spec.ssh_key, spec.git_url)
            ctx.console.success(f"Deploy key installed at {key_path}")

        # Step 3: clone
        clone_site(ctx, executor, spec)

        # Step 4: sudo rules and bin/ helpers into the checkout, then ownership
        if spec.create_user:
            run_permissions(ctx, site, deploy_dir)
            users.apply_permissions(deploy_dir, spec.user)

        # Step 5: environment
        ctx.console.step("Setting up environment")
        env_path = configurator.write_env_file(deploy_dir, spec.user, spec.encryption_key, spec.extra_env)
        ctx.console.success(f"Environment file created: {env_path}")
        ctx.console.warn("Review .env and replace placeholder values before starting the site")

        # Step 6: logs, service, layout, routing
        if spec.setup_logrotate:
            ctx.console.step("Setting up log rotation")
            LogrotateService(ctx, executor).configure_site(site, spec.user, deploy_dir, paths.site_log_root / site)

        if spec.setup_systemd:
            ctx.console.step("Installing systemd unit")
            unit = configurator.install_systemd_unit(site, deploy_dir, spec.user)
            ctx.console.success(f"{unit.name} installed and enabled")

        ctx.console.step("Configuring site")
        configurator.configure(site, deploy_dir, spec.user)

        if spec.configure_nginx:
            try:
                run_site(ctx, site, deploy_dir, letsencrypt=letsencrypt, email=le_email)
            except NginxError as e:
                ctx.console.warn(f"Boundary Nginx not configured: {e.message}")
                if e.hint:
                    ctx.console.hint(e.hint)
                ctx.console.hint(f"Fix .env, then run: sudo dh nginx site {site}")

        # Step 7: repository scripts
        configurator.run_site_scripts(deploy_dir)

        # Step 8: record
        hostname = port = None
        if (deploy_dir / ".env").is_file():
            try:
                endpoint = read_site_endpoint(deploy_dir)
                hostname, port = endpoint.hostname, endpoint.port
            except NginxError:
                ctx.console.verbose("SITE_HOSTNAME/SITE_PORT not set in .env")

        record = SiteRecord.from_spec(
            spec,
            network=network.name if network else None,
            hostname=hostname,
            port=port,
        )
        SiteRegistry(ctx, executor, paths.sites_state_dir).save(record)

        show_deploy_summary(ctx, spec, record)

        audit.log_success(
            AuditEventType.SITE_DEPLOY,
            "site",
            site,
            parameters={
                "git_url": spec.git_url,
                "branch": spec.git_branch,
                "deploy_dir": str(deploy_dir),
                "systemd": spec.setup_systemd,
                "nginx": spec.configure_nginx,
            },
        )
        return record

    except DHError as e:
        audit.log_failure(AuditEventType.SITE_DEPLOY, "site", site, error=str(e))
        raise


def show_deploy_summary(ctx: ExecutionContext, spec: SiteSpec, record: SiteRecord) -> None:
    deploy_dir = spec.deploy_dir

    ctx.console.print()
    ctx.console.rule("Deployment completed")
    ctx.console.print()
    ctx.console.summary(spec.name, {
        "Directory": deploy_dir,
        "User": spec.user,
        "Network": record.network or "-",
        "Endpoint": f"{record.hostname} -> 127.0.0.1:{record.port}" if record.hostname else "-",
        "Systemd unit": spec.setup_systemd,
    })
    ctx.console.print()
    ctx.console.print("[bold]Next steps:[/bold]")
    ctx.console.print(f"  1. Review and update .env: {deploy_dir}/.env")
    if spec.create_user:
        ctx.console.print(f"  2. Switch to the site user: sudo -iu {spec.user}")
        ctx.console.print(f"  3. Start services: {deploy_dir}/bin/docker-up")
    else:
        ctx.console.print(f"  2. Navigate to the site: cd {deploy_dir}")
        ctx.console.print("  3. Start services: docker compose up -d")
    if spec.setup_systemd:
        ctx.console.print(f"  Or via systemd: sudo systemctl start {spec.name}.service")
    ctx.console.print()
