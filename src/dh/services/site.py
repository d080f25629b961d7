"""Per-site configuration, systemd unit and the deployed-site registry."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ValidationError as PydanticValidationError

from dh.core.context import ExecutionContext
from dh.core.exceptions import ConfigurationError, ExecutionError, SiteError
from dh.core.executor import CommandExecutor
from dh.core.validation import validate_site_name
from dh.services.envfile import build_env_file, find_env_template
from dh.services.systemd import SYSTEMD_SYSTEM_DIR, SystemdService
from dh.services.templates import render_template


SITE_SUBDIRS = ("logs", "data", "backups")

# Repository scripts offered to the operator after deployment, relative to deploy_dir
SITE_SCRIPTS = (
    Path("scripts/install-system-config.sh"),
    Path("setup.sh"),
)


@dataclass
class SiteSpec:
    """Everything needed to deploy one site."""
    name: str
    deploy_dir: Path
    git_url: str
    git_branch: Optional[str] = None
    create_user: bool = True
    setup_logrotate: bool = True
    setup_systemd: bool = False
    configure_nginx: bool = False
    encryption_key: Optional[str] = field(default=None, repr=False)
    ssh_key: Optional[str] = field(default=None, repr=False)
    extra_env: list[tuple[str, str]] = field(default_factory=list)

    @property
    def user(self) -> str:
        """Owner of the checkout: the site user, or root when none is created."""
        return self.name if self.create_user else "root"


class SiteRecord(BaseModel):
    """What is persisted about a deployed site. Never holds secrets."""

    name: str
    deploy_dir: Path
    git_url: str
    branch: Optional[str] = None
    user: str
    network: Optional[str] = None
    hostname: Optional[str] = None
    port: Optional[int] = None
    systemd_unit: bool = False
    deployed_at: datetime

    @classmethod
    def from_spec(cls, spec: SiteSpec, **extra) -> "SiteRecord":
        return cls(
            name=spec.name,
            deploy_dir=spec.deploy_dir,
            git_url=spec.git_url,
            branch=spec.git_branch,
            user=spec.user,
            systemd_unit=spec.setup_systemd,
            deployed_at=datetime.now(timezone.utc),
            **extra,
        )


class SiteRegistry:
    """YAML records of deployed sites, one file per site."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor, state_dir: Path) -> None:
        self.ctx = ctx
        self.executor = executor
        self.state_dir = state_dir

    def path_for(self, name: str) -> Path:
        return self.state_dir / f"{name}.yaml"

    def save(self, record: SiteRecord) -> Path:
        path = self.path_for(record.name)
        self.executor.ensure_dir(self.state_dir, permissions=0o755, owner="root", group="root")
        self.executor.write_file(
            path,
            yaml.safe_dump(record.model_dump(mode="json"), default_flow_style=False, sort_keys=False),
            description=f"Recording site {record.name}",
            permissions=0o644,
        )
        return path

    def load(self, name: str) -> Optional[SiteRecord]:
        """Load a site record.

        Raises:
            ConfigurationError: If the record exists but cannot be parsed
        """
        path = self.path_for(name)
        if not path.is_file():
            return None
        try:
            data = yaml.safe_load(path.read_text()) or {}
            return SiteRecord.model_validate(data)
        except (yaml.YAMLError, PydanticValidationError) as e:
            raise ConfigurationError(
                f"Site record {path} is invalid",
                hint="Re-run 'dh deploy' for this site or remove the file",
                details=[str(e)],
            ) from e

    def list(self) -> list[SiteRecord]:
        if not self.state_dir.is_dir():
            return []
        records = []
        for path in sorted(self.state_dir.glob("*.yaml")):
            try:
                record = self.load(path.stem)
            except ConfigurationError as e:
                self.ctx.console.warn(e.message)
                continue
            if record:
                records.append(record)
        return records


class SiteConfigurator:
    """Prepare a cloned site for running under Docker Compose."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    @staticmethod
    def compose_file(deploy_dir: Path) -> Optional[Path]:
        """Last docker-compose*.yml in name order, or None."""
        candidates = sorted(deploy_dir.glob("docker-compose*.yml"))
        return candidates[-1] if candidates else None

    def configure(self, site: str, deploy_dir: Path, user: Optional[str] = None) -> None:
        """Create the standard directories and sanity-check the checkout."""
        owner = user or site
        for name in SITE_SUBDIRS:
            self.executor.ensure_dir(deploy_dir / name, permissions=0o755, owner=owner)
        self.ctx.console.info(f"Standard directories ready: {', '.join(SITE_SUBDIRS)}")

        compose = self.compose_file(deploy_dir)
        if compose:
            self.ctx.console.info(f"Validating {compose.name}")
            result = self.executor.probe(
                ["docker", "compose", "-f", str(compose), "config", "--quiet"],
                cwd=deploy_dir if deploy_dir.is_dir() else None,
            )
            if result.success:
                self.ctx.console.success("Docker Compose configuration is valid")
            else:
                self.ctx.console.warn(f"Docker Compose configuration validation failed for {compose.name}")
                if result.stderr.strip():
                    self.ctx.console.verbose(result.stderr.strip())
        else:
            self.ctx.console.warn(f"No docker-compose*.yml found in {deploy_dir}")

        if find_env_template(deploy_dir) and not (deploy_dir / ".env").exists():
            self.ctx.console.warn("No .env file found. Remember to create one from the template")

    def write_env_file(
        self,
        deploy_dir: Path,
        user: str,
        encryption_key: Optional[str],
        extra: list[tuple[str, str]],
    ) -> Path:
        """Create <deploy_dir>/.env from the repository template or the default one.

        An existing .env is backed up first.
        """
        env_path = deploy_dir / ".env"
        template = find_env_template(deploy_dir)
        if template:
            self.ctx.console.info(f"Using {template.name} as the base for .env")
            base = template.read_text()
        else:
            self.ctx.console.warn("No .env template in the repository, using the default")
            base = render_template("site/env.template.j2", site_name=deploy_dir.name)

        env = build_env_file(base, encryption_key, extra)

        backup = self.executor.backup_file(env_path)
        if backup:
            self.ctx.console.info(f"Existing .env saved as {backup.name}")

        self.executor.write_file(
            env_path,
            env.render(),
            description=f"Writing {env_path}",
            permissions=0o600,
            owner=user,
            skip_if_unchanged=False,
        )
        return env_path

    def install_systemd_unit(self, site: str, deploy_dir: Path, user: Optional[str] = None, *, enable: bool = True) -> Path:
        """Write /etc/systemd/system/<site>.service and reload systemd."""
        unit = SYSTEMD_SYSTEM_DIR / f"{site}.service"
        self.executor.write_file(
            unit,
            render_template(
                "site/systemd.service.j2",
                site_name=site,
                site_user=user or site,
                deploy_dir=deploy_dir,
            ),
            description=f"Writing systemd unit {unit.name}",
            permissions=0o644,
        )
        systemd = SystemdService(self.ctx, self.executor)
        systemd.daemon_reload()
        if enable:
            systemd.enable(f"{site}.service")
        return unit

    def run_site_scripts(self, deploy_dir: Path) -> list[Path]:
        """Offer to run the repository's own setup scripts.

        Each script is confirmed separately and defaults to no.

        Returns:
            Scripts that were run
        """
        ran = []
        for relative in SITE_SCRIPTS:
            script = deploy_dir / relative
            if not script.is_file():
                continue
            self.ctx.console.info(f"Found {relative} in the repository")
            if not self.ctx.confirm(f"Run {relative}?", default=False):
                continue
            try:
                self.executor.run(
                    ["bash", str(script)],
                    description=f"Running {relative}",
                    cwd=deploy_dir,
                    capture=False,
                )
            except ExecutionError as e:
                raise SiteError(
                    f"{relative} failed",
                    hint=f"Fix the script and re-run it manually: cd {deploy_dir} && bash {relative}",
                    details=e.details,
                ) from e
            ran.append(script)
        return ran


def site_deploy_dir(apps_dir: Path, name: str) -> Path:
    return apps_dir / validate_site_name(name)
