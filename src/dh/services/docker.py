"""Docker engine management.

Covers installing Docker CE from the upstream apt repository, hardening the
daemon configuration (with a minimal fallback when the daemon refuses the
hardened one), restoring a previous daemon.json, and creating the isolated
bridge network each site runs on.
"""

import hashlib
import ipaddress
import json
import os
import random
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dh.core.config import DockerConfig
from dh.core.context import ExecutionContext
from dh.core.exceptions import DockerError, ExecutionError, ServiceError, ValidationError
from dh.core.executor import CommandExecutor
from dh.core.files import latest_backup
from dh.core.safety import read_os_release
from dh.services.apt import AptService
from dh.services.systemd import SystemdService


DAEMON_JSON = Path("/etc/docker/daemon.json")
KEYRING_DIR = Path("/etc/apt/keyrings")
KEYRING_PATH = KEYRING_DIR / "docker.asc"
SOURCES_PATH = Path("/etc/apt/sources.list.d/docker.list")
SUBUID_PATH = Path("/etc/subuid")
SUBGID_PATH = Path("/etc/subgid")

DOCKER_PACKAGES = [
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
]

REMAP_USER = "dockremap"
REMAP_RANGE = "100000:65536"

# Linux interface names are limited to 15 characters
MAX_BRIDGE_NAME = 15
BRIDGE_DIGEST_LEN = 5

MANAGED_BY_LABEL = "managed-by=dockerhosting"

MINIMAL_DAEMON_CONFIG: dict[str, Any] = {
    "log-driver": "json-file",
    "log-opts": {"max-size": "10m", "max-file": "3"},
    "live-restore": True,
    "storage-driver": "overlay2",
    "exec-opts": ["native.cgroupdriver=systemd"],
}


def build_daemon_config(settings: DockerConfig, userns_remap: Optional[bool] = None) -> dict[str, Any]:
    """Hardened daemon.json contents.

    Args:
        settings: docker section of the host configuration
        userns_remap: Overrides settings.userns_remap when given
    """
    remap = settings.userns_remap if userns_remap is None else userns_remap

    config: dict[str, Any] = {
        "log-driver": "json-file",
        "log-opts": {
            "max-size": settings.log_max_size,
            "max-file": str(settings.log_max_file),
            "labels": "production",
        },
        "icc": False,
        "userland-proxy": False,
        "live-restore": True,
        "default-ulimits": {
            "nofile": {
                "Name": "nofile",
                "Hard": settings.nofile_limit,
                "Soft": settings.nofile_limit,
            },
        },
        "selinux-enabled": False,
    }
    if remap:
        config["userns-remap"] = "default"
    config.update({
        "default-shm-size": settings.default_shm_size,
        "storage-driver": "overlay2",
        "exec-opts": ["native.cgroupdriver=systemd"],
        "features": {"buildkit": True},
        "experimental": False,
        "metrics-addr": settings.metrics_addr,
        "debug": False,
    })
    return config


def render_daemon_config(config: dict[str, Any]) -> str:
    return json.dumps(config, indent=2) + "\n"


def network_name(site: str) -> str:
    return f"{site}-network"


def bridge_name(site: str) -> str:
    """Host interface name for a site's bridge.

    'br-<site>' when that fits in 15 chars, otherwise a prefix of the site
    name followed by a short digest of the full name.
    """
    name = f"br-{site}"
    if len(name) <= MAX_BRIDGE_NAME:
        return name
    digest = hashlib.sha1(site.encode()).hexdigest()[:BRIDGE_DIGEST_LEN]
    return f"br-{site[:MAX_BRIDGE_NAME - 3 - BRIDGE_DIGEST_LEN]}{digest}"


def choose_subnet(
    pool: str,
    used: list[str],
    rng: Optional[random.Random] = None,
) -> str:
    """Pick a random /24 inside pool that overlaps none of the used subnets.

    Raises:
        DockerError: If every /24 in the pool is taken
    """
    rng = rng or random.Random()
    pool_net = ipaddress.ip_network(pool, strict=False)
    taken = []
    for subnet in used:
        try:
            taken.append(ipaddress.ip_network(subnet, strict=False))
        except ValueError:
            continue

    candidates = list(pool_net.subnets(new_prefix=24)) if pool_net.prefixlen <= 24 else [pool_net]
    rng.shuffle(candidates)
    for candidate in candidates:
        if not any(candidate.overlaps(t) for t in taken if t.version == candidate.version):
            return str(candidate)

    raise DockerError(
        f"No free /24 subnet left in {pool}",
        hint="Remove unused networks with 'docker network prune' or widen docker.subnet_pool",
    )


@dataclass
class SiteNetwork:
    """A site's isolated Docker bridge network."""
    name: str
    subnet: Optional[str]
    bridge: str
    created: bool


class DockerService:
    """Install, harden and inspect the Docker engine."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor
        self.apt = AptService(ctx, executor)
        self.systemd = SystemdService(ctx, executor)
        self.daemon_json = DAEMON_JSON

    # =========================================================================
    # Installation
    # =========================================================================

    def is_installed(self) -> bool:
        return self.executor.which("docker") is not None

    def versions(self) -> dict[str, str]:
        engine = self.executor.probe(["docker", "--version"])
        compose = self.executor.probe(["docker", "compose", "version", "--short"])
        return {
            "Docker": engine.stdout.strip() if engine.success else "unknown",
            "Compose": compose.stdout.strip() if compose.success else "unknown",
        }

    @staticmethod
    def _distro() -> str:
        distro = (read_os_release() or {}).get("ID", "debian").lower()
        return distro if distro in ("debian", "ubuntu") else "debian"

    def _apt_source_line(self) -> str:
        os_release = read_os_release() or {}
        distro = self._distro()
        codename = os_release.get("VERSION_CODENAME")
        if not codename:
            raise DockerError(
                "Cannot determine the distribution codename",
                hint="VERSION_CODENAME is missing from /etc/os-release",
            )
        arch_result = self.executor.probe(["dpkg", "--print-architecture"])
        arch = arch_result.stdout.strip() or "amd64"
        return (
            f"deb [arch={arch} signed-by={KEYRING_PATH}] "
            f"https://download.docker.com/linux/{distro} {codename} stable\n"
        )

    def install(self, docker_user: Optional[str] = None) -> bool:
        """Install Docker CE from download.docker.com.

        Args:
            docker_user: Login user to add to the docker group (usually $SUDO_USER)

        Returns:
            False if Docker was already installed and nothing was done
        """
        if self.is_installed() and not self.ctx.force:
            self.ctx.console.info("Docker is already installed")
            return False

        try:
            self.apt.install(["ca-certificates", "curl", "gnupg"], description="Installing Docker prerequisites")

            self.executor.ensure_dir(KEYRING_DIR, permissions=0o755)
            self.executor.run(
                ["curl", "-fsSL", f"https://download.docker.com/linux/{self._distro()}/gpg", "-o", str(KEYRING_PATH)],
                description="Adding Docker's GPG key",
            )
            if not self.ctx.dry_run:
                os.chmod(KEYRING_PATH, 0o644)

            self.executor.write_file(
                SOURCES_PATH,
                self._apt_source_line(),
                description="Adding Docker apt repository",
            )
            self.apt.update()

            legacy = self.apt.installed_subset(["docker-compose"])
            if legacy:
                self.apt.remove(legacy)

            self.executor.apt_install(DOCKER_PACKAGES, description="Installing Docker Engine and Compose plugin")
            self.systemd.enable("docker", start=True)
        except (ExecutionError, ServiceError) as e:
            raise DockerError(
                "Docker installation failed",
                hint="Check network access to download.docker.com and re-run 'dh docker install'",
                details=e.details,
            ) from e

        if docker_user and docker_user != "root":
            self.executor.run(
                ["usermod", "-aG", "docker", docker_user],
                description=f"Adding {docker_user} to the docker group",
                check=False,
            )
            self.ctx.console.warn(f"{docker_user} must log out and back in for docker group membership to apply")

        return True

    # =========================================================================
    # Daemon configuration
    # =========================================================================

    def read_daemon_config(self) -> dict[str, Any]:
        """Current daemon.json, or {} if absent.

        Raises:
            ValidationError: If the file holds invalid JSON
        """
        if not self.daemon_json.exists():
            return {}
        content = self.daemon_json.read_text()
        try:
            return json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Invalid JSON in {self.daemon_json}",
                details=[str(e)],
                hint="Fix the JSON syntax or run 'dh docker recover'",
            ) from e

    def write_daemon_config(self, config: dict[str, Any], *, description: Optional[str] = None) -> bool:
        return self.executor.write_file(
            self.daemon_json,
            render_daemon_config(config),
            description=description or f"Writing {self.daemon_json}",
            permissions=0o644,
        )

    def configure_userns_remap(self) -> None:
        """Create the dockremap user and its subordinate id ranges."""
        exists = self.executor.probe(["id", "-u", REMAP_USER]).success
        if not exists:
            self.executor.run(
                ["useradd", "--system", "--no-create-home", "--shell", "/usr/sbin/nologin", REMAP_USER],
                description=f"Creating {REMAP_USER} user",
            )

        entry = f"{REMAP_USER}:{REMAP_RANGE}"
        for path in (SUBUID_PATH, SUBGID_PATH):
            current = path.read_text() if path.exists() else ""
            if any(line.startswith(f"{REMAP_USER}:") for line in current.splitlines()):
                continue
            if current and not current.endswith("\n"):
                current += "\n"
            self.executor.write_file(
                path,
                current + entry + "\n",
                description=f"Adding {entry} to {path}",
                permissions=0o644,
            )

    def _restart_and_check(self) -> bool:
        try:
            self.systemd.restart("docker", description="Restarting Docker daemon")
        except ServiceError:
            return False
        return self.ctx.dry_run or self.systemd.is_active("docker")

    def harden(self, settings: DockerConfig, *, userns_remap: Optional[bool] = None) -> str:
        """Apply the hardened daemon config, falling back to the minimal one.

        Returns:
            "hardened" or "minimal", whichever config the daemon is running with

        Raises:
            DockerError: If Docker starts with neither configuration
        """
        if not self.is_installed() and not self.ctx.dry_run:
            raise DockerError(
                "Docker is not installed",
                hint="Run 'dh docker install' first",
            )

        remap = settings.userns_remap if userns_remap is None else userns_remap
        hardened = build_daemon_config(settings, remap)

        if self.daemon_json.exists():
            try:
                if self.read_daemon_config() == hardened and self.systemd.is_active("docker"):
                    self.ctx.console.success("Docker daemon already hardened")
                    return "hardened"
            except ValidationError:
                self.ctx.console.warn(f"{self.daemon_json} is not valid JSON, replacing it")

        backup = self.executor.backup_file(self.daemon_json)
        if backup:
            self.ctx.console.info(f"Backup saved: {backup}")

        if remap:
            self.configure_userns_remap()

        if self.ctx.is_verbose:
            self.ctx.console.code(render_daemon_config(hardened), "json", "daemon.json")
        self.write_daemon_config(hardened, description="Writing hardened daemon.json")

        if self._restart_and_check():
            self.ctx.console.success("Docker is running with the hardened configuration")
            return "hardened"

        self.ctx.console.warn("Docker failed to start with the hardened configuration")
        self.ctx.console.info("Falling back to the minimal configuration")
        self.write_daemon_config(MINIMAL_DAEMON_CONFIG, description="Writing minimal daemon.json")

        if self._restart_and_check():
            self.ctx.console.warn("Docker is running with the minimal configuration")
            return "minimal"

        details = [f"Backup: {backup}"] if backup else []
        journal = self.systemd.journal_tail("docker")
        if journal:
            details.append(journal)
        raise DockerError(
            "Docker failed to start with both the hardened and minimal configuration",
            hint="Inspect the journal, then run 'dh docker recover' to restore a backup",
            details=details,
        )

    def recover(self) -> Optional[Path]:
        """Restore the newest daemon.json backup (or the minimal config) and restart.

        Returns:
            The backup restored, or None if the minimal config was written

        Raises:
            DockerError: If Docker still does not start
        """
        backup = latest_backup(self.daemon_json)
        if backup:
            self.ctx.console.info(f"Restoring {backup}")
            if self.ctx.dry_run:
                self.ctx.console.dry_run_msg(f"Copy {backup} to {self.daemon_json}")
            else:
                shutil.copy2(backup, self.daemon_json)
        else:
            self.ctx.console.warn("No daemon.json backup found, writing the minimal configuration")
            self.write_daemon_config(MINIMAL_DAEMON_CONFIG, description="Writing minimal daemon.json")

        if not self._restart_and_check():
            raise DockerError(
                "Docker still fails to start",
                hint=f"Remove {self.daemon_json} and run 'systemctl restart docker'",
                details=[self.systemd.journal_tail("docker")],
            )

        self.ctx.console.success("Docker is running")
        return backup

    # =========================================================================
    # Site networks
    # =========================================================================

    def inspect_network(self, name: str) -> Optional[dict[str, Any]]:
        result = self.executor.probe(["docker", "network", "inspect", name, "--format", "{{json .}}"])
        if not result.success or not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            return None

    def used_subnets(self) -> list[str]:
        """Subnets of every existing Docker network."""
        ids = self.executor.probe(["docker", "network", "ls", "-q"]).stdout.split()
        subnets = []
        for network_id in ids:
            data = self.inspect_network(network_id) or {}
            for entry in (data.get("IPAM") or {}).get("Config") or []:
                if entry.get("Subnet"):
                    subnets.append(entry["Subnet"])
        return subnets

    def ensure_site_network(self, site: str, settings: DockerConfig) -> SiteNetwork:
        """Create '<site>-network' unless it exists.

        The bridge has inter-container communication disabled and carries
        site/managed-by labels so it can be traced back to its site.
        """
        name = network_name(site)
        bridge = bridge_name(site)

        existing = self.inspect_network(name)
        if existing:
            config = (existing.get("IPAM") or {}).get("Config") or [{}]
            subnet = config[0].get("Subnet") if config else None
            self.ctx.console.info(f"Network {name} already exists ({subnet or 'no subnet'})")
            return SiteNetwork(name=name, subnet=subnet, bridge=bridge, created=False)

        subnet = choose_subnet(settings.subnet_pool, self.used_subnets())
        try:
            self.executor.run(
                [
                    "docker", "network", "create",
                    "--driver", "bridge",
                    "--subnet", subnet,
                    "--opt", f"com.docker.network.bridge.name={bridge}",
                    "--opt", "com.docker.network.bridge.enable_icc=false",
                    "--opt", "com.docker.network.bridge.enable_ip_masquerade=true",
                    "--opt", f"com.docker.network.driver.mtu={settings.network_mtu}",
                    "--label", f"site={site}",
                    "--label", MANAGED_BY_LABEL,
                    name,
                ],
                description=f"Creating network {name} ({subnet})",
            )
        except ExecutionError as e:
            raise DockerError(
                f"Failed to create network {name}",
                hint="Check that Docker is running: systemctl status docker",
                details=e.details,
            ) from e

        return SiteNetwork(name=name, subnet=subnet, bridge=bridge, created=True)
