"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides for secrets
- Configuration initialization and display
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dh.core.exceptions import ConfigurationError, ValidationError
from dh.core.validation import validate_cidr, validate_email, validate_port


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/dh/config.yaml")

# Installed when no package list is configured
DEFAULT_ESSENTIAL_PACKAGES: list[str] = [
    "curl", "wget", "git", "rsync", "ca-certificates", "gnupg", "lsb-release",
    "apt-transport-https", "nano", "htop", "iotop", "lsof", "net-tools",
    "dnsutils", "unattended-upgrades", "ufw", "fail2ban", "logrotate",
    "unzip", "zip", "gzip", "tar", "screen", "jq", "default-mysql-client",
    "python3",
]

# Development and diagnostic tooling a hosting box does not need
DEFAULT_CLEANUP_PACKAGES: list[str] = [
    "build-essential", "make", "gcc", "g++", "tcpdump", "traceroute",
    "nethogs", "sysstat", "dstat", "python3-pip", "python3-venv",
    "duplicity", "python3-certbot-nginx", "yq", "bc", "dos2unix", "bzip2",
    "tree", "ncdu", "tmux",
]


class PathsConfig(BaseModel):
    """Filesystem layout for hosted sites."""

    apps_dir: Path = Path("/opt/apps")
    site_log_root: Path = Path("/var/log")
    docker_sites_log_dir: Path = Path("/var/log/docker-sites")
    sites_state_dir: Path = Path("/etc/dh/sites")
    home_root: Path = Path("/home")

    @field_validator("apps_dir", "site_log_root", "docker_sites_log_dir", "sites_state_dir", "home_root")
    @classmethod
    def validate_absolute(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError(f"Path must be absolute: {v}")
        return v


class PackagesConfig(BaseModel):
    """APT package selections."""

    base: list[str] = Field(default_factory=lambda: [
        "curl", "git", "wget", "ca-certificates", "gnupg", "lsb-release",
        "apt-transport-https",
    ])
    essential: list[str] = Field(default_factory=lambda: list(DEFAULT_ESSENTIAL_PACKAGES))
    list_file: Optional[Path] = None
    cleanup: list[str] = Field(default_factory=lambda: list(DEFAULT_CLEANUP_PACKAGES))


class FirewallConfig(BaseModel):
    """UFW firewall rules."""

    ssh_port: int = 22
    allow_http: bool = True
    allow_https: bool = True
    docker_cidrs: list[str] = Field(default_factory=lambda: ["172.16.0.0/12", "192.168.0.0/16"])
    extra_ports: list[int] = Field(default_factory=list)

    @field_validator("ssh_port")
    @classmethod
    def validate_ssh_port(cls, v: int) -> int:
        return validate_port(v)

    @field_validator("extra_ports")
    @classmethod
    def validate_extra_ports(cls, v: list[int]) -> list[int]:
        return [validate_port(p) for p in v]

    @field_validator("docker_cidrs")
    @classmethod
    def validate_cidrs(cls, v: list[str]) -> list[str]:
        return [validate_cidr(c) for c in v]


class DockerConfig(BaseModel):
    """Docker daemon hardening settings."""

    userns_remap: bool = True
    log_max_size: str = "10m"
    log_max_file: int = 3
    nofile_limit: int = 64000
    default_shm_size: str = "64M"
    metrics_addr: str = "127.0.0.1:9323"
    subnet_pool: str = "172.16.0.0/12"
    network_mtu: int = 1500

    @field_validator("subnet_pool")
    @classmethod
    def validate_pool(cls, v: str) -> str:
        return validate_cidr(v)

    @field_validator("log_max_file")
    @classmethod
    def validate_max_file(cls, v: int) -> int:
        if v < 1:
            raise ValueError("log_max_file must be at least 1")
        return v


class NginxConfig(BaseModel):
    """Boundary Nginx tuning."""

    worker_connections: int = 2048
    client_max_body_size: str = "100M"
    rate_limit: str = "10r/s"
    rate_burst: int = 20
    proxy_timeout: str = "60s"


class SSLConfig(BaseModel):
    """TLS certificate settings."""

    cert_root: Path = Path("/etc/ssl/dockerhosting")
    days: int = 365
    key_bits: int = 2048
    letsencrypt_email: Optional[str] = None
    acme_webroot: Path = Path("/var/www/letsencrypt")

    @field_validator("key_bits")
    @classmethod
    def validate_key_bits(cls, v: int) -> int:
        if v not in (2048, 3072, 4096):
            raise ValueError("key_bits must be 2048, 3072 or 4096")
        return v

    @field_validator("letsencrypt_email")
    @classmethod
    def validate_le_email(cls, v: Optional[str]) -> Optional[str]:
        if v:
            return validate_email(v)
        return v


class EmailConfig(BaseModel):
    """msmtp relay settings. The SMTP password comes from DH_SMTP_PASSWORD."""

    root_email: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    from_address: Optional[str] = None
    tls: bool = True

    @field_validator("smtp_port")
    @classmethod
    def validate_smtp_port(cls, v: int) -> int:
        return validate_port(v)

    @field_validator("root_email", "from_address")
    @classmethod
    def validate_addresses(cls, v: Optional[str]) -> Optional[str]:
        if v:
            return validate_email(v)
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.root_email and self.smtp_host and self.smtp_user)


class SecurityConfig(BaseModel):
    """Security hardening configuration."""

    ssh_port: int = 22
    permit_root_login: str = "no"
    password_authentication: bool = False
    max_auth_tries: int = 3

    fail2ban_enabled: bool = True
    fail2ban_bantime: str = "1h"
    fail2ban_findtime: str = "10m"
    fail2ban_maxretry: int = 5

    auditd_enabled: bool = True
    unattended_upgrades: bool = True
    shm_size: str = "2G"

    @field_validator("permit_root_login")
    @classmethod
    def validate_root_login(cls, v: str) -> str:
        valid = {"no", "prohibit-password", "yes"}
        if v not in valid:
            raise ValueError(f"permit_root_login must be one of: {sorted(valid)}")
        return v

    @field_validator("ssh_port")
    @classmethod
    def validate_ssh_port(cls, v: int) -> int:
        return validate_port(v)


class HostConfig(BaseModel):
    """Root configuration model for a hosting server.

    This is the main configuration loaded from /etc/dh/config.yaml.
    Secrets are NOT stored in this file - they come from environment variables.
    """

    hostname: Optional[str] = None
    environment: str = "production"

    paths: PathsConfig = Field(default_factory=PathsConfig)
    packages: PackagesConfig = Field(default_factory=PackagesConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    nginx: NginxConfig = Field(default_factory=NginxConfig)
    ssl: SSLConfig = Field(default_factory=SSLConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = {"development", "staging", "production"}
        if v not in valid_envs:
            raise ValueError(f"Environment must be one of: {sorted(valid_envs)}")
        return v

    @classmethod
    def load(cls, path: Path) -> "HostConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: dh config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except (ValueError, ValidationError) as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "HostConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class SecretsConfig(BaseSettings):
    """Secrets loaded from environment variables.

    These are NEVER stored in config files.
    """

    model_config = SettingsConfigDict(extra="ignore")

    smtp_password: Optional[str] = Field(None, alias="DH_SMTP_PASSWORD")
    encryption_key: Optional[str] = Field(None, alias="DH_ENCRYPTION_KEY")


class AppConfig:
    """Application configuration combining config file and secrets.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[HostConfig] = None,
    ) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or HostConfig.load_or_default(self.config_path)
        self._secrets = SecretsConfig()

    @property
    def config(self) -> HostConfig:
        return self._config

    @property
    def secrets(self) -> SecretsConfig:
        return self._secrets

    @property
    def paths(self) -> PathsConfig:
        return self._config.paths

    @property
    def packages(self) -> PackagesConfig:
        return self._config.packages

    @property
    def firewall(self) -> FirewallConfig:
        return self._config.firewall

    @property
    def docker(self) -> DockerConfig:
        return self._config.docker

    @property
    def nginx(self) -> NginxConfig:
        return self._config.nginx

    @property
    def ssl(self) -> SSLConfig:
        return self._config.ssl

    @property
    def email(self) -> EmailConfig:
        return self._config.email

    @property
    def security(self) -> SecurityConfig:
        return self._config.security

    @property
    def is_production(self) -> bool:
        return self._config.environment == "production"

    def warnings(self) -> list[str]:
        """Non-fatal configuration problems worth reporting."""
        result = []
        sec = self._config.security
        if sec.ssh_port != self._config.firewall.ssh_port:
            result.append(
                f"security.ssh_port ({sec.ssh_port}) differs from firewall.ssh_port "
                f"({self._config.firewall.ssh_port}); you may lock yourself out"
            )
        if sec.password_authentication and self.is_production:
            result.append("SSH password authentication is enabled in production")
        if self._config.email.smtp_host and not self._config.email.is_configured:
            result.append("email.smtp_host is set but root_email or smtp_user is missing")
        if self._config.packages.list_file and not self._config.packages.list_file.exists():
            result.append(f"packages.list_file does not exist: {self._config.packages.list_file}")
        return result


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# dockerhosting configuration
# Secrets are loaded from environment variables, NOT stored here:
#   DH_SMTP_PASSWORD   SMTP relay password
#   DH_ENCRYPTION_KEY  default ENCRYPTION_KEY for deployed sites

# hostname: web-01.example.com
environment: production  # development, staging, production

paths:
  apps_dir: /opt/apps
  docker_sites_log_dir: /var/log/docker-sites
  sites_state_dir: /etc/dh/sites

packages:
  # One package per line, '#' comments allowed; overrides 'essential'
  # list_file: /etc/dh/packages.list
  essential: [curl, wget, git, rsync, jq, htop, ufw, fail2ban, logrotate]

firewall:
  ssh_port: 22
  allow_http: true
  allow_https: true
  docker_cidrs: [172.16.0.0/12, 192.168.0.0/16]
  extra_ports: []

docker:
  userns_remap: true
  log_max_size: 10m
  log_max_file: 3
  nofile_limit: 64000
  metrics_addr: 127.0.0.1:9323

nginx:
  worker_connections: 2048
  client_max_body_size: 100M
  rate_limit: 10r/s
  rate_burst: 20

ssl:
  cert_root: /etc/ssl/dockerhosting
  days: 365
  # letsencrypt_email: admin@example.com

email:
  # root_email: ops@example.com
  # smtp_host: smtp.example.com
  smtp_port: 587
  # smtp_user: relay@example.com
  tls: true

security:
  ssh_port: 22
  permit_root_login: "no"
  password_authentication: false
  max_auth_tries: 3
  fail2ban_bantime: 1h
  fail2ban_maxretry: 5
  shm_size: 2G
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o600)
