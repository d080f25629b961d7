"""Audit logging for provisioning and deployment operations.

Every change dh makes to the host (packages, daemon config, users, sudoers,
vhosts, certificates) is recorded as one JSON line so an operator can later
reconstruct who changed what on the server.

Provides:
- JSON-lines audit log with file locking
- Session and correlation IDs
- Sensitive parameter redaction
- Size-based rotation
"""

import fcntl
import json
import os
import pwd
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Optional

from dh.core.output import console


DEFAULT_LOG_PATH = Path("/var/log/dh/audit.log")
DEFAULT_MAX_SIZE_MB = 50
DEFAULT_BACKUP_COUNT = 5


class AuditEventType(Enum):
    """Types of auditable events."""

    # Host bootstrap
    SERVER_SETUP = "server.setup"
    PACKAGES_INSTALL = "packages.install"
    PACKAGES_CLEANUP = "packages.cleanup"

    # Docker
    DOCKER_INSTALL = "docker.install"
    DOCKER_HARDEN = "docker.harden"
    DOCKER_RECOVER = "docker.recover"
    DOCKER_NETWORK_CREATE = "docker.network_create"

    # Boundary Nginx
    NGINX_INSTALL = "nginx.install"
    NGINX_SITE_CONFIGURE = "nginx.site_configure"

    # Certificates
    CERT_SELF_SIGNED = "cert.self_signed"
    CERT_LETSENCRYPT = "cert.letsencrypt"

    # Sites
    SITE_DEPLOY = "site.deploy"
    SITE_CONFIGURE = "site.configure"
    SITE_PERMISSIONS = "site.permissions"
    SITE_LOGROTATE = "site.logrotate"
    SITE_SYSTEMD = "site.systemd"
    USER_CREATE = "user.create"

    # Host security
    FIREWALL_CONFIGURE = "firewall.configure"
    SECURITY_HARDEN = "security.harden"
    EMAIL_CONFIGURE = "email.configure"

    # Configuration
    CONFIG_MODIFY = "config.modify"

    SECURITY_BLOCKED = "security.blocked"


class AuditResult(Enum):
    """Result of an audited operation."""
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"


# Parameter names whose values are never written to the log
SENSITIVE_KEYS = frozenset({
    "password", "secret", "key", "token", "credential", "passwd",
})


def _sanitize_value(key: str, value: Any) -> Any:
    """Redact sensitive values, recursing into dicts and lists."""
    key_lower = key.lower()

    if any(s in key_lower for s in SENSITIVE_KEYS):
        return "***REDACTED***"

    if isinstance(value, dict):
        return {k: _sanitize_value(k, v) for k, v in value.items()}

    if isinstance(value, list):
        return [_sanitize_value(key, v) for v in value]

    return value


def _current_username() -> str:
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return str(os.getuid())


@dataclass
class AuditEvent:
    """Represents a single audit event."""
    event_type: AuditEventType
    result: AuditResult
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    actor_uid: int = field(default_factory=os.getuid)
    actor_username: str = field(default_factory=_current_username)
    actor_sudo_user: Optional[str] = field(default_factory=lambda: os.environ.get("SUDO_USER"))

    target_type: Optional[str] = None
    target_name: Optional[str] = None

    operation: Optional[str] = None
    parameters: dict[str, Any] = field(default_factory=dict)

    message: Optional[str] = None
    error: Optional[str] = None

    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type.value,
            "result": self.result.value,
            "timestamp": self.timestamp.isoformat(),
            "actor": {
                "uid": self.actor_uid,
                "username": self.actor_username,
                "sudo_user": self.actor_sudo_user,
            },
            "target": {
                "type": self.target_type,
                "name": self.target_name,
            },
            "operation": self.operation,
            "parameters": {k: _sanitize_value(k, v) for k, v in self.parameters.items()},
            "message": self.message,
            "error": self.error,
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """Append-only JSON audit log.

    Writes never raise: an unwritable log is reported at debug level and
    the operation being audited carries on.
    """

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_size_mb: int = DEFAULT_MAX_SIZE_MB,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        enabled: bool = True,
    ) -> None:
        self.log_path = log_path or DEFAULT_LOG_PATH
        self.max_size_bytes = max_size_mb * 1024 * 1024
        self.backup_count = backup_count
        self.enabled = enabled

        self.session_id = str(uuid.uuid4())
        self._correlation_stack: list[str] = []

    def _ensure_log_directory(self) -> bool:
        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
            if not self.log_path.exists():
                self.log_path.touch(mode=0o640)
            return True
        except OSError as e:
            console.debug(f"Cannot create audit log directory: {e}")
            return False

    def log(self, event: AuditEvent) -> None:
        """Append an event to the log."""
        if not self.enabled:
            return

        event.session_id = self.session_id
        if self._correlation_stack:
            event.correlation_id = self._correlation_stack[-1]

        if not self._ensure_log_directory():
            return

        try:
            with self._locked_append() as f:
                f.write(event.to_json() + "\n")
        except OSError as e:
            console.debug(f"Failed to write audit log: {e}")
            return

        self._rotate_if_needed()

    @contextmanager
    def _locked_append(self) -> Generator:
        fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o640)
        with os.fdopen(fd, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield f
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _rotate_if_needed(self) -> None:
        try:
            if self.log_path.stat().st_size > self.max_size_bytes:
                self._rotate_logs()
        except OSError as e:
            console.debug(f"Audit log rotation failed: {e}")

    def _rotate_logs(self) -> None:
        """audit.log -> audit.log.1 -> ... -> audit.log.N (dropped)."""
        oldest = self.log_path.with_name(f"{self.log_path.name}.{self.backup_count}")
        if oldest.exists():
            oldest.unlink()

        for i in range(self.backup_count - 1, 0, -1):
            src = self.log_path.with_name(f"{self.log_path.name}.{i}")
            if src.exists():
                src.rename(self.log_path.with_name(f"{self.log_path.name}.{i + 1}"))

        self.log_path.rename(self.log_path.with_name(f"{self.log_path.name}.1"))
        self.log_path.touch(mode=0o640)

    @contextmanager
    def correlation(self, operation: str) -> Generator[str, None, None]:
        """Tag every event logged inside the block with one correlation id.

        Usage:
            with audit.correlation("deploy_site") as corr_id:
                audit.log_success(...)
                audit.log_success(...)  # same correlation_id
        """
        correlation_id = f"{operation}_{uuid.uuid4().hex[:8]}"
        self._correlation_stack.append(correlation_id)
        try:
            yield correlation_id
        finally:
            self._correlation_stack.pop()

    def log_blocked(
        self,
        operation: str,
        reason: str,
        target_type: Optional[str] = None,
        target_name: Optional[str] = None,
    ) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.SECURITY_BLOCKED,
            result=AuditResult.BLOCKED,
            target_type=target_type,
            target_name=target_name,
            operation=operation,
            message=reason,
        ))

    def log_success(
        self,
        event_type: AuditEventType,
        target_type: str,
        target_name: str,
        message: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
    ) -> None:
        self.log(AuditEvent(
            event_type=event_type,
            result=AuditResult.SUCCESS,
            target_type=target_type,
            target_name=target_name,
            message=message,
            parameters=parameters or {},
        ))

    def log_failure(
        self,
        event_type: AuditEventType,
        target_type: str,
        target_name: str,
        error: str,
        parameters: Optional[dict[str, Any]] = None,
    ) -> None:
        self.log(AuditEvent(
            event_type=event_type,
            result=AuditResult.FAILURE,
            target_type=target_type,
            target_name=target_name,
            error=error,
            parameters=parameters or {},
        ))


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get or create the global audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(
    log_path: Optional[Path] = None,
    enabled: bool = True,
) -> AuditLogger:
    """Replace the global audit logger (used by tests and --no-audit)."""
    global _audit_logger
    _audit_logger = AuditLogger(log_path=log_path, enabled=enabled)
    return _audit_logger
