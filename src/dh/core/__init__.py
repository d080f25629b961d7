"""Core framework components for the dockerhosting CLI."""

from dh.core.exceptions import (
    DHError,
    ConfigurationError,
    ValidationError,
    SafetyError,
    ExecutionError,
    PrerequisiteError,
    RollbackError,
    ServiceError,
    DockerError,
    NginxError,
    CertificateError,
    SiteError,
    MailError,
    FirewallError,
)

from dh.core.context import ExecutionContext, create_context
from dh.core.output import console, Console, Verbosity
from dh.core.config import AppConfig, HostConfig
from dh.core.safety import (
    PreflightRunner,
    run_preflight_checks,
    check_not_protected_user,
)
from dh.core.audit import AuditLogger, AuditEvent, AuditEventType, AuditResult, get_audit_logger
from dh.core.executor import CommandExecutor, CommandResult, RollbackStack

__all__ = [
    # Exceptions
    "DHError",
    "ConfigurationError",
    "ValidationError",
    "SafetyError",
    "ExecutionError",
    "PrerequisiteError",
    "RollbackError",
    "ServiceError",
    "DockerError",
    "NginxError",
    "CertificateError",
    "SiteError",
    "MailError",
    "FirewallError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "HostConfig",
    # Safety
    "PreflightRunner",
    "run_preflight_checks",
    "check_not_protected_user",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
    "RollbackStack",
]
