"""Custom exceptions for the dockerhosting CLI.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class DHError(Exception):
    """Base exception for all dockerhosting errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(DHError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(DHError):
    """Input validation errors.

    Raised when:
    - Invalid site names or hostnames
    - Invalid ports, CIDRs, paths
    - Malformed KEY=VALUE assignments or SSH keys
    """
    exit_code = 3


class SafetyError(DHError):
    """Safety check failures.

    Raised when:
    - Dangerous operation attempted without --force
    - Operation would lock the operator out of the server
    - Pre-flight checks fail
    """
    exit_code = 4

    def __init__(
        self,
        message: str,
        *,
        blocked_operation: Optional[str] = None,
        required_flags: Optional[list[str]] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not hint and required_flags:
            hint = f"Use {' '.join(required_flags)} to proceed"
        super().__init__(message, hint=hint, details=details)
        self.blocked_operation = blocked_operation
        self.required_flags = required_flags or []


class ExecutionError(DHError):
    """Command execution failures.

    Raised when a shell command returns a non-zero exit code.
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PrerequisiteError(DHError):
    """Missing prerequisites.

    Raised when:
    - Required command not found
    - Not running as root
    - Unsupported OS
    - Insufficient disk space
    """
    exit_code = 6


class RollbackError(DHError):
    """Rollback operation failed.

    Raised when a critical rollback action fails during error recovery,
    leaving the system in an inconsistent state.
    """
    exit_code = 7


# Domain-specific exceptions

class ServiceError(DHError):
    """Systemd service errors.

    Raised when:
    - Start/stop/restart/reload fails
    - Service does not become active
    """
    exit_code = 13


class DockerError(DHError):
    """Docker engine errors.

    Raised when:
    - Docker installation fails
    - Daemon does not start with the hardened or minimal config
    - Network creation fails
    """
    exit_code = 20


class NginxError(DHError):
    """Boundary Nginx errors.

    Raised when:
    - nginx -t rejects the configuration
    - Site .env lacks SITE_HOSTNAME or SITE_PORT
    - Nginx fails to start or reload
    """
    exit_code = 21


class CertificateError(DHError):
    """TLS certificate errors.

    Raised when:
    - openssl key or certificate generation fails
    - certbot is missing or fails to obtain a certificate
    """
    exit_code = 22


class SiteError(DHError):
    """Site deployment errors.

    Raised when:
    - Clone or user creation fails
    - Deploy directory is missing or unusable
    - Sudoers validation fails
    """
    exit_code = 23


class MailError(DHError):
    """Email relay errors.

    Raised when msmtp configuration cannot be written or installed.
    """
    exit_code = 24


class FirewallError(DHError):
    """UFW firewall errors.

    Raised when a ufw rule or policy cannot be applied.
    """
    exit_code = 25
