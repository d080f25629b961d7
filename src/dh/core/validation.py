"""Input validation utilities.

Provides validation for:
- Site names (which double as Unix user, network and vhost names)
- Git URLs and SSH deploy keys
- Network configurations (hostnames, CIDR, ports)
- Paths (with traversal prevention)
- Email addresses and KEY=VALUE environment assignments

All validators return the validated value or raise ValidationError.
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

from dh.core.exceptions import ValidationError


# Accounts that must never be reused as a site user
PROTECTED_USERS: frozenset[str] = frozenset({
    "root", "daemon", "bin", "sys", "sync", "games", "man", "lp", "mail",
    "news", "uucp", "proxy", "www-data", "backup", "list", "irc", "nobody",
    "systemd-network", "systemd-resolve", "messagebus", "sshd", "docker",
    "dockremap", "nginx", "postfix", "msmtp", "_apt",
})

# useradd rejects names longer than 32 characters
MAX_SITE_NAME_LENGTH = 32

SITE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")
ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
HOSTNAME_LABEL_PATTERN = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SCP_GIT_PATTERN = re.compile(r"^[\w.-]+@([\w.-]+):\S+$")

GIT_SCHEMES = frozenset({"http", "https", "ssh", "git"})


def normalize_site_name(raw: str) -> str:
    """Lowercase a site name and drop every character except a-z, 0-9 and '-'."""
    return re.sub(r"[^a-z0-9-]", "", raw.strip().lower())


def validate_site_name(value: str) -> str:
    """Validate a site name.

    The name becomes the Unix user, the Docker network prefix, the Nginx
    vhost file name and the log directory, so it must satisfy the strictest
    of those: start with a letter, contain only lowercase letters, digits and
    hyphens, fit within the useradd length limit, and not collide with a
    system account.

    Raises:
        ValidationError: If validation fails
    """
    if not value:
        raise ValidationError(
            "Site name cannot be empty",
            hint="Use lowercase letters, digits and hyphens, e.g. 'shop-api'",
        )

    if len(value) > MAX_SITE_NAME_LENGTH:
        raise ValidationError(
            f"Site name exceeds maximum length ({len(value)} > {MAX_SITE_NAME_LENGTH})",
            hint=f"Use a name with {MAX_SITE_NAME_LENGTH} or fewer characters",
        )

    if not SITE_NAME_PATTERN.match(value) or value.endswith("-"):
        suggestion = normalize_site_name(value).strip("-") or "site"
        if not suggestion[0].isalpha():
            suggestion = f"site-{suggestion}"
        raise ValidationError(
            f"Invalid site name: '{value}'",
            hint="Must start with a letter and contain only a-z, 0-9 and '-'",
            details=[f"Suggestion: {suggestion[:MAX_SITE_NAME_LENGTH]}"],
        )

    if value in PROTECTED_USERS:
        raise ValidationError(
            f"'{value}' is a reserved system account name",
            hint=f"Try '{value}-site' instead",
        )

    return value


def looks_like_git_url(url: str) -> bool:
    """Check whether a URL is plausibly a Git remote.

    Accepts anything ending in .git, plus scp-style (git@host:path) and
    http(s)/ssh/git scheme URLs with a host and a path.
    """
    url = url.strip()
    if not url:
        return False
    if url.endswith(".git"):
        return True
    if SCP_GIT_PATTERN.match(url):
        return True
    parsed = urlparse(url)
    return (
        parsed.scheme.lower() in GIT_SCHEMES
        and bool(parsed.netloc)
        and parsed.path.strip("/").count("/") >= 1
    )


def git_host_from_url(url: str) -> Optional[str]:
    """Extract the host from a git@host:path or scheme://host/path URL."""
    url = url.strip()
    match = SCP_GIT_PATTERN.match(url)
    if match:
        return match.group(1)
    parsed = urlparse(url)
    if parsed.scheme and parsed.hostname:
        return parsed.hostname
    return None


def validate_hostname(value: str) -> str:
    """Validate a DNS hostname (RFC 1123, no wildcards).

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip().rstrip(".")

    if not value or len(value) > 253:
        raise ValidationError(
            f"Invalid hostname: '{value}'",
            hint="Use a fully qualified name like app.example.com",
        )

    if "*" in value:
        raise ValidationError(
            f"Wildcard hostnames are not supported here: {value}",
            hint="Use the bare hostname; wildcard SANs are added automatically",
        )

    labels = value.split(".")
    for label in labels:
        if not HOSTNAME_LABEL_PATTERN.match(label):
            raise ValidationError(
                f"Invalid hostname: '{value}'",
                hint="Labels may contain letters, digits and '-', not starting or ending with '-'",
                details=[f"Offending label: '{label}'"],
            )

    return value.lower()


def validate_cidr(value: str, warn_broad: bool = True) -> str:
    """Validate CIDR notation for network ranges.

    Args:
        value: CIDR string to validate (e.g., "172.16.0.0/12")
        warn_broad: If True, raises error for 0.0.0.0/0 and /8 or wider

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    try:
        network = ipaddress.ip_network(value, strict=False)
    except ValueError as e:
        raise ValidationError(
            f"Invalid CIDR notation: {value}",
            hint="Use format like 172.16.0.0/12 or 192.168.0.0/16",
            details=[str(e)],
        ) from e

    if warn_broad and value in ("0.0.0.0/0", "::/0"):
        raise ValidationError(
            f"'{value}' allows access from ANYWHERE on the internet",
            hint="Use a more restrictive CIDR range for security",
        )

    if warn_broad and network.prefixlen <= 8:
        raise ValidationError(
            f"'{value}' is an extremely broad range ({network.num_addresses:,} addresses)",
            hint="Use a more restrictive CIDR (e.g., /12 or smaller)",
        )

    return value


def validate_port(value: int) -> int:
    """Validate a port number.

    Raises:
        ValidationError: If port is out of valid range
    """
    if not 1 <= value <= 65535:
        raise ValidationError(
            f"Invalid port number: {value}",
            hint="Port must be between 1 and 65535",
        )
    return value


def validate_path(
    value: str,
    must_be_absolute: bool = True,
    must_start_with: Optional[str] = None,
) -> str:
    """Validate a file path with traversal prevention.

    Args:
        value: Path to validate
        must_be_absolute: Require absolute path
        must_start_with: Required path prefix

    Raises:
        ValidationError: If validation fails
    """
    dangerous_patterns = [
        "..",           # Parent directory traversal
        "$",            # Variable expansion
        "`",            # Command substitution
        "|",            # Pipe
        ";",            # Command separator
        "&",            # Background/AND
        "\n",           # Newline injection
        "\r",           # Carriage return
        "\x00",         # Null byte
    ]

    for pattern in dangerous_patterns:
        if pattern in value:
            raise ValidationError(
                f"Path contains dangerous pattern: {repr(pattern)}",
                hint="Use a simple path without special characters",
            )

    if must_be_absolute and not value.startswith("/"):
        raise ValidationError(
            f"Path must be absolute: {value}",
            hint=f"Use /{value}",
        )

    if must_start_with and not value.startswith(must_start_with):
        raise ValidationError(
            f"Path must start with '{must_start_with}'",
            hint=f"Allowed paths start with: {must_start_with}",
        )

    return value


def validate_email(value: str) -> str:
    """Validate an email address (shape only, no MX lookup)."""
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError(
            f"Invalid email address: '{value}'",
            hint="Use a full address like ops@example.com",
        )
    return value


def validate_env_assignment(line: str) -> tuple[str, str]:
    """Validate a KEY=VALUE environment assignment.

    Returns:
        The (key, value) pair

    Raises:
        ValidationError: If the line is not a valid assignment
    """
    if "=" not in line:
        raise ValidationError(
            f"Invalid variable assignment: '{line}'",
            hint="Use KEY=VALUE format",
        )

    key, value = line.split("=", 1)
    key = key.strip()
    if not ENV_KEY_PATTERN.match(key):
        raise ValidationError(
            f"Invalid variable name: '{key}'",
            hint="Names start with a letter or underscore and contain only letters, digits and underscores",
        )
    if "\n" in value or "\r" in value:
        raise ValidationError(
            f"Value for {key} contains a newline",
            hint="Multi-line values are not supported in .env files",
        )
    return key, value


def detect_ssh_key_type(key: str) -> str:
    """Return 'rsa' or 'ed25519' for a pasted private key.

    RSA keys in PEM format carry their algorithm in the header; every other
    OpenSSH private key is stored under the ed25519 file name.

    Raises:
        ValidationError: If the text is not a private key block
    """
    text = key.strip()
    if not text.startswith("-----BEGIN") or "PRIVATE KEY-----" not in text.splitlines()[0]:
        raise ValidationError(
            "SSH key does not look like a private key",
            hint="Paste the full key including the -----BEGIN ... PRIVATE KEY----- line",
        )
    if not text.rstrip().endswith("-----"):
        raise ValidationError(
            "SSH key appears truncated",
            hint="Paste the full key including the -----END ... PRIVATE KEY----- line",
        )
    if "BEGIN RSA PRIVATE KEY" in text:
        return "rsa"
    return "ed25519"
