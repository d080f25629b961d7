"""Safety framework for host provisioning.

Provides:
- Pre-flight checks (root, OS, disk, services, config permissions)
- OS release parsing
- Protected account guard for site users
"""

import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Any

from dh.core.exceptions import SafetyError, PrerequisiteError
from dh.core.output import console
from dh.core.validation import PROTECTED_USERS


OS_RELEASE_PATH = Path("/etc/os-release")


class CheckResult(Enum):
    """Result of a pre-flight check."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


@dataclass(frozen=True)
class PreflightResult:
    """Immutable result of a pre-flight check."""
    check_name: str
    result: CheckResult
    message: str
    details: Optional[dict[str, Any]] = None
    remediation: Optional[str] = None


class PreflightCheck(ABC):
    """Base class for all pre-flight checks."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def critical(self) -> bool:
        """If True, failure blocks all operations."""
        ...

    @abstractmethod
    def run(self) -> PreflightResult:
        ...


def read_os_release(path: Path = OS_RELEASE_PATH) -> Optional[dict[str, str]]:
    """Parse /etc/os-release into a dict, or None if it is missing."""
    try:
        text = path.read_text()
    except FileNotFoundError:
        return None

    result = {}
    for line in text.splitlines():
        line = line.strip()
        if "=" in line and not line.startswith("#"):
            key, _, value = line.partition("=")
            result[key] = value.strip('"').strip("'")
    return result


class RootCheck(PreflightCheck):
    """Verify we are running as root."""

    name = "Root Privileges"
    critical = True

    def run(self) -> PreflightResult:
        if os.geteuid() != 0:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message="Must be run as root",
                remediation="Run with: sudo dh <command>",
            )
        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message="Running with root privileges",
        )


class OSCompatibilityCheck(PreflightCheck):
    """Debian passes, Ubuntu warns, anything else fails.

    Not critical: the operator may choose to continue on an untested OS.
    """

    name = "OS Compatibility"
    critical = False

    def __init__(self, os_release_path: Path = OS_RELEASE_PATH) -> None:
        self.os_release_path = os_release_path

    def run(self) -> PreflightResult:
        os_release = read_os_release(self.os_release_path)

        if os_release is None:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message=f"{self.os_release_path} not found",
                remediation="dh is designed for Debian",
            )

        distro_id = os_release.get("ID", "").lower()
        pretty_name = os_release.get("PRETTY_NAME", distro_id)
        details = {"distro": distro_id, "version": os_release.get("VERSION_ID", "unknown")}

        if distro_id == "debian":
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.PASS,
                message=f"OS: {pretty_name}",
                details=details,
            )

        if distro_id == "ubuntu" or "debian" in os_release.get("ID_LIKE", ""):
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.WARN,
                message=f"{pretty_name} is Debian-based but untested",
                details=details,
            )

        return PreflightResult(
            check_name=self.name,
            result=CheckResult.FAIL,
            message=f"Unsupported OS: {pretty_name}",
            details=details,
            remediation="dh is designed for Debian",
        )


class DiskSpaceCheck(PreflightCheck):
    """Verify there is room for packages and Docker images."""

    name = "Disk Space"
    critical = False

    # Minimum free space in GB
    REQUIREMENTS = {
        "/": 2.0,
        "/var": 10.0,
    }

    def run(self) -> PreflightResult:
        warnings = []
        failures = []
        details = {}

        for path, min_gb in self.REQUIREMENTS.items():
            if not os.path.exists(path):
                continue

            stat = os.statvfs(path)
            free_gb = (stat.f_bavail * stat.f_frsize) / (1024 ** 3)
            details[path] = {"free_gb": round(free_gb, 2), "required_gb": min_gb}

            if free_gb < min_gb:
                failures.append(f"{path}: {free_gb:.1f}GB free, need {min_gb}GB")
            elif free_gb < min_gb * 2:
                warnings.append(f"{path}: only {free_gb:.1f}GB free")

        if failures:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message="Insufficient disk space",
                details=details,
                remediation="; ".join(failures),
            )

        if warnings:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.WARN,
                message="Low disk space warning",
                details=details,
                remediation="; ".join(warnings),
            )

        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message="Sufficient disk space available",
            details=details,
        )


class ServiceStatusCheck(PreflightCheck):
    """Report the state of the services dh manages."""

    name = "Service Status"
    critical = False

    SERVICES = ["docker", "nginx", "ssh"]

    def run(self) -> PreflightResult:
        statuses = {service: self._check_service(service) for service in self.SERVICES}
        running = [s for s, status in statuses.items() if status == "running"]

        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message=f"Running: {', '.join(running) or 'none'}",
            details=statuses,
        )

    def _check_service(self, service: str) -> str:
        try:
            result = subprocess.run(
                ["systemctl", "is-active", service],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode == 0:
                return "running"

            result = subprocess.run(
                ["systemctl", "cat", service],
                capture_output=True,
                text=True,
                timeout=5,
            )
            return "stopped" if result.returncode == 0 else "not_installed"
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return "unknown"


class ConfigPermissionsCheck(PreflightCheck):
    """Verify files holding secrets are not world-readable."""

    name = "Config Permissions"
    critical = False

    CONFIG_FILES = {
        "/etc/dh/config.yaml": 0o600,
        "/etc/msmtprc": 0o600,
    }

    def run(self) -> PreflightResult:
        issues = []
        details = {}

        for filepath, expected_perms in self.CONFIG_FILES.items():
            path = Path(filepath)
            if not path.exists():
                details[filepath] = "not_found"
                continue

            actual = path.stat().st_mode & 0o777
            if actual & ~expected_perms:
                issues.append(f"{filepath}: {oct(actual)} should be {oct(expected_perms)}")
                details[filepath] = {"actual": oct(actual), "expected": oct(expected_perms)}
            else:
                details[filepath] = {"status": "ok", "permissions": oct(actual)}

        if issues:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.WARN,
                message=f"{len(issues)} permission issue(s)",
                details=details,
                remediation="; ".join(issues),
            )

        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message="Configuration permissions secure",
            details=details,
        )


class PreflightRunner:
    """Orchestrates pre-flight checks."""

    DEFAULT_CHECKS: list[type[PreflightCheck]] = [
        RootCheck,
        OSCompatibilityCheck,
        DiskSpaceCheck,
        ServiceStatusCheck,
        ConfigPermissionsCheck,
    ]

    def __init__(
        self,
        checks: Optional[list[PreflightCheck]] = None,
        skip_root_check: bool = False,
    ) -> None:
        self.checks = checks if checks is not None else [c() for c in self.DEFAULT_CHECKS]
        if skip_root_check:
            self.checks = [c for c in self.checks if not isinstance(c, RootCheck)]

    def run_all(self, fail_fast: bool = True) -> list[PreflightResult]:
        """Run checks, stopping at the first critical failure if fail_fast."""
        results = []

        for check in self.checks:
            result = check.run()
            results.append(result)

            if fail_fast and check.critical and result.result == CheckResult.FAIL:
                break

        return results

    def critical_failures(self, results: list[PreflightResult]) -> list[PreflightResult]:
        critical_names = {c.name for c in self.checks if c.critical}
        return [
            r for r in results
            if r.result == CheckResult.FAIL and r.check_name in critical_names
        ]

    def display_results(self, results: list[PreflightResult]) -> None:
        console.print()
        console.rule("Pre-flight Checks")

        for result in results:
            if result.result == CheckResult.PASS:
                status = "[green]PASS[/green]"
            elif result.result == CheckResult.WARN:
                status = "[yellow]WARN[/yellow]"
            elif result.result == CheckResult.FAIL:
                status = "[red]FAIL[/red]"
            else:
                status = "[dim]SKIP[/dim]"

            console.print(f"  {status} {result.check_name}: {result.message}")

            if result.remediation and result.result in (CheckResult.FAIL, CheckResult.WARN):
                console.print(f"        [dim]Fix: {result.remediation}[/dim]")

        console.print()


def check_not_protected_user(name: str) -> None:
    """Refuse to treat a system account as a site user."""
    if name.lower() in PROTECTED_USERS:
        raise SafetyError(
            f"Refusing to use system account as a site user: {name}",
            hint="Choose a different site name",
        )


def run_preflight_checks(
    confirm: Callable[[str], bool],
    *,
    dry_run: bool = False,
    force: bool = False,
    verbose: bool = False,
) -> list[PreflightResult]:
    """Run pre-flight checks.

    Critical failures abort. Non-critical failures (unsupported OS, low disk)
    abort unless the operator confirms or --force is given.

    Args:
        confirm: Prompt callback, e.g. ctx.confirm
        dry_run: Root is not required when only previewing
        force: Continue past non-critical failures without asking
        verbose: Show every check result, not just problems

    Raises:
        PrerequisiteError: If checks fail and the operator does not override
    """
    runner = PreflightRunner(skip_root_check=dry_run)
    results = runner.run_all()

    problems = [r for r in results if r.result in (CheckResult.FAIL, CheckResult.WARN)]
    if verbose or problems:
        runner.display_results(results)

    critical = runner.critical_failures(results)
    if critical:
        raise PrerequisiteError(
            "Pre-flight checks failed",
            details=[f"{r.check_name}: {r.message}" for r in critical],
            hint=critical[0].remediation or "Fix the issues above and try again",
        )

    failures = [r for r in results if r.result == CheckResult.FAIL]
    if failures and not force:
        if not confirm("Some checks failed. Continue anyway?"):
            raise PrerequisiteError(
                "Pre-flight checks failed",
                details=[f"{r.check_name}: {r.message}" for r in failures],
                hint="Fix the issues above or re-run with --force",
            )

    return results
