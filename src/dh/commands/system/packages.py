"""Package installation and cleanup.

Installs the base and essential package sets, and removes the build and
debugging tooling a Docker host should not carry.
"""

from pathlib import Path
from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.executor import CommandExecutor
from dh.services.apt import AptService, read_package_list
from dh.services.cleanup import CleanupReport, PackageCleanup


def essential_packages(ctx: ExecutionContext, list_file: Optional[Path] = None) -> list[str]:
    """Package list from --list-file, then the configured list_file, then config."""
    source = list_file or ctx.config.packages.list_file
    if source:
        ctx.console.info(f"Reading package list from {source}")
        return read_package_list(source)
    return list(ctx.config.packages.essential)


def run_packages(
    ctx: ExecutionContext,
    list_file: Optional[Path] = None,
    upgrade: bool = True,
) -> list[str]:
    """Update apt, optionally upgrade, then install base and essential packages.

    Returns:
        Packages that were newly installed
    """
    audit = get_audit_logger()
    apt = AptService(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step("Updating system packages")
        apt.update()
        if upgrade:
            apt.upgrade()

        ctx.console.step("Installing base packages")
        installed = apt.install(list(ctx.config.packages.base), description="Installing base packages")

        ctx.console.step("Installing essential packages")
        wanted = [p for p in essential_packages(ctx, list_file) if p not in installed]
        installed += apt.install(wanted, description="Installing essential packages")

        if installed:
            ctx.console.success(f"Installed {len(installed)} packages")
        else:
            ctx.console.success("All packages already installed")

        audit.log_success(
            AuditEventType.PACKAGES_INSTALL,
            "packages",
            "essential",
            parameters={"installed": installed},
        )
        return installed

    except DHError as e:
        audit.log_failure(AuditEventType.PACKAGES_INSTALL, "packages", "essential", error=str(e))
        raise


def run_cleanup(ctx: ExecutionContext, packages: Optional[list[str]] = None) -> CleanupReport:
    """Purge unneeded packages and NVM installs, then autoremove."""
    audit = get_audit_logger()
    executor = CommandExecutor(ctx)
    targets = packages if packages is not None else list(ctx.config.packages.cleanup)

    try:
        report = PackageCleanup(ctx, executor, ctx.config.paths.home_root).run(targets)

        ctx.console.print()
        ctx.console.success("Cleanup complete!")
        ctx.console.summary("Cleanup", {
            "Packages removed": len(report.removed_packages),
            "NVM installs removed": len(report.removed_nvm),
            "Shell rc files cleaned": len(report.cleaned_rc_files),
        })
        if report.cleaned_rc_files:
            ctx.console.warn("Shell rc files were backed up with a .backup.<timestamp> suffix")
            ctx.console.warn("Users should log out and back in for shell changes to apply")
        disk = executor.probe(["df", "-h", "/"])
        if disk.success:
            ctx.console.verbose(disk.stdout.strip())

        audit.log_success(
            AuditEventType.PACKAGES_CLEANUP,
            "packages",
            "cleanup",
            parameters={
                "removed": report.removed_packages,
                "nvm": [str(p) for p in report.removed_nvm],
            },
        )
        return report

    except DHError as e:
        audit.log_failure(AuditEventType.PACKAGES_CLEANUP, "packages", "cleanup", error=str(e))
        raise
