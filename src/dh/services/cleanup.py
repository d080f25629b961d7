"""Removal of packages and tooling a Docker host does not need.

Build tools, debugging utilities and per-user NVM installs are left
behind by earlier manual setups. Sites build inside containers, so none
of it is needed on the host.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dh.core.context import ExecutionContext
from dh.core.executor import CommandExecutor
from dh.services.apt import AptService


RC_FILES = (".bashrc", ".bash_profile", ".zshrc", ".profile")
NVM_MARKERS = ("NVM_DIR", "nvm.sh")


def strip_nvm_lines(text: str) -> str:
    """Drop the lines the NVM installer adds to shell rc files."""
    kept = [line for line in text.splitlines(keepends=True) if not any(m in line for m in NVM_MARKERS)]
    return "".join(kept)


@dataclass
class CleanupReport:
    removed_packages: list[str] = field(default_factory=list)
    removed_nvm: list[Path] = field(default_factory=list)
    cleaned_rc_files: list[Path] = field(default_factory=list)


class PackageCleanup:
    """Purge unneeded packages and NVM installations."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor, home_root: Path = Path("/home")) -> None:
        self.ctx = ctx
        self.executor = executor
        self.home_root = home_root
        self.apt = AptService(ctx, executor)

    def home_dirs(self) -> list[Path]:
        homes = sorted(p for p in self.home_root.iterdir() if p.is_dir()) if self.home_root.is_dir() else []
        return homes + [Path("/root")]

    def find_nvm(self) -> list[Path]:
        return [home / ".nvm" for home in self.home_dirs() if (home / ".nvm").is_dir()]

    def remove_nvm(self, nvm_dir: Path, report: CleanupReport) -> None:
        home = nvm_dir.parent
        self.ctx.console.info(f"Removing NVM from {home}")
        self.executor.remove_tree(nvm_dir)
        report.removed_nvm.append(nvm_dir)

        for name in RC_FILES:
            rc = home / name
            if not rc.is_file():
                continue
            original = rc.read_text()
            cleaned = strip_nvm_lines(original)
            if cleaned == original:
                continue
            self.executor.backup_file(rc)
            st = rc.stat()
            self.executor.write_file(
                rc, cleaned,
                description=f"Removing NVM lines from {rc}",
                permissions=st.st_mode & 0o777,
            )
            if not self.ctx.dry_run:
                os.chown(rc, st.st_uid, st.st_gid)
            report.cleaned_rc_files.append(rc)

    def run(self, packages: list[str]) -> CleanupReport:
        report = CleanupReport()

        self.ctx.console.step("Checking installed packages")
        installed = self.apt.installed_subset(packages)
        if installed:
            for pkg in installed:
                self.ctx.console.verbose(f"Found installed package: {pkg}")
            self.apt.remove(installed, purge=True)
            report.removed_packages = installed
        else:
            self.ctx.console.info("No packages to remove (already clean)")

        self.ctx.console.step("Checking for NVM installations")
        nvm_dirs = self.find_nvm()
        if not nvm_dirs:
            self.ctx.console.info("No NVM installations found")
        for nvm_dir in nvm_dirs:
            self.remove_nvm(nvm_dir, report)

        self.ctx.console.step("Removing unused dependencies")
        self.apt.autoremove()
        self.apt.autoclean()
        return report
