"""APT package management."""

from pathlib import Path
from typing import Iterable, Optional

from dh.core.context import ExecutionContext
from dh.core.exceptions import ValidationError
from dh.core.executor import CommandExecutor, CommandResult


APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def read_package_list(path: Path) -> list[str]:
    """Read one package per line, skipping blanks and '#' comments.

    Trailing comments ("jq  # json tool") are stripped as well.

    Raises:
        ValidationError: If the file cannot be read
    """
    try:
        text = path.read_text()
    except OSError as e:
        raise ValidationError(
            f"Cannot read package list: {path}",
            details=[str(e)],
        ) from e

    packages = []
    for line in text.splitlines():
        name = line.split("#", 1)[0].strip()
        if name:
            packages.append(name)
    return packages


class AptService:
    """Thin wrapper over apt-get and dpkg-query."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def _apt(self, args: list[str], description: str) -> CommandResult:
        return self.executor.run(
            ["apt-get", *args],
            description=description,
            env=APT_ENV,
            capture=not self.ctx.is_verbose,
        )

    def update(self) -> None:
        self._apt(["update", "-y"], "Updating package lists")

    def upgrade(self) -> None:
        self._apt(
            ["upgrade", "-y", "-o", "Dpkg::Options::=--force-confdef", "-o", "Dpkg::Options::=--force-confold"],
            "Upgrading installed packages",
        )

    def is_installed(self, package: str) -> bool:
        result = self.executor.probe(["dpkg-query", "-W", "-f=${Status}", package])
        return result.success and "install ok installed" in result.stdout

    def installed_subset(self, packages: Iterable[str]) -> list[str]:
        return [p for p in packages if self.is_installed(p)]

    def install(self, packages: list[str], *, description: Optional[str] = None) -> list[str]:
        """Install the packages that are not already present.

        Returns:
            The packages that needed installing
        """
        missing = [p for p in packages if not self.is_installed(p)]
        if not missing:
            self.ctx.console.verbose(f"Already installed: {', '.join(packages)}")
            return []
        self.executor.apt_install(missing, description=description)
        return missing

    def remove(self, packages: list[str], *, purge: bool = True) -> None:
        if not packages:
            return
        action = "purge" if purge else "remove"
        self._apt([action, "-y", *packages], f"Removing {', '.join(packages)}")

    def autoremove(self) -> None:
        self._apt(["autoremove", "-y", "--purge"], "Removing unused dependencies")

    def autoclean(self) -> None:
        self._apt(["autoclean", "-y"], "Cleaning package cache")
