"""Git operations for deploying site repositories."""

from pathlib import Path
from typing import Optional

from dh.core.context import ExecutionContext
from dh.core.exceptions import ExecutionError, SiteError
from dh.core.executor import CommandExecutor


class GitService:
    """Clone and update site repositories, optionally as the site user."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    @staticmethod
    def is_repository(path: Path) -> bool:
        return (path / ".git").is_dir()

    def clone(
        self,
        url: str,
        dest: Path,
        *,
        branch: Optional[str] = None,
        as_user: Optional[str] = None,
    ) -> None:
        """git clone url dest.

        Raises:
            SiteError: If the clone fails
        """
        # sudo resets the environment, so set it inside the command
        command = ["env", "GIT_TERMINAL_PROMPT=0", "git", "clone"]
        if branch:
            command += ["--branch", branch]
        command += [url, str(dest)]

        try:
            self.executor.run(
                command,
                description=f"Cloning {url}" + (f" ({branch})" if branch else ""),
                as_user=as_user,
                timeout=600,
            )
        except ExecutionError as e:
            raise SiteError(
                f"Failed to clone {url}",
                hint="Check the URL, branch and that the deploy key has read access",
                details=e.details,
            ) from e
