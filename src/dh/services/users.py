"""Site Unix users, their directories and file permissions.

Each site runs as its own system user. The user is never added to the
docker group; container control goes through the sudo rules written by
services.permissions.
"""

import os
import pwd
import stat
from pathlib import Path

from dh.core.context import ExecutionContext
from dh.core.exceptions import ExecutionError, SiteError
from dh.core.executor import CommandExecutor
from dh.core.files import chown_recursive, resolve_owner
from dh.core.safety import check_not_protected_user
from dh.core.validation import detect_ssh_key_type, git_host_from_url
from dh.services.permissions import HELPER_SCRIPTS


DIR_MODE = 0o755
FILE_MODE = 0o644
SCRIPT_MODE = 0o755
SECRET_MODE = 0o600


def permission_for(path: Path, is_dir: bool) -> int:
    """Mode a deployed file should carry.

    Directories 755, shell scripts 755, .env* 600, everything else 644.
    """
    if is_dir:
        return DIR_MODE
    if path.name.startswith(".env"):
        return SECRET_MODE
    if path.suffix == ".sh":
        return SCRIPT_MODE
    return FILE_MODE


def apply_permission_policy(root: Path, uid: int, gid: int) -> int:
    """chown -R and normalise modes under root. Symlinks are left untouched.

    The helper scripts in <root>/bin stay executable.

    Returns:
        Number of entries whose mode changed
    """
    changed = 0
    helper_dir = root / "bin"
    chown_recursive(root, uid, gid)
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        entries = [(base, True)] if base == root else []
        entries += [(base / d, True) for d in dirnames]
        entries += [(base / f, False) for f in filenames]
        for path, is_dir in entries:
            st = os.lstat(path)
            if stat.S_ISLNK(st.st_mode):
                continue
            if not is_dir and path.parent == helper_dir and path.name in HELPER_SCRIPTS:
                wanted = SCRIPT_MODE
            else:
                wanted = permission_for(path, is_dir)
            if stat.S_IMODE(st.st_mode) != wanted:
                os.chmod(path, wanted)
                changed += 1
    return changed


def ssh_config_entry(host: str, key_path: Path) -> str:
    return (
        f"Host {host}\n"
        f"    HostName {host}\n"
        f"    User git\n"
        f"    IdentityFile {key_path}\n"
        f"    IdentitiesOnly yes\n"
        f"    StrictHostKeyChecking accept-new\n"
    )


class SiteUserService:
    """Create site users and prepare what they own."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    @staticmethod
    def user_exists(name: str) -> bool:
        try:
            pwd.getpwnam(name)
            return True
        except KeyError:
            return False

    def ensure_user(self, name: str, home: Path) -> bool:
        """Create a system user with a login shell and its own group.

        Returns:
            True if the user was created

        Raises:
            SiteError: If useradd fails
        """
        check_not_protected_user(name)
        if self.user_exists(name):
            self.ctx.console.info(f"User {name} already exists")
            return False

        try:
            self.executor.run(
                ["useradd", "--system", "--create-home", "--home-dir", str(home),
                 "--shell", "/bin/bash", "--user-group", name],
                description=f"Creating user {name}",
            )
        except ExecutionError as e:
            raise SiteError(f"Failed to create user {name}", details=e.details) from e
        return True

    def ensure_log_dir(self, name: str, log_root: Path) -> Path:
        log_dir = log_root / name
        self.executor.ensure_dir(log_dir, permissions=0o750, owner=name)
        return log_dir

    def ensure_ssh_dir(self, name: str, home: Path) -> Path:
        ssh_dir = home / ".ssh"
        self.executor.ensure_dir(ssh_dir, permissions=0o700, owner=name)
        return ssh_dir

    def apply_permissions(self, deploy_dir: Path, name: str) -> None:
        """Give the site user ownership of its deploy dir with normalised modes."""
        self.ctx.console.info(f"Setting ownership and permissions on {deploy_dir}")
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"chown -R {name}:{name} {deploy_dir}; dirs 755, files 644, *.sh 755, .env* 600")
            return
        if not deploy_dir.is_dir():
            raise SiteError(f"Deploy directory does not exist: {deploy_dir}")
        uid, gid = resolve_owner(name)
        changed = apply_permission_policy(deploy_dir, uid, gid)
        self.ctx.console.verbose(f"Adjusted mode on {changed} entries")

    def install_git_ssh_key(self, name: str, home: Path, key: str, git_url: str) -> Path:
        """Store a deploy key and point ssh at it for the repository host.

        Returns:
            Path of the private key file
        """
        key_type = detect_ssh_key_type(key)
        ssh_dir = self.ensure_ssh_dir(name, home)
        key_path = ssh_dir / f"id_{key_type}"

        if not key.endswith("\n"):
            key += "\n"
        self.executor.write_file(
            key_path, key,
            description=f"Installing {key_type} deploy key for {name}",
            permissions=0o600,
            owner=name,
        )

        host = git_host_from_url(git_url)
        if host:
            config_path = ssh_dir / "config"
            current = config_path.read_text() if config_path.exists() else ""
            if f"Host {host}\n" in current:
                self.ctx.console.verbose(f"SSH config already has an entry for {host}")
            else:
                separator = "\n" if current and not current.endswith("\n\n") else ""
                self.executor.write_file(
                    config_path,
                    current + separator + ssh_config_entry(host, key_path),
                    description=f"Adding {host} to {config_path}",
                    permissions=0o600,
                    owner=name,
                )
        else:
            self.ctx.console.warn(f"Could not determine the Git host from {git_url}; no ssh config entry written")

        return key_path
