"""File helpers for writing generated configuration safely.

Provides:
- Atomic writes (temp file + fsync + rename) with mode and ownership
- Ownership lookups by user/group name
- Content comparison for idempotent writes
- Locating the newest timestamped backup of a file
"""

import contextlib
import grp
import os
import pwd
import secrets
from pathlib import Path
from typing import Generator, Optional


class AtomicFileWriter:
    """Atomic file writer using temp file and rename.

    Ensures a file is either completely written or not modified at all.
    """

    def __init__(
        self,
        target_path: Path,
        permissions: int = 0o644,
        owner_uid: Optional[int] = None,
        owner_gid: Optional[int] = None,
    ) -> None:
        self.target_path = Path(target_path)
        self.permissions = permissions
        self.owner_uid = owner_uid
        self.owner_gid = owner_gid

    @contextlib.contextmanager
    def open(self, mode: str = "w") -> Generator:
        """Open for atomic writing.

        Usage:
            with AtomicFileWriter(path, permissions=0o600).open() as f:
                f.write("content")
            # File is atomically replaced here
        """
        self.target_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

        # Same directory so the rename stays on one filesystem
        tmp_path = self.target_path.with_name(
            f".{self.target_path.name}.tmp_{secrets.token_hex(8)}"
        )

        success = False
        fd = None

        try:
            fd = os.open(
                tmp_path,
                os.O_WRONLY | os.O_CREAT | os.O_EXCL,
                self.permissions,
            )

            with os.fdopen(fd, mode) as f:
                fd = None  # fdopen takes ownership
                yield f
                f.flush()
                os.fsync(f.fileno())

            # umask may have narrowed the creation mode
            os.chmod(tmp_path, self.permissions)

            if self.owner_uid is not None or self.owner_gid is not None:
                os.chown(
                    tmp_path,
                    -1 if self.owner_uid is None else self.owner_uid,
                    -1 if self.owner_gid is None else self.owner_gid,
                )

            os.rename(tmp_path, self.target_path)
            success = True

        finally:
            if fd is not None:
                os.close(fd)
            if not success and tmp_path.exists():
                with contextlib.suppress(OSError):
                    tmp_path.unlink()


def resolve_owner(
    owner: Optional[str] = None,
    group: Optional[str] = None,
) -> tuple[Optional[int], Optional[int]]:
    """Map user/group names to uid/gid. A user without a group uses its primary group."""
    uid = gid = None
    if owner:
        entry = pwd.getpwnam(owner)
        uid = entry.pw_uid
        if not group:
            gid = entry.pw_gid
    if group:
        gid = grp.getgrnam(group).gr_gid
    return uid, gid


def config_matches(path: Path, expected: str) -> bool:
    """True if the file exists and already holds exactly the expected content."""
    try:
        return path.read_text() == expected
    except (FileNotFoundError, IsADirectoryError, UnicodeDecodeError):
        return False


def chown_recursive(path: Path, uid: int, gid: int) -> None:
    """chown -R without following symlinks."""
    os.chown(path, uid, gid, follow_symlinks=False)
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            os.chown(os.path.join(root, name), uid, gid, follow_symlinks=False)


def latest_backup(path: Path, marker: str = ".backup.") -> Optional[Path]:
    """Newest sibling named '<file><marker><timestamp>', or None.

    Timestamps are YYYYmmdd-HHMMSS, so lexical order is chronological.
    """
    prefix = f"{path.name}{marker}"
    candidates = sorted(
        p for p in path.parent.glob(f"{prefix}*") if p.is_file()
    )
    return candidates[-1] if candidates else None
