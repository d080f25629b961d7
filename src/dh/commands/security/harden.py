"""Security hardening command implementation.

This module implements the `dh security harden` command which:
- Applies kernel hardening through a sysctl drop-in
- Installs and configures auditd with baseline rules
- Configures unattended-upgrades for automatic security updates
- Mounts /dev/shm with noexec,nodev,nosuid
- Installs and configures fail2ban for SSH brute-force protection
- Hardens the SSH daemon through an sshd_config.d drop-in
"""

import os
import pwd
import shutil
from pathlib import Path
from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError, ExecutionError, SafetyError
from dh.core.executor import CommandExecutor, RollbackStack
from dh.core.files import config_matches
from dh.services.apt import AptService
from dh.services.systemd import SystemdService
from dh.services.templates import render_template


SSHD_DROPIN = Path("/etc/ssh/sshd_config.d/99-dh-hardening.conf")
SYSCTL_DROPIN = Path("/etc/sysctl.d/99-dh-hardening.conf")
JAIL_LOCAL = Path("/etc/fail2ban/jail.local")
AUDIT_RULES = Path("/etc/audit/rules.d/dh-hardening.rules")
AUTO_UPGRADES = Path("/etc/apt/apt.conf.d/20auto-upgrades")
# APT silently ignores files ending in .bak
APT_BACKUP_SUFFIX = ".bak"
FSTAB = Path("/etc/fstab")
PROC_MOUNTS = Path("/proc/mounts")

SHM_OPTIONS = ("noexec", "nodev", "nosuid")


def shm_is_hardened(mounts: str) -> bool:
    """Whether /dev/shm is mounted with noexec, nodev and nosuid."""
    for line in mounts.splitlines():
        fields = line.split()
        if len(fields) >= 4 and fields[1] == "/dev/shm":
            options = set(fields[3].split(","))
            return all(opt in options for opt in SHM_OPTIONS)
    return False


def shm_fstab_entry(size: str) -> str:
    return f"tmpfs /dev/shm tmpfs defaults,{','.join(SHM_OPTIONS)},size={size} 0 0"


def rewrite_fstab(text: str, size: str) -> str:
    """Replace every /dev/shm line in fstab with the hardened tmpfs entry."""
    lines = [line for line in text.splitlines() if "/dev/shm" not in line]
    lines.append(shm_fstab_entry(size))
    return "\n".join(lines) + "\n"


def authorized_keys_candidates() -> list[Path]:
    """authorized_keys files that keep key-based SSH login possible."""
    candidates = [Path("/root/.ssh/authorized_keys")]
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user and sudo_user != "root":
        try:
            candidates.append(Path(pwd.getpwnam(sudo_user).pw_dir) / ".ssh" / "authorized_keys")
        except KeyError:
            pass
    return candidates


def has_authorized_keys(candidates: Optional[list[Path]] = None) -> bool:
    for path in candidates if candidates is not None else authorized_keys_candidates():
        try:
            if path.is_file() and path.read_text().strip():
                return True
        except OSError:
            continue
    return False


class SecurityHarden:
    """Handles security hardening operations."""

    def __init__(self, ctx: ExecutionContext, rollback: Optional[RollbackStack] = None):
        self.ctx = ctx
        self.settings = ctx.config.security
        self.rollback = rollback or RollbackStack()
        self.executor = CommandExecutor(ctx)
        self.systemd = SystemdService(ctx, self.executor)
        self.apt = AptService(ctx, self.executor)

    def _write(
        self,
        path: Path,
        content: str,
        description: str,
        permissions: int = 0o644,
        backup_suffix: str = "",
    ) -> bool:
        """Write a config file, registering how to undo it.

        backup_suffix is appended to the backup name so directories that
        parse every file (apt.conf.d) skip the backup.

        Returns:
            False when the file already had this content
        """
        if config_matches(path, content):
            self.ctx.console.info(f"{path} already configured correctly")
            return False

        backup = self.executor.backup_file(path, suffix=backup_suffix)
        if not self.ctx.dry_run:
            if backup:
                self.rollback.add(f"Restore {path}", lambda: shutil.copy2(backup, path))
            else:
                self.rollback.add(f"Remove {path}", lambda: path.unlink(missing_ok=True))

        self.executor.write_file(path, content, description=description, permissions=permissions)
        return True

    def install_packages(self, packages: list[str]) -> None:
        self.ctx.console.step("Installing security packages")
        self.apt.update()
        self.apt.install(packages)

    def configure_kernel(self) -> None:
        """Apply the sysctl hardening drop-in."""
        self.ctx.console.step("Hardening kernel parameters")
        content = render_template("security/sysctl.conf.j2")
        if self._write(SYSCTL_DROPIN, content, f"Writing {SYSCTL_DROPIN}"):
            self.executor.run(["sysctl", "--system"], description="Applying sysctl settings")
        self.ctx.console.success("Kernel parameters hardened (IP forwarding kept for Docker)")

    def configure_auditd(self) -> None:
        """Configure auditd with baseline rules."""
        self.ctx.console.step("Configuring auditd baseline rules")
        content = render_template("security/audit.rules.j2")
        self.executor.ensure_dir(AUDIT_RULES.parent, permissions=0o750)
        changed = self._write(AUDIT_RULES, content, f"Writing {AUDIT_RULES}", permissions=0o640)

        self.systemd.enable("auditd", start=True)
        if changed:
            # augenrules fails when the loaded rules are immutable (-e 2); that is not fatal
            result = self.executor.run(["augenrules", "--load"], description="Loading audit rules", check=False)
            if not result.success:
                self.ctx.console.warn("augenrules could not load the rules; they apply after reboot")
        self.ctx.console.success("auditd configured with baseline rules")

    def configure_unattended_upgrades(self) -> None:
        """Configure unattended-upgrades for automatic security updates."""
        self.ctx.console.step("Configuring unattended-upgrades")
        content = render_template("security/20auto-upgrades.j2")
        if self._write(AUTO_UPGRADES, content, f"Writing {AUTO_UPGRADES}", backup_suffix=APT_BACKUP_SUFFIX):
            result = self.executor.run(
                ["dpkg-reconfigure", "--priority=low", "unattended-upgrades"],
                env={"DEBIAN_FRONTEND": "noninteractive"},
                check=False,
            )
            if not result.success:
                self.ctx.console.warn("dpkg-reconfigure completed with warnings")
        self.ctx.console.success("unattended-upgrades configured")

    def harden_shared_memory(self) -> bool:
        """Mount /dev/shm with noexec,nodev,nosuid and persist it in fstab.

        Returns:
            False when /dev/shm was already hardened
        """
        self.ctx.console.step("Hardening shared memory (/dev/shm)")
        mounts = PROC_MOUNTS.read_text() if PROC_MOUNTS.exists() else ""
        if shm_is_hardened(mounts):
            self.ctx.console.info("/dev/shm is already hardened")
            return False

        current = FSTAB.read_text() if FSTAB.exists() else ""
        self.executor.backup_file(FSTAB, timestamped=False)
        if not self.ctx.dry_run:
            self.rollback.add("Restore /etc/fstab", lambda: FSTAB.write_text(current), critical=True)

        self.executor.write_file(
            FSTAB,
            rewrite_fstab(current, self.settings.shm_size),
            description="Adding hardened /dev/shm entry to /etc/fstab",
        )
        self.executor.run(["mount", "-o", "remount", "/dev/shm"], description="Remounting /dev/shm")
        self.ctx.console.success(f"/dev/shm mounted {','.join(SHM_OPTIONS)} (size {self.settings.shm_size})")
        return True

    def configure_fail2ban(self) -> None:
        """Configure fail2ban for SSH and boundary Nginx protection."""
        self.ctx.console.step("Configuring fail2ban")
        content = render_template(
            "security/jail.local.j2",
            bantime=self.settings.fail2ban_bantime,
            findtime=self.settings.fail2ban_findtime,
            maxretry=self.settings.fail2ban_maxretry,
            ssh_port=self.settings.ssh_port,
        )
        if self.ctx.is_verbose:
            self.ctx.console.code(content, "ini", str(JAIL_LOCAL))

        changed = self._write(JAIL_LOCAL, content, f"Writing {JAIL_LOCAL}")
        self.systemd.enable("fail2ban", start=True)
        if changed:
            self.systemd.restart("fail2ban")
        self.ctx.console.success("fail2ban configured and running")

    def check_ssh_access(self) -> None:
        """Refuse to turn off password login when no key could log in.

        Raises:
            SafetyError: If no authorized_keys exist and --force was not given
        """
        if self.settings.password_authentication or has_authorized_keys():
            return
        if not self.ctx.force:
            raise SafetyError(
                "Refusing to disable SSH password login: no authorized_keys found",
                blocked_operation="ssh password authentication off",
                required_flags=["--force"],
                hint="Install your public key with ssh-copy-id first, or pass --force",
            )
        self.ctx.console.warn("No authorized_keys found; continuing because of --force")

    def configure_ssh(self) -> None:
        """Install the sshd hardening drop-in, validate it and reload ssh.

        Raises:
            ExecutionError: If sshd rejects the configuration (the drop-in is reverted)
        """
        self.ctx.console.step("Hardening SSH")
        content = render_template(
            "security/sshd.conf.j2",
            ssh_port=self.settings.ssh_port,
            permit_root_login=self.settings.permit_root_login,
            password_authentication=self.settings.password_authentication,
            max_auth_tries=self.settings.max_auth_tries,
        )
        if self.ctx.is_verbose:
            self.ctx.console.code(content, "text", str(SSHD_DROPIN))

        self.executor.ensure_dir(SSHD_DROPIN.parent, permissions=0o755)
        if not self._write(SSHD_DROPIN, content, f"Writing {SSHD_DROPIN}"):
            return

        try:
            self.executor.run(["sshd", "-t"], description="Validating SSH configuration")
        except ExecutionError:
            self.ctx.console.error("sshd rejected the configuration, reverting")
            raise

        self.systemd.reload("ssh")
        self.ctx.console.success("SSH hardened")
        self.ctx.console.warn("Keep this session open and test a new SSH login before disconnecting")


def run_harden(
    ctx: ExecutionContext,
    skip_kernel: bool = False,
    skip_auditd: bool = False,
    skip_upgrades: bool = False,
    skip_shm: bool = False,
    skip_fail2ban: bool = False,
    skip_ssh: bool = False,
) -> None:
    """Run security hardening operations.

    Args:
        ctx: Execution context
        skip_kernel: Skip the sysctl drop-in
        skip_auditd: Skip auditd configuration
        skip_upgrades: Skip unattended-upgrades configuration
        skip_shm: Skip /dev/shm hardening
        skip_fail2ban: Skip fail2ban configuration
        skip_ssh: Skip SSH daemon hardening
    """
    audit = get_audit_logger()
    executor = CommandExecutor(ctx)

    settings = ctx.config.security
    skip_auditd = skip_auditd or not settings.auditd_enabled
    skip_upgrades = skip_upgrades or not settings.unattended_upgrades
    skip_fail2ban = skip_fail2ban or not settings.fail2ban_enabled

    packages = []
    if not skip_auditd:
        packages += ["auditd", "audispd-plugins"]
    if not skip_upgrades:
        packages += ["unattended-upgrades"]
    if not skip_fail2ban:
        packages += ["fail2ban", "python3-systemd"]

    components = {
        "kernel": not skip_kernel,
        "auditd": not skip_auditd,
        "unattended-upgrades": not skip_upgrades,
        "shared memory": not skip_shm,
        "fail2ban": not skip_fail2ban,
        "ssh": not skip_ssh,
    }
    enabled = [name for name, on in components.items() if on]

    try:
        if not skip_ssh:
            SecurityHarden(ctx).check_ssh_access()

        with executor.transaction() as rollback:
            hardener = SecurityHarden(ctx, rollback)

            if packages:
                hardener.install_packages(packages)
            if not skip_kernel:
                hardener.configure_kernel()
            if not skip_auditd:
                hardener.configure_auditd()
            if not skip_upgrades:
                hardener.configure_unattended_upgrades()
            if not skip_shm:
                hardener.harden_shared_memory()
            if not skip_fail2ban:
                hardener.configure_fail2ban()
            if not skip_ssh:
                hardener.configure_ssh()

        ctx.console.print()
        ctx.console.success("Security hardening complete!")
        ctx.console.summary("Security Components", {
            name: "configured" if on else "skipped" for name, on in components.items()
        })

        audit.log_success(
            AuditEventType.SECURITY_HARDEN,
            "security",
            "hardening",
            message=f"Security hardening completed: {', '.join(enabled)}",
        )

    except SafetyError as e:
        audit.log_blocked("ssh_harden", str(e), "security", "ssh")
        raise

    except DHError as e:
        audit.log_failure(
            AuditEventType.SECURITY_HARDEN,
            "security",
            "hardening",
            error=str(e),
        )
        raise
