"""Unit tests for host provisioning helpers: packages, cleanup, /dev/shm, firewall."""

from pathlib import Path

import pytest

from dh.commands.security.harden import (
    has_authorized_keys,
    rewrite_fstab,
    shm_fstab_entry,
    shm_is_hardened,
)
from dh.core.exceptions import ValidationError
from dh.services.apt import read_package_list
from dh.services.cleanup import strip_nvm_lines
from dh.services.firewall import FirewallPlan, UfwRule


class TestReadPackageList:
    """Tests for reading a package list file."""

    def test_comments_and_blanks_skipped(self, tmp_path: Path):
        path = tmp_path / "packages.list"
        path.write_text("# base tools\ncurl\n\n  git  \njq  # json tool\n")
        assert read_package_list(path) == ["curl", "git", "jq"]

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "packages.list"
        path.write_text("# nothing\n")
        assert read_package_list(path) == []

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ValidationError) as exc:
            read_package_list(tmp_path / "missing.list")
        assert "Cannot read package list" in str(exc.value)


class TestStripNvmLines:
    """Tests for removing NVM initialisation from shell rc files."""

    def test_nvm_lines_removed(self):
        text = (
            "alias ll='ls -l'\n"
            'export NVM_DIR="$HOME/.nvm"\n'
            '[ -s "$NVM_DIR/nvm.sh" ] && \\. "$NVM_DIR/nvm.sh"\n'
            "export PATH=$PATH:/usr/local/bin\n"
        )
        assert strip_nvm_lines(text) == "alias ll='ls -l'\nexport PATH=$PATH:/usr/local/bin\n"

    def test_untouched_without_nvm(self):
        text = "export EDITOR=vim\n# comment\n"
        assert strip_nvm_lines(text) == text

    def test_missing_final_newline_kept(self):
        assert strip_nvm_lines("a\nsource ~/.nvm/nvm.sh\nb") == "a\nb"


class TestSharedMemory:
    """Tests for /dev/shm hardening."""

    def test_hardened_mount(self):
        mounts = (
            "proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0\n"
            "tmpfs /dev/shm tmpfs rw,nosuid,nodev,noexec,size=2097152k 0 0\n"
        )
        assert shm_is_hardened(mounts)

    def test_exec_allowed(self):
        assert not shm_is_hardened("tmpfs /dev/shm tmpfs rw,nosuid,nodev 0 0\n")

    def test_not_mounted(self):
        assert not shm_is_hardened("proc /proc proc rw 0 0\n")

    def test_fstab_entry(self):
        assert shm_fstab_entry("2G") == "tmpfs /dev/shm tmpfs defaults,noexec,nodev,nosuid,size=2G 0 0"

    def test_rewrite_replaces_existing_entries(self):
        fstab = (
            "UUID=abcd / ext4 errors=remount-ro 0 1\n"
            "tmpfs /dev/shm tmpfs defaults 0 0\n"
            "# /dev/shm old note\n"
        )
        result = rewrite_fstab(fstab, "1G")
        assert result == (
            "UUID=abcd / ext4 errors=remount-ro 0 1\n"
            "tmpfs /dev/shm tmpfs defaults,noexec,nodev,nosuid,size=1G 0 0\n"
        )

    def test_rewrite_appends_when_absent(self):
        result = rewrite_fstab("UUID=abcd / ext4 defaults 0 1\n", "2G")
        assert result.splitlines()[-1] == shm_fstab_entry("2G")


class TestAuthorizedKeys:
    def test_present(self, tmp_path: Path):
        keys = tmp_path / "authorized_keys"
        keys.write_text("ssh-ed25519 AAAAC3Nza ops@laptop\n")
        assert has_authorized_keys([tmp_path / "missing", keys])

    def test_empty_file_does_not_count(self, tmp_path: Path):
        keys = tmp_path / "authorized_keys"
        keys.write_text("\n")
        assert not has_authorized_keys([keys])

    def test_none(self, tmp_path: Path):
        assert not has_authorized_keys([tmp_path / "authorized_keys"])


class TestFirewallPlan:
    """Tests for the UFW rule set."""

    def test_default_rules(self):
        comments = [rule.comment for rule in FirewallPlan().rules()]
        assert comments == ["SSH", "HTTP", "HTTPS", "Docker networks", "Docker networks"]

    def test_custom_ssh_port_and_extra_ports(self):
        rules = FirewallPlan(ssh_port=2222, extra_ports=[8443]).rules()
        assert rules[0].args == ["2222/tcp"]
        assert UfwRule(["8443/tcp"], "Custom port 8443") in rules

    def test_http_disabled(self):
        comments = [rule.comment for rule in FirewallPlan(allow_http=False, docker_cidrs=[]).rules()]
        assert comments == ["SSH", "HTTPS"]

    def test_docker_cidr_rule(self):
        rule = FirewallPlan(docker_cidrs=["172.16.0.0/12"]).rules()[-1]
        assert rule.command() == ["ufw", "allow", "from", "172.16.0.0/12", "comment", "Docker networks"]
