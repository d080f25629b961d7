"""Unit tests for host services: vhosts, certificates, /dev/shm, config backups, mail relay."""

from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from dh.commands.security import harden as harden_module
from dh.commands.security.harden import APT_BACKUP_SUFFIX, SecurityHarden
from dh.core.config import EmailConfig, NginxConfig, SSLConfig
from dh.core.exceptions import ExecutionError, NginxError
from dh.core.executor import CommandExecutor
from dh.services import email as email_module
from dh.services.email import MailRelayService, render_msmtprc
from dh.services.nginx import SITES_ENABLED, NginxService, SiteEndpoint
from dh.services.ssl import CertificatePaths, CertificateService


class TestNginxConfigureSite:
    """Tests for enabling a site vhost."""

    def _service(self) -> NginxService:
        service = NginxService(MagicMock(is_verbose=False), MagicMock(), NginxConfig(), SSLConfig())
        service.systemd = MagicMock()
        return service

    def _configure(self, service: NginxService) -> Path:
        return service.configure_site(
            "shop",
            SiteEndpoint(hostname="shop.example.com", port=8080),
            CertificatePaths(directory=Path("/etc/ssl/dockerhosting/shop")),
            Path("/opt/apps/shop"),
        )

    def test_enabled_and_reloaded(self):
        service = self._service()

        vhost = self._configure(service)

        assert vhost == Path("/etc/nginx/sites-available/shop")
        service.executor.symlink.assert_called_once_with(vhost, SITES_ENABLED / "shop")
        service.executor.remove_file.assert_not_called()
        service.systemd.reload.assert_called_once_with("nginx")

    def test_disabled_when_config_test_fails(self):
        service = self._service()
        service.executor.run.side_effect = ExecutionError("nginx -t failed", command="nginx -t", return_code=1)

        with pytest.raises(NginxError):
            self._configure(service)

        service.executor.remove_file.assert_called_once_with(SITES_ENABLED / "shop")
        service.systemd.reload.assert_not_called()


class TestSelfSignedCertificate:
    """Tests for generating self-signed certificates."""

    def _existing(self, tmp_path: Path) -> CertificatePaths:
        paths = CertificatePaths(directory=tmp_path / "shop")
        paths.directory.mkdir()
        paths.fullchain.write_text("CERT\n")
        paths.privkey.write_text("KEY\n")
        return paths

    def test_existing_certificate_kept(self, tmp_path: Path):
        self._existing(tmp_path)
        executor = MagicMock()
        service = CertificateService(MagicMock(dry_run=False), executor, SSLConfig(cert_root=tmp_path))

        paths = service.self_signed("shop", "shop.example.com")

        assert paths.directory == tmp_path / "shop"
        executor.run.assert_not_called()

    def test_regenerate(self, tmp_path: Path):
        paths = self._existing(tmp_path)
        executor = MagicMock()
        service = CertificateService(MagicMock(dry_run=False), executor, SSLConfig(cert_root=tmp_path))

        service.self_signed("shop", "shop.example.com", regenerate=True)

        genrsa, req = executor.run.call_args_list
        assert genrsa.args[0][:2] == ["openssl", "genrsa"]
        assert "subjectAltName = DNS:shop.example.com,DNS:*.shop.example.com" in req.args[0]
        assert paths.chain.read_text() == "CERT\n"


class TestSharedMemory:
    """Tests for /dev/shm hardening."""

    def _harden(self) -> SecurityHarden:
        ctx = MagicMock(dry_run=False)
        ctx.config.security.shm_size = "512M"
        harden = SecurityHarden(ctx)
        harden.executor = MagicMock()
        return harden

    def test_already_hardened(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        mounts = tmp_path / "mounts"
        mounts.write_text("tmpfs /dev/shm tmpfs rw,nosuid,nodev,noexec 0 0\n")
        monkeypatch.setattr(harden_module, "PROC_MOUNTS", mounts)
        monkeypatch.setattr(harden_module, "FSTAB", tmp_path / "fstab")
        harden = self._harden()

        assert harden.harden_shared_memory() is False

        harden.executor.write_file.assert_not_called()
        harden.executor.run.assert_not_called()
        assert len(harden.rollback) == 0

    def test_fstab_rewritten_and_remounted(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        mounts = tmp_path / "mounts"
        mounts.write_text("tmpfs /dev/shm tmpfs rw,nosuid,nodev 0 0\n")
        fstab = tmp_path / "fstab"
        fstab.write_text("UUID=abc / ext4 defaults 0 1\n")
        monkeypatch.setattr(harden_module, "PROC_MOUNTS", mounts)
        monkeypatch.setattr(harden_module, "FSTAB", fstab)
        harden = self._harden()

        assert harden.harden_shared_memory() is True

        content = harden.executor.write_file.call_args.args[1]
        assert "UUID=abc / ext4 defaults 0 1\n" in content
        assert "size=512M" in content
        harden.executor.run.assert_called_once()
        assert harden.executor.run.call_args.args[0] == ["mount", "-o", "remount", "/dev/shm"]
        assert len(harden.rollback) == 1


class TestConfigBackups:
    """Tests for where replaced config files are backed up."""

    def test_backup_suffix(self, tmp_path: Path):
        path = tmp_path / "20auto-upgrades"
        path.write_text('APT::Periodic::Unattended-Upgrade "0";\n')

        backup = CommandExecutor(MagicMock(dry_run=False)).backup_file(path, suffix=".bak")

        assert backup.name.startswith("20auto-upgrades.backup.")
        assert backup.name.endswith(".bak")
        assert backup.read_text() == path.read_text()

    def test_auto_upgrades_backup_ignored_by_apt(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = tmp_path / "20auto-upgrades"
        path.write_text('APT::Periodic::Unattended-Upgrade "0";\n')
        monkeypatch.setattr(harden_module, "AUTO_UPGRADES", path)
        harden = SecurityHarden(MagicMock(dry_run=False))
        harden.executor = MagicMock()
        harden.executor.backup_file.return_value = None

        harden.configure_unattended_upgrades()

        harden.executor.backup_file.assert_called_once_with(path, suffix=APT_BACKUP_SUFFIX)
        assert APT_BACKUP_SUFFIX == ".bak"


class TestMailRelayBackup:
    """Tests for backing up msmtprc only when it changes."""

    def _settings(self) -> EmailConfig:
        return EmailConfig(
            root_email="ops@example.com",
            smtp_host="smtp.example.com",
            smtp_user="relay@example.com",
        )

    def _configure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, current: str) -> tuple[MagicMock, Path]:
        msmtprc = tmp_path / "msmtprc"
        msmtprc.write_text(current)
        log = tmp_path / "msmtp.log"
        log.write_text("")
        monkeypatch.setattr(email_module, "MSMTPRC", msmtprc)
        monkeypatch.setattr(email_module, "MSMTP_LOG", log)
        executor = MagicMock()

        with patch("dh.services.email.AptService"):
            MailRelayService(MagicMock(dry_run=False), executor).configure(self._settings(), "pw", send_test=False)
        return executor, msmtprc

    def test_unchanged_config_not_backed_up(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        executor, msmtprc = self._configure(tmp_path, monkeypatch, render_msmtprc(self._settings(), "pw"))

        assert call(msmtprc) not in executor.backup_file.call_args_list

    def test_changed_config_backed_up(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        executor, msmtprc = self._configure(tmp_path, monkeypatch, "account default\n")

        executor.backup_file.assert_any_call(msmtprc)
