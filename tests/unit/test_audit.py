"""Unit tests for the JSON audit log."""

import json
from pathlib import Path

from dh.core.audit import (
    AuditEvent,
    AuditEventType,
    AuditLogger,
    AuditResult,
    configure_audit_logger,
    get_audit_logger,
)


class TestAuditEvent:
    """Tests for event serialisation."""

    def test_sensitive_parameters_redacted(self):
        event = AuditEvent(
            event_type=AuditEventType.SITE_DEPLOY,
            result=AuditResult.SUCCESS,
            parameters={
                "git_url": "git@github.com:acme/shop.git",
                "encryption_key": "s3cret",
                "smtp_password": "pw",
                "api_token": "t",
            },
        )
        params = event.to_dict()["parameters"]
        assert params["git_url"] == "git@github.com:acme/shop.git"
        assert params["encryption_key"] == "***REDACTED***"
        assert params["smtp_password"] == "***REDACTED***"
        assert params["api_token"] == "***REDACTED***"

    def test_nested_values_redacted(self):
        event = AuditEvent(
            event_type=AuditEventType.EMAIL_CONFIGURE,
            result=AuditResult.SUCCESS,
            parameters={"relay": {"host": "smtp.example.com", "password": "pw"}},
        )
        assert event.to_dict()["parameters"]["relay"] == {"host": "smtp.example.com", "password": "***REDACTED***"}

    def test_json_fields(self):
        event = AuditEvent(
            event_type=AuditEventType.FIREWALL_CONFIGURE,
            result=AuditResult.FAILURE,
            target_type="firewall",
            target_name="ufw",
            error="ufw enable failed",
        )
        data = json.loads(event.to_json())
        assert data["event_type"] == "firewall.configure"
        assert data["result"] == "failure"
        assert data["target"] == {"type": "firewall", "name": "ufw"}
        assert data["error"] == "ufw enable failed"


class TestAuditLogger:
    """Tests for writing the audit log."""

    def _read(self, path: Path) -> list[dict]:
        return [json.loads(line) for line in path.read_text().splitlines()]

    def test_events_appended(self, tmp_path: Path):
        path = tmp_path / "dh" / "audit.log"
        audit = AuditLogger(log_path=path)

        audit.log_success(AuditEventType.SITE_DEPLOY, "site", "shop", message="deployed")
        audit.log_failure(AuditEventType.NGINX_SITE_CONFIGURE, "site", "shop", error="nginx -t failed")

        events = self._read(path)
        assert [e["result"] for e in events] == ["success", "failure"]
        assert events[0]["message"] == "deployed"
        assert events[0]["session_id"] == events[1]["session_id"] == audit.session_id

    def test_disabled_writes_nothing(self, tmp_path: Path):
        path = tmp_path / "audit.log"
        AuditLogger(log_path=path, enabled=False).log_success(AuditEventType.SITE_DEPLOY, "site", "shop")
        assert not path.exists()

    def test_unwritable_log_does_not_raise(self, tmp_path: Path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        audit = AuditLogger(log_path=blocker / "audit.log")
        audit.log_success(AuditEventType.SITE_DEPLOY, "site", "shop")

    def test_correlation_id(self, tmp_path: Path):
        path = tmp_path / "audit.log"
        audit = AuditLogger(log_path=path)

        with audit.correlation("deploy_site") as corr_id:
            audit.log_success(AuditEventType.USER_CREATE, "user", "shop")
            audit.log_success(AuditEventType.SITE_DEPLOY, "site", "shop")
        audit.log_success(AuditEventType.SITE_LOGROTATE, "site", "shop")

        events = self._read(path)
        assert corr_id.startswith("deploy_site_")
        assert events[0]["correlation_id"] == events[1]["correlation_id"] == corr_id
        assert events[2]["correlation_id"] is None

    def test_rotation(self, tmp_path: Path):
        path = tmp_path / "audit.log"
        audit = AuditLogger(log_path=path, max_size_mb=0, backup_count=2)

        audit.log_success(AuditEventType.SITE_DEPLOY, "site", "one")
        audit.log_success(AuditEventType.SITE_DEPLOY, "site", "two")

        assert path.with_name("audit.log.1").exists()
        assert path.with_name("audit.log.2").exists()
        assert path.read_text() == ""


class TestGlobalLogger:
    def test_configure_replaces_global(self, tmp_path: Path):
        audit = configure_audit_logger(log_path=tmp_path / "audit.log", enabled=False)
        assert get_audit_logger() is audit
        assert not audit.enabled
