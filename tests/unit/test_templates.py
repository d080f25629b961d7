"""Unit tests for the generated configuration files."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from jinja2 import UndefinedError

from dh.core.config import EmailConfig, NginxConfig, SSLConfig
from dh.services.email import quote_msmtp, render_msmtprc
from dh.services.nginx import NginxService, SiteEndpoint
from dh.services.permissions import HELPER_SCRIPTS, render_sudoers, sudoers_alias, sudoers_path
from dh.services.ssl import CertificatePaths
from dh.services.templates import render_template


DEPLOY_DIR = Path("/opt/apps/shop-api")


class TestRenderTemplate:
    def test_trailing_newline_added(self):
        assert render_template("docker/compose-network.yml.j2", site_name="shop", network="shop-network").endswith("\n")

    def test_missing_variable_is_an_error(self):
        with pytest.raises(UndefinedError):
            render_template("docker/compose-network.yml.j2", site_name="shop")


class TestSudoers:
    """Tests for the per-site sudoers drop-in."""

    def test_alias_name(self):
        assert sudoers_alias("shop-api") == "SHOP_API"

    def test_path(self):
        assert sudoers_path("shop-api") == Path("/etc/sudoers.d/docker-shop-api")

    def test_compose_scoped_to_project_directory(self):
        content = render_sudoers("shop-api", "shop-api", DEPLOY_DIR)
        assert (
            "Cmnd_Alias SHOP_API_COMPOSE = /usr/bin/docker compose --project-directory /opt/apps/shop-api, \\\n"
            "    /usr/bin/docker compose --project-directory /opt/apps/shop-api *"
        ) in content
        assert "shop-api ALL=(root) NOPASSWD: SHOP_API_COMPOSE, SHOP_API_NGINX" in content

    def test_no_unrestricted_docker(self):
        content = render_sudoers("shop", "shop", Path("/opt/apps/shop"))
        for line in content.splitlines():
            if "/usr/bin/docker" in line:
                assert "--project-directory /opt/apps/shop" in line

    def test_ends_with_newline(self):
        assert render_sudoers("shop", "shop", Path("/opt/apps/shop")).endswith("\n")


class TestHelperScripts:
    """Tests for the bin/ helper scripts."""

    @pytest.mark.parametrize("script", HELPER_SCRIPTS)
    def test_renders_with_shebang(self, script):
        content = render_template(
            f"site/bin/{script}.j2",
            site_name="shop",
            site_user="shop",
            deploy_dir=DEPLOY_DIR,
        )
        assert content.startswith("#!/bin/bash\n")
        assert "sudo -n" in content

    def test_compose_helpers_use_project_directory(self):
        for script in HELPER_SCRIPTS:
            if not script.startswith("docker-"):
                continue
            content = render_template(f"site/bin/{script}.j2", site_name="shop", site_user="shop", deploy_dir=DEPLOY_DIR)
            assert f'--project-directory "{DEPLOY_DIR}"' in content


class TestSystemdUnit:
    def test_runs_as_site_user_through_sudo(self):
        content = render_template(
            "site/systemd.service.j2",
            site_name="shop",
            site_user="shop",
            deploy_dir=DEPLOY_DIR,
        )
        assert "User=shop\n" in content
        assert f"WorkingDirectory={DEPLOY_DIR}\n" in content
        assert (
            f"ExecStart=/usr/bin/sudo -n /usr/bin/docker compose --project-directory {DEPLOY_DIR} up -d"
        ) in content
        assert "Requires=docker.service" in content
        assert "WantedBy=multi-user.target" in content


class TestSiteLogrotate:
    def test_covers_all_log_locations(self):
        content = render_template(
            "site/logrotate.j2",
            site_name="shop",
            site_user="shop",
            deploy_dir=DEPLOY_DIR,
            site_log_dir=Path("/var/log/shop"),
        )
        assert f"{DEPLOY_DIR}/logs/*.log {{" in content
        assert f"{DEPLOY_DIR}/nginx/logs/*.log {{" in content
        assert "/var/log/shop/*.log {" in content
        assert "create 0640 shop shop" in content
        assert "rotate 14" in content


class TestMsmtprc:
    """Tests for the msmtp relay configuration."""

    def _settings(self, **overrides) -> EmailConfig:
        values = {
            "root_email": "ops@example.com",
            "smtp_host": "smtp.example.com",
            "smtp_user": "relay@example.com",
        }
        values.update(overrides)
        return EmailConfig(**values)

    def test_starttls_on_587(self):
        content = render_msmtprc(self._settings(), "pw")
        assert "tls            on" in content
        assert "tls_starttls" not in content
        assert "port           587" in content
        assert "from           relay@example.com" in content

    def test_implicit_tls_on_465(self):
        content = render_msmtprc(self._settings(smtp_port=465), "pw")
        assert "tls_starttls   off" in content

    def test_from_address_override(self):
        content = render_msmtprc(self._settings(from_address="noreply@example.com"), "pw")
        assert "from           noreply@example.com" in content

    def test_password_quoted(self):
        content = render_msmtprc(self._settings(), 'p"a\\ss')
        assert 'password       "p\\"a\\\\ss"' in content

    def test_quote_msmtp(self):
        assert quote_msmtp('a"b') == 'a\\"b'
        assert quote_msmtp("a\\b") == "a\\\\b"
        assert quote_msmtp("plain") == "plain"


class TestNginxSiteConfig:
    """Tests for the boundary Nginx vhost."""

    def _render(self) -> str:
        service = NginxService(MagicMock(), MagicMock(), NginxConfig(), SSLConfig())
        certs = CertificatePaths(directory=Path("/etc/ssl/dockerhosting/shop"))
        return service.render_site_config(
            "shop",
            SiteEndpoint(hostname="shop.example.com", port=8080),
            certs,
            DEPLOY_DIR,
        )

    def test_proxies_to_local_port(self):
        content = self._render()
        assert "proxy_pass http://127.0.0.1:8080;" in content
        assert "server_name shop.example.com;" in content

    def test_http_redirects_to_https(self):
        content = self._render()
        assert "return 301 https://$host$request_uri;" in content
        assert "listen 443 ssl http2;" in content

    def test_certificate_paths(self):
        content = self._render()
        assert "ssl_certificate /etc/ssl/dockerhosting/shop/fullchain.pem;" in content
        assert "ssl_certificate_key /etc/ssl/dockerhosting/shop/privkey.pem;" in content

    def test_acme_challenge_served_from_webroot(self):
        assert "root /var/www/letsencrypt;" in self._render()


class TestSshdDropIn:
    def test_key_only_login(self):
        content = render_template(
            "security/sshd.conf.j2",
            ssh_port=22,
            permit_root_login="no",
            password_authentication=False,
            max_auth_tries=3,
        )
        assert "PasswordAuthentication no\n" in content
        assert "PermitRootLogin no\n" in content
        assert "MaxAuthTries 3\n" in content
