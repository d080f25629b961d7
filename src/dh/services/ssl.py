"""TLS certificates for boundary Nginx vhosts.

Every site gets fullchain.pem, privkey.pem and chain.pem under
<cert_root>/<site>/. They are either a self-signed pair (generated with
openssl) or symlinks into certbot's live directory.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dh.core.config import SSLConfig
from dh.core.context import ExecutionContext
from dh.core.exceptions import CertificateError, ExecutionError
from dh.core.executor import CommandExecutor
from dh.services.systemd import SystemdService
from dh.services.templates import render_template


LETSENCRYPT_LIVE = Path("/etc/letsencrypt/live")
RENEW_CRON_PATH = Path("/etc/cron.d/dh-certbot-renew")

SELF_SIGNED_SUBJECT = "/C=US/ST=State/L=City/O=Organization/OU=IT/CN={hostname}"


@dataclass(frozen=True)
class CertificatePaths:
    """Files nginx reads for one site."""
    directory: Path

    @property
    def fullchain(self) -> Path:
        return self.directory / "fullchain.pem"

    @property
    def privkey(self) -> Path:
        return self.directory / "privkey.pem"

    @property
    def chain(self) -> Path:
        return self.directory / "chain.pem"

    def complete(self) -> bool:
        return self.fullchain.exists() and self.privkey.exists()


class CertificateService:
    """Create and inspect per-site certificates."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor, settings: SSLConfig) -> None:
        self.ctx = ctx
        self.executor = executor
        self.settings = settings

    def paths(self, site: str) -> CertificatePaths:
        return CertificatePaths(self.settings.cert_root / site)

    def _prepare_dir(self, site: str) -> CertificatePaths:
        paths = self.paths(site)
        self.executor.ensure_dir(self.settings.cert_root, permissions=0o755, owner="root", group="root")
        self.executor.ensure_dir(paths.directory, permissions=0o750, owner="root", group="root")
        return paths

    def self_signed(self, site: str, hostname: str, *, regenerate: bool = False) -> CertificatePaths:
        """Generate a self-signed certificate covering hostname and *.hostname.

        Existing certificates are kept unless regenerate is set.

        Raises:
            CertificateError: If openssl fails
        """
        paths = self.paths(site)
        if paths.complete() and not regenerate:
            self.ctx.console.info(f"Certificate for {site} already exists")
            return paths

        paths = self._prepare_dir(site)
        try:
            self.executor.run(
                ["openssl", "genrsa", "-out", str(paths.privkey), str(self.settings.key_bits)],
                description=f"Generating {self.settings.key_bits}-bit private key",
            )
            if not self.ctx.dry_run:
                os.chmod(paths.privkey, 0o600)

            self.executor.run(
                [
                    "openssl", "req", "-new", "-x509",
                    "-key", str(paths.privkey),
                    "-out", str(paths.fullchain),
                    "-days", str(self.settings.days),
                    "-subj", SELF_SIGNED_SUBJECT.format(hostname=hostname),
                    "-addext", f"subjectAltName = DNS:{hostname},DNS:*.{hostname}",
                ],
                description=f"Creating self-signed certificate for {hostname}",
            )
        except ExecutionError as e:
            raise CertificateError(
                f"Failed to generate a certificate for {hostname}",
                hint="Check that openssl is installed",
                details=e.details,
            ) from e

        if not self.ctx.dry_run:
            os.chmod(paths.fullchain, 0o644)
            if paths.chain.is_symlink():
                paths.chain.unlink()
            paths.chain.write_bytes(paths.fullchain.read_bytes())
            os.chmod(paths.chain, 0o644)

        self.ctx.console.warn("Self-signed certificates are not trusted by browsers")
        return paths

    def letsencrypt(self, site: str, hostname: str, email: Optional[str] = None) -> CertificatePaths:
        """Obtain a Let's Encrypt certificate and link it into the site cert dir.

        Uses the webroot plugin when the boundary Nginx is running (it serves
        /.well-known/acme-challenge/ from the ACME webroot), standalone mode
        otherwise.

        Raises:
            CertificateError: If certbot is missing or fails
        """
        if not self.executor.which("certbot") and not self.ctx.dry_run:
            raise CertificateError(
                "certbot is not installed",
                hint="Install it with: apt-get install certbot",
            )

        contact = email or self.settings.letsencrypt_email or f"admin@{hostname}"
        command = [
            "certbot", "certonly",
            "--non-interactive", "--agree-tos",
            "--email", contact,
            "--cert-name", site,
            "-d", hostname,
        ]
        if SystemdService(self.ctx, self.executor).is_active("nginx"):
            self.executor.ensure_dir(self.settings.acme_webroot, permissions=0o755)
            command += ["--webroot", "-w", str(self.settings.acme_webroot)]
        else:
            command += ["--standalone"]

        try:
            self.executor.run(command, description=f"Requesting Let's Encrypt certificate for {hostname}")
        except ExecutionError as e:
            raise CertificateError(
                f"certbot could not obtain a certificate for {hostname}",
                hint=f"Make sure {hostname} resolves to this server and port 80 is reachable",
                details=e.details,
            ) from e

        paths = self._prepare_dir(site)
        live = LETSENCRYPT_LIVE / site
        self.executor.symlink(live / "fullchain.pem", paths.fullchain)
        self.executor.symlink(live / "privkey.pem", paths.privkey)
        self.executor.symlink(live / "chain.pem", paths.chain)

        self.install_renewal_cron()
        return paths

    def install_renewal_cron(self) -> None:
        if RENEW_CRON_PATH.exists():
            return
        self.executor.write_file(
            RENEW_CRON_PATH,
            render_template("ssl/renew-cron.j2"),
            description="Installing daily certificate renewal job",
            permissions=0o644,
        )

    def describe(self, site: str) -> Optional[str]:
        """Subject and validity dates of a site's certificate, or None."""
        paths = self.paths(site)
        if not paths.fullchain.exists():
            return None
        result = self.executor.probe(
            ["openssl", "x509", "-in", str(paths.fullchain), "-noout", "-subject", "-dates"],
        )
        return result.stdout.strip() if result.success else None
