"""Outbound mail relay through msmtp.

System mail (cron, unattended-upgrades, fail2ban) is handed to msmtp,
which authenticates against an external SMTP server. Local recipients are
mapped through /etc/aliases to the operator's address.
"""

import grp
import socket
from pathlib import Path
from typing import Optional

from dh.core.config import EmailConfig
from dh.core.context import ExecutionContext
from dh.core.exceptions import MailError
from dh.core.executor import CommandExecutor
from dh.core.files import config_matches
from dh.services.apt import AptService
from dh.services.templates import render_template


MAIL_PACKAGES = ["msmtp", "msmtp-mta", "mailutils", "bsd-mailx"]

MSMTPRC = Path("/etc/msmtprc")
MSMTP_LOG = Path("/var/log/msmtp.log")
ALIASES = Path("/etc/aliases")
LOGROTATE_PATH = Path("/etc/logrotate.d/msmtp")
MSMTP_BINARY = Path("/usr/bin/msmtp")
SENDMAIL_LINKS = (Path("/usr/sbin/sendmail"), Path("/usr/bin/sendmail"))


def quote_msmtp(value: str) -> str:
    """Escape a value for a double-quoted msmtprc field."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def render_msmtprc(settings: EmailConfig, password: str) -> str:
    return render_template(
        "email/msmtprc.j2",
        tls=settings.tls,
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        smtp_user=settings.smtp_user,
        from_address=settings.from_address or settings.smtp_user,
        smtp_password=quote_msmtp(password),
    )


class MailRelayService:
    """Install and configure msmtp as the system sendmail."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    @staticmethod
    def _log_group() -> str:
        try:
            grp.getgrnam("msmtp")
            return "msmtp"
        except KeyError:
            return "root"

    def configure(self, settings: EmailConfig, password: str, *, send_test: bool = True) -> None:
        """Configure the relay end to end.

        Raises:
            MailError: If required settings are missing
        """
        if not settings.is_configured:
            raise MailError(
                "Email relay needs root_email, smtp_host and smtp_user",
                hint="Set them under 'email:' in the config file or pass them as options",
            )
        if not password:
            raise MailError("No SMTP password given", hint="Export DH_SMTP_PASSWORD or enter it when prompted")

        AptService(self.ctx, self.executor).install(MAIL_PACKAGES, description="Installing mail packages")

        msmtprc = render_msmtprc(settings, password)
        if not config_matches(MSMTPRC, msmtprc):
            self.executor.backup_file(MSMTPRC)
        self.executor.write_file(
            MSMTPRC,
            msmtprc,
            description=f"Writing {MSMTPRC}",
            permissions=0o600,
            owner="root",
            group="root",
        )

        log_group = self._log_group()
        if not MSMTP_LOG.exists():
            self.executor.write_file(MSMTP_LOG, "", description=f"Creating {MSMTP_LOG}",
                                     permissions=0o660, owner="root", group=log_group,
                                     skip_if_unchanged=False)

        self.executor.backup_file(ALIASES, timestamped=False)
        self.executor.write_file(
            ALIASES,
            render_template("email/aliases.j2", root_email=settings.root_email),
            description=f"Forwarding root mail to {settings.root_email}",
        )

        for link in SENDMAIL_LINKS:
            self.executor.symlink(MSMTP_BINARY, link)

        self.executor.write_file(
            LOGROTATE_PATH,
            render_template("email/logrotate.j2", log_group=log_group),
            description="Configuring msmtp log rotation",
        )

        if send_test:
            self.send_test(settings.root_email)

    def send_test(self, recipient: str, hostname: Optional[str] = None) -> bool:
        """Send a test message. Failure is reported as a warning."""
        host = hostname or socket.getfqdn()
        body = (
            f"This is a test message from {host}.\n\n"
            "If you received it, the msmtp relay is working.\n"
        )
        result = self.executor.run(
            ["mail", "-s", f"Test email from {host}", recipient],
            description=f"Sending test email to {recipient}",
            input_text=body,
            check=False,
        )
        if result.success:
            self.ctx.console.success(f"Test email sent to {recipient}")
            return True
        self.ctx.console.warn("Test email could not be sent")
        self.ctx.console.hint(f"Check {MSMTP_LOG} for details")
        return False
