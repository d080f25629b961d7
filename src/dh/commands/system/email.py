"""Email relay setup: gather settings and configure msmtp."""

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.config import EmailConfig
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError, ValidationError
from dh.core.executor import CommandExecutor
from dh.core.validation import validate_email, validate_hostname
from dh.services.email import MailRelayService


def prompt_email_settings(ctx: ExecutionContext, settings: EmailConfig) -> EmailConfig:
    """Fill in missing relay settings interactively.

    Raises:
        ValidationError: If a value is still missing and prompting is not possible
    """
    values = settings.model_dump()
    prompts = [
        ("root_email", "Email address to receive system notifications", validate_email),
        ("smtp_host", "SMTP server", validate_hostname),
        ("smtp_user", "SMTP username", None),
    ]
    for key, prompt, validator in prompts:
        if values.get(key):
            continue
        if not ctx.interactive:
            raise ValidationError(
                f"Email setting '{key}' is not set",
                hint=f"Set email.{key} in the config file or pass it as an option",
            )
        raw = ctx.console.input(prompt)
        values[key] = validator(raw) if validator else raw
    if not values.get("from_address"):
        values["from_address"] = values["smtp_user"] if "@" in values["smtp_user"] else values["root_email"]
    return EmailConfig.model_validate(values)


def smtp_password(ctx: ExecutionContext) -> str:
    password = ctx.config.secrets.smtp_password
    if password:
        return password
    if not ctx.interactive:
        raise ValidationError(
            "No SMTP password available",
            hint="Export DH_SMTP_PASSWORD before running non-interactively",
        )
    return ctx.console.secret_input("SMTP password")


def run_email(ctx: ExecutionContext, settings: EmailConfig, send_test: bool = True) -> None:
    audit = get_audit_logger()
    relay = MailRelayService(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step("Configuring email relay")
        relay.configure(settings, smtp_password(ctx), send_test=send_test)
        ctx.console.success(f"System mail is relayed through {settings.smtp_host}:{settings.smtp_port}")

        audit.log_success(
            AuditEventType.EMAIL_CONFIGURE,
            "email",
            settings.smtp_host or "",
            parameters={"root_email": settings.root_email, "smtp_user": settings.smtp_user},
        )

    except DHError as e:
        audit.log_failure(AuditEventType.EMAIL_CONFIGURE, "email", settings.smtp_host or "", error=str(e))
        raise
