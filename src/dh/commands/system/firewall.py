"""UFW firewall configuration for the boundary host."""

from typing import Optional

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.executor import CommandExecutor
from dh.services.firewall import FirewallPlan, UfwService


def plan_from_config(ctx: ExecutionContext, extra_ports: Optional[list[int]] = None) -> FirewallPlan:
    settings = ctx.config.firewall
    return FirewallPlan(
        ssh_port=settings.ssh_port,
        allow_http=settings.allow_http,
        allow_https=settings.allow_https,
        docker_cidrs=list(settings.docker_cidrs),
        extra_ports=list(settings.extra_ports) + list(extra_ports or []),
    )


def run_firewall(ctx: ExecutionContext, plan: FirewallPlan) -> None:
    audit = get_audit_logger()
    ufw = UfwService(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step("Configuring firewall")
        ufw.configure(plan)
        ctx.console.success("Firewall enabled")

        status = ufw.status()
        if status:
            ctx.console.print()
            ctx.console.print(status)

        audit.log_success(
            AuditEventType.FIREWALL_CONFIGURE,
            "firewall",
            "ufw",
            parameters={"rules": [" ".join(r.args) for r in plan.rules()]},
        )

    except DHError as e:
        audit.log_failure(AuditEventType.FIREWALL_CONFIGURE, "firewall", "ufw", error=str(e))
        raise
