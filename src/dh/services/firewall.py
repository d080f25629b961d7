"""UFW firewall configuration.

The boundary host exposes only SSH, HTTP and HTTPS. Docker bridge ranges
are allowed so containers can reach services published on the host.
"""

from dataclasses import dataclass, field

from dh.core.context import ExecutionContext
from dh.core.exceptions import ExecutionError, FirewallError
from dh.core.executor import CommandExecutor
from dh.services.apt import AptService


@dataclass
class UfwRule:
    """A single 'ufw allow' invocation."""
    args: list[str]
    comment: str

    def command(self) -> list[str]:
        return ["ufw", "allow", *self.args, "comment", self.comment]


@dataclass
class FirewallPlan:
    ssh_port: int = 22
    allow_http: bool = True
    allow_https: bool = True
    docker_cidrs: list[str] = field(default_factory=lambda: ["172.16.0.0/12", "192.168.0.0/16"])
    extra_ports: list[int] = field(default_factory=list)

    def rules(self) -> list[UfwRule]:
        rules = [UfwRule([f"{self.ssh_port}/tcp"], "SSH")]
        if self.allow_http:
            rules.append(UfwRule(["80/tcp"], "HTTP"))
        if self.allow_https:
            rules.append(UfwRule(["443/tcp"], "HTTPS"))
        for port in self.extra_ports:
            rules.append(UfwRule([f"{port}/tcp"], f"Custom port {port}"))
        for cidr in self.docker_cidrs:
            rules.append(UfwRule(["from", cidr], "Docker networks"))
        return rules


class UfwService:
    """Apply a FirewallPlan with ufw."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def configure(self, plan: FirewallPlan) -> None:
        """Reset policies and rules, then enable the firewall.

        ufw is disabled while rules are rewritten so a half-applied rule set
        never becomes active.

        Raises:
            FirewallError: If any ufw command fails
        """
        AptService(self.ctx, self.executor).install(["ufw"])

        try:
            self.executor.run(["ufw", "--force", "disable"], description="Disabling UFW while configuring")
            self.executor.run(["ufw", "default", "deny", "incoming"], description="Default policy: deny incoming")
            self.executor.run(["ufw", "default", "allow", "outgoing"], description="Default policy: allow outgoing")

            for rule in plan.rules():
                self.executor.run(rule.command(), description=f"Allowing {' '.join(rule.args)} ({rule.comment})")

            self.executor.run(["ufw", "--force", "enable"], description="Enabling UFW")
        except ExecutionError as e:
            raise FirewallError(
                "Failed to configure UFW",
                hint="Check 'ufw status verbose' and re-run 'dh system firewall'",
                details=e.details,
            ) from e

    def status(self) -> str:
        return self.executor.probe(["ufw", "status", "verbose"]).stdout.strip()
