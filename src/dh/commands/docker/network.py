"""Per-site isolated Docker networks."""

from dh.core.audit import AuditEventType, get_audit_logger
from dh.core.context import ExecutionContext
from dh.core.exceptions import DHError
from dh.core.executor import CommandExecutor
from dh.core.validation import validate_site_name
from dh.services.docker import DockerService, SiteNetwork
from dh.services.templates import render_template


def compose_snippet(site: str, network: SiteNetwork) -> str:
    return render_template("docker/compose-network.yml.j2", site_name=site, network=network.name)


def run_network(ctx: ExecutionContext, site: str, show_snippet: bool = True) -> SiteNetwork:
    """Create '<site>-network' if missing and show how to attach to it."""
    audit = get_audit_logger()
    site = validate_site_name(site)
    docker = DockerService(ctx, CommandExecutor(ctx))

    try:
        ctx.console.step(f"Setting up Docker network for {site}")
        network = docker.ensure_site_network(site, ctx.config.docker)

        if network.created:
            ctx.console.success(f"Network {network.name} created ({network.subnet}, bridge {network.bridge})")
            audit.log_success(
                AuditEventType.DOCKER_NETWORK_CREATE,
                "network",
                network.name,
                parameters={"subnet": network.subnet, "bridge": network.bridge},
            )

        if show_snippet:
            ctx.console.code(compose_snippet(site, network), "yaml", "Add to docker-compose.yml")
        return network

    except DHError as e:
        audit.log_failure(AuditEventType.DOCKER_NETWORK_CREATE, "network", f"{site}-network", error=str(e))
        raise
