"""Service abstractions for interacting with system services."""

from dh.services.docker import DockerService
from dh.services.nginx import NginxService
from dh.services.systemd import SystemdService

__all__ = [
    "DockerService",
    "NginxService",
    "SystemdService",
]
