"""
dockerhosting - Debian provisioning for Docker-based site hosting.

A CLI that bootstraps a hardened Debian server (Docker, boundary Nginx,
firewall, email relay) and deploys Git-sourced sites onto it, each isolated
by its own Unix user, Docker network and Nginx virtual host.
"""

__version__ = "1.0.0"
__author__ = "dockerhosting maintainers"
