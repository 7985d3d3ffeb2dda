"""Capability protocols implemented by the localstacker providers.

The orchestrator and status evaluator depend on these protocols rather than
on the concrete mkcert/nginx/systemd providers, so tests can substitute
in-memory doubles.
"""
from __future__ import annotations

from pathlib import Path
from typing import Protocol


class CertificateAuthority(Protocol):
    """Issue locally-trusted certificates."""

    def is_available(self) -> bool:
        """Return True when the certificate tool is installed."""

    def install_tool(self) -> None:
        """Install the certificate tool with a system package manager."""

    def install_ca(self, caroot: Path | None = None) -> None:
        """Install the local CA into the system trust stores."""

    def issue_certificate(self, domain: str, caroot: Path | None = None) -> None:
        """Mint a certificate and key for *domain*."""

    def issued_paths(self, domain: str) -> tuple[Path, Path]:
        """Return where the tool writes the certificate and key for *domain*."""

    def resolve_caroot(self) -> Path | None:
        """Return the CA root of the originating (pre-sudo) user."""


class ProxyConfigurator(Protocol):
    """Render, persist and activate reverse-proxy virtual hosts."""

    def site_path(self, domain: str) -> Path:
        """Return the "available" configuration path for *domain*."""

    def enabled_path(self, domain: str) -> Path:
        """Return the "enabled" reference path for *domain*."""

    def render(self, domain: str, port: int, template_override: Path | None = None) -> str:
        """Return the virtual-host configuration text."""

    def write(self, domain: str, content: str) -> Path:
        """Persist *content* as the available configuration."""

    def enable(self, domain: str) -> None:
        """Activate the site."""

    def disable(self, domain: str) -> None:
        """Deactivate the site; succeeds when already inactive."""

    def remove(self, domain: str) -> bool:
        """Delete the available configuration when present."""

    def site_exists(self, domain: str) -> bool:
        """Return True when the available configuration exists."""

    def is_enabled(self, domain: str) -> bool:
        """Return True when the site is active."""

    def test_config(self) -> None:
        """Validate the aggregate web-server configuration."""

    def reload(self) -> None:
        """Apply configuration without dropping connections."""


class ServiceController(Protocol):
    """Query and restart OS-managed services."""

    def exists(self, name: str) -> bool:
        """Return True when the service is known to the service manager."""

    def is_running(self, name: str) -> bool:
        """Return True when the service is active."""

    def restart(self, name: str) -> None:
        """Restart the service."""


__all__ = ["CertificateAuthority", "ProxyConfigurator", "ServiceController"]
