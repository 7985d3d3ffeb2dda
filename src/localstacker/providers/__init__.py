"""Providers wrapping mkcert, nginx and systemd."""
from __future__ import annotations

from .base import CertificateAuthority, ProxyConfigurator, ServiceController
from .mkcert import MkcertError, MkcertProvider, UnsupportedPlatformError
from .nginx import NginxError, NginxProvider, NginxValidationError
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "CertificateAuthority",
    "MkcertError",
    "MkcertProvider",
    "NginxError",
    "NginxProvider",
    "NginxValidationError",
    "ProxyConfigurator",
    "ServiceController",
    "SystemdError",
    "SystemdProvider",
    "UnsupportedPlatformError",
]
