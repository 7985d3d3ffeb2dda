"""Read-only health checks for registered domains.

Each probe runs independently; a failing probe never prevents the others
from reporting. Nothing in this module mutates the registry or the managed
artifacts.
"""
from __future__ import annotations

import socket
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509

from .config import StatusConfig
from .errors import DomainNotFoundError, ExternalToolError
from .models import DomainRecord
from .process import CommandRunner
from .providers.base import ProxyConfigurator, ServiceController
from .state.registry import StateRegistry

LOOPBACK = "127.0.0.1"
SERVICE_RUNNING = "running"
SERVICE_STOPPED = "stopped"
SERVICE_NOT_FOUND = "not-found"


@dataclass(frozen=True)
class DomainStatus:
    """Probe results for a single domain."""

    domain: str
    port: int
    service: str | None
    certificate_present: bool
    certificate_expires_at: datetime | None
    config_present: bool
    site_enabled: bool
    port_listening: bool
    service_state: str | None
    https_reachable: bool

    @property
    def drift(self) -> list[str]:
        """Return the names of failed artifact checks."""
        failed: list[str] = []
        if not self.certificate_present:
            failed.append("certificate")
        if not self.config_present:
            failed.append("nginx_config")
        if not self.site_enabled:
            failed.append("site_enabled")
        return failed

    @property
    def healthy(self) -> bool:
        """Return True when every managed artifact is in place."""
        return not self.drift

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "domain": self.domain,
            "port": self.port,
            "service": self.service,
            "certificate_present": self.certificate_present,
            "certificate_expires_at": (
                self.certificate_expires_at.isoformat() if self.certificate_expires_at else None
            ),
            "config_present": self.config_present,
            "site_enabled": self.site_enabled,
            "port_listening": self.port_listening,
            "service_state": self.service_state,
            "https_reachable": self.https_reachable,
            "healthy": self.healthy,
            "drift": self.drift,
        }


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001, ANN201
        return None


class StatusEvaluator:
    """Compute :class:`DomainStatus` for registered domains."""

    def __init__(
        self,
        registry: StateRegistry,
        *,
        proxy: ProxyConfigurator,
        services: ServiceController,
        runner: CommandRunner,
        config: StatusConfig | None = None,
    ) -> None:
        """Store collaborators used by the probes."""
        self.registry = registry
        self.proxy = proxy
        self.services = services
        self.runner = runner
        self.config = config or StatusConfig()

    def evaluate(self, domain: str | None = None) -> list[DomainStatus]:
        """Return statuses for *domain*, or for every registered domain."""
        if domain is not None:
            record = self.registry.get_domain(domain)
            if record is None:
                raise DomainNotFoundError(f"Domain '{domain}' not found")
            records = [record]
        else:
            records = sorted(self.registry.list_domains(), key=lambda item: item.domain)
        return [self.check(record) for record in records]

    def check(self, record: DomainRecord) -> DomainStatus:
        """Run every probe for *record*."""
        enabled_path = self.proxy.enabled_path(record.domain)
        return DomainStatus(
            domain=record.domain,
            port=record.port,
            service=record.service,
            certificate_present=record.ssl_cert_path.exists() and record.ssl_key_path.exists(),
            certificate_expires_at=certificate_expiry(record.ssl_cert_path),
            config_present=record.nginx_config_path.exists(),
            site_enabled=enabled_path.exists() or enabled_path.is_symlink(),
            port_listening=self._port_listening(record.port),
            service_state=self._service_state(record.service),
            https_reachable=self._https_reachable(record.domain),
        )

    # ------------------------------------------------------------------
    def _service_state(self, service: str | None) -> str | None:
        if not service:
            return None
        if not self.services.exists(service):
            return SERVICE_NOT_FOUND
        return SERVICE_RUNNING if self.services.is_running(service) else SERVICE_STOPPED

    def _port_listening(self, port: int) -> bool:
        try:
            result = self.runner.run(
                [self.config.ss_bin, "-ltnH", f"sport = :{port}"],
                description="Listening socket query",
                mutating=False,
                check=False,
            )
        except ExternalToolError:
            return self._tcp_connect(port)
        if result.returncode != 0:
            return self._tcp_connect(port)
        return f":{port}" in (result.stdout or "")

    def _tcp_connect(self, port: int) -> bool:
        try:
            with socket.create_connection((LOOPBACK, port), timeout=1.0):
                return True
        except OSError:
            return False

    def _https_reachable(self, domain: str) -> bool:
        context = ssl._create_unverified_context()  # noqa: S323 - local CA is not in certifi
        opener = urllib.request.build_opener(
            urllib.request.HTTPSHandler(context=context),
            _NoRedirect(),
        )
        try:
            with opener.open(f"https://{domain}/", timeout=self.config.https_timeout) as resp:
                return 200 <= resp.status < 400
        except urllib.error.HTTPError as exc:
            return 300 <= exc.code < 400
        except (urllib.error.URLError, OSError, ValueError):
            return False


def certificate_expiry(path: Path) -> datetime | None:
    """Return the ``notAfter`` time of the PEM certificate at *path*."""
    try:
        cert = x509.load_pem_x509_certificate(path.read_bytes())
    except (OSError, ValueError):
        return None
    not_after = getattr(cert, "not_valid_after_utc", None)
    if not_after is None:  # pragma: no cover - cryptography < 42
        not_after = cert.not_valid_after.replace(tzinfo=UTC)
    return not_after


__all__ = ["DomainStatus", "StatusEvaluator", "certificate_expiry"]
