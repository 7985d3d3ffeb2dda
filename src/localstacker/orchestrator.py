"""Provisioning workflows for localstacker domains.

The :class:`Provisioner` sequences the side effects needed to expose a local
backend over HTTPS and to take it down again. Workflows are fail-fast with no
automatic rollback; every step either is idempotent or overwrites its
previous output, so re-running a failed command converges.

The registry is written last: a record exists only once every side effect
of ``provision`` has succeeded, and is deleted only after ``deprovision``
has deactivated the site.
"""
from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .config import AppConfig
from .errors import DomainNotFoundError, PrivilegeError
from .fileops import FileOps
from .locking import LockManager
from .logging import OperationScope
from .models import DomainRecord, UpsertOutcome, validate_domain, validate_port
from .providers.base import CertificateAuthority, ProxyConfigurator, ServiceController
from .state.registry import StateRegistry


@dataclass(frozen=True)
class ProvisionRequest:
    """Input for :meth:`Provisioner.provision`."""

    domain: str
    port: int
    service: str | None = None
    template: Path | None = None


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of a successful provisioning run."""

    outcome: UpsertOutcome
    record: DomainRecord
    warnings: tuple[str, ...] = ()
    dry_run: bool = False


@dataclass(frozen=True)
class DeprovisionResult:
    """Outcome of a successful removal."""

    record: DomainRecord
    certificates_removed: bool
    dry_run: bool = False


@dataclass(frozen=True)
class InstallResult:
    """Outcome of ``install_certificate_tool``."""

    tool_installed: bool
    caroot: Path | None


def is_root() -> bool:
    """Return True when the process runs with an effective UID of 0."""
    return os.geteuid() == 0


def utc_timestamp() -> str:
    """Return the current time as an ISO-8601 UTC string."""
    return datetime.now(UTC).isoformat()


class Provisioner:
    """Create, update and remove local HTTPS endpoints."""

    def __init__(
        self,
        config: AppConfig,
        *,
        registry: StateRegistry,
        ca: CertificateAuthority,
        proxy: ProxyConfigurator,
        services: ServiceController,
        files: FileOps,
        locks: LockManager | None = None,
        authorize: Callable[[], bool] = is_root,
        clock: Callable[[], str] = utc_timestamp,
        console: Console | None = None,
    ) -> None:
        """Wire the workflow to its collaborators."""
        self.config = config
        self.registry = registry
        self.ca = ca
        self.proxy = proxy
        self.services = services
        self.files = files
        self.locks = locks
        self.authorize = authorize
        self.clock = clock
        self.console = console

    @property
    def dry_run(self) -> bool:
        """Return True when side effects are being simulated."""
        return self.config.dry_run

    # ------------------------------------------------------------------
    # Checks run before any side effect
    # ------------------------------------------------------------------
    def preflight(self, request: ProvisionRequest) -> ProvisionRequest:
        """Check privilege and validate *request* without touching the system."""
        privileged = self._require_privilege()
        validate_domain(request.domain)
        validate_port(request.port, privileged=privileged)
        return request

    def require_registered(self, domain: str) -> DomainRecord:
        """Check privilege and return the registered record for *domain*."""
        self._require_privilege()
        record = self.registry.get_domain(domain)
        if record is None:
            raise DomainNotFoundError(f"Domain '{domain}' not found")
        return record

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------
    def provision(
        self,
        request: ProvisionRequest,
        *,
        op: OperationScope | None = None,
    ) -> ProvisionResult:
        """Issue a certificate, activate the proxy and record the domain."""
        self.preflight(request)
        domain, port = request.domain, request.port
        self._step(op, "validate", f"{domain} -> 127.0.0.1:{port}")

        with self._locked(domain, op):
            self._ensure_certificate_tool(op, force=False)
            caroot = self.ca.resolve_caroot()
            self.ca.install_ca(caroot)
            self._step(op, "ca.install", "Local CA installed")

            self.ca.issue_certificate(domain, caroot)
            self._step(op, "cert.issue", f"Certificate generated for {domain}")

            cert_path = self.config.ssl_cert_path(domain)
            key_path = self.config.ssl_key_path(domain)
            issued_cert, issued_key = self.ca.issued_paths(domain)
            self.files.ensure_directory(self.config.ssl_dir)
            self.files.copy_file(issued_cert, cert_path, mode=0o644)
            self.files.copy_file(issued_key, key_path, mode=0o600)
            self.files.remove_file(issued_cert)
            self.files.remove_file(issued_key)
            self._step(op, "cert.install", f"SSL certificates installed in {self.config.ssl_dir}")

            content = self.proxy.render(domain, port, request.template)
            config_path = self.proxy.write(domain, content)
            self._step(op, "nginx.write", f"Nginx configuration written to {config_path}")
            self.proxy.enable(domain)
            self._step(op, "nginx.enable", "Site enabled")

            self.proxy.test_config()
            self._step(op, "nginx.test", "Nginx configuration test passed")
            self.proxy.reload()
            self._step(op, "nginx.reload", "Nginx reloaded")

            warnings: list[str] = []
            if request.service:
                if self.services.exists(request.service):
                    self.services.restart(request.service)
                    self._step(op, "service.restart", f"Service {request.service} restarted")
                else:
                    message = f"Service {request.service} not found, skipping restart"
                    warnings.append(message)
                    self._step(op, "service.restart", message, status="skipped")

            now = self.clock()
            record = DomainRecord(
                domain=domain,
                port=port,
                service=request.service,
                ssl_cert_path=cert_path,
                ssl_key_path=key_path,
                nginx_config_path=config_path,
                created_at=now,
                enabled=True,
            )
            existing = self.registry.get_domain(domain)
            if existing is not None:
                record = existing.replaced_by(record)
            if self.dry_run:
                outcome = UpsertOutcome.UPDATED if existing else UpsertOutcome.CREATED
                self._step(op, "registry.upsert", "Registry left untouched", status="skipped")
            else:
                outcome = self.registry.upsert_domain(record)
                self._step(op, "registry.upsert", f"Configuration {outcome.value}")

        return ProvisionResult(
            outcome=outcome,
            record=record,
            warnings=tuple(warnings),
            dry_run=self.dry_run,
        )

    def deprovision(
        self,
        domain: str,
        *,
        remove_certs: bool = False,
        op: OperationScope | None = None,
    ) -> DeprovisionResult:
        """Deactivate *domain*, clean up its files and forget it."""
        validate_domain(domain)
        self.require_registered(domain)

        with self._locked(domain, op):
            # Re-read under the lock; a concurrent remove may have won.
            record = self.require_registered(domain)
            self._step(op, "registry.lookup", f"Found configuration for {domain}")

            self.proxy.disable(domain)
            self._step(op, "nginx.disable", "Site disabled")

            if self.files.remove_file(record.nginx_config_path):
                self._step(op, "nginx.remove", "Nginx configuration removed")
            else:
                self._step(
                    op, "nginx.remove", "Nginx configuration already absent", status="skipped"
                )

            certificates_removed = False
            if remove_certs:
                removed_cert = self.files.remove_file(record.ssl_cert_path)
                removed_key = self.files.remove_file(record.ssl_key_path)
                certificates_removed = removed_cert or removed_key
                self._step(op, "cert.remove", "SSL certificates removed")
            else:
                self._step(
                    op,
                    "cert.remove",
                    "SSL certificates kept (use --remove-certs to delete them)",
                    status="skipped",
                )

            self.proxy.test_config()
            self._step(op, "nginx.test", "Nginx configuration test passed")
            self.proxy.reload()
            self._step(op, "nginx.reload", "Nginx reloaded")

            if self.dry_run:
                self._step(op, "registry.remove", "Registry left untouched", status="skipped")
            else:
                self.registry.remove_domain(domain)
                self._step(op, "registry.remove", "Configuration removed")

        return DeprovisionResult(
            record=record,
            certificates_removed=certificates_removed,
            dry_run=self.dry_run,
        )

    def install_certificate_tool(
        self,
        *,
        force: bool = False,
        op: OperationScope | None = None,
    ) -> InstallResult:
        """Install mkcert (when missing or forced) and the local CA."""
        self._require_privilege()
        installed = self._ensure_certificate_tool(op, force=force)
        caroot = self.ca.resolve_caroot()
        self.ca.install_ca(caroot)
        self._step(op, "ca.install", "Local CA installed")
        return InstallResult(tool_installed=installed, caroot=caroot)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_privilege(self) -> bool:
        if not self.authorize():
            raise PrivilegeError("This command must be run as root (use sudo).")
        return True

    def _ensure_certificate_tool(self, op: OperationScope | None, *, force: bool) -> bool:
        if self.ca.is_available() and not force:
            self._step(op, "mkcert.check", "mkcert is installed")
            return False
        if force:
            self._warn("Reinstalling mkcert...")
        else:
            self._warn("mkcert not found, attempting to install...")
        self.ca.install_tool()
        self._step(op, "mkcert.install", "mkcert installed")
        return True

    @contextmanager
    def _locked(self, domain: str, op: OperationScope | None) -> Iterator[None]:
        if self.locks is None or self.dry_run:
            yield
            return
        with self.locks.mutate_domains([domain], timeout=self.config.lock_timeout) as bundle:
            if op is not None:
                op.set_lock_wait_ms(bundle.wait_ms)
            yield

    def _step(
        self,
        op: OperationScope | None,
        name: str,
        message: str,
        *,
        status: str = "success",
    ) -> None:
        if op is not None:
            op.add_step(name, status=status, detail=message)
        if self.console is None:
            return
        if status == "success":
            self.console.print(f"[green]✓[/green] {escape(message)}")
        else:
            self.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")

    def _warn(self, message: str) -> None:
        if self.console is not None:
            self.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")


__all__ = [
    "DeprovisionResult",
    "InstallResult",
    "ProvisionRequest",
    "ProvisionResult",
    "Provisioner",
    "is_root",
    "utc_timestamp",
]
