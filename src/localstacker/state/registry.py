"""Helpers for interacting with the localstacker domain registry.

The registry directory (``/etc/localstacker`` by default) stores the YAML
document ``domains.yml``::

    domains:
      app.local:
        domain: app.local
        port: 4000
        ...

Reads treat a missing document as an empty registry. Writes go to a temporary
file in the same directory which then atomically replaces the document, so
readers only ever observe the previous or the next complete version.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..errors import AlreadyExistsError, DomainNotFoundError, FilesystemError, LocalstackerError
from ..exit_codes import ExitCode
from ..models import DomainRecord, UpsertOutcome

DOMAINS_FILE = "domains.yml"


class StateRegistryError(FilesystemError):
    """Raised when the registry cannot be read or written."""


class RegistryCorruptError(LocalstackerError):
    """Raised when the registry document exists but cannot be parsed."""

    kind = "config-corrupt"
    exit_code = ExitCode.ENVIRONMENT


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML domain registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StateRegistryError(
                f"Failed to create registry directory {self.root}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Raw document helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise RegistryCorruptError(f"Registry file {path} is not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise StateRegistryError(f"Failed to read registry file {path}: {exc}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise RegistryCorruptError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        try:
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_path, 0o640)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Domain helpers
    # ------------------------------------------------------------------
    def load_domains(self) -> dict[str, DomainRecord]:
        """Return every registered domain keyed by name."""
        raw = self._read_domain_entries()
        records: dict[str, DomainRecord] = {}
        for key, entry in raw.items():
            try:
                record = DomainRecord.from_mapping(entry)
            except ValueError as exc:
                raise RegistryCorruptError(
                    f"Invalid entry '{key}' in {self.path_for(DOMAINS_FILE)}: {exc}"
                ) from exc
            records[record.domain] = record
        return records

    def persist_domains(self, domains: Mapping[str, DomainRecord]) -> None:
        """Replace the registry document with *domains*."""
        payload = {name: record.to_dict() for name, record in domains.items()}
        self.write(DOMAINS_FILE, {"domains": payload})

    def get_domain(self, domain: str) -> DomainRecord | None:
        """Return the record for *domain* if registered."""
        return self.load_domains().get(domain)

    def list_domains(self) -> list[DomainRecord]:
        """Return all registered records."""
        return list(self.load_domains().values())

    def upsert_domain(self, record: DomainRecord) -> UpsertOutcome:
        """Insert or replace *record*, reporting which happened."""
        domains = self.load_domains()
        outcome = UpsertOutcome.UPDATED if record.domain in domains else UpsertOutcome.CREATED
        domains[record.domain] = record
        self.persist_domains(domains)
        return outcome

    def add_domain(self, record: DomainRecord) -> None:
        """Insert *record*, refusing to overwrite an existing entry."""
        domains = self.load_domains()
        if record.domain in domains:
            raise AlreadyExistsError(
                f"Domain '{record.domain}' already exists in the registry."
            )
        domains[record.domain] = record
        self.persist_domains(domains)

    def remove_domain(self, domain: str) -> DomainRecord:
        """Remove *domain* from the registry and return its record."""
        domains = self.load_domains()
        record = domains.pop(domain, None)
        if record is None:
            raise DomainNotFoundError(f"Domain '{domain}' not found in the registry.")
        self.persist_domains(domains)
        return record

    # ------------------------------------------------------------------
    def _read_domain_entries(self) -> dict[str, Any]:
        path = self.path_for(DOMAINS_FILE)
        data = self.read(DOMAINS_FILE, default={"domains": {}})
        if not isinstance(data, Mapping):
            raise RegistryCorruptError(f"Registry file {path} must contain a mapping.")
        entries = data.get("domains") or {}
        if not isinstance(entries, Mapping):
            raise RegistryCorruptError(f"Registry file {path} 'domains' must be a mapping.")
        return dict(entries)


__all__ = ["RegistryCorruptError", "StateRegistry", "StateRegistryError"]
