"""Domain records and input validation."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import ValidationError

MAX_PORT = 65535
PRIVILEGED_PORT_CEILING = 1024

_KNOWN_FIELDS = (
    "domain",
    "port",
    "service",
    "ssl_cert_path",
    "ssl_key_path",
    "nginx_config_path",
    "created_at",
    "updated_at",
    "enabled",
)


class UpsertOutcome(str, Enum):
    """Whether an upsert created a new record or replaced one."""

    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class DomainRecord:
    """A provisioned domain as stored in the registry."""

    domain: str
    port: int
    ssl_cert_path: Path
    ssl_key_path: Path
    nginx_config_path: Path
    created_at: str
    enabled: bool = True
    service: str | None = None
    updated_at: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DomainRecord:
        """Build a record from its registry mapping.

        Raises ``ValueError`` when required fields are missing or mistyped.
        Keys this version does not know about are kept in ``extras`` so they
        survive a read-modify-write cycle.
        """
        if not isinstance(data, Mapping):
            raise ValueError("domain entry must be a mapping")
        missing = [
            key
            for key in ("domain", "port", "ssl_cert_path", "ssl_key_path", "nginx_config_path")
            if data.get(key) in (None, "")
        ]
        if missing:
            raise ValueError(f"domain entry missing {', '.join(missing)}")
        port = data["port"]
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValueError(f"port must be an integer, got {port!r}")
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError(f"enabled must be a boolean, got {enabled!r}")
        service = data.get("service")
        updated_at = data.get("updated_at")
        return cls(
            domain=str(data["domain"]),
            port=port,
            service=str(service) if service is not None else None,
            ssl_cert_path=Path(str(data["ssl_cert_path"])),
            ssl_key_path=Path(str(data["ssl_key_path"])),
            nginx_config_path=Path(str(data["nginx_config_path"])),
            created_at=str(data.get("created_at", "")),
            updated_at=str(updated_at) if updated_at is not None else None,
            enabled=enabled,
            extras={key: value for key, value in data.items() if key not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the registry mapping for this record."""
        payload: dict[str, Any] = {
            "domain": self.domain,
            "port": self.port,
            "service": self.service,
            "ssl_cert_path": str(self.ssl_cert_path),
            "ssl_key_path": str(self.ssl_key_path),
            "nginx_config_path": str(self.nginx_config_path),
            "created_at": self.created_at,
            "enabled": self.enabled,
        }
        if self.updated_at is not None:
            payload["updated_at"] = self.updated_at
        payload.update(self.extras)
        return payload

    def replaced_by(self, newer: DomainRecord) -> DomainRecord:
        """Return *newer* carrying this record's creation time and extras."""
        extras = {**self.extras, **newer.extras}
        return replace(
            newer,
            created_at=self.created_at or newer.created_at,
            updated_at=newer.updated_at or newer.created_at,
            extras=extras,
        )


def validate_domain(domain: str) -> str:
    """Return *domain* unchanged when it is an acceptable domain name."""
    if not domain:
        raise ValidationError("Domain cannot be empty.")
    if not all(char.isalnum() or char in ".-" for char in domain):
        raise ValidationError(
            f"Domain '{domain}' contains invalid characters "
            "(letters, digits, dots and hyphens only)."
        )
    if domain.startswith(".") or domain.endswith("."):
        raise ValidationError(f"Domain '{domain}' cannot start or end with a dot.")
    return domain


def validate_port(port: int, *, privileged: bool) -> int:
    """Return *port* when it is usable by the current caller."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(f"Port must be an integer, got {port!r}.")
    if port == 0:
        raise ValidationError("Port cannot be 0.")
    if port < 0 or port > MAX_PORT:
        raise ValidationError(f"Port {port} is outside the range 1-{MAX_PORT}.")
    if port < PRIVILEGED_PORT_CEILING and not privileged:
        raise ValidationError(
            f"Port {port} is below {PRIVILEGED_PORT_CEILING} and requires root privileges."
        )
    return port


__all__ = ["DomainRecord", "UpsertOutcome", "validate_domain", "validate_port"]
