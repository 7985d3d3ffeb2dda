"""Tests for domain records and input validation."""
from __future__ import annotations

from pathlib import Path

import pytest

from localstacker.errors import ValidationError
from localstacker.models import DomainRecord, validate_domain, validate_port


def _record(**overrides: object) -> DomainRecord:
    values: dict[str, object] = {
        "domain": "app.local",
        "port": 4000,
        "ssl_cert_path": Path("/etc/nginx/ssl/app.local.pem"),
        "ssl_key_path": Path("/etc/nginx/ssl/app.local-key.pem"),
        "nginx_config_path": Path("/etc/nginx/sites-available/app.local"),
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    values.update(overrides)
    return DomainRecord(**values)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "domain",
    ["app.local", "my-app.test", "a", "api.v2.example.dev", "xn--bcher-kva.local", "bücher.local"],
)
def test_validate_domain_accepts_allowed_characters(domain: str) -> None:
    """Alphanumerics, dots and hyphens are accepted unchanged."""
    assert validate_domain(domain) == domain


@pytest.mark.parametrize(
    "domain",
    ["", ".app.local", "app.local.", "app_local", "app local", "app/local", "app:80"],
)
def test_validate_domain_rejects_bad_names(domain: str) -> None:
    """Empty names, edge dots and other characters are rejected."""
    with pytest.raises(ValidationError):
        validate_domain(domain)


def test_validate_port_bounds() -> None:
    """Ports must be within 1-65535."""
    assert validate_port(1, privileged=True) == 1
    assert validate_port(65535, privileged=False) == 65535
    for port in (0, -1, 65536):
        with pytest.raises(ValidationError):
            validate_port(port, privileged=True)


def test_validate_port_requires_privilege_below_1024() -> None:
    """Privileged ports are only accepted for privileged callers."""
    assert validate_port(80, privileged=True) == 80
    assert validate_port(1024, privileged=False) == 1024
    with pytest.raises(ValidationError, match="requires root"):
        validate_port(1023, privileged=False)


def test_validate_port_rejects_booleans() -> None:
    """``True`` is not a port even though it is an ``int``."""
    with pytest.raises(ValidationError):
        validate_port(True, privileged=True)  # type: ignore[arg-type]


def test_from_mapping_round_trips_with_unknown_keys() -> None:
    """Unknown registry keys survive a load/dump cycle."""
    payload = _record(service="web.service").to_dict()
    payload["owner"] = "ops"

    record = DomainRecord.from_mapping(payload)

    assert record.service == "web.service"
    assert record.extras == {"owner": "ops"}
    assert record.to_dict() == payload


@pytest.mark.parametrize(
    "mutation",
    [
        {"port": "4000"},
        {"port": True},
        {"enabled": "yes"},
        {"domain": ""},
        {"nginx_config_path": None},
    ],
)
def test_from_mapping_rejects_malformed_entries(mutation: dict[str, object]) -> None:
    """Mistyped or missing fields raise ``ValueError``."""
    payload = _record().to_dict()
    payload.update(mutation)
    with pytest.raises(ValueError):
        DomainRecord.from_mapping(payload)


def test_replaced_by_keeps_creation_time() -> None:
    """Re-provisioning keeps ``created_at`` and stamps ``updated_at``."""
    original = _record(extras={"owner": "ops"})
    newer = _record(port=5000, created_at="2026-02-02T00:00:00+00:00")

    merged = original.replaced_by(newer)

    assert merged.port == 5000
    assert merged.created_at == "2026-01-01T00:00:00+00:00"
    assert merged.updated_at == "2026-02-02T00:00:00+00:00"
    assert merged.extras == {"owner": "ops"}
