"""State registry helpers tests."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from localstacker.errors import AlreadyExistsError, DomainNotFoundError
from localstacker.models import DomainRecord, UpsertOutcome
from localstacker.state import RegistryCorruptError, StateRegistry, StateRegistryError


def _record(domain: str = "app.local", port: int = 4000, **extra: object) -> DomainRecord:
    return DomainRecord(
        domain=domain,
        port=port,
        ssl_cert_path=Path(f"/etc/nginx/ssl/{domain}.pem"),
        ssl_key_path=Path(f"/etc/nginx/ssl/{domain}-key.pem"),
        nginx_config_path=Path(f"/etc/nginx/sites-available/{domain}"),
        created_at="2026-01-01T00:00:00+00:00",
        **extra,  # type: ignore[arg-type]
    )


def test_missing_registry_is_empty(tmp_path: Path) -> None:
    """A registry without a document on disk has no domains."""
    registry = StateRegistry(tmp_path / "etc")

    assert registry.load_domains() == {}
    assert registry.list_domains() == []
    assert registry.get_domain("app.local") is None


def test_write_and_read_roundtrip(tmp_path: Path) -> None:
    """Writing a registry file and reading it back succeeds."""
    registry = StateRegistry(tmp_path)
    payload = {"domains": {"app.local": {"port": 4000}}}

    registry.write("domains.yml", payload)

    path = tmp_path / "domains.yml"
    assert path.exists()
    assert (path.stat().st_mode & 0o777) == 0o640
    assert registry.read("domains.yml") == payload
    assert not list(tmp_path.glob(".domains.yml.*"))


def test_persist_and_load_roundtrip(tmp_path: Path) -> None:
    """Persisting a mapping and loading it yields an equal mapping."""
    registry = StateRegistry(tmp_path)
    domains = {
        "app.local": _record(),
        "api.local": _record("api.local", 8080, service="api.service"),
    }

    registry.persist_domains(domains)

    assert registry.load_domains() == domains
    document = yaml.safe_load((tmp_path / "domains.yml").read_text(encoding="utf-8"))
    assert set(document["domains"]) == {"app.local", "api.local"}
    assert document["domains"]["api.local"]["service"] == "api.service"


def test_upsert_reports_created_then_updated(tmp_path: Path) -> None:
    """Upserting the same domain twice replaces the record."""
    registry = StateRegistry(tmp_path)

    assert registry.upsert_domain(_record()) is UpsertOutcome.CREATED
    assert registry.get_domain("app.local") == _record()

    replacement = _record(port=5000)
    assert registry.upsert_domain(replacement) is UpsertOutcome.UPDATED
    assert registry.get_domain("app.local") == replacement
    assert len(registry.list_domains()) == 1


def test_add_domain_refuses_duplicates(tmp_path: Path) -> None:
    """Strict creation raises when the domain already exists."""
    registry = StateRegistry(tmp_path)
    registry.add_domain(_record())

    with pytest.raises(AlreadyExistsError):
        registry.add_domain(_record(port=5000))
    assert registry.get_domain("app.local") == _record()


def test_remove_domain(tmp_path: Path) -> None:
    """Removing a domain deletes it and returns the old record."""
    registry = StateRegistry(tmp_path)
    registry.upsert_domain(_record())
    registry.upsert_domain(_record("api.local", 8080))

    removed = registry.remove_domain("app.local")

    assert removed == _record()
    assert registry.get_domain("app.local") is None
    assert registry.get_domain("api.local") is not None
    with pytest.raises(DomainNotFoundError):
        registry.remove_domain("app.local")


def test_untouched_records_keep_unknown_fields(tmp_path: Path) -> None:
    """Mutating one record leaves unrelated entries intact, extras included."""
    path = tmp_path / "domains.yml"
    legacy = _record("old.local").to_dict()
    legacy["owner"] = "ops"
    path.write_text(yaml.safe_dump({"domains": {"old.local": legacy}}), encoding="utf-8")
    registry = StateRegistry(tmp_path)

    registry.upsert_domain(_record())

    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert document["domains"]["old.local"] == legacy


@pytest.mark.parametrize(
    "content",
    [
        "domains: [unclosed\n",
        "- just\n- a list\n",
        "domains:\n  - app.local\n",
        "domains:\n  app.local:\n    domain: app.local\n",
        b"domains:\n  \xff\xfe: {}\n",
    ],
)
def test_corrupt_registry_raises(tmp_path: Path, content: str | bytes) -> None:
    """Unparsable or wrongly-shaped documents are never treated as empty."""
    raw = content.encode("utf-8") if isinstance(content, str) else content
    (tmp_path / "domains.yml").write_bytes(raw)
    registry = StateRegistry(tmp_path)

    with pytest.raises(RegistryCorruptError):
        registry.load_domains()


def test_write_failure_raises_registry_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """OS errors during the atomic replace surface as ``StateRegistryError``."""
    registry = StateRegistry(tmp_path)

    def fail_replace(src: object, dst: object) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr("localstacker.state.registry.os.replace", fail_replace)

    with pytest.raises(StateRegistryError):
        registry.upsert_domain(_record())
    assert not (tmp_path / "domains.yml").exists()
    assert not list(tmp_path.glob(".domains.yml.*"))
