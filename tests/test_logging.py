"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from localstacker.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_writes_one_record_per_command(tmp_path: Path) -> None:
    """Each operation appends a JSON line with steps and the result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "setup",
        args={"domain": "app.local", "template": Path("/tmp/site.conf")},
        target={"kind": "domain", "domain": "app.local"},
    ) as op:
        op.set_lock_wait_ms(12)
        op.add_step("nginx.test", detail="Nginx configuration test passed")
        op.add_step("service.restart", status="skipped")
        op.success("Domain app.local created.", changed=1)

    with logger.operation("list") as op:
        op.success("Reported domains.")

    first, second = _records(logger)
    assert first["command"] == "setup"
    assert first["args"] == {"domain": "app.local", "template": "/tmp/site.conf"}
    assert first["target"] == {"kind": "domain", "domain": "app.local"}
    assert first["lock_wait_ms"] == 12
    assert first["steps"] == [
        {"name": "nginx.test", "status": "success", "detail": "Nginx configuration test passed"},
        {"name": "service.restart", "status": "skipped"},
    ]
    assert first["result"]["status"] == "success"
    assert first["result"]["changed"] == 1
    assert isinstance(first["duration_ms"], int)
    assert first["op_id"] != second["op_id"]
    assert second["command"] == "list"


def test_operation_records_uncaught_exceptions(tmp_path: Path) -> None:
    """Exceptions escaping the scope are recorded as errors and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError, match="boom"):
        with logger.operation("remove"):
            raise RuntimeError("boom")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert record["result"]["errors"] == ["boom"]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo-2") as op:
        op.success("done", changed=0)


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("status", args={"path": Path("foo")}) as op:
        op.warning(
            "Drift detected.",
            warnings=("app.local: drift",),
            errors=("err",),
            changed=0,
            context={"path": Path("/etc/nginx/ssl"), "obj": Custom()},
        )

    (record,) = _records(logger)
    result = record["result"]
    assert result["status"] == "warning"
    assert result["warnings"] == ["app.local: drift"]
    assert result["errors"] == ["err"]
    assert result["context"] == {"path": "/etc/nginx/ssl", "obj": "<custom>"}


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("setup") as op:
        op.error("boom", errors=None, rc=4, context={"value": {1, 2}})

    (record,) = _records(logger)
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 4
    assert result["context"] == {"value": "{1, 2}"}
