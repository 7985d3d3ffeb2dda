"""Advisory file locks serialising mutating localstacker commands.

Two operators running ``localstacker setup`` at the same time would otherwise
race on the read-modify-write cycle of the domain registry. Mutating
commands therefore hold the global lock followed by one lock per domain for
the duration of the workflow.
"""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .errors import FilesystemError, LocalstackerError
from .exit_codes import ExitCode
from .models import validate_domain

GLOBAL_LOCK_NAME = "localstacker.lock"
_POLL_INTERVAL = 0.05


class LockTimeoutError(LocalstackerError):
    """Raised when a lock cannot be acquired within the timeout."""

    kind = "lock-timeout"
    exit_code = ExitCode.ENVIRONMENT


@dataclass(slots=True)
class LockHandle:
    """A held lock and the time spent waiting for it."""

    path: Path
    wait_ms: int


@dataclass(slots=True)
class LockBundle:
    """A set of held locks acquired in order."""

    handles: tuple[LockHandle, ...]

    @property
    def wait_ms(self) -> int:
        """Return the cumulative wait across all locks."""
        return sum(handle.wait_ms for handle in self.handles)


class LockManager:
    """Hand out exclusive ``flock`` locks under the runtime directory."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        """Store the lock directory and default timeout."""
        self.runtime_dir = Path(runtime_dir)
        self.default_timeout = default_timeout

    def global_path(self) -> Path:
        """Return the path of the global lock file."""
        return self.runtime_dir / GLOBAL_LOCK_NAME

    def domain_path(self, domain: str) -> Path:
        """Return the lock file path for *domain*."""
        validate_domain(domain)
        return self.runtime_dir / "domains" / f"{domain}.lock"

    @contextmanager
    def global_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the global lock."""
        with self._acquire(self.global_path(), timeout) as handle:
            yield handle

    @contextmanager
    def domain_lock(self, domain: str, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the lock for a single *domain*."""
        with self._acquire(self.domain_path(domain), timeout) as handle:
            yield handle

    @contextmanager
    def mutate_domains(
        self,
        domains: Iterable[str],
        *,
        timeout: float | None = None,
    ) -> Iterator[LockBundle]:
        """Acquire the global lock then each domain lock in sorted order."""
        paths = [self.domain_path(domain) for domain in sorted(set(domains))]
        with ExitStack() as stack:
            handles = [stack.enter_context(self._acquire(self.global_path(), timeout))]
            for path in paths:
                handles.append(stack.enter_context(self._acquire(path, timeout)))
            yield LockBundle(handles=tuple(handles))

    # ------------------------------------------------------------------
    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self.default_timeout if timeout is None else timeout
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o640)
        except OSError as exc:
            raise FilesystemError(f"Failed to open lock file {path}: {exc}") from exc
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}."
                        ) from None
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            metadata = {
                "pid": os.getpid(),
                "path": str(path),
                "acquired_at": datetime.now(UTC).isoformat(),
            }
            os.ftruncate(fd, 0)
            os.write(fd, json.dumps(metadata).encode("utf-8"))
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


__all__ = ["LockBundle", "LockHandle", "LockManager", "LockTimeoutError"]
