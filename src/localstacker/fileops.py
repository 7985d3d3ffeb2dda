"""Filesystem operations used by the provisioning workflows.

All mutations funnel through :class:`FileOps` so dry-run mode can report the
intended change without touching disk. Read-only helpers always run.
"""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .errors import FilesystemError


@dataclass(slots=True)
class FileOps:
    """Dry-run aware filesystem helper."""

    dry_run: bool = False
    verbose: bool = False
    console: Console = field(default_factory=lambda: Console(stderr=True))

    def ensure_directory(self, path: Path, *, mode: int = 0o755) -> None:
        """Create *path* and its parents when missing."""
        if path.is_dir():
            return
        if self._skip(f"create directory {path}"):
            return
        try:
            path.mkdir(parents=True, exist_ok=True)
            os.chmod(path, mode)
        except OSError as exc:
            raise FilesystemError(f"Failed to create directory {path}: {exc}") from exc

    def copy_file(self, source: Path, destination: Path, *, mode: int | None = None) -> None:
        """Copy *source* over *destination*, optionally applying *mode*.

        With *mode* the destination is created with that mode before any
        content is written, so private keys are never readable by others.
        """
        if self._skip(f"copy {source} -> {destination}"):
            return
        try:
            if mode is None:
                shutil.copyfile(source, destination)
                return
            with source.open("rb") as src:
                fd = os.open(destination, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
                with os.fdopen(fd, "wb") as dst:
                    os.fchmod(dst.fileno(), mode)
                    shutil.copyfileobj(src, dst)
        except OSError as exc:
            raise FilesystemError(f"Failed to copy {source} to {destination}: {exc}") from exc

    def write_text(self, path: Path, content: str, *, mode: int = 0o644) -> None:
        """Write *content* to *path*, replacing any previous file."""
        if self._skip(f"write {path}"):
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            os.chmod(path, mode)
        except OSError as exc:
            raise FilesystemError(f"Failed to write {path}: {exc}") from exc

    def remove_file(self, path: Path) -> bool:
        """Remove *path* when present; return True when something was removed."""
        if not path.exists() and not path.is_symlink():
            return False
        if self._skip(f"remove {path}"):
            return True
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise FilesystemError(f"Failed to remove {path}: {exc}") from exc
        return True

    def symlink(self, target: Path, link: Path) -> None:
        """Point *link* at *target*, replacing a stale or foreign link."""
        if link.is_symlink():
            try:
                if link.resolve() == target.resolve():
                    return
            except OSError:
                # Broken symlink; replace it with a fresh one.
                pass
        if self._skip(f"link {link} -> {target}"):
            return
        try:
            link.parent.mkdir(parents=True, exist_ok=True)
            if link.exists() or link.is_symlink():
                link.unlink()
            link.symlink_to(target)
        except OSError as exc:
            raise FilesystemError(f"Failed to link {link} to {target}: {exc}") from exc

    # ------------------------------------------------------------------
    def _skip(self, action: str) -> bool:
        if self.dry_run:
            self.console.print(f"[cyan]\\[DRY RUN][/cyan] Would {escape(action)}")
            return True
        if self.verbose:
            self.console.print(f"[dim]→ {escape(action)}[/dim]")
        return False


__all__ = ["FileOps"]
