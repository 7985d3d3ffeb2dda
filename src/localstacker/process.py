"""External command execution shared by the providers.

:class:`CommandRunner` is the single place where localstacker spawns other
programs. It honours dry-run mode for side-effecting commands, echoes
commands when verbose output is requested and converts failures into
:class:`~localstacker.errors.ExternalToolError` subclasses chosen by the
caller.
"""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .errors import ExternalToolError


@dataclass(slots=True)
class CommandRunner:
    """Run external programs with dry-run and verbose support."""

    dry_run: bool = False
    verbose: bool = False
    console: Console = field(default_factory=lambda: Console(stderr=True))

    def which(self, program: str) -> str | None:
        """Return the resolved path of *program* or ``None`` when missing."""
        return shutil.which(program)

    def run(
        self,
        args: Sequence[str],
        *,
        description: str,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        mutating: bool = True,
        check: bool = True,
        error: type[ExternalToolError] = ExternalToolError,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and return the completed process.

        ``mutating`` commands are skipped in dry-run mode and report a
        synthetic success. Read-only queries always execute. ``env`` is merged
        on top of the current process environment.
        """
        command = [str(item) for item in args]
        display = self._display(command, env)
        if mutating and self.dry_run:
            self.console.print(f"[cyan]\\[DRY RUN][/cyan] Would execute: {escape(display)}")
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        if self.verbose:
            self.console.print(f"[dim]→ Executing: {escape(display)}[/dim]")

        run_env: dict[str, str] | None = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)
        try:
            result = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                check=False,
                env=run_env,
                cwd=str(cwd) if cwd is not None else None,
            )
        except FileNotFoundError as exc:
            raise error(f"{description} failed: {command[0]} not found") from exc
        except OSError as exc:
            raise error(f"{description} failed: {exc}") from exc
        if check and result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise error(f"{description} failed (exit {result.returncode}): {message}")
        return result

    # ------------------------------------------------------------------
    @staticmethod
    def _display(command: Sequence[str], env: Mapping[str, str] | None) -> str:
        prefix = " ".join(f"{key}={value}" for key, value in (env or {}).items())
        joined = " ".join(command)
        return f"{prefix} {joined}" if prefix else joined


__all__ = ["CommandRunner"]
