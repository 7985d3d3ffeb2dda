"""Systemd provider for querying and restarting backend services."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from rich.markup import escape

from ..errors import ExternalToolError
from ..process import CommandRunner


class SystemdError(ExternalToolError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Existence, activity and restart operations for systemd services.

    Queries never raise: a missing ``systemctl`` or a failing lookup is
    reported as a warning and treated as "not found" / "not running".
    """

    runner: CommandRunner
    systemctl_bin: str = "systemctl"

    def exists(self, name: str) -> bool:
        """Return True when ``systemctl list-unit-files`` knows *name*."""
        try:
            result = self._systemctl("list-unit-files", name, check=False, mutating=False)
        except SystemdError as exc:
            self._warn(f"Could not look up service {name}: {exc}")
            return False
        accepted = {name, f"{name}.service"}
        for line in (result.stdout or "").splitlines():
            fields = line.split()
            if fields and fields[0] in accepted:
                return True
        return False

    def is_running(self, name: str) -> bool:
        """Return True when ``systemctl is-active`` reports ``active``."""
        try:
            result = self._systemctl("is-active", name, check=False, mutating=False)
        except SystemdError as exc:
            self._warn(f"Could not query service {name}: {exc}")
            return False
        return (result.stdout or "").strip() == "active"

    def restart(self, name: str) -> None:
        """Restart the service."""
        self._systemctl("restart", name)

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str,
        *,
        check: bool = True,
        mutating: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return self.runner.run(
            [self.systemctl_bin, command, unit],
            description=f"{self.systemctl_bin} {command} {unit}",
            check=check,
            mutating=mutating,
            error=SystemdError,
        )

    def _warn(self, message: str) -> None:
        self.runner.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")


__all__ = ["SystemdError", "SystemdProvider"]
