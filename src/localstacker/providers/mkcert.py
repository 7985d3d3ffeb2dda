"""mkcert provider issuing locally-trusted certificates."""
from __future__ import annotations

import os
import pwd
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import ExternalToolError
from ..fileops import FileOps
from ..process import CommandRunner

CAROOT_ENV = "CAROOT"
CAROOT_SUFFIX = Path(".local") / "share" / "mkcert"

# Package manager -> command sequences used to install mkcert.
INSTALL_COMMANDS: dict[str, tuple[tuple[str, ...], ...]] = {
    "apt-get": (("apt-get", "update"), ("apt-get", "install", "-y", "mkcert")),
    "yum": (("yum", "install", "-y", "mkcert"),),
    "brew": (("brew", "install", "mkcert"),),
}


class MkcertError(ExternalToolError):
    """Raised when mkcert operations fail."""


class UnsupportedPlatformError(MkcertError):
    """Raised when no supported package manager is available."""


@dataclass(slots=True)
class MkcertProvider:
    """Drive the ``mkcert`` binary.

    mkcert writes ``<domain>.pem`` and ``<domain>-key.pem`` into its working
    directory; the provider runs it inside ``work_dir`` so the output
    locations are deterministic.
    """

    runner: CommandRunner
    files: FileOps
    work_dir: Path = Path("/run/localstacker/mkcert")
    mkcert_bin: str = "mkcert"
    package_managers: Sequence[str] = ("apt-get", "yum", "brew")
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)

    def is_available(self) -> bool:
        """Return True when the mkcert binary can be found."""
        return self.runner.which(self.mkcert_bin) is not None

    def install_tool(self) -> None:
        """Install mkcert with the first supported package manager found."""
        manager = self.detect_package_manager()
        if manager is None:
            raise UnsupportedPlatformError(
                "No supported package manager found "
                f"({', '.join(self.package_managers)}). Please install mkcert manually."
            )
        for command in INSTALL_COMMANDS[manager]:
            self.runner.run(
                command,
                description=f"Install mkcert ({' '.join(command[1:])})",
                error=MkcertError,
            )

    def detect_package_manager(self) -> str | None:
        """Return the preferred package manager available on this host."""
        for manager in self.package_managers:
            if manager in INSTALL_COMMANDS and self.runner.which(manager) is not None:
                return manager
        return None

    def install_ca(self, caroot: Path | None = None) -> None:
        """Run ``mkcert -install`` against *caroot*."""
        self.runner.run(
            [self.mkcert_bin, "-install"],
            description="Install local CA",
            env=self._env(caroot),
            error=MkcertError,
        )

    def issue_certificate(self, domain: str, caroot: Path | None = None) -> None:
        """Run ``mkcert <domain>`` inside the work directory."""
        self.files.ensure_directory(self.work_dir, mode=0o700)
        self.runner.run(
            [self.mkcert_bin, domain],
            description=f"Generate certificate for {domain}",
            env=self._env(caroot),
            cwd=self.work_dir,
            error=MkcertError,
        )

    def issued_paths(self, domain: str) -> tuple[Path, Path]:
        """Return the certificate and key paths mkcert writes for *domain*."""
        return (
            self.work_dir / f"{domain}.pem",
            self.work_dir / f"{domain}-key.pem",
        )

    def resolve_caroot(self) -> Path | None:
        """Return the CA root belonging to the user who invoked sudo.

        Under sudo ``HOME`` may point at root's home, which would make mkcert
        create a second CA that the user's browsers do not trust.
        """
        home = real_user_home(self.environ)
        if home is None:
            return None
        return home / CAROOT_SUFFIX

    # ------------------------------------------------------------------
    def _env(self, caroot: Path | None) -> dict[str, str] | None:
        if caroot is None:
            return None
        return {CAROOT_ENV: str(caroot)}


def real_user_home(environ: Mapping[str, str]) -> Path | None:
    """Return the home directory of the originating user."""
    sudo_user = environ.get("SUDO_USER")
    if sudo_user:
        try:
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except KeyError:
            pass
    home = environ.get("HOME")
    return Path(home) if home else None


__all__ = ["MkcertError", "MkcertProvider", "UnsupportedPlatformError", "real_user_home"]
