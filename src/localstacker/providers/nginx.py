"""Nginx provider for managing localstacker virtual hosts."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..errors import ExternalToolError, TemplateError
from ..exit_codes import ExitCode
from ..fileops import FileOps
from ..process import CommandRunner
from ..templates import TemplateEngine

SITE_TEMPLATE = "nginx/site.conf.j2"
DOMAIN_TOKEN = "{{domain}}"
PORT_TOKEN = "{{port}}"


class NginxError(ExternalToolError):
    """Raised when nginx operations fail."""


class NginxValidationError(NginxError):
    """Raised when ``nginx -t`` rejects the configuration."""

    kind = "config-invalid"
    exit_code = ExitCode.PROVIDER


@dataclass(slots=True)
class NginxProvider:
    """Render and manage nginx site configurations for localstacker domains."""

    templates: TemplateEngine
    runner: CommandRunner
    files: FileOps
    ssl_dir: Path = Path("/etc/nginx/ssl")
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    upstream_host: str = "127.0.0.1"

    def site_path(self, domain: str) -> Path:
        """Return the path to the nginx site configuration file."""
        return self.sites_available / domain

    def enabled_path(self, domain: str) -> Path:
        """Return the path of the symlink in sites-enabled for *domain*."""
        return self.sites_enabled / domain

    def render(self, domain: str, port: int, template_override: Path | None = None) -> str:
        """Return the site configuration for *domain* proxying to *port*.

        Without *template_override* the packaged ``nginx/site.conf.j2`` is
        rendered. Otherwise the override file is read and the literal tokens
        ``{{domain}}`` and ``{{port}}`` are substituted everywhere they occur;
        no other template syntax is interpreted.
        """
        if template_override is None:
            return self.templates.render_to_string(
                SITE_TEMPLATE,
                {
                    "domain": domain,
                    "port": port,
                    "upstream_host": self.upstream_host,
                    "ssl_certificate": str(self.ssl_dir / f"{domain}.pem"),
                    "ssl_certificate_key": str(self.ssl_dir / f"{domain}-key.pem"),
                },
            )
        try:
            text = Path(template_override).read_text(encoding="utf-8")
        except OSError as exc:
            raise TemplateError(
                f"Failed to read template {template_override}: {exc}"
            ) from exc
        return text.replace(DOMAIN_TOKEN, domain).replace(PORT_TOKEN, str(port))

    def write(self, domain: str, content: str) -> Path:
        """Write *content* to the sites-available file for *domain*."""
        destination = self.site_path(domain)
        self.files.ensure_directory(self.sites_available)
        self.files.write_text(destination, content, mode=0o644)
        return destination

    def enable(self, domain: str) -> None:
        """Enable the site by creating a symlink in sites-enabled."""
        self.files.ensure_directory(self.sites_enabled)
        self.files.symlink(self.site_path(domain), self.enabled_path(domain))

    def disable(self, domain: str) -> None:
        """Disable the site by removing the symlink."""
        self.files.remove_file(self.enabled_path(domain))

    def remove(self, domain: str) -> bool:
        """Remove the sites-available configuration for *domain*."""
        return self.files.remove_file(self.site_path(domain))

    def site_exists(self, domain: str) -> bool:
        """Return True when the rendered site configuration exists."""
        return self.site_path(domain).exists()

    def is_enabled(self, domain: str) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path(domain)
        if not target.exists() and not target.is_symlink():
            return False
        try:
            return target.is_symlink() and target.resolve() == self.site_path(domain).resolve()
        except OSError:
            return False

    def test_config(self) -> None:
        """Run ``nginx -t`` to validate the configuration."""
        result = self._run_nginx(["-t"], description="Nginx configuration test", check=False)
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise NginxValidationError(
                f"{self.nginx_bin} -t rejected the configuration "
                f"(exit {result.returncode}): {message}"
            )

    def reload(self) -> None:
        """Reload nginx to apply configuration changes."""
        self._run_nginx(["-s", "reload"], description="Nginx reload", check=True)

    # ------------------------------------------------------------------
    def _run_nginx(self, args: list[str], *, description: str, check: bool):  # noqa: ANN202
        return self.runner.run(
            [self.nginx_bin, *args],
            description=description,
            check=check,
            error=NginxError,
        )


__all__ = ["NginxError", "NginxProvider", "NginxValidationError"]
