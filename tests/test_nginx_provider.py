"""Tests for the nginx provider."""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from localstacker.errors import TemplateError
from localstacker.fileops import FileOps
from localstacker.process import CommandRunner
from localstacker.providers.nginx import NginxError, NginxProvider, NginxValidationError
from localstacker.templates import TemplateEngine


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _make_provider(tmp_path: Path, *, dry_run: bool = False) -> NginxProvider:
    templates = TemplateEngine.with_overrides(None)
    return NginxProvider(
        templates=templates,
        runner=CommandRunner(dry_run=dry_run),
        files=FileOps(dry_run=dry_run),
        ssl_dir=Path("/etc/nginx/ssl"),
        sites_available=tmp_path / "sites-available",
        sites_enabled=tmp_path / "sites-enabled",
        nginx_bin="nginx",
    )


@pytest.fixture
def provider(tmp_path: Path) -> NginxProvider:
    """Return an nginx provider bound to temporary directories."""
    return _make_provider(tmp_path)


def test_render_default_template(provider: NginxProvider) -> None:
    """The built-in template redirects HTTP and proxies HTTPS to the backend."""
    contents = provider.render("test.local", 3000)

    assert "server_name test.local;" in contents
    assert "return 301 https://$host$request_uri;" in contents
    assert "listen 443 ssl http2;" in contents
    assert "listen [::]:443 ssl http2;" in contents
    assert "ssl_certificate /etc/nginx/ssl/test.local.pem;" in contents
    assert "ssl_certificate_key /etc/nginx/ssl/test.local-key.pem;" in contents
    assert "proxy_pass http://127.0.0.1:3000;" in contents
    assert "proxy_set_header Upgrade $http_upgrade;" in contents
    assert "proxy_set_header X-Forwarded-Proto $scheme;" in contents


def test_render_default_template_avoids_standalone_http2_directive(
    provider: NginxProvider,
) -> None:
    """HTTP/2 is enabled on the listen line so nginx before 1.25.1 accepts the vhost."""
    contents = provider.render("test.local", 3000)

    lines = [line.strip() for line in contents.splitlines()]
    assert not any(line.startswith("http2 ") for line in lines)


def test_render_custom_template_replaces_every_token(
    tmp_path: Path,
    provider: NginxProvider,
) -> None:
    """Custom templates substitute the literal placeholders everywhere."""
    template = tmp_path / "custom.conf"
    template.write_text(
        "server_name {{domain}};\n"
        "proxy_pass http://127.0.0.1:{{port}};\n"
        "# {{domain}} on {{port}}, untouched: {{ domain }}\n",
        encoding="utf-8",
    )

    contents = provider.render("test.local", 3000, template)

    assert contents == (
        "server_name test.local;\n"
        "proxy_pass http://127.0.0.1:3000;\n"
        "# test.local on 3000, untouched: {{ domain }}\n"
    )


def test_render_missing_custom_template_raises(tmp_path: Path, provider: NginxProvider) -> None:
    """An unreadable custom template is a template error."""
    with pytest.raises(TemplateError):
        provider.render("test.local", 3000, tmp_path / "absent.conf")


def test_write_and_enable_site(provider: NginxProvider) -> None:
    """Writing stores the configuration and enabling links it."""
    path = provider.write("app.local", "server {}\n")

    assert path == provider.site_path("app.local")
    assert path.read_text(encoding="utf-8") == "server {}\n"
    assert (path.stat().st_mode & 0o777) == 0o644
    assert provider.site_exists("app.local") is True
    assert provider.is_enabled("app.local") is False

    provider.enable("app.local")
    provider.enable("app.local")

    link = provider.enabled_path("app.local")
    assert link.is_symlink()
    assert link.resolve() == path.resolve()
    assert provider.is_enabled("app.local") is True


def test_enable_replaces_stale_link(tmp_path: Path, provider: NginxProvider) -> None:
    """A dangling link is replaced by one pointing at the current file."""
    provider.write("app.local", "server {}\n")
    link = provider.enabled_path("app.local")
    link.parent.mkdir(parents=True, exist_ok=True)
    link.symlink_to(tmp_path / "gone")

    provider.enable("app.local")

    assert link.resolve() == provider.site_path("app.local").resolve()


def test_disable_is_idempotent(provider: NginxProvider) -> None:
    """Disabling twice, or disabling a site never enabled, succeeds."""
    provider.write("app.local", "server {}\n")
    provider.enable("app.local")

    provider.disable("app.local")
    provider.disable("app.local")
    provider.disable("never.local")

    assert provider.is_enabled("app.local") is False
    assert not provider.enabled_path("app.local").exists()
    assert provider.site_exists("app.local") is True


def test_remove_site(provider: NginxProvider) -> None:
    """Removing deletes the available file and reports whether it existed."""
    provider.write("app.local", "server {}\n")

    assert provider.remove("app.local") is True
    assert provider.remove("app.local") is False
    assert provider.site_exists("app.local") is False


def test_test_config_and_reload_invoke_nginx(
    monkeypatch: pytest.MonkeyPatch,
    provider: NginxProvider,
) -> None:
    """Validation and reload call the expected nginx arguments."""
    calls: list[tuple[str, ...]] = []

    def fake_run(self: NginxProvider, args: Sequence[str], **kwargs: object) -> DummyResult:
        calls.append(tuple(args))
        return DummyResult()

    monkeypatch.setattr(NginxProvider, "_run_nginx", fake_run)

    provider.test_config()
    provider.reload()

    assert calls == [("-t",), ("-s", "reload")]


def test_test_config_failure_raises_validation_error(
    monkeypatch: pytest.MonkeyPatch,
    provider: NginxProvider,
) -> None:
    """A non-zero ``nginx -t`` surfaces the nginx diagnostics."""

    def fake_run(self: NginxProvider, args: Sequence[str], **kwargs: object) -> DummyResult:
        return DummyResult(returncode=1, stderr="unexpected '}' in app.local:12")

    monkeypatch.setattr(NginxProvider, "_run_nginx", fake_run)

    with pytest.raises(NginxValidationError, match="unexpected"):
        provider.test_config()


def test_missing_binary_raises_nginx_error(tmp_path: Path) -> None:
    """A missing nginx binary is a tool failure, not a validation failure."""
    provider = _make_provider(tmp_path)
    provider.nginx_bin = str(tmp_path / "no-such-nginx")

    with pytest.raises(NginxError) as excinfo:
        provider.test_config()
    assert not isinstance(excinfo.value, NginxValidationError)

    with pytest.raises(NginxError):
        provider.reload()


def test_dry_run_touches_nothing(tmp_path: Path) -> None:
    """Dry-run mode reports actions without writing files or running nginx."""
    provider = _make_provider(tmp_path, dry_run=True)
    provider.nginx_bin = str(tmp_path / "no-such-nginx")

    provider.write("app.local", "server {}\n")
    provider.enable("app.local")
    provider.test_config()
    provider.reload()

    assert not (tmp_path / "sites-available").exists()
    assert not (tmp_path / "sites-enabled").exists()
