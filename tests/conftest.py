"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from localstacker.config import AppConfig, load_config


def _config_env(root: Path) -> dict[str, str]:
    """Return environment overrides placing every localstacker path under *root*."""
    return {
        "LOCALSTACKER_CONFIG_FILE": str(root / "etc" / "config.yml"),
        "LOCALSTACKER_REGISTRY_DIR": str(root / "etc"),
        "LOCALSTACKER_LOGS_DIR": str(root / "logs"),
        "LOCALSTACKER_RUNTIME_DIR": str(root / "run"),
        "LOCALSTACKER_TEMPLATES_DIR": str(root / "templates"),
        "LOCALSTACKER_SSL_DIR": str(root / "ssl"),
        "LOCALSTACKER_LOCK_TIMEOUT": "1",
        "LOCALSTACKER_NGINX__SITES_AVAILABLE": str(root / "nginx" / "sites-available"),
        "LOCALSTACKER_NGINX__SITES_ENABLED": str(root / "nginx" / "sites-enabled"),
    }


@pytest.fixture
def config_env(tmp_path: Path) -> dict[str, str]:
    """Return environment variables rooting localstacker in the temporary directory."""
    return _config_env(tmp_path)


@pytest.fixture
def app_config(config_env: dict[str, str]) -> AppConfig:
    """Return a configuration rooted in the temporary directory."""
    return load_config(env=config_env)
