"""Configuration loader for localstacker.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/localstacker/config.yml`` (or an override path).
3. Environment variables prefixed with ``LOCALSTACKER_``.
4. Explicit overrides supplied programmatically (the CLI's ``--dry-run`` and
   ``--verbose`` flags land here).

Environment keys use double underscores to express nesting, e.g.::

    export LOCALSTACKER_NGINX__BIN=/usr/sbin/nginx
    export LOCALSTACKER_STATUS__HTTPS_TIMEOUT=2.5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` and handed explicitly to every component, so dry-run and
verbosity never depend on process-wide state.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import ValidationError

ENV_PREFIX = "LOCALSTACKER_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(ValidationError):
    """Raised when configuration parsing fails."""

    kind = "config"


@dataclass(frozen=True)
class NginxConfig:
    """Locations and binary used to manage nginx virtual hosts."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    bin: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "bin": self.bin,
        }


@dataclass(frozen=True)
class MkcertConfig:
    """mkcert binary, scratch directory and package manager preference."""

    bin: str = "mkcert"
    work_dir: Path = Path("/run/localstacker/mkcert")
    package_managers: tuple[str, ...] = ("apt-get", "yum", "brew")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "bin": self.bin,
            "work_dir": str(self.work_dir),
            "package_managers": list(self.package_managers),
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class StatusConfig:
    """Tunables for the read-only status probes."""

    https_timeout: float = 5.0
    ss_bin: str = "ss"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"https_timeout": self.https_timeout, "ss_bin": self.ss_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for localstacker."""

    config_file: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    ssl_dir: Path
    lock_timeout: float
    dry_run: bool
    verbose: bool
    nginx: NginxConfig
    mkcert: MkcertConfig
    systemd: SystemdConfig
    status: StatusConfig

    @property
    def registry_file(self) -> Path:
        """Return the path of the domain registry document."""
        return self.registry_dir / "domains.yml"

    def ssl_cert_path(self, domain: str) -> Path:
        """Return the managed certificate path for *domain*."""
        return self.ssl_dir / f"{domain}.pem"

    def ssl_key_path(self, domain: str) -> Path:
        """Return the managed private key path for *domain*."""
        return self.ssl_dir / f"{domain}-key.pem"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "ssl_dir": str(self.ssl_dir),
            "lock_timeout": self.lock_timeout,
            "dry_run": self.dry_run,
            "verbose": self.verbose,
            "nginx": self.nginx.to_dict(),
            "mkcert": self.mkcert.to_dict(),
            "systemd": self.systemd.to_dict(),
            "status": self.status.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/localstacker/config.yml",
    "registry_dir": "/etc/localstacker",
    "logs_dir": "/var/log/localstacker",
    "runtime_dir": "/run/localstacker",
    "templates_dir": "/etc/localstacker/templates",
    "ssl_dir": "/etc/nginx/ssl",
    "lock_timeout": 30.0,
    "dry_run": False,
    "verbose": False,
    "nginx": {
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "bin": "nginx",
    },
    "mkcert": {
        "bin": "mkcert",
        "work_dir": None,  # derived from runtime_dir when absent
        "package_managers": ["apt-get", "yum", "brew"],
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
    "status": {
        "https_timeout": 5.0,
        "ss_bin": "ss",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "nginx": {"sites_available", "sites_enabled", "bin"},
    "mkcert": {"bin", "work_dir", "package_managers"},
    "systemd": {"systemctl_bin"},
    "status": {"https_timeout", "ss_bin"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    managers = _as_dict(raw.get("mkcert"), "mkcert").get("package_managers")
    if managers is not None:
        for index, item in enumerate(_as_sequence(managers, "mkcert.package_managers")):
            if not isinstance(item, str) or not item.strip():
                raise ConfigError(
                    f"mkcert.package_managers[{index}] must be a non-empty string."
                )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    runtime_dir = _to_path(raw.get("runtime_dir"))

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(
            nginx_mapping.get("sites_available", "/etc/nginx/sites-available")
        ),
        sites_enabled=_to_path(nginx_mapping.get("sites_enabled", "/etc/nginx/sites-enabled")),
        bin=str(nginx_mapping.get("bin", "nginx")),
    )

    mkcert_mapping = _as_dict(raw.get("mkcert"), "mkcert")
    work_dir_value = mkcert_mapping.get("work_dir")
    managers_raw = mkcert_mapping.get("package_managers")
    managers = (
        tuple(str(item).strip() for item in _as_sequence(managers_raw, "mkcert.package_managers"))
        if managers_raw is not None
        else MkcertConfig().package_managers
    )
    mkcert = MkcertConfig(
        bin=str(mkcert_mapping.get("bin", "mkcert")),
        work_dir=_to_path(work_dir_value) if work_dir_value else runtime_dir / "mkcert",
        package_managers=managers,
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    status_mapping = _as_dict(raw.get("status"), "status")
    status = StatusConfig(
        https_timeout=_expect_positive_float(
            status_mapping.get("https_timeout"), "status.https_timeout", default=5.0
        ),
        ss_bin=str(status_mapping.get("ss_bin", "ss")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        registry_dir=_to_path(raw.get("registry_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        runtime_dir=runtime_dir,
        templates_dir=_to_path(raw.get("templates_dir")),
        ssl_dir=_to_path(raw.get("ssl_dir")),
        lock_timeout=_expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0),
        dry_run=_expect_bool(raw.get("dry_run"), "dry_run"),
        verbose=_expect_bool(raw.get("verbose"), "verbose"),
        nginx=nginx,
        mkcert=mkcert,
        systemd=systemd,
        status=status,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
    if isinstance(value, int):
        return value != 0
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "MkcertConfig",
    "NginxConfig",
    "StatusConfig",
    "SystemdConfig",
    "load_config",
]
