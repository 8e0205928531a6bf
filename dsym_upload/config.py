from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from . import __version__
from .errors import ConfigError

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {
        "url": "https://sentry.io/",
        "auth_token": None,
        "timeout_sec": 120,
        "user_agent": f"dsym-upload/{__version__}",
    },
    "defaults": {
        "org": None,
        "project": None,
    },
    "upload": {
        "batch_size": 12,
        "allow_zips": True,
        "require_all": False,
        # Ask the server to reprocess events that were waiting for symbols.
        "reprocessing": True,
        "progress": True,
    },
    "runtime": {
        "log_level": "INFO",
    },
}

ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SENTRY_URL": ("server", "url"),
    "SENTRY_AUTH_TOKEN": ("server", "auth_token"),
    "SENTRY_ORG": ("defaults", "org"),
    "SENTRY_PROJECT": ("defaults", "project"),
    "DSYM_UPLOAD_LOG_LEVEL": ("runtime", "log_level"),
}


def _deep_update(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            updates.setdefault(section, {})[key] = value
    return updates


def load_config(
    config_path: str | Path | None,
    env: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    cfg = json.loads(json.dumps(DEFAULT_CONFIG))
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        if not isinstance(payload, dict):
            raise ConfigError("Config root must be a mapping")
        _deep_update(cfg, payload)
    _deep_update(cfg, _env_overrides(os.environ if env is None else env))
    return cfg


def apply_cli_overrides(cfg: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    def _drop_none(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _drop_none(v) for k, v in value.items() if v is not None}
        if isinstance(value, list):
            return [_drop_none(v) for v in value if v is not None]
        return value

    cleaned = _drop_none(overrides)
    _deep_update(cfg, cleaned)
    return cfg


def get_org_and_project(cfg: dict[str, Any]) -> tuple[str, str]:
    defaults = cfg.get("defaults") or {}
    org = defaults.get("org")
    project = defaults.get("project")
    if not org:
        raise ConfigError("An organization is required: pass --org, set SENTRY_ORG or defaults.org")
    if not project:
        raise ConfigError("A project is required: pass --project, set SENTRY_PROJECT or defaults.project")
    return str(org), str(project)
