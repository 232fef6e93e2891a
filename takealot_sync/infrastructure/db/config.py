from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict

DEFAULT_DB_TIMEOUT = 30.0
DB_PATH_ENV = "TAKEALOT_SYNC_DB"

_REPO_ROOT = Path(__file__).resolve().parents[3]
_CONFIG_FILE = _REPO_ROOT / "config.json"


def load_config(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Load ``config.json`` if present and return it as a dictionary."""

    path = Path(config_path) if config_path is not None else _CONFIG_FILE
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = cfg.get(name, {})
    return value if isinstance(value, dict) else {}


def get_path_config(config_path: Path | str | None = None) -> Dict[str, Path]:
    """Return resolved filesystem paths from the project configuration.

    ``TAKEALOT_SYNC_DB`` overrides the configured database path.
    """

    cfg = load_config(config_path)
    root = Path(config_path).parent if config_path is not None else _CONFIG_FILE.parent
    defaults: Dict[str, Any] = {"db_path": root / "takealot_sync.db"}
    paths_cfg = _section(cfg, "paths")
    resolved: Dict[str, Path] = {}
    for key, default_value in defaults.items():
        resolved_value = Path(paths_cfg.get(key, default_value))
        if not resolved_value.is_absolute():
            resolved_value = (root / resolved_value).resolve()
        resolved[key] = resolved_value
    env_db = os.environ.get(DB_PATH_ENV)
    if env_db:
        resolved["db_path"] = Path(env_db)
    return resolved


def get_default_timeout(config_path: Path | str | None = None) -> float:
    """Read the preferred database timeout from configuration."""

    cfg = load_config(config_path)
    try:
        return float(cfg.get("db_timeout_seconds", DEFAULT_DB_TIMEOUT))
    except (TypeError, ValueError):
        return DEFAULT_DB_TIMEOUT


def get_sync_config(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Return the ``sync`` section of the configuration (may be empty)."""

    return _section(load_config(config_path), "sync")


def get_db_options(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Return the ``db`` section of the configuration (may be empty)."""

    return _section(load_config(config_path), "db")
