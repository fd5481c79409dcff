"""
Config utilities for Ticket Printer.

Responsibilities:
- Resolve config/spool/scratch paths with environment and XDG support
- Provide JSON load/save helpers for the app's config
- Build the engine settings from the saved config with env overrides
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional

_TRUTHY = ("1", "true", "yes", "on")


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/ticketprinter/config.json
    2) ~/.config/ticketprinter/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "ticketprinter" / "config.json")
    return str(Path.home() / ".config" / "ticketprinter" / "config.json")


def _default_data_dir() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "ticketprinter"
    return Path.home() / ".local" / "share" / "ticketprinter"


def default_spool_path() -> str:
    """
    Resolve the default drop directory shared with the background print service:
    1) $XDG_DATA_HOME/ticketprinter/spool
    2) ~/.local/share/ticketprinter/spool
    """
    return str(_default_data_dir() / "spool")


def default_scratch_path() -> str:
    """
    Resolve the directory for temporary payload files handed to OS print commands.
    """
    return str(_default_data_dir() / "scratch")


def get_config_path() -> str:
    """
    Return the config path honoring TICKETPRINTER_CONFIG_PATH override.
    """
    return os.environ.get("TICKETPRINTER_CONFIG_PATH", default_config_path())


def get_spool_path() -> str:
    """
    Return the drop directory honoring TICKETPRINTER_SPOOL_PATH override.
    """
    return os.environ.get("TICKETPRINTER_SPOOL_PATH", default_spool_path())


def get_scratch_path() -> str:
    """
    Return the scratch directory honoring TICKETPRINTER_SCRATCH_PATH override.
    """
    return os.environ.get("TICKETPRINTER_SCRATCH_PATH", default_scratch_path())


def ensure_dir(path: str) -> str:
    """
    Ensure a directory exists and return the path.
    """
    Path(path).mkdir(parents=True, exist_ok=True)
    return path


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(data: dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


# ----- Engine settings -------------------------------------------------------


@dataclass
class EngineSettings:
    strategy_timeout: float = 30.0
    bridge_enabled: bool = True
    bridge_dir: str = field(default_factory=get_spool_path)
    bridge_timeout: float = 30.0
    bridge_poll_interval: float = 1.0
    bridge_heartbeat_max_age: float = 15.0
    bridge_retention_seconds: float = 3600.0
    scratch_dir: str = field(default_factory=get_scratch_path)
    jobs_max: int = 200
    jobs_ttl_seconds: float = 3600.0
    strategies: Optional[List[str]] = None
    history_enabled: bool = True


def _coerce_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _coerce_names(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        names = [n.strip() for n in value.split(",")]
    else:
        names = [str(n).strip() for n in value]
    names = [n for n in names if n]
    return names or None


def load_engine_settings(config: Optional[Mapping[str, Any]] = None) -> EngineSettings:
    """
    Build EngineSettings from the saved config (``print_engine`` section) and env vars.

    Env vars win over the config file; malformed values fall back to defaults.
    """
    if config is None:
        try:
            config = load_config() or {}
        except (OSError, ValueError):
            config = {}
    section: Mapping[str, Any] = config.get("print_engine") or {}
    env = os.environ
    base = EngineSettings()

    def pick(key: str, env_name: str) -> Any:
        if env_name in env:
            return env[env_name]
        return section.get(key)

    return EngineSettings(
        strategy_timeout=_coerce_float(pick("strategy_timeout", "TICKETPRINTER_STRATEGY_TIMEOUT"), base.strategy_timeout),
        bridge_enabled=_coerce_bool(pick("bridge_enabled", "TICKETPRINTER_BRIDGE_ENABLED"), base.bridge_enabled),
        bridge_dir=str(pick("bridge_dir", "TICKETPRINTER_SPOOL_PATH") or base.bridge_dir),
        bridge_timeout=_coerce_float(pick("bridge_timeout", "TICKETPRINTER_BRIDGE_TIMEOUT"), base.bridge_timeout),
        bridge_poll_interval=_coerce_float(
            pick("bridge_poll_interval", "TICKETPRINTER_BRIDGE_POLL_INTERVAL"), base.bridge_poll_interval
        ),
        bridge_heartbeat_max_age=_coerce_float(
            pick("bridge_heartbeat_max_age", "TICKETPRINTER_BRIDGE_HEARTBEAT_MAX_AGE"), base.bridge_heartbeat_max_age
        ),
        bridge_retention_seconds=_coerce_float(
            pick("bridge_retention_seconds", "TICKETPRINTER_BRIDGE_RETENTION_SECONDS"), base.bridge_retention_seconds
        ),
        scratch_dir=str(pick("scratch_dir", "TICKETPRINTER_SCRATCH_PATH") or base.scratch_dir),
        jobs_max=_coerce_int(pick("jobs_max", "TICKETPRINTER_JOBS_MAX"), base.jobs_max),
        jobs_ttl_seconds=_coerce_float(pick("jobs_ttl_seconds", "TICKETPRINTER_JOBS_TTL_SECONDS"), base.jobs_ttl_seconds),
        strategies=_coerce_names(pick("strategies", "TICKETPRINTER_STRATEGIES")),
        history_enabled=_coerce_bool(pick("history_enabled", "TICKETPRINTER_HISTORY_ENABLED"), base.history_enabled),
    )


__all__ = [
    "EngineSettings",
    "default_config_path",
    "default_scratch_path",
    "default_spool_path",
    "ensure_dir",
    "get_config_path",
    "get_scratch_path",
    "get_spool_path",
    "load_config",
    "load_engine_settings",
    "save_config",
]
