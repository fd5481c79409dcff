"""
Core utilities for Ticket Printer.

This package groups non-Flask helpers used across the app:
- config: paths, JSON load/save, engine settings
- logging: Request ID aware logging filters/formatters and root logger config
- db: SQLite history of finished print jobs

Exports are explicit to keep static analyzers (e.g., Pyright) happy.
"""

from .config import (
    EngineSettings,
    default_config_path,
    default_scratch_path,
    default_spool_path,
    ensure_dir,
    get_config_path,
    get_scratch_path,
    get_spool_path,
    load_config,
    load_engine_settings,
    save_config,
)
from .logging import (
    JsonFormatter,
    LogContextFilter,
    configure_logging,
    job_context,
)

__all__ = [
    # config
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
    # logging
    "configure_logging",
    "LogContextFilter",
    "job_context",
    "JsonFormatter",
]
