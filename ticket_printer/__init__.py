"""
Ticket Printer package

Print job orchestration for receipt/ticket printers attached to the host OS.
This module provides an application factory with minimal wiring:
- Configures logging via ticket_printer.core.logging
- Creates a Flask app exposing the JSON API and health endpoint
- Registers available blueprints if they exist (non-failing optional imports)
- Optionally ensures the background print dispatcher is started
"""

from __future__ import annotations

import importlib
import os
import uuid
from collections.abc import Sequence
from typing import Optional

from flask import Flask, g

from ticket_printer.core.logging import configure_logging

__version__ = "0.1.0"


def _maybe_register_blueprint(app: Flask, import_path: str, attr: str) -> None:
    """
    Try to import a blueprint from import_path and register it if found.
    """
    try:
        mod = importlib.import_module(import_path)
    except ImportError as e:
        app.logger.warning(f"Blueprint not registered ({import_path}.{attr}): {e}")
        return
    bp = getattr(mod, attr, None)
    if bp is not None:
        app.register_blueprint(bp)
        app.logger.debug(f"Registered blueprint: {import_path}.{attr}")


def _set_request_id() -> None:
    """
    Assign a request ID for logging if not set by a filter elsewhere.
    """
    g.request_id = getattr(g, "request_id", uuid.uuid4().hex)


def create_app(
    config_overrides: Optional[dict] = None,
    blueprints: Optional[Sequence[tuple[str, str]]] = None,
    register_worker: bool = True,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
    - blueprints: optional list of (import_path, attribute) tuples to register
      If None, the API and health blueprints are registered.
    - register_worker: if True, starts the background print dispatcher

    Returns:
    - Flask app instance
    """
    app = Flask("ticket_printer")

    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("TICKETPRINTER_MAX_CONTENT_LENGTH", 1024 * 1024))  # 1 MiB
    app.config["HISTORY_ENABLED"] = os.environ.get("TICKETPRINTER_HISTORY_ENABLED", "true").lower() in (
        "1",
        "true",
        "yes",
        "on",
    )
    app.config["START_WORKER_ON_SUBMIT"] = register_worker

    configure_logging()
    app.logger.info("Ticket Printer app created")

    app.url_map.strict_slashes = False

    @app.before_request
    def _before_request():
        _set_request_id()

    default_blueprints = [
        ("ticket_printer.web.api", "api_bp"),  # versioned JSON API
        ("ticket_printer.web.health", "health_bp"),  # health endpoint
    ]
    for import_path, attr in blueprints or default_blueprints:
        _maybe_register_blueprint(app, import_path, attr)

    if register_worker:
        from ticket_printer.printing.worker import ensure_worker

        ensure_worker()
        app.logger.info("Background print worker ensured")

    if config_overrides:
        app.config.update(config_overrides)

    return app


__all__ = ["__version__", "create_app"]
