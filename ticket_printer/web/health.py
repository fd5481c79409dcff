from __future__ import annotations

"""
Health endpoints for Ticket Printer.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Background dispatcher status and queue size
- Whether the background print service answers its heartbeat
- Which delivery strategies can run on this host
"""

from typing import Any, Dict

from flask import Blueprint

from ticket_printer.printing.worker import worker_status

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    status: Dict[str, Any] = {"status": "ok"}
    status.update(worker_status())

    if not status["supported_strategies"] and not status["bridge_available"]:
        status["status"] = "degraded"
        status["reason"] = "no_delivery_path"
    elif not status["worker_alive"]:
        status["status"] = "degraded"
        status["reason"] = "worker_not_running"
    return status, 200
