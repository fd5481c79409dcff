"""
Process-wide print engine for Ticket Printer.

This module owns:
- The shared job queue, strategy registry, bridge and coordinator
- Idempotent startup of the background dispatcher
- Public helpers to submit jobs and query their status

It is deliberately Flask-agnostic so it can be used from both web routes and
CLI contexts. Logging integrates with the application's configured logging.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from ticket_printer.core import db as dbh
from ticket_printer.core.config import EngineSettings, load_engine_settings

from .bridge import BackgroundServiceBridge
from .coordinator import ExecutionCoordinator
from .models import Content, PrintJob
from .queue import JobQueue
from .status import StatusReporter
from .strategies import StrategyRegistry, default_registry

logger = logging.getLogger(__name__)


class PrintEngine:
    """Wires queue, registry, bridge, coordinator and reporter together."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        registry: Optional[StrategyRegistry] = None,
        bridge: Optional[BackgroundServiceBridge] = None,
    ):
        self.settings = settings or load_engine_settings()
        s = self.settings
        self.queue = JobQueue(jobs_max=s.jobs_max, jobs_ttl_seconds=s.jobs_ttl_seconds)
        self.registry = registry if registry is not None else default_registry(s)
        if bridge is None and s.bridge_enabled:
            bridge = BackgroundServiceBridge(
                s.bridge_dir,
                timeout=s.bridge_timeout,
                poll_interval=s.bridge_poll_interval,
                heartbeat_max_age=s.bridge_heartbeat_max_age,
                retention_seconds=s.bridge_retention_seconds,
            )
        self.bridge = bridge
        self.coordinator = ExecutionCoordinator(
            self.queue,
            self.registry,
            bridge=self.bridge,
            strategy_timeout=s.strategy_timeout,
            on_finished=self._persist if s.history_enabled else None,
        )
        self.reporter = StatusReporter(self.queue, self.bridge)

    def _persist(self, job: PrintJob) -> None:
        dbh.record_job(job)

    def submit(self, content: Content, target: str) -> str:
        return self.queue.submit(content, target)

    def get_job(self, job_id: str) -> Optional[PrintJob]:
        return self.reporter.get_job(job_id)

    def get_queue_status(self) -> Dict[str, Any]:
        return self.reporter.get_queue_status()


_ENGINE: Optional[PrintEngine] = None
_ENGINE_LOCK = threading.Lock()


def get_engine() -> PrintEngine:
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is None:
            _ENGINE = PrintEngine()
        return _ENGINE


def reset_engine(engine: Optional[PrintEngine] = None) -> None:
    """
    Stop the current engine (if any) and install ``engine`` (or nothing).
    """
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is not None:
            _ENGINE.coordinator.stop()
        _ENGINE = engine


def ensure_worker() -> None:
    """
    Ensure the background dispatcher thread is started (idempotent).
    """
    engine = get_engine()
    if not engine.coordinator.is_running:
        engine.coordinator.start()
        logger.info(
            "Background print worker started (strategies=%s, bridge=%s)",
            ",".join(engine.registry.names()) or "-",
            "on" if engine.bridge is not None else "off",
        )


def submit(content: Content, target: str) -> str:
    """
    Queue a ticket payload for ``target``. Returns the job id immediately.

    Raises InvalidJobError for empty content or target.
    """
    return get_engine().submit(content, target)


def get_job(job_id: str) -> Optional[PrintJob]:
    return get_engine().get_job(job_id)


def get_queue_status() -> Dict[str, Any]:
    return get_engine().get_queue_status()


def worker_status() -> Dict[str, Any]:
    """
    Return basic worker/queue status.
    """
    engine = get_engine()
    return {
        "worker_alive": engine.coordinator.is_running,
        "queue_size": sum(engine.queue.pending_count(t) for t in engine.queue.busy_targets()),
        "bridge_enabled": engine.bridge is not None,
        "bridge_available": engine.bridge.is_available() if engine.bridge is not None else False,
        "strategies": engine.registry.names(),
        "supported_strategies": [s.name for s in engine.registry.supported()],
    }


__all__ = [
    "PrintEngine",
    "ensure_worker",
    "get_engine",
    "get_job",
    "get_queue_status",
    "reset_engine",
    "submit",
    "worker_status",
]
