"""
Background print service: the consumer side of the file bridge.

Runs as a separate, long-lived process (possibly under another OS account or
session) watching the drop directory. For each descriptor it claims the job,
runs its own strategy chain and leaves a ``.completed`` or ``.failed`` marker
for the submitting process. Service installation is left to the OS tooling.

Usage:
    ticket-printer-worker --drop-dir /var/spool/ticketprinter
    python -m ticket_printer.printing.service_worker --once
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ticket_printer.core.config import ensure_dir, load_engine_settings
from ticket_printer.core.logging import configure_logging, job_context

from .bridge import (
    CLAIMED_SUFFIX,
    COMPLETED_SUFFIX,
    DESCRIPTOR_SUFFIX,
    FAILED_SUFFIX,
    HEARTBEAT_FILE,
    PAYLOAD_SUFFIX,
    write_json_atomic,
)
from .coordinator import DEFAULT_STRATEGY_TIMEOUT, StrategyChain, format_attempt_errors
from .models import PrintJob
from .strategies import StrategyRegistry, default_registry

logger = logging.getLogger(__name__)


def _parse_ts(value: Optional[str]) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


class BridgeWorker:
    def __init__(
        self,
        drop_dir: str,
        registry: StrategyRegistry,
        strategy_timeout: float = DEFAULT_STRATEGY_TIMEOUT,
        poll_interval: float = 1.0,
    ):
        self.drop_dir = Path(drop_dir)
        self.chain = StrategyChain(registry, strategy_timeout)
        self.poll_interval = poll_interval
        self._stop = threading.Event()

    def heartbeat(self) -> None:
        ensure_dir(str(self.drop_dir))
        (self.drop_dir / HEARTBEAT_FILE).touch()

    def cleanup_stale_markers(self) -> int:
        """Remove failure markers nobody collected (e.g. left before a restart)."""
        removed = 0
        if not self.drop_dir.is_dir():
            return 0
        for entry in self.drop_dir.glob(f"*{FAILED_SUFFIX}"):
            try:
                entry.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not remove %s: %s", entry.name, e)
        if removed:
            logger.info("Removed %d stale failure marker(s)", removed)
        return removed

    def _claim(self, descriptor: Path) -> Optional[Path]:
        claimed = descriptor.with_suffix(CLAIMED_SUFFIX)
        try:
            os.replace(descriptor, claimed)
        except FileNotFoundError:
            # withdrawn by the submitter
            return None
        return claimed

    def process_job(self, descriptor: Path) -> Optional[bool]:
        """
        Claim and print one descriptor. Returns True/False for the outcome,
        or None when the descriptor disappeared before it could be claimed.
        """
        claimed = self._claim(descriptor)
        if claimed is None:
            return None
        with job_context(descriptor.stem):
            return self._print_claimed(claimed, descriptor.stem)

    def _print_claimed(self, claimed: Path, job_id: str) -> bool:
        try:
            data = json.loads(claimed.read_text(encoding="utf-8"))
            job_id = str(data.get("id") or job_id)
            content = Path(data["contentRef"]).read_bytes()
            job = PrintJob(
                content=content,
                target=str(data["target"]),
                id=job_id,
                submitted_at=_parse_ts(data.get("submittedAt")),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Job %s: unreadable descriptor: %s", job_id, e)
            self._write_marker(job_id, ok=False, error=f"unreadable descriptor: {e}")
            return False

        logger.info("Job %s: printing to %s", job.id, job.target)
        job.mark_processing()
        ok = self.chain.run(job)
        if ok:
            self._write_marker(job.id, ok=True)
        else:
            error = format_attempt_errors(job.attempts) or "no print strategy is supported on this host"
            logger.error("Job %s failed: %s", job.id, error)
            self._write_marker(job.id, ok=False, error=error)
        for suffix in (CLAIMED_SUFFIX, PAYLOAD_SUFFIX):
            try:
                (self.drop_dir / f"{job.id}{suffix}").unlink()
            except FileNotFoundError:
                pass
        return ok

    def _write_marker(self, job_id: str, ok: bool, error: Optional[str] = None) -> None:
        if ok:
            write_json_atomic(self.drop_dir / f"{job_id}{COMPLETED_SUFFIX}", {"id": job_id, "status": "completed"})
        else:
            write_json_atomic(self.drop_dir / f"{job_id}{FAILED_SUFFIX}", {"id": job_id, "error": error or "unknown error"})

    def process_once(self) -> int:
        """Heartbeat, then handle every descriptor currently in the drop directory."""
        self.heartbeat()
        handled = 0
        for descriptor in sorted(self.drop_dir.glob(f"*{DESCRIPTOR_SUFFIX}")):
            try:
                if self.process_job(descriptor) is not None:
                    handled += 1
            except Exception as e:
                logger.exception("Error handling %s: %s", descriptor.name, e)
            self.heartbeat()
        return handled

    def _heartbeat_loop(self) -> None:
        # Keeps the heartbeat fresh while a slow strategy is running.
        while not self._stop.wait(self.poll_interval):
            try:
                self.heartbeat()
            except OSError as e:
                logger.warning("Heartbeat failed: %s", e)

    def run_forever(self) -> None:
        logger.info("Background print service watching %s", self.drop_dir)
        self.heartbeat()
        self.cleanup_stale_markers()
        threading.Thread(target=self._heartbeat_loop, daemon=True, name="print-service-heartbeat").start()
        while not self._stop.is_set():
            try:
                self.process_once()
            except OSError as e:
                logger.error("Error polling drop directory: %s", e)
            self._stop.wait(self.poll_interval)
        logger.info("Background print service stopped")

    def stop(self) -> None:
        self._stop.set()


def main(argv: Optional[List[str]] = None) -> int:
    settings = load_engine_settings()
    parser = argparse.ArgumentParser(description="Ticket Printer background print service")
    parser.add_argument("--drop-dir", default=settings.bridge_dir, help="Drop directory shared with the app")
    parser.add_argument("--poll-interval", type=float, default=settings.bridge_poll_interval)
    parser.add_argument("--strategy-timeout", type=float, default=settings.strategy_timeout)
    parser.add_argument("--once", action="store_true", help="Process pending descriptors once and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.debug else logging.INFO)
    worker = BridgeWorker(
        args.drop_dir,
        default_registry(settings),
        strategy_timeout=args.strategy_timeout,
        poll_interval=args.poll_interval,
    )
    if args.once:
        handled = worker.process_once()
        logger.info("Handled %d job(s)", handled)
        return 0

    def _handle_signal(signum, frame):
        logger.info("Received signal %s, stopping", signum)
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    worker.run_forever()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
