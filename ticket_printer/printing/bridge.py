"""
File-based bridge to the background print service.

Protocol (drop directory shared with the out-of-process worker):
- ``<job-id>.payload``   raw ticket bytes, referenced by the descriptor
- ``<job-id>.json``      descriptor: {id, contentRef, target, submittedAt}
- ``<job-id>.claimed``   descriptor renamed by the worker when it takes the job
- ``<job-id>.completed`` written by the worker on success
- ``<job-id>.failed``    written by the worker on failure: {error}
- ``worker.heartbeat``   touched by the worker on every poll

The bridge writes the descriptor, polls for a marker and cleans up. A missing
or stale heartbeat, or no marker before the timeout, raises
BridgeUnavailableError so the coordinator falls back to local strategies.
A job the worker has already claimed is never handed to the local strategies
while its marker may still arrive: the bridge keeps waiting for the claim.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ticket_printer.core.config import ensure_dir

from .errors import BridgeUnavailableError
from .models import PrintJob, content_bytes

logger = logging.getLogger(__name__)

HEARTBEAT_FILE = "worker.heartbeat"
DESCRIPTOR_SUFFIX = ".json"
CLAIMED_SUFFIX = ".claimed"
PAYLOAD_SUFFIX = ".payload"
COMPLETED_SUFFIX = ".completed"
FAILED_SUFFIX = ".failed"
PROTOCOL_SUFFIXES = (DESCRIPTOR_SUFFIX, CLAIMED_SUFFIX, PAYLOAD_SUFFIX, COMPLETED_SUFFIX, FAILED_SUFFIX)

BRIDGE_STRATEGY_NAME = "background-service"


@dataclass(frozen=True)
class BridgeOutcome:
    completed: bool
    error: Optional[str] = None


def write_json_atomic(path: Path, data: dict) -> None:
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


class BackgroundServiceBridge:
    def __init__(
        self,
        drop_dir: str,
        timeout: float = 30.0,
        poll_interval: float = 1.0,
        heartbeat_max_age: float = 15.0,
        retention_seconds: float = 3600.0,
        claim_grace: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.drop_dir = Path(drop_dir)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.heartbeat_max_age = heartbeat_max_age
        self.retention_seconds = retention_seconds
        self.claim_grace = timeout if claim_grace is None else claim_grace
        self._sleep = sleep
        self._clock = clock
        self._wall_clock = wall_clock

    # ----- paths ------------------------------------------------------------

    def path_for(self, job_id: str, suffix: str) -> Path:
        return self.drop_dir / f"{job_id}{suffix}"

    @property
    def heartbeat_path(self) -> Path:
        return self.drop_dir / HEARTBEAT_FILE

    # ----- health -----------------------------------------------------------

    def is_available(self) -> bool:
        """True when the worker touched its heartbeat within heartbeat_max_age."""
        try:
            mtime = self.heartbeat_path.stat().st_mtime
        except OSError:
            return False
        return (self._wall_clock() - mtime) <= self.heartbeat_max_age

    # ----- protocol ---------------------------------------------------------

    def write_descriptor(self, job: PrintJob) -> Path:
        ensure_dir(str(self.drop_dir))
        payload_path = self.path_for(job.id, PAYLOAD_SUFFIX)
        payload_path.write_bytes(content_bytes(job.content))
        descriptor = {
            "id": job.id,
            "contentRef": str(payload_path.resolve()),
            "target": job.target,
            "submittedAt": job.submitted_at.isoformat(),
        }
        path = self.path_for(job.id, DESCRIPTOR_SUFFIX)
        write_json_atomic(path, descriptor)
        return path

    def poll(self, job_id: str) -> Optional[BridgeOutcome]:
        """Check once for a completion/failure marker."""
        if self.path_for(job_id, COMPLETED_SUFFIX).exists():
            return BridgeOutcome(completed=True)
        failed = self.path_for(job_id, FAILED_SUFFIX)
        if failed.exists():
            try:
                data = json.loads(failed.read_text(encoding="utf-8") or "{}")
                error = str(data.get("error") or "unknown error")
            except (OSError, ValueError, AttributeError) as e:
                error = f"unreadable failure marker: {e}"
            return BridgeOutcome(completed=False, error=error)
        return None

    def cleanup(self, job_id: str) -> None:
        for suffix in PROTOCOL_SUFFIXES:
            try:
                self.path_for(job_id, suffix).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Bridge: could not remove %s%s: %s", job_id, suffix, e)

    def _withdraw(self, job_id: str) -> bool:
        """Delete an unclaimed descriptor and its payload; False if the worker already claimed it."""
        try:
            self.path_for(job_id, DESCRIPTOR_SUFFIX).unlink()
        except FileNotFoundError:
            return False
        try:
            self.path_for(job_id, PAYLOAD_SUFFIX).unlink()
        except FileNotFoundError:
            pass
        return True

    def _await_claimed(self, job_id: str) -> Optional[BridgeOutcome]:
        """
        Keep polling while the worker holds the claim, for at most ``claim_grace``.

        The worker writes its marker before dropping the claim, so a claim that
        is gone means the marker (if any) is already visible.
        """
        deadline = self._clock() + self.claim_grace
        while True:
            claimed = self.path_for(job_id, CLAIMED_SUFFIX).exists()
            outcome = self.poll(job_id)
            if outcome is not None or not claimed or self._clock() >= deadline:
                return outcome
            self._sleep(self.poll_interval)

    def _finish(self, job_id: str, outcome: BridgeOutcome) -> BridgeOutcome:
        self.cleanup(job_id)
        logger.info(
            "Bridge: job %s %s",
            job_id,
            "completed" if outcome.completed else f"failed: {outcome.error}",
        )
        return outcome

    def dispatch(self, job: PrintJob) -> BridgeOutcome:
        """
        Hand the job to the background service and wait for its verdict.

        Raises BridgeUnavailableError when the service is not running or does
        not answer within ``timeout``. An unclaimed descriptor is withdrawn at
        that point; a claimed one gets ``claim_grace`` more seconds to finish.
        """
        if not self.is_available():
            raise BridgeUnavailableError("background print service is not running")
        try:
            self.write_descriptor(job)
        except OSError as e:
            raise BridgeUnavailableError(f"cannot write to drop directory: {e}") from e
        logger.info("Bridge: job %s handed to background print service", job.id)

        deadline = self._clock() + self.timeout
        while True:
            outcome = self.poll(job.id)
            if outcome is not None:
                return self._finish(job.id, outcome)
            if self._clock() >= deadline:
                break
            self._sleep(self.poll_interval)

        if self._withdraw(job.id):
            raise BridgeUnavailableError(f"no answer from background print service within {self.timeout:g}s")

        outcome = self._await_claimed(job.id)
        if outcome is not None:
            return self._finish(job.id, outcome)
        logger.warning(
            "Bridge: job %s was claimed by the print service but not finished in time; "
            "a late print is possible",
            job.id,
        )
        raise BridgeUnavailableError(
            f"background print service claimed the job but gave no answer within "
            f"{self.timeout + self.claim_grace:g}s"
        )

    def sweep(self, max_age: Optional[float] = None) -> int:
        """
        Remove protocol files older than the retention window.

        Returns the number of files removed.
        """
        max_age = self.retention_seconds if max_age is None else max_age
        if not self.drop_dir.is_dir():
            return 0
        cutoff = self._wall_clock() - max_age
        removed = 0
        for entry in self.drop_dir.iterdir():
            if entry.name == HEARTBEAT_FILE or not entry.name.endswith(PROTOCOL_SUFFIXES):
                continue
            try:
                if entry.stat().st_mtime < cutoff:
                    entry.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Bridge sweep: could not remove %s: %s", entry.name, e)
        if removed:
            logger.info("Bridge sweep removed %d orphaned file(s)", removed)
        return removed


__all__ = [
    "BRIDGE_STRATEGY_NAME",
    "BackgroundServiceBridge",
    "BridgeOutcome",
    "HEARTBEAT_FILE",
    "write_json_atomic",
]
