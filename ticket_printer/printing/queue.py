"""
Per-target job queue.

Every printer target gets its own FIFO sub-queue and its own busy flag, so
independent printers are served concurrently while a single printer never
receives interleaved jobs. Submission is validation + enqueue only.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional

from .errors import InvalidJobError
from .models import Content, PrintJob, new_job_id

logger = logging.getLogger(__name__)


def _validate(content: Content, target: str) -> str:
    if not isinstance(content, (str, bytes)):
        raise InvalidJobError("content must be text or bytes")
    if len(content) == 0:
        raise InvalidJobError("content is required")
    if not isinstance(target, str) or not target.strip():
        raise InvalidJobError("target printer is required")
    return target.strip()


class JobQueue:
    def __init__(
        self,
        jobs_max: int = 200,
        jobs_ttl_seconds: float = 3600.0,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._jobs_max = max(1, int(jobs_max))
        self._ttl = timedelta(seconds=jobs_ttl_seconds)
        self._now = now
        self._cond = threading.Condition(threading.RLock())
        self._pending: Dict[str, Deque[PrintJob]] = {}
        self._busy: Dict[str, bool] = {}
        self._jobs: "OrderedDict[str, PrintJob]" = OrderedDict()
        self._closed = False

    # ----- producer side ----------------------------------------------------

    def submit(self, content: Content, target: str) -> str:
        """
        Create a pending job for ``target`` and return its id without waiting.

        Raises InvalidJobError (nothing is created) for empty content or target.
        """
        target = _validate(content, target)
        with self._cond:
            job_id = new_job_id()
            while job_id in self._jobs:
                job_id = new_job_id()
            job = PrintJob(content=content, target=target, id=job_id, submitted_at=self._now())
            self._prune()
            self._jobs[job_id] = job
            self._pending.setdefault(target, deque()).append(job)
            self._busy.setdefault(target, False)
            self._cond.notify_all()
        logger.info("Queued print job %s for %s (%d bytes)", job_id, target, len(content))
        return job_id

    # ----- coordinator side -------------------------------------------------

    def dequeue_next(self, target: str) -> Optional[PrintJob]:
        """
        Pop the next pending job for ``target`` and mark the target busy.

        Returns None when the target is already busy or has nothing queued.
        """
        with self._cond:
            if self._busy.get(target):
                return None
            pending = self._pending.get(target)
            if not pending:
                return None
            job = pending.popleft()
            self._busy[target] = True
            return job

    def release(self, target: str) -> None:
        with self._cond:
            self._busy[target] = False
            self._cond.notify_all()

    def ready_targets(self) -> List[str]:
        with self._cond:
            return self._ready_targets_locked()

    def _ready_targets_locked(self) -> List[str]:
        return [t for t, q in self._pending.items() if q and not self._busy.get(t)]

    def wait_for_work(self, timeout: Optional[float] = None) -> bool:
        """Block until some target is ready (or the queue closes); returns readiness."""
        with self._cond:
            return bool(
                self._cond.wait_for(lambda: self._closed or bool(self._ready_targets_locked()), timeout=timeout)
            ) and not self._closed

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def reopen(self) -> None:
        with self._cond:
            self._closed = False

    # ----- readers ----------------------------------------------------------

    def get(self, job_id: str) -> Optional[PrintJob]:
        with self._cond:
            return self._jobs.get(job_id)

    def jobs(self) -> List[PrintJob]:
        with self._cond:
            return list(self._jobs.values())

    def busy_targets(self) -> Dict[str, bool]:
        with self._cond:
            return dict(self._busy)

    def pending_count(self, target: str) -> int:
        with self._cond:
            return len(self._pending.get(target) or ())

    def __len__(self) -> int:
        with self._cond:
            return len(self._jobs)

    # ----- retention --------------------------------------------------------

    def _prune(self) -> None:
        # Only terminal jobs are ever dropped; the dict is kept in submission order.
        cutoff = self._now() - self._ttl
        for job_id, job in list(self._jobs.items()):
            if job.is_terminal and (job.finished_at or job.submitted_at) < cutoff:
                del self._jobs[job_id]
        if len(self._jobs) < self._jobs_max:
            return
        for job_id, job in list(self._jobs.items()):
            if len(self._jobs) < self._jobs_max:
                break
            if job.is_terminal:
                del self._jobs[job_id]

    def prune(self) -> None:
        with self._cond:
            self._prune()


__all__ = ["JobQueue"]
