"""
Print job model.

A PrintJob is created pending by the job queue and advanced exclusively by the
execution coordinator: pending -> processing -> completed | failed. Readers
(status reporter, HTTP layer) only ever see snapshots.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import InvalidTransitionError

Content = Union[str, bytes]


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


# Allowed forward moves; anything else is a regression or a skip.
_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    """Time-based prefix plus random suffix, e.g. ``print_1718000000000_9f2c4e1ab37d``."""
    return f"print_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


def content_bytes(content: Content) -> bytes:
    """Payload as bytes; text payloads are encoded as UTF-8."""
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8")


@dataclass(frozen=True)
class Attempt:
    strategy: str
    outcome: AttemptOutcome
    duration_ms: int
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "strategy": self.strategy,
            "outcome": self.outcome.value,
            "duration_ms": self.duration_ms,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class PrintJob:
    content: Content
    target: str
    id: str = field(default_factory=new_job_id)
    submitted_at: datetime = field(default_factory=_utc_now)
    status: JobStatus = JobStatus.PENDING
    attempts: List[Attempt] = field(default_factory=list)
    last_error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    # ----- lifecycle --------------------------------------------------------

    def _advance(self, new_status: JobStatus) -> None:
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Job {self.id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def mark_processing(self) -> None:
        with self._lock:
            self._advance(JobStatus.PROCESSING)
            self.started_at = _utc_now()

    def record_attempt(self, attempt: Attempt) -> None:
        with self._lock:
            if self.status is not JobStatus.PROCESSING:
                raise InvalidTransitionError(
                    f"Job {self.id}: attempts can only be recorded while processing (status={self.status.value})"
                )
            self.attempts.append(attempt)

    def mark_completed(self) -> None:
        with self._lock:
            self._advance(JobStatus.COMPLETED)
            self.finished_at = _utc_now()

    def mark_failed(self, error: str) -> None:
        with self._lock:
            self._advance(JobStatus.FAILED)
            self.last_error = error
            self.finished_at = _utc_now()

    # ----- views ------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "PrintJob":
        """Consistent copy safe to hand to readers."""
        with self._lock:
            copy = PrintJob(
                content=self.content,
                target=self.target,
                id=self.id,
                submitted_at=self.submitted_at,
                status=self.status,
                attempts=list(self.attempts),
                last_error=self.last_error,
                started_at=self.started_at,
                finished_at=self.finished_at,
            )
        return copy

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            data: Dict[str, Any] = {
                "id": self.id,
                "target": self.target,
                "status": self.status.value,
                "submitted_at": self.submitted_at.isoformat(),
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "finished_at": self.finished_at.isoformat() if self.finished_at else None,
                "content_size": len(content_bytes(self.content)),
                "attempts": [a.to_dict() for a in self.attempts],
            }
            if self.last_error is not None:
                data["last_error"] = self.last_error
        return data


__all__ = [
    "Attempt",
    "AttemptOutcome",
    "Content",
    "JobStatus",
    "PrintJob",
    "content_bytes",
    "new_job_id",
]
