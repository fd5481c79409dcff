"""
Read-only status views over the job queue.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .bridge import BackgroundServiceBridge
from .models import JobStatus, PrintJob
from .queue import JobQueue


class StatusReporter:
    def __init__(self, queue: JobQueue, bridge: Optional[BackgroundServiceBridge] = None):
        self.queue = queue
        self.bridge = bridge

    def get_job(self, job_id: str) -> Optional[PrintJob]:
        job = self.queue.get(job_id)
        return job.snapshot() if job is not None else None

    def get_queue_status(self) -> Dict[str, Any]:
        snapshots = [j.snapshot() for j in self.queue.jobs()]
        snapshots.sort(key=lambda j: j.submitted_at, reverse=True)

        processing: Dict[str, bool] = {t: False for t in self.queue.busy_targets()}
        for job in snapshots:
            if job.status is JobStatus.PROCESSING:
                processing[job.target] = True

        jobs: List[Dict[str, Any]] = []
        for job in snapshots:
            item: Dict[str, Any] = {
                "id": job.id,
                "target": job.target,
                "status": job.status.value,
                "submitted_at": job.submitted_at.isoformat(),
            }
            if job.last_error is not None:
                item["last_error"] = job.last_error
            jobs.append(item)

        return {
            "total_jobs": len(jobs),
            "is_processing_per_target": processing,
            "queued_per_target": {t: self.queue.pending_count(t) for t in processing},
            "bridge_available": self.bridge.is_available() if self.bridge is not None else False,
            "jobs": jobs,
        }


__all__ = ["StatusReporter"]
