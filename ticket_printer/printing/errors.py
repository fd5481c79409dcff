"""
Exception taxonomy for the print engine.

Only InvalidJobError ever crosses the submit() boundary. Strategy errors are
recorded as attempts, BridgeUnavailableError only triggers the local fallback
chain, and JobFailedError is a convenience for callers polling a terminal job.
"""

from __future__ import annotations

from typing import Optional


class PrintEngineError(Exception):
    """Base class for print engine errors."""


class InvalidJobError(PrintEngineError, ValueError):
    """Submission rejected before a job was created."""


class InvalidTransitionError(PrintEngineError):
    """A job lifecycle transition that would regress or skip a state."""


class StrategyError(PrintEngineError):
    def __init__(self, strategy: str, message: str):
        super().__init__(message)
        self.strategy = strategy
        self.message = message


class StrategyExecutionError(StrategyError):
    """The delivery mechanism ran and reported failure."""


class StrategyTimeoutError(StrategyError):
    """The delivery mechanism did not finish within its wall-clock budget."""


class StrategyUnsupportedError(StrategyError):
    """The delivery mechanism cannot run in this environment; it is skipped."""


class BridgeUnavailableError(PrintEngineError):
    """The background print service is not running or did not answer in time."""


class JobFailedError(PrintEngineError):
    def __init__(self, job_id: str, message: Optional[str]):
        super().__init__(f"Print job {job_id} failed: {message or 'unknown error'}")
        self.job_id = job_id
        self.last_error = message

    @classmethod
    def from_job(cls, job) -> "JobFailedError":
        return cls(job.id, job.last_error)


__all__ = [
    "BridgeUnavailableError",
    "InvalidJobError",
    "InvalidTransitionError",
    "JobFailedError",
    "PrintEngineError",
    "StrategyError",
    "StrategyExecutionError",
    "StrategyTimeoutError",
    "StrategyUnsupportedError",
]
