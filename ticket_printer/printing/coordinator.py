"""
Execution coordinator and strategy fallback chain.

Per job: mark processing, try the background service bridge, and when the
bridge is unavailable walk the strategy registry in order until one strategy
succeeds. Exhaustion fails the job with every attempt's error, in order.
The target's busy flag is always released afterwards.
"""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from typing import Any, Callable, List, Optional

from ticket_printer.core.logging import job_context

from .bridge import BRIDGE_STRATEGY_NAME, BackgroundServiceBridge
from .errors import (
    BridgeUnavailableError,
    StrategyError,
    StrategyTimeoutError,
    StrategyUnsupportedError,
)
from .models import Attempt, AttemptOutcome, PrintJob
from .queue import JobQueue
from .strategies import Strategy, StrategyRegistry

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY_TIMEOUT = 30.0


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _call_with_timeout(strategy: Strategy, job: PrintJob, timeout: float) -> None:
    """
    Run strategy.execute on a daemon thread and wait at most ``timeout`` seconds.

    A call still running at the deadline is abandoned; whatever it returns or
    raises later is discarded. The caller's logging context (job id) is
    carried onto the thread.
    """
    result: dict = {}
    ctx = contextvars.copy_context()

    def _target() -> None:
        try:
            strategy.execute(job, timeout)
        except BaseException as e:  # handed back to the waiting thread
            result["error"] = e

    t = threading.Thread(target=ctx.run, args=(_target,), daemon=True, name=f"strategy-{strategy.name}-{job.id}")
    t.start()
    t.join(timeout)
    if t.is_alive():
        raise StrategyTimeoutError(strategy.name, f"timed out after {timeout:g}s")
    err = result.get("error")
    if err is not None:
        raise err


def format_attempt_errors(attempts: List[Attempt]) -> str:
    return " | ".join(f"{a.strategy}: {a.error}" for a in attempts if not a.succeeded)


class StrategyChain:
    def __init__(self, registry: StrategyRegistry, strategy_timeout: float = DEFAULT_STRATEGY_TIMEOUT):
        self.registry = registry
        self.strategy_timeout = strategy_timeout

    def run(self, job: PrintJob) -> bool:
        """
        Try each applicable strategy in order, recording an attempt per try.

        Returns True at the first success; later strategies are not invoked.
        """
        for strategy in self.registry:
            if not strategy.is_supported():
                logger.debug("Job %s: skipping %s (unsupported here)", job.id, strategy.name)
                continue
            start = time.monotonic()
            try:
                _call_with_timeout(strategy, job, self.strategy_timeout)
            except StrategyUnsupportedError as e:
                logger.info("Job %s: skipping %s: %s", job.id, strategy.name, e.message)
                continue
            except StrategyTimeoutError as e:
                job.record_attempt(Attempt(strategy.name, AttemptOutcome.TIMEOUT, _elapsed_ms(start), e.message))
                logger.warning("Job %s: %s timed out: %s", job.id, strategy.name, e.message)
                continue
            except StrategyError as e:
                job.record_attempt(Attempt(strategy.name, AttemptOutcome.FAILURE, _elapsed_ms(start), e.message))
                logger.warning("Job %s: %s failed: %s", job.id, strategy.name, e.message)
                continue
            except Exception as e:
                message = f"{type(e).__name__}: {e}"
                job.record_attempt(Attempt(strategy.name, AttemptOutcome.FAILURE, _elapsed_ms(start), message))
                logger.warning("Job %s: %s failed: %s", job.id, strategy.name, message)
                continue
            job.record_attempt(Attempt(strategy.name, AttemptOutcome.SUCCESS, _elapsed_ms(start)))
            logger.info("Job %s: delivered to %s via %s", job.id, job.target, strategy.name)
            return True
        return False


class ExecutionCoordinator:
    def __init__(
        self,
        queue: JobQueue,
        registry: StrategyRegistry,
        bridge: Optional[BackgroundServiceBridge] = None,
        strategy_timeout: float = DEFAULT_STRATEGY_TIMEOUT,
        on_finished: Optional[Callable[[PrintJob], Any]] = None,
        sweep_interval: float = 300.0,
        idle_wait: float = 1.0,
    ):
        self.queue = queue
        self.bridge = bridge
        self.chain = StrategyChain(registry, strategy_timeout)
        self.on_finished = on_finished
        self.sweep_interval = sweep_interval
        self.idle_wait = idle_wait
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_sweep = 0.0

    # ----- per job ----------------------------------------------------------

    def run_job(self, job: PrintJob) -> None:
        """
        Drive one dequeued job to a terminal state. Never raises.
        """
        with job_context(job.id):
            self._run_job(job)

    def _run_job(self, job: PrintJob) -> None:
        try:
            job.mark_processing()
            logger.info("Job %s: processing for %s", job.id, job.target)
            if not self._try_bridge(job):
                self._run_chain(job)
        except Exception as e:
            logger.exception("Job %s: unexpected error: %s", job.id, e)
            if not job.is_terminal:
                try:
                    job.mark_failed(f"internal error: {e}")
                except Exception:
                    logger.exception("Job %s: could not record failure", job.id)
        finally:
            self.queue.release(job.target)
        if self.on_finished is not None:
            try:
                self.on_finished(job)
            except Exception as e:
                logger.exception("Job %s: on_finished hook failed: %s", job.id, e)

    def _try_bridge(self, job: PrintJob) -> bool:
        """True when the bridge produced a verdict (job is terminal)."""
        if self.bridge is None:
            return False
        start = time.monotonic()
        try:
            outcome = self.bridge.dispatch(job)
        except BridgeUnavailableError as e:
            logger.info("Job %s: bridge unavailable (%s); using local strategies", job.id, e)
            return False
        if outcome.completed:
            job.record_attempt(Attempt(BRIDGE_STRATEGY_NAME, AttemptOutcome.SUCCESS, _elapsed_ms(start)))
            job.mark_completed()
        else:
            error = outcome.error or "unknown error"
            job.record_attempt(Attempt(BRIDGE_STRATEGY_NAME, AttemptOutcome.FAILURE, _elapsed_ms(start), error))
            job.mark_failed(format_attempt_errors(job.attempts))
            logger.error("Job %s: background print service failed: %s", job.id, error)
        return True

    def _run_chain(self, job: PrintJob) -> None:
        if self.chain.run(job):
            job.mark_completed()
            return
        if job.attempts:
            message = format_attempt_errors(job.attempts)
        else:
            message = "no print strategy is supported on this host"
        job.mark_failed(message)
        logger.error("Job %s: all print strategies failed: %s", job.id, message)

    # ----- dispatching ------------------------------------------------------

    def dispatch_ready(self, wait: bool = False) -> List[threading.Thread]:
        """
        Start a thread for the next job of every ready target. With ``wait``
        the threads are joined before returning.
        """
        threads: List[threading.Thread] = []
        for target in self.queue.ready_targets():
            job = self.queue.dequeue_next(target)
            if job is None:
                continue
            t = threading.Thread(target=self.run_job, args=(job,), daemon=True, name=f"print-{target}")
            t.start()
            threads.append(t)
        if wait:
            for t in threads:
                t.join()
        return threads

    def run_pending(self) -> int:
        """
        Synchronously process everything queued, target by target in FIFO order.

        Returns the number of jobs processed.
        """
        count = 0
        while True:
            threads = self.dispatch_ready(wait=True)
            if not threads:
                return count
            count += len(threads)

    def _maybe_sweep(self) -> None:
        if self.bridge is None:
            return
        now = time.monotonic()
        if now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        try:
            self.bridge.sweep()
        except OSError as e:
            logger.warning("Bridge sweep failed: %s", e)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self._maybe_sweep()
                self.queue.prune()
                self.dispatch_ready()
            except Exception as e:
                logger.exception("Dispatch loop error: %s", e)
            self.queue.wait_for_work(timeout=self.idle_wait)

    def start(self) -> None:
        """Start the dispatch thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self.queue.reopen()
        t = threading.Thread(target=self._loop, daemon=True, name="ticket-printer-dispatch")
        t.start()
        self._thread = t
        logger.info("Print dispatcher started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        self.queue.close()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("Print dispatcher stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


__all__ = ["DEFAULT_STRATEGY_TIMEOUT", "ExecutionCoordinator", "StrategyChain", "format_attempt_errors"]
