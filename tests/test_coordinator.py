import threading
import time

import pytest

from conftest import RecordingStrategy, wait_until
from ticket_printer.printing.bridge import BridgeOutcome
from ticket_printer.printing.coordinator import ExecutionCoordinator, StrategyChain
from ticket_printer.printing.errors import BridgeUnavailableError
from ticket_printer.printing.models import AttemptOutcome, JobStatus, PrintJob
from ticket_printer.printing.queue import JobQueue
from ticket_printer.printing.strategies import StrategyRegistry


class FakeBridge:
    def __init__(self, outcome=None, unavailable=False):
        self.outcome = outcome
        self.unavailable = unavailable
        self.dispatched = []
        self.sweeps = 0

    def dispatch(self, job):
        self.dispatched.append(job.id)
        if self.unavailable:
            raise BridgeUnavailableError("background print service is not running")
        return self.outcome

    def sweep(self, max_age=None):
        self.sweeps += 1
        return 0

    def is_available(self):
        return not self.unavailable


def _coordinator(strategies, bridge=None, timeout=5.0, **kwargs):
    q = JobQueue()
    coord = ExecutionCoordinator(q, StrategyRegistry(strategies), bridge=bridge, strategy_timeout=timeout, **kwargs)
    return q, coord


def _run_one(q, coord, content="TICKET-A", target="PRN1"):
    job_id = q.submit(content, target)
    coord.run_pending()
    return q.get(job_id)


def test_scenario_a_first_strategy_succeeds():
    s1 = RecordingStrategy("strategy1")
    s2 = RecordingStrategy("strategy2")
    q, coord = _coordinator([s1, s2])

    job = _run_one(q, coord)

    assert job.status is JobStatus.COMPLETED
    assert [(a.strategy, a.outcome) for a in job.attempts] == [("strategy1", AttemptOutcome.SUCCESS)]
    assert len(s1.calls) == 1
    assert s2.calls == []
    assert job.last_error is None


def test_scenario_b_fallback_to_second_strategy():
    s1 = RecordingStrategy("strategy1", fail_with="spooler rejected job")
    s2 = RecordingStrategy("strategy2")
    s3 = RecordingStrategy("strategy3")
    q, coord = _coordinator([s1, s2, s3])

    job = _run_one(q, coord)

    assert job.status is JobStatus.COMPLETED
    assert len(job.attempts) == 2
    assert job.attempts[0].outcome is AttemptOutcome.FAILURE
    assert job.attempts[0].error == "spooler rejected job"
    assert job.attempts[1].outcome is AttemptOutcome.SUCCESS
    assert s3.calls == []


def test_scenario_c_all_strategies_fail():
    strategies = [RecordingStrategy(f"strategy{i}", fail_with=f"error {i}") for i in (1, 2, 3)]
    q, coord = _coordinator(strategies)

    job = _run_one(q, coord)

    assert job.status is JobStatus.FAILED
    assert len(job.attempts) == 3
    assert job.last_error == "strategy1: error 1 | strategy2: error 2 | strategy3: error 3"
    positions = [job.last_error.index(f"error {i}") for i in (1, 2, 3)]
    assert positions == sorted(positions)


@pytest.mark.parametrize("k", [1, 2, 3, 4])
def test_kth_success_stops_the_chain(k):
    strategies = [
        RecordingStrategy(f"s{i}", fail_with=None if i == k else f"e{i}") for i in range(1, 5)
    ]
    q, coord = _coordinator(strategies)

    job = _run_one(q, coord)

    assert job.status is JobStatus.COMPLETED
    assert len(job.attempts) == k
    for i, s in enumerate(strategies, start=1):
        assert len(s.calls) == (1 if i <= k else 0)


def test_unsupported_strategies_are_skipped_not_counted():
    skipped = RecordingStrategy("windows-only", supported=False)
    late_skip = RecordingStrategy("no-driver", unsupported_error=True)
    failing = RecordingStrategy("lp", fail_with="offline")
    q, coord = _coordinator([skipped, late_skip, failing])

    job = _run_one(q, coord)

    assert job.status is JobStatus.FAILED
    assert [a.strategy for a in job.attempts] == ["lp"]
    assert skipped.calls == []
    assert job.last_error == "lp: offline"


def test_no_applicable_strategy_fails_with_explanation():
    q, coord = _coordinator([RecordingStrategy("windows-only", supported=False)])
    job = _run_one(q, coord)
    assert job.status is JobStatus.FAILED
    assert job.attempts == []
    assert "no print strategy" in job.last_error


def test_strategy_timeout_is_recorded_and_chain_continues():
    slow = RecordingStrategy("slow", delay=2.0)
    fast = RecordingStrategy("fast")
    q, coord = _coordinator([slow, fast], timeout=0.1)

    start = time.monotonic()
    job = _run_one(q, coord)

    assert time.monotonic() - start < 1.5
    assert job.status is JobStatus.COMPLETED
    assert job.attempts[0].outcome is AttemptOutcome.TIMEOUT
    assert job.attempts[1].strategy == "fast"


def test_unexpected_exception_from_strategy_is_a_failed_attempt():
    def boom(job, timeout):
        raise RuntimeError("driver crashed")

    from ticket_printer.printing.strategies import CallableStrategy

    q, coord = _coordinator([CallableStrategy("weird", boom), RecordingStrategy("ok")])
    job = _run_one(q, coord)
    assert job.status is JobStatus.COMPLETED
    assert job.attempts[0].error == "RuntimeError: driver crashed"


def test_bridge_success_skips_local_chain():
    s1 = RecordingStrategy("strategy1")
    bridge = FakeBridge(outcome=BridgeOutcome(completed=True))
    q, coord = _coordinator([s1], bridge=bridge)

    job = _run_one(q, coord)

    assert job.status is JobStatus.COMPLETED
    assert [a.strategy for a in job.attempts] == ["background-service"]
    assert s1.calls == []


def test_bridge_failure_is_terminal_and_skips_local_chain():
    s1 = RecordingStrategy("strategy1")
    bridge = FakeBridge(outcome=BridgeOutcome(completed=False, error="printer jammed"))
    q, coord = _coordinator([s1], bridge=bridge)

    job = _run_one(q, coord)

    assert job.status is JobStatus.FAILED
    assert "printer jammed" in job.last_error
    assert s1.calls == []


def test_bridge_unavailable_runs_chain_exactly_once():
    s1 = RecordingStrategy("strategy1")
    bridge = FakeBridge(unavailable=True)
    q, coord = _coordinator([s1], bridge=bridge)

    job = _run_one(q, coord)

    assert job.status is JobStatus.COMPLETED
    assert len(bridge.dispatched) == 1
    assert len(s1.calls) == 1
    assert [a.strategy for a in job.attempts] == ["strategy1"]


def test_target_released_and_hook_called_after_each_job():
    finished = []
    q, coord = _coordinator([RecordingStrategy("s1", fail_with="nope")], on_finished=finished.append)
    first = q.submit("A", "PRN1")
    second = q.submit("B", "PRN1")

    assert coord.run_pending() == 2
    assert [j.id for j in finished] == [first, second]
    assert q.busy_targets() == {"PRN1": False}


def test_hook_errors_do_not_break_processing():
    def bad_hook(job):
        raise RuntimeError("disk full")

    q, coord = _coordinator([RecordingStrategy("s1")], on_finished=bad_hook)
    job = _run_one(q, coord)
    assert job.status is JobStatus.COMPLETED
    assert q.busy_targets() == {"PRN1": False}


def test_chain_can_run_outside_a_queue():
    job = PrintJob(content="x", target="PRN1")
    job.mark_processing()
    chain = StrategyChain(StrategyRegistry([RecordingStrategy("a", fail_with="x"), RecordingStrategy("b")]))
    assert chain.run(job) is True
    assert [a.strategy for a in job.attempts] == ["a", "b"]


class _ExclusivityTracker:
    """Strategy that tracks how many jobs per target run at once."""

    name = "tracker"

    def __init__(self, delay=0.05):
        self.delay = delay
        self.lock = threading.Lock()
        self.active = {}
        self.max_active = {}
        self.calls = 0

    def is_supported(self):
        return True

    def execute(self, job, timeout):
        with self.lock:
            self.calls += 1
            self.active[job.target] = self.active.get(job.target, 0) + 1
            self.max_active[job.target] = max(self.max_active.get(job.target, 0), self.active[job.target])
        time.sleep(self.delay)
        with self.lock:
            self.active[job.target] -= 1


def test_at_most_one_processing_job_per_target_under_concurrency():
    tracker = _ExclusivityTracker()
    q, coord = _coordinator([tracker], idle_wait=0.05)
    coord.start()
    try:
        ids = []
        threads = []
        for i in range(8):
            for target in ("PRN1", "PRN2"):
                t = threading.Thread(target=lambda tg=target, n=i: ids.append(q.submit(f"T{n}", tg)))
                threads.append(t)
                t.start()
        for t in threads:
            t.join()
        assert wait_until(lambda: len(ids) == 16 and all(q.get(i).is_terminal for i in ids), timeout=10)
    finally:
        coord.stop()

    assert tracker.calls == 16
    assert tracker.max_active == {"PRN1": 1, "PRN2": 1}


def test_scenario_e_same_target_jobs_are_serialized():
    q, coord = _coordinator([RecordingStrategy("s1", delay=0.2)], idle_wait=0.05)
    coord.start()
    try:
        first = q.submit("TICKET-1", "PRN1")
        time.sleep(0.1)
        second = q.submit("TICKET-2", "PRN1")
        assert wait_until(lambda: q.get(second).is_terminal, timeout=5)
    finally:
        coord.stop()

    a, b = q.get(first), q.get(second)
    assert a.status is JobStatus.COMPLETED and b.status is JobStatus.COMPLETED
    assert b.started_at >= a.finished_at


def test_dispatch_loop_sweeps_bridge_periodically():
    bridge = FakeBridge(unavailable=True)
    q, coord = _coordinator([RecordingStrategy("s1")], bridge=bridge, sweep_interval=0.0, idle_wait=0.02)
    coord.start()
    try:
        assert wait_until(lambda: bridge.sweeps >= 2, timeout=2)
    finally:
        coord.stop()
    assert coord.is_running is False


def test_dispatch_loop_prunes_expired_jobs_without_new_submissions():
    q = JobQueue(jobs_ttl_seconds=0.05)
    coord = ExecutionCoordinator(q, StrategyRegistry([RecordingStrategy("s1")]), idle_wait=0.02)
    job_id = q.submit("TICKET-A", "PRN1")
    coord.start()
    try:
        assert wait_until(lambda: q.get(job_id) is None, timeout=3)
    finally:
        coord.stop()


class _JobIdRecorder:
    name = "recorder"

    def __init__(self):
        self.seen = []

    def is_supported(self):
        return True

    def execute(self, job, timeout):
        from ticket_printer.core.logging import current_job_id

        self.seen.append((job.id, current_job_id()))


def test_job_id_logging_context_reaches_strategy_thread():
    from ticket_printer.core.logging import current_job_id

    recorder = _JobIdRecorder()
    q, coord = _coordinator([recorder])
    job = _run_one(q, coord)

    assert recorder.seen == [(job.id, job.id)]
    assert current_job_id() == "-"
