from conftest import RecordingStrategy
from ticket_printer.printing.coordinator import ExecutionCoordinator
from ticket_printer.printing.queue import JobQueue
from ticket_printer.printing.status import StatusReporter
from ticket_printer.printing.strategies import StrategyRegistry


def test_get_job_returns_snapshot_or_none():
    q = JobQueue()
    reporter = StatusReporter(q)
    job_id = q.submit("TICKET", "PRN1")

    snap = reporter.get_job(job_id)
    assert snap.id == job_id
    assert snap is not q.get(job_id)
    assert reporter.get_job("print_0_missing") is None


def test_queue_status_shape_and_ordering():
    q = JobQueue()
    reporter = StatusReporter(q)
    assert reporter.get_queue_status() == {
        "total_jobs": 0,
        "is_processing_per_target": {},
        "queued_per_target": {},
        "bridge_available": False,
        "jobs": [],
    }

    first = q.submit("A", "PRN1")
    second = q.submit("B", "PRN1")
    third = q.submit("C", "PRN2")
    running = q.dequeue_next("PRN1")
    running.mark_processing()

    status = reporter.get_queue_status()
    assert status["total_jobs"] == 3
    assert status["is_processing_per_target"] == {"PRN1": True, "PRN2": False}
    assert status["queued_per_target"] == {"PRN1": 1, "PRN2": 1}
    ids = [j["id"] for j in status["jobs"]]
    assert set(ids) == {first, second, third}
    stamps = [j["submitted_at"] for j in status["jobs"]]
    assert stamps == sorted(stamps, reverse=True)


def test_queue_status_includes_last_error_for_failed_jobs():
    q = JobQueue()
    coord = ExecutionCoordinator(q, StrategyRegistry([RecordingStrategy("lp", fail_with="offline")]))
    job_id = q.submit("A", "PRN1")
    coord.run_pending()

    (item,) = StatusReporter(q).get_queue_status()["jobs"]
    assert item["id"] == job_id
    assert item["status"] == "failed"
    assert item["last_error"] == "lp: offline"
