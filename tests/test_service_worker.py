import json
import threading

from conftest import RecordingStrategy
from ticket_printer.printing.bridge import HEARTBEAT_FILE, BackgroundServiceBridge
from ticket_printer.printing.coordinator import ExecutionCoordinator
from ticket_printer.printing.models import JobStatus, PrintJob
from ticket_printer.printing.queue import JobQueue
from ticket_printer.printing.service_worker import BridgeWorker, main
from ticket_printer.printing.strategies import StrategyRegistry


def _job(content=b"\x1b@TICKET", target="PRN1"):
    job = PrintJob(content=content, target=target)
    job.mark_processing()
    return job


def test_process_once_prints_and_writes_completed_marker(tmp_path):
    drop = tmp_path / "spool"
    printer = RecordingStrategy("lp")
    worker = BridgeWorker(str(drop), StrategyRegistry([printer]))
    bridge = BackgroundServiceBridge(str(drop))
    job = _job()
    bridge.write_descriptor(job)

    assert worker.process_once() == 1

    assert printer.calls == [job.id]
    assert (drop / HEARTBEAT_FILE).exists()
    assert (drop / f"{job.id}.completed").exists()
    assert not (drop / f"{job.id}.json").exists()
    assert not (drop / f"{job.id}.claimed").exists()
    assert not (drop / f"{job.id}.payload").exists()
    assert bridge.poll(job.id).completed is True


def test_process_once_writes_failed_marker_with_all_errors(tmp_path):
    drop = tmp_path / "spool"
    registry = StrategyRegistry([RecordingStrategy("a", fail_with="offline"), RecordingStrategy("b", fail_with="jam")])
    worker = BridgeWorker(str(drop), registry)
    bridge = BackgroundServiceBridge(str(drop))
    job = _job()
    bridge.write_descriptor(job)

    worker.process_once()

    data = json.loads((drop / f"{job.id}.failed").read_text())
    assert data["error"] == "a: offline | b: jam"
    outcome = bridge.poll(job.id)
    assert outcome.completed is False
    assert outcome.error == "a: offline | b: jam"


def test_unreadable_descriptor_fails_cleanly(tmp_path):
    drop = tmp_path / "spool"
    drop.mkdir()
    (drop / "print_1_bad.json").write_text("{broken")
    worker = BridgeWorker(str(drop), StrategyRegistry([RecordingStrategy("lp")]))

    worker.process_once()

    data = json.loads((drop / "print_1_bad.failed").read_text())
    assert "unreadable descriptor" in data["error"]


def test_cleanup_stale_markers(tmp_path):
    drop = tmp_path / "spool"
    drop.mkdir()
    (drop / "x.failed").write_text("{}")
    (drop / "y.completed").write_text("{}")
    worker = BridgeWorker(str(drop), StrategyRegistry([]))
    assert worker.cleanup_stale_markers() == 1
    assert (drop / "y.completed").exists()


def test_end_to_end_through_running_worker(tmp_path):
    drop = tmp_path / "spool"
    remote = RecordingStrategy("remote-printer")
    local = RecordingStrategy("local-printer")
    worker = BridgeWorker(str(drop), StrategyRegistry([remote]), poll_interval=0.02)
    worker.heartbeat()
    t = threading.Thread(target=worker.run_forever, daemon=True)
    t.start()
    try:
        bridge = BackgroundServiceBridge(str(drop), timeout=5, poll_interval=0.02)
        q = JobQueue()
        coord = ExecutionCoordinator(q, StrategyRegistry([local]), bridge=bridge)
        job_id = q.submit("TICKET-E2E", "PRN1")
        coord.run_pending()
    finally:
        worker.stop()
        t.join(2)

    job = q.get(job_id)
    assert job.status is JobStatus.COMPLETED
    assert remote.calls == [job_id]
    assert local.calls == []
    assert [a.strategy for a in job.attempts] == ["background-service"]


def test_main_once(tmp_path, monkeypatch):
    drop = tmp_path / "spool"
    monkeypatch.setenv("TICKETPRINTER_STRATEGIES", "lp")
    from ticket_printer.printing import strategies

    monkeypatch.setattr(strategies.LpStrategy, "is_supported", lambda self: False)
    bridge = BackgroundServiceBridge(str(drop))
    job = _job()
    bridge.write_descriptor(job)

    assert main(["--drop-dir", str(drop), "--once"]) == 0
    data = json.loads((drop / f"{job.id}.failed").read_text())
    assert "no print strategy" in data["error"]
