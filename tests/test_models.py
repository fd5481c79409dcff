import random
import re

import pytest

from ticket_printer.printing.errors import InvalidTransitionError, JobFailedError
from ticket_printer.printing.models import Attempt, AttemptOutcome, JobStatus, PrintJob, new_job_id


def test_job_id_has_time_prefix_and_random_suffix():
    job_id = new_job_id()
    assert re.fullmatch(r"print_\d{13}_[0-9a-f]{12}", job_id)
    assert len({new_job_id() for _ in range(1000)}) == 1000


def test_happy_path_lifecycle_sets_timestamps():
    job = PrintJob(content="TICKET-A", target="PRN1")
    assert job.status is JobStatus.PENDING
    job.mark_processing()
    assert job.started_at is not None
    job.record_attempt(Attempt("spooler-api", AttemptOutcome.SUCCESS, 12))
    job.mark_completed()
    assert job.status is JobStatus.COMPLETED
    assert job.finished_at >= job.started_at
    assert job.last_error is None


def test_terminal_job_is_frozen():
    job = PrintJob(content="TICKET-A", target="PRN1")
    job.mark_processing()
    job.mark_failed("lp: printer offline")

    with pytest.raises(InvalidTransitionError):
        job.mark_completed()
    with pytest.raises(InvalidTransitionError):
        job.mark_processing()
    with pytest.raises(InvalidTransitionError):
        job.record_attempt(Attempt("lp", AttemptOutcome.SUCCESS, 1))
    assert job.status is JobStatus.FAILED
    assert job.attempts == []
    assert job.last_error == "lp: printer offline"


def test_attempts_rejected_while_pending():
    job = PrintJob(content="x", target="PRN1")
    with pytest.raises(InvalidTransitionError):
        job.record_attempt(Attempt("lp", AttemptOutcome.FAILURE, 1, "boom"))


@pytest.mark.parametrize("seed", range(25))
def test_status_never_regresses_under_random_transitions(seed):
    rng = random.Random(seed)
    job = PrintJob(content="x", target="PRN1")
    ops = [
        job.mark_processing,
        job.mark_completed,
        lambda: job.mark_failed("err"),
        lambda: job.record_attempt(Attempt("s", AttemptOutcome.FAILURE, 1, "e")),
    ]
    seen_terminal = None
    attempts_seen = 0
    for _ in range(40):
        before = job.status
        try:
            rng.choice(ops)()
        except InvalidTransitionError:
            assert job.status is before
        if seen_terminal is not None:
            assert job.status is seen_terminal
            assert len(job.attempts) == attempts_seen
        if job.status.is_terminal and seen_terminal is None:
            seen_terminal = job.status
            attempts_seen = len(job.attempts)
        rank = {JobStatus.PENDING: 0, JobStatus.PROCESSING: 1, JobStatus.COMPLETED: 2, JobStatus.FAILED: 2}
        assert rank[job.status] >= rank[before]


def test_snapshot_is_independent_copy():
    job = PrintJob(content=b"\x1b@hello", target="PRN1")
    job.mark_processing()
    snap = job.snapshot()
    job.record_attempt(Attempt("lp", AttemptOutcome.FAILURE, 3, "offline"))
    assert snap.attempts == []
    assert snap.status is JobStatus.PROCESSING


def test_to_dict_omits_content_and_serializes_attempts():
    job = PrintJob(content="héllo", target="PRN1")
    job.mark_processing()
    job.record_attempt(Attempt("lp", AttemptOutcome.TIMEOUT, 30000, "timed out after 30s"))
    job.mark_failed("lp: timed out after 30s")
    data = job.to_dict()
    assert "content" not in data
    assert data["content_size"] == len("héllo".encode("utf-8"))
    assert data["status"] == "failed"
    assert data["attempts"] == [
        {"strategy": "lp", "outcome": "timeout", "duration_ms": 30000, "error": "timed out after 30s"}
    ]
    assert data["last_error"] == "lp: timed out after 30s"


def test_job_failed_error_from_job():
    job = PrintJob(content="x", target="PRN1")
    job.mark_processing()
    job.mark_failed("a: 1 | b: 2")
    err = JobFailedError.from_job(job)
    assert err.job_id == job.id
    assert "a: 1 | b: 2" in str(err)
