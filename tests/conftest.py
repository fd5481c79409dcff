# Ensure the repository root is on sys.path so `ticket_printer` can be imported in tests.

import sys
import time
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()


@pytest.fixture(autouse=True)
def _isolated_paths(tmp_path, monkeypatch):
    # Keep config, spool, scratch and history inside the test's temp dir
    monkeypatch.setenv("TICKETPRINTER_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("TICKETPRINTER_SPOOL_PATH", str(tmp_path / "spool"))
    monkeypatch.setenv("TICKETPRINTER_SCRATCH_PATH", str(tmp_path / "scratch"))
    monkeypatch.setenv("TICKETPRINTER_DB_PATH", str(tmp_path / "history.db"))
    yield
    from ticket_printer.printing import worker

    worker.reset_engine()


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingStrategy:
    """Fake delivery strategy: counts calls and succeeds, fails or hangs on demand."""

    def __init__(self, name, fail_with=None, delay=0.0, supported=True, unsupported_error=False):
        self.name = name
        self.fail_with = fail_with
        self.delay = delay
        self.supported = supported
        self.unsupported_error = unsupported_error
        self.calls = []

    def is_supported(self):
        return self.supported

    def execute(self, job, timeout):
        from ticket_printer.printing.errors import StrategyExecutionError, StrategyUnsupportedError

        self.calls.append(job.id)
        if self.delay:
            time.sleep(self.delay)
        if self.unsupported_error:
            raise StrategyUnsupportedError(self.name, "not here")
        if self.fail_with is not None:
            raise StrategyExecutionError(self.name, self.fail_with)
