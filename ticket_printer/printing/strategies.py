"""
Delivery strategies and the ordered strategy registry.

Each strategy is one independent OS-level way of getting a finished ticket
payload onto a printer known to the host by name. The registry keeps them in
an explicit most-reliable-first order; the execution coordinator walks it and
stops at the first success.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
import tempfile
import time
from collections.abc import Iterable, Iterator
from typing import Any, Callable, Dict, List, Optional, Sequence

from ticket_printer.core.config import ensure_dir

from .errors import StrategyExecutionError, StrategyTimeoutError, StrategyUnsupportedError
from .models import PrintJob, content_bytes

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform.startswith("win")


def _hidden_window_kwargs() -> Dict[str, Any]:
    if not IS_WINDOWS:
        return {}
    return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class Strategy:
    """
    Base class for a delivery mechanism.

    Subclasses implement execute(); it returns on success and raises a
    StrategyError subclass otherwise.
    """

    name: str = "strategy"

    def is_supported(self) -> bool:
        return True

    def execute(self, job: PrintJob, timeout: float) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class CallableStrategy(Strategy):
    """Wrap a plain ``fn(job, timeout)`` as a strategy."""

    def __init__(self, name: str, fn: Callable[[PrintJob, float], Any], supported: bool = True):
        self.name = name
        self._fn = fn
        self._supported = supported

    def is_supported(self) -> bool:
        return self._supported

    def execute(self, job: PrintJob, timeout: float) -> None:
        self._fn(job, timeout)


class CommandStrategy(Strategy):
    """
    Run an OS print command against a scratch copy of the payload.

    The command line comes from build_command(path, target). A non-zero exit
    status is a failure; with ``stderr_is_error`` any stderr output is too
    (PowerShell reports most errors only there). The scratch file is removed
    whatever happens.
    """

    executable: str = ""
    platforms: Sequence[str] = ()
    suffix: str = ".prn"
    stderr_is_error: bool = False

    def __init__(self, scratch_dir: Optional[str] = None):
        self.scratch_dir = scratch_dir

    def is_supported(self) -> bool:
        if self.platforms and not any(sys.platform.startswith(p) for p in self.platforms):
            return False
        return shutil.which(self.executable) is not None

    def build_command(self, path: str, target: str) -> List[str]:
        raise NotImplementedError

    def _write_scratch(self, job: PrintJob) -> str:
        if self.scratch_dir:
            ensure_dir(self.scratch_dir)
        fd, path = tempfile.mkstemp(prefix=f"ticket_{job.id}_", suffix=self.suffix, dir=self.scratch_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(content_bytes(job.content))
        return path

    def execute(self, job: PrintJob, timeout: float) -> None:
        path = self._write_scratch(job)
        try:
            argv = self.build_command(path, job.target)
            logger.debug("%s: running %s", self.name, argv)
            try:
                proc = subprocess.run(
                    argv,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    check=False,
                    **_hidden_window_kwargs(),
                )
            except subprocess.TimeoutExpired:
                raise StrategyTimeoutError(self.name, f"command timed out after {timeout:g}s")
            except FileNotFoundError as e:
                raise StrategyUnsupportedError(self.name, f"executable not found: {e.filename}")
            except OSError as e:
                raise StrategyExecutionError(self.name, f"could not start command: {e}")
            stderr = (proc.stderr or "").strip()
            if proc.returncode != 0:
                detail = stderr or (proc.stdout or "").strip() or "no output"
                raise StrategyExecutionError(self.name, f"exit status {proc.returncode}: {detail}")
            if self.stderr_is_error and stderr:
                raise StrategyExecutionError(self.name, stderr)
        finally:
            try:
                os.unlink(path)
            except OSError as e:
                logger.warning("%s: could not remove scratch file %s: %s", self.name, path, e)


class SpoolerApiStrategy(CommandStrategy):
    """Structured spooler call through System.Printing (AddJob/AddFile/Commit)."""

    name = "spooler-api"
    executable = "powershell"
    platforms = ("win",)
    stderr_is_error = True

    def build_command(self, path: str, target: str) -> List[str]:
        script = (
            "Add-Type -AssemblyName System.Printing; "
            "$server = New-Object System.Printing.PrintServer; "
            f"$queue = $server.GetPrintQueue({_ps_quote(target)}); "
            f"$job = $queue.AddJob({_ps_quote('Ticket_' + str(int(time.time() * 1000)))}); "
            f"$job.AddFile({_ps_quote(path)}); "
            "$job.Commit(); $job.Dispose(); $queue.Dispose(); $server.Dispose();"
        )
        return ["powershell", "-WindowStyle", "Hidden", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", script]


class RawCopyStrategy(CommandStrategy):
    """Binary copy of the payload onto the printer's share."""

    name = "raw-copy"
    executable = "cmd"
    platforms = ("win",)

    def __init__(self, scratch_dir: Optional[str] = None, share_template: str = r"\\localhost\{target}"):
        super().__init__(scratch_dir)
        self.share_template = share_template

    def build_command(self, path: str, target: str) -> List[str]:
        return ["cmd", "/c", "copy", "/b", path, self.share_template.format(target=target)]


class PrintCommandStrategy(CommandStrategy):
    """The OS ``print`` command addressed at the device."""

    name = "print-command"
    executable = "cmd"
    platforms = ("win",)
    stderr_is_error = True

    def build_command(self, path: str, target: str) -> List[str]:
        return ["cmd", "/c", "print", f"/d:{target}", path]


class OutPrinterStrategy(CommandStrategy):
    """Line-content pipe through PowerShell's Out-Printer."""

    name = "out-printer"
    executable = "powershell"
    platforms = ("win",)
    suffix = ".txt"
    stderr_is_error = True

    def build_command(self, path: str, target: str) -> List[str]:
        script = f"Get-Content {_ps_quote(path)} -Raw | Out-Printer -Name {_ps_quote(target)}"
        return ["powershell", "-WindowStyle", "Hidden", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", script]


class LpStrategy(CommandStrategy):
    """CUPS ``lp`` in raw mode."""

    name = "lp"
    executable = "lp"
    platforms = ("linux", "darwin", "freebsd")

    def build_command(self, path: str, target: str) -> List[str]:
        return ["lp", "-d", target, "-o", "raw", path]


class EscposStrategy(Strategy):
    """
    Send raw bytes through a python-escpos printer class addressed by name.

    python-escpos connects lazily: a printer that was never opened silently
    drops what _raw() buffered when it is closed. The job is therefore opened
    explicitly (which also names it in the OS queue), written, and closed;
    close() is what hands a buffered job to the spooler, so its errors fail
    the attempt.
    """

    printer_class: str = ""

    def _load_class(self):
        from escpos import printer as escpos_printer

        return getattr(escpos_printer, self.printer_class, None)

    def is_supported(self) -> bool:
        try:
            cls = self._load_class()
        except ImportError:
            return False
        if cls is None:
            return False
        checker = getattr(cls, "is_usable", None)
        return bool(checker()) if callable(checker) else True

    def execute(self, job: PrintJob, timeout: float) -> None:
        cls = self._load_class()
        if cls is None:
            raise StrategyUnsupportedError(self.name, f"python-escpos has no {self.printer_class} printer")
        p = None
        try:
            p = cls(job.target)
            p.open(job_name=f"Ticket_{job.id}")
            p._raw(content_bytes(job.content))
            p.close()
        except Exception as e:
            if p is not None:
                self._discard(p)
            raise StrategyExecutionError(self.name, f"{type(e).__name__}: {e}") from e
        logger.debug("%s: job %s sent to %s", self.name, job.id, job.target)

    def _discard(self, p) -> None:
        try:
            p.close()
        except Exception as e:
            logger.debug("%s: close after failure also failed: %s", self.name, e)


class Win32RawStrategy(EscposStrategy):
    name = "escpos-win32raw"
    printer_class = "Win32Raw"

    def is_supported(self) -> bool:
        return IS_WINDOWS and super().is_supported()


class CupsStrategy(EscposStrategy):
    name = "escpos-cups"
    printer_class = "CupsPrinter"

    def _discard(self, p) -> None:
        # A failed job must not be submitted by close() (or later by __del__).
        p.pending_job = False
        super()._discard(p)


class StrategyRegistry:
    """Ordered, explicit list of strategies; position is priority."""

    def __init__(self, strategies: Optional[Iterable[Strategy]] = None):
        self._strategies: List[Strategy] = []
        for s in strategies or ():
            self.register(s)

    def register(self, strategy: Strategy, position: Optional[int] = None) -> None:
        if self.get(strategy.name) is not None:
            raise ValueError(f"Strategy already registered: {strategy.name}")
        if position is None:
            self._strategies.append(strategy)
        else:
            self._strategies.insert(position, strategy)

    def get(self, name: str) -> Optional[Strategy]:
        for s in self._strategies:
            if s.name == name:
                return s
        return None

    def names(self) -> List[str]:
        return [s.name for s in self._strategies]

    def supported(self) -> List[Strategy]:
        return [s for s in self._strategies if s.is_supported()]

    def __iter__(self) -> Iterator[Strategy]:
        return iter(list(self._strategies))

    def __len__(self) -> int:
        return len(self._strategies)


def builtin_strategies(scratch_dir: Optional[str] = None) -> List[Strategy]:
    """Built-in strategies, most reliable first."""
    return [
        SpoolerApiStrategy(scratch_dir),
        Win32RawStrategy(),
        RawCopyStrategy(scratch_dir),
        PrintCommandStrategy(scratch_dir),
        OutPrinterStrategy(scratch_dir),
        CupsStrategy(),
        LpStrategy(scratch_dir),
    ]


def default_registry(settings=None) -> StrategyRegistry:
    """
    Build the registry from the built-ins, optionally restricted/reordered by
    ``settings.strategies`` (a list of names).
    """
    scratch_dir = getattr(settings, "scratch_dir", None)
    available = {s.name: s for s in builtin_strategies(scratch_dir)}
    wanted = getattr(settings, "strategies", None)
    if not wanted:
        return StrategyRegistry(available.values())
    unknown = [n for n in wanted if n not in available]
    if unknown:
        raise ValueError(f"Unknown print strategies: {', '.join(unknown)}")
    return StrategyRegistry(available[n] for n in wanted)


def list_printers(timeout: float = 10.0) -> List[str]:
    """
    Names of printers known to the host OS; empty when no listing tool exists.
    """
    try:
        if IS_WINDOWS:
            if not shutil.which("powershell"):
                return []
            out = subprocess.run(
                ["powershell", "-NoProfile", "-Command", "Get-Printer | Select-Object Name | ConvertTo-Json"],
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
                **_hidden_window_kwargs(),
            ).stdout
            data = json.loads(out or "[]")
            if isinstance(data, dict):
                data = [data]
            return [str(p.get("Name")) for p in data if isinstance(p, dict) and p.get("Name")]
        if not shutil.which("lpstat"):
            return []
        out = subprocess.run(["lpstat", "-e"], capture_output=True, text=True, timeout=timeout, check=False).stdout
        return [line.strip() for line in (out or "").splitlines() if line.strip()]
    except (OSError, subprocess.TimeoutExpired, ValueError) as e:
        logger.warning("Printer listing failed: %s", e)
        return []


__all__ = [
    "CallableStrategy",
    "CommandStrategy",
    "CupsStrategy",
    "EscposStrategy",
    "LpStrategy",
    "OutPrinterStrategy",
    "PrintCommandStrategy",
    "RawCopyStrategy",
    "SpoolerApiStrategy",
    "Strategy",
    "StrategyRegistry",
    "Win32RawStrategy",
    "builtin_strategies",
    "default_registry",
    "list_printers",
]
