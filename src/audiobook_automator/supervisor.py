"""Supervised execution of long-running external tools (ffmpeg).

One synchronous contract: run_with_timeout(command, timeout, log_sink,
stderr_sink) -> ProcessResult, which unpacks as (exit_code, timed_out).

Three threads cooperate per run, all in-process:
    main      -- waits for the child to exit
    watchdog  -- wakes once per poll interval; past the deadline it sends
                 SIGTERM to the child and its descendants, waits the grace
                 period, then SIGKILLs whatever is left
    reader    -- drains stdout into log_sink and turns ffmpeg -progress
                 lines into on_progress(seconds) callbacks

Stderr goes straight to stderr_sink and is only read back after exit for
failure classification.
"""

from __future__ import annotations

import subprocess
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import IO

import psutil
from loguru import logger

from .models import (
    FailureReason,
    ProcessResult,
    ProcessRun,
    SupervisorState,
    Termination,
)

log = logger.bind(stage="supervisor")

# Exit code reported when a timed-out process still managed to exit 0
TIMEOUT_EXIT_CODE = 124

# stderr signature -> reason, checked in order
STDERR_SIGNATURES: list[tuple[str, FailureReason]] = [
    ("Enter command:", FailureReason.STDIN_BLOCKED),
    ("Invalid data found when processing input", FailureReason.INVALID_DATA),
]

ProgressCallback = Callable[[float], None]


def classify_stderr(text: str) -> FailureReason:
    """Map captured stderr to a known failure signature."""
    for signature, reason in STDERR_SIGNATURES:
        if signature in text:
            return reason
    return FailureReason.GENERIC


def tail_stderr(path: Path, lines: int = 20) -> str:
    """Last `lines` lines of a stderr capture file ('' if unreadable)."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return "\n".join(text.splitlines()[-lines:])


class _Watchdog(threading.Thread):
    """Deadline enforcer for one child process.

    cancel() is best-effort: a watchdog that wakes after the child has
    already exited sees poll() != None and returns without signalling.
    """

    def __init__(
        self,
        proc: subprocess.Popen,
        timeout: float,
        poll_interval: float,
        term_grace: float,
        heartbeat_interval: float,
    ) -> None:
        super().__init__(name=f"watchdog-{proc.pid}", daemon=True)
        self.proc = proc
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.term_grace = term_grace
        self.heartbeat_interval = heartbeat_interval
        self.fired = False
        self.termination: Termination | None = None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    def run(self) -> None:
        started = time.monotonic()
        deadline = started + self.timeout
        next_beat = started + self.heartbeat_interval

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if self._cancelled.wait(min(self.poll_interval, remaining)):
                return
            if self.proc.poll() is not None:
                return
            now = time.monotonic()
            if now >= next_beat:
                log.info(f"pid {self.proc.pid} still running ({now - started:.0f}s elapsed)")
                next_beat += self.heartbeat_interval

        if self._cancelled.is_set() or self.proc.poll() is not None:
            return

        self.fired = True
        log.warning(f"pid {self.proc.pid} exceeded {self.timeout:.0f}s, sending SIGTERM")
        # Snapshot first: descendants are reparented once the child dies
        descendants = self._descendants()
        grace_ends = time.monotonic() + self.term_grace
        self._signal(descendants, kill=False)
        try:
            self.proc.wait(timeout=self.term_grace)
            child_alive = False
        except subprocess.TimeoutExpired:
            child_alive = True
        _, waiting = psutil.wait_procs(
            descendants, timeout=max(0.0, grace_ends - time.monotonic())
        )
        survivors = _running(waiting)

        if not child_alive and not survivors:
            self.termination = Termination.GRACEFUL
            log.info(f"pid {self.proc.pid} exited after SIGTERM")
            return

        log.warning(
            f"pid {self.proc.pid} tree ignored SIGTERM "
            f"({len(survivors)} descendants left), sending SIGKILL"
        )
        self._signal(survivors, kill=True)
        if child_alive:
            try:
                self.proc.kill()
            except ProcessLookupError:
                pass
        psutil.wait_procs(survivors, timeout=self.term_grace)
        self.termination = Termination.FORCED

    def _descendants(self) -> list[psutil.Process]:
        try:
            return psutil.Process(self.proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    def _signal(self, descendants: list[psutil.Process], kill: bool) -> None:
        for p in descendants:
            try:
                p.kill() if kill else p.terminate()
            except psutil.NoSuchProcess:
                pass
        if kill:
            return
        try:
            self.proc.terminate()
        except ProcessLookupError:
            pass


def _running(procs: list[psutil.Process]) -> list[psutil.Process]:
    """Processes still alive; zombies awaiting a reaper count as gone."""
    alive = []
    for p in procs:
        try:
            if p.status() != psutil.STATUS_ZOMBIE:
                alive.append(p)
        except psutil.NoSuchProcess:
            pass
    return alive


def _pump_stdout(
    stream: IO[str],
    sink: IO[str],
    on_progress: ProgressCallback | None,
) -> None:
    for line in stream:
        sink.write(line)
        if on_progress is None:
            continue
        key, _, value = line.strip().partition("=")
        if key in ("out_time_us", "out_time_ms") and value.isdigit():
            try:
                on_progress(int(value) / 1_000_000)
            except Exception as e:
                # Keep draining stdout; a dead reader would stall the child
                log.warning(f"Progress callback failed, disabling: {e}")
                on_progress = None


class ProcessSupervisor:
    """Runs commands under a watchdog. Holds no per-run state between calls."""

    def __init__(
        self,
        poll_interval: float = 1.0,
        term_grace: float = 2.0,
        heartbeat_interval: float = 60.0,
    ) -> None:
        self.poll_interval = poll_interval
        self.term_grace = term_grace
        self.heartbeat_interval = heartbeat_interval

    @classmethod
    def from_config(cls, config) -> ProcessSupervisor:
        return cls(
            poll_interval=config.poll_interval,
            term_grace=config.term_grace,
            heartbeat_interval=config.heartbeat_interval,
        )

    def run(
        self,
        run: ProcessRun,
        on_progress: ProgressCallback | None = None,
    ) -> ProcessResult:
        run.stderr_sink.parent.mkdir(parents=True, exist_ok=True)
        run.log_sink.parent.mkdir(parents=True, exist_ok=True)
        log.debug(f"Launching: {' '.join(run.command)[:200]}")

        with open(run.stderr_sink, "wb") as err, open(
            run.log_sink, "a", encoding="utf-8"
        ) as out_log:
            try:
                proc = subprocess.Popen(
                    run.command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=err,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                err.write(f"{e}\n".encode())
                log.error(f"Cannot launch {run.command[0]}: {e}")
                return ProcessResult(exit_code=127, reason=FailureReason.GENERIC)

            watchdog = _Watchdog(
                proc,
                timeout=run.timeout,
                poll_interval=self.poll_interval,
                term_grace=self.term_grace,
                heartbeat_interval=self.heartbeat_interval,
            )
            reader = threading.Thread(
                target=_pump_stdout,
                args=(proc.stdout, out_log, on_progress),
                name=f"stdout-{proc.pid}",
                daemon=True,
            )
            reader.start()
            watchdog.start()
            try:
                proc.wait()
            finally:
                watchdog.cancel()
                if proc.poll() is None:
                    # Interrupted while waiting; never leave the child behind
                    proc.kill()
                    proc.wait()
                watchdog.join()
                reader.join(timeout=5.0)
                if reader.is_alive():
                    # Another process still holds the pipe; the daemon reader owns it
                    log.warning(f"stdout of pid {proc.pid} still open after exit")
                elif proc.stdout is not None:
                    proc.stdout.close()

        state = (
            SupervisorState.WATCHDOG_TERMINATED
            if watchdog.fired
            else SupervisorState.NATURAL_EXIT
        )
        exit_code = proc.returncode
        if watchdog.fired:
            if exit_code == 0:
                exit_code = TIMEOUT_EXIT_CODE
            result = ProcessResult(
                exit_code=exit_code,
                timed_out=True,
                termination=watchdog.termination,
                reason=FailureReason.TIMEOUT,
                pid=proc.pid,
            )
        elif exit_code != 0:
            result = ProcessResult(
                exit_code=exit_code,
                reason=classify_stderr(tail_stderr(run.stderr_sink, lines=200)),
                pid=proc.pid,
            )
        else:
            result = ProcessResult(exit_code=0, pid=proc.pid)

        log.debug(
            f"pid {proc.pid} {state}: exit={result.exit_code} "
            f"timed_out={result.timed_out} termination={result.termination}"
        )
        return result


def run_with_timeout(
    command: list[str],
    timeout_seconds: float,
    log_sink: Path,
    stderr_sink: Path,
    on_progress: ProgressCallback | None = None,
    supervisor: ProcessSupervisor | None = None,
) -> ProcessResult:
    """Run `command` to completion or until `timeout_seconds` elapse."""
    supervisor = supervisor or ProcessSupervisor()
    return supervisor.run(
        ProcessRun(command, timeout_seconds, log_sink, stderr_sink),
        on_progress=on_progress,
    )
