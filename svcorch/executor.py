from __future__ import annotations

import os
import signal
import subprocess
import time
from threading import Event, Thread
from typing import IO, Callable

from . import db
from .docker_ops import compose_argv
from .errors import ErrorKind
from .models import IN_FLIGHT_STATE, SUCCESS_STATE, ActionKind, ActionResult, ServiceState
from .registry import ServiceLocation
from .runtime import FifoSemaphore, ServiceLockTable
from .settings import Settings, settings as default_settings


_POLL_S = 0.1
_POSIX = os.name == "posix"


class BoundedBuffer:
    """Byte buffer that keeps only the newest `limit` bytes."""

    def __init__(self, limit: int):
        self.limit = max(0, int(limit))
        self.dropped = 0
        self._buf = bytearray()

    def write(self, chunk: bytes) -> None:
        self._buf.extend(chunk)
        extra = len(self._buf) - self.limit
        if extra > 0:
            del self._buf[:extra]
            self.dropped += extra

    @property
    def truncated(self) -> bool:
        return self.dropped > 0

    def text(self) -> str:
        return self._buf.decode("utf-8", errors="replace")


def _pump(stream: IO[bytes], buf: BoundedBuffer) -> Thread:
    def _run() -> None:
        with stream:
            for chunk in iter(lambda: stream.read1(4096), b""):
                buf.write(chunk)

    t = Thread(target=_run, daemon=True)
    t.start()
    return t


def _tail(text: str, lines: int) -> str:
    return "\n".join(text.strip().splitlines()[-lines:]) if lines > 0 else ""


def _signal(proc: subprocess.Popen, force: bool) -> None:
    if proc.poll() is not None:
        return
    try:
        if _POSIX:
            # Compose spawns helpers; signal the whole session.
            os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
        elif force:
            proc.kill()
        else:
            proc.terminate()
    except ProcessLookupError:
        pass


class ActionExecutor:
    """Runs one lifecycle action as a supervised compose process.

    Lifecycle of a call: lock acquired -> slot acquired -> spawned ->
    succeeded | failed | timed out | cancelled | crashed on spawn -> lock
    released. A held lock ends the call immediately with `busy`.
    """

    def __init__(
        self,
        locks: ServiceLockTable,
        slots: FifoSemaphore,
        config: Settings | None = None,
        runtime_check: Callable[[], bool] | None = None,
    ):
        self.locks = locks
        self.slots = slots
        self.config = config or default_settings
        self.runtime_check = runtime_check

    def run(
        self,
        location: ServiceLocation,
        kind: ActionKind,
        deadline: float | None = None,
        cancel: Event | None = None,
    ) -> ActionResult:
        """Run `kind` against a resolved service.

        `deadline` is an absolute time.monotonic() value; it bounds both the
        wait for a process slot and the process itself.
        """
        started = time.monotonic()
        if not self.locks.try_acquire(location.key, kind):
            holder = self.locks.in_flight(location.key)
            msg = f"Another action ({holder.value if holder else 'unknown'}) is in progress for '{location.name}'."
            self._log("WARN", location, kind, f"Rejected {kind.value}: {msg}")
            return ActionResult(
                service=location.name,
                action=kind,
                success=False,
                state=IN_FLIGHT_STATE[holder] if holder else ServiceState.UNKNOWN,
                error=ErrorKind.BUSY,
                message=msg,
            )
        try:
            result = self._run_locked(location, kind, started, deadline, cancel)
        finally:
            self.locks.release(location.key)

        level = "INFO" if result.success else "ERROR"
        detail = result.message or f"exit code {result.exit_code}"
        self._log(level, location, kind, f"{kind.value} {'succeeded' if result.success else 'failed'} in {result.duration_ms:.0f} ms: {detail}")
        return result

    def _run_locked(
        self,
        location: ServiceLocation,
        kind: ActionKind,
        started: float,
        deadline: float | None,
        cancel: Event | None,
    ) -> ActionResult:
        def _result(**kw) -> ActionResult:
            kw.setdefault("state", ServiceState.UNKNOWN)
            kw.setdefault("success", False)
            return ActionResult(
                service=location.name,
                action=kind,
                duration_ms=round((time.monotonic() - started) * 1000.0, 2),
                **kw,
            )

        def _cancelled() -> bool:
            return cancel is not None and cancel.is_set()

        if self.runtime_check is not None and not self.runtime_check():
            return _result(error=ErrorKind.RUNTIME_UNAVAILABLE, message="Container runtime is not reachable.")

        wait = None if deadline is None else deadline - time.monotonic()
        if not self.slots.acquire(timeout=wait, cancel=cancel):
            if _cancelled():
                return _result(error=ErrorKind.CANCELLED, message=f"{kind.value} was cancelled before it started.")
            return _result(error=ErrorKind.TIMEOUT, message="Timed out waiting for a free process slot.")
        try:
            if _cancelled():
                return _result(error=ErrorKind.CANCELLED, message=f"{kind.value} was cancelled before it started.")
            limit = self.config.timeout_for(kind)
            if deadline is not None:
                limit = min(limit, deadline - time.monotonic())
            if limit <= 0:
                return _result(error=ErrorKind.TIMEOUT, message="Deadline expired before the action started.")

            argv = compose_argv(self.config, location, kind)
            try:
                proc = subprocess.Popen(
                    argv,
                    cwd=location.directory,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    start_new_session=_POSIX,
                )
            except OSError as e:
                return _result(
                    error=ErrorKind.RUNTIME_UNAVAILABLE,
                    message=f"Could not launch {argv[0]!r}: {type(e).__name__}: {e}",
                )

            out = BoundedBuffer(self.config.max_output_bytes)
            err = BoundedBuffer(self.config.max_output_bytes)
            readers = [_pump(proc.stdout, out), _pump(proc.stderr, err)]
            try:
                outcome = self._supervise(proc, limit, cancel)
            except BaseException:
                self._terminate(proc)
                raise
            finally:
                for t in readers:
                    t.join(timeout=self.config.kill_grace_s)

            captured = dict(
                stdout=out.text(),
                stderr=err.text(),
                truncated=out.truncated or err.truncated,
                exit_code=proc.returncode,
            )
            if outcome == "timeout":
                return _result(
                    error=ErrorKind.TIMEOUT,
                    message=f"{kind.value} exceeded {limit:.1f}s and was terminated.",
                    **captured,
                )
            if outcome == "cancelled":
                return _result(error=ErrorKind.CANCELLED, message=f"{kind.value} was cancelled.", **captured)
            if proc.returncode != 0:
                tail = _tail(captured["stderr"], self.config.diagnostic_tail_lines)
                return _result(
                    state=ServiceState.ERROR,
                    error=ErrorKind.FAILED,
                    message=tail or f"{kind.value} exited with code {proc.returncode}",
                    **captured,
                )
            return _result(success=True, state=SUCCESS_STATE[kind], **captured)
        finally:
            self.slots.release()

    def _supervise(self, proc: subprocess.Popen, limit: float, cancel: Event | None) -> str:
        end = time.monotonic() + limit
        while True:
            if cancel is not None and cancel.is_set():
                self._terminate(proc)
                return "cancelled"
            remaining = end - time.monotonic()
            if remaining <= 0:
                self._terminate(proc)
                return "timeout"
            try:
                proc.wait(timeout=min(remaining, _POLL_S))
                return "exited"
            except subprocess.TimeoutExpired:
                continue

    def _terminate(self, proc: subprocess.Popen) -> None:
        """SIGTERM, wait the grace period, then SIGKILL."""
        _signal(proc, force=False)
        try:
            proc.wait(timeout=self.config.kill_grace_s)
        except subprocess.TimeoutExpired:
            _signal(proc, force=True)
            proc.wait()

    def _log(self, level: str, location: ServiceLocation, kind: ActionKind, message: str) -> None:
        db.record(
            level,
            message,
            service_name=location.name,
            action=kind.value,
            project_root=location.project_root,
            config=self.config,
        )
