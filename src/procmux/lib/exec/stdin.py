"""Forwarding of host input lines to a child process."""

from __future__ import annotations

import os
import queue
import select
import threading
from enum import StrEnum
from threading import Lock
from typing import IO, Final

import structlog

from procmux.lib.config.settings import ProcmuxConfig
from procmux.lib.exec.prelude import is_windows

DEFAULT_STDIN_POLL_SECONDS = ProcmuxConfig().stdin_poll_seconds
_HOST_EOF: Final = None
logger = structlog.get_logger(__name__)


class ForwardOutcome(StrEnum):
    """How a stdin forwarder finished. None of these are errors."""

    HOST_EOF = "host_eof"
    CHILD_CLOSED = "child_closed"
    CANCELLED = "cancelled"


def _strip_line_ending(line: str) -> str:
    return line.removesuffix("\n").removesuffix("\r")


def _readable_fd(source: IO[str] | IO[bytes]) -> int | None:
    """File descriptor to poll for `source`, or None to fall back to `readline()`."""

    if is_windows():
        # select() only works on sockets there.
        return None
    try:
        return source.fileno()
    except (AttributeError, OSError, ValueError):
        return None


class HostLinePump:
    """Reads lines from one host input source on a single daemon thread.

    Every forwarder consumes lines from the pump rather than from the source
    itself, and the pump only reads while some forwarder is waiting in
    `get()`. A cancelled forwarder therefore leaves no reader behind: once
    `execute` returns, input the host types belongs to the caller again.
    End-of-input is sticky.

    Sources backed by a file descriptor are polled with `select()` and read
    one byte at a time, so nothing past the line being assembled is taken
    from the descriptor. Other sources (in-memory streams, Windows consoles)
    fall back to a blocking `readline()`; after a cancel at most that one
    read stays outstanding and its line is kept for the next forwarder.
    """

    def __init__(
        self,
        source: IO[str] | IO[bytes],
        *,
        poll_interval: float = DEFAULT_STDIN_POLL_SECONDS,
    ) -> None:
        self._source = source
        self._fd = _readable_fd(source)
        self._encoding = getattr(source, "encoding", None) or "utf-8"
        self._poll_interval = poll_interval
        self._lines: queue.Queue[str | None] = queue.Queue()
        self._partial = bytearray()
        self._demand = threading.Condition()
        self._waiting = 0
        self._thread: threading.Thread | None = None

    @property
    def source(self) -> IO[str] | IO[bytes]:
        return self._source

    def get(self, timeout: float) -> str | None:
        """Return the next host line, or `None` once the host hit end-of-input.

        Raises `queue.Empty` when no line arrived within `timeout` seconds.
        """

        try:
            line = self._lines.get_nowait()
        except queue.Empty:
            line = self._wait_for_line(timeout)
        if line is _HOST_EOF:
            self._lines.put(_HOST_EOF)
        return line

    def _wait_for_line(self, timeout: float) -> str | None:
        with self._demand:
            self._ensure_started_locked()
            self._waiting += 1
            self._demand.notify_all()
        try:
            return self._lines.get(timeout=timeout)
        finally:
            with self._demand:
                self._waiting -= 1

    def _ensure_started_locked(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._pump,
            name="procmux-host-input",
            daemon=True,
        )
        self._thread.start()

    def _has_demand(self) -> bool:
        with self._demand:
            return self._waiting > 0

    def _await_demand(self) -> None:
        with self._demand:
            self._demand.wait_for(lambda: self._waiting > 0)

    def _pump(self) -> None:
        try:
            if self._fd is None:
                self._pump_lines()
            else:
                self._pump_descriptor(self._fd)
        except (OSError, ValueError):
            # Closed or unreadable host input (e.g. a captured test stdin).
            logger.debug("Host input unreadable; treating as end-of-input.", exc_info=True)
        finally:
            if self._partial:
                self._emit(bytes(self._partial))
            self._lines.put(_HOST_EOF)
            _forget_pump(self)

    def _pump_lines(self) -> None:
        while True:
            self._await_demand()
            raw = self._source.readline()
            if not raw:
                return
            if isinstance(raw, bytes):
                self._emit(raw)
            else:
                self._lines.put(_strip_line_ending(raw))

    def _pump_descriptor(self, fd: int) -> None:
        while True:
            self._await_demand()
            ready, _, _ = select.select([fd], [], [], self._poll_interval)
            # Demand may have been withdrawn while we were polling.
            if not ready or not self._has_demand():
                continue
            byte = os.read(fd, 1)
            if not byte:
                return
            self._partial += byte
            if byte == b"\n":
                self._emit(bytes(self._partial))
                self._partial.clear()

    def _emit(self, raw: bytes) -> None:
        line = raw.decode(self._encoding, errors="replace")
        self._lines.put(_strip_line_ending(line))


_PUMPS_LOCK = Lock()
_PUMPS: dict[int, HostLinePump] = {}


def host_line_pump(
    source: IO[str] | IO[bytes],
    *,
    poll_interval: float = DEFAULT_STDIN_POLL_SECONDS,
) -> HostLinePump:
    """Return the process-wide pump for `source`, creating it on first use."""

    with _PUMPS_LOCK:
        pump = _PUMPS.get(id(source))
        if pump is None or pump.source is not source:
            pump = HostLinePump(source, poll_interval=poll_interval)
            _PUMPS[id(source)] = pump
        return pump


def _forget_pump(pump: HostLinePump) -> None:
    with _PUMPS_LOCK:
        if _PUMPS.get(id(pump.source)) is pump:
            del _PUMPS[id(pump.source)]


class StdinForwarder:
    """Relays host lines into a child's stdin until EOF, child exit or cancel."""

    def __init__(
        self,
        child_stdin: IO[bytes],
        pump: HostLinePump,
        *,
        poll_interval: float = DEFAULT_STDIN_POLL_SECONDS,
        encoding: str = "utf-8",
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0.")
        self._child_stdin = child_stdin
        self._pump = pump
        self._poll_interval = poll_interval
        self._encoding = encoding
        self._cancelled = threading.Event()
        self._closed = False
        self.outcome: ForwardOutcome | None = None
        self.lines_forwarded = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop waiting for host input; used once the child has exited."""

        self._cancelled.set()

    def run(self) -> None:
        self.outcome = self._forward()
        logger.debug(
            "Stdin forwarding finished.",
            outcome=str(self.outcome),
            lines_forwarded=self.lines_forwarded,
        )

    def _forward(self) -> ForwardOutcome:
        while not self._cancelled.is_set():
            try:
                line = self._pump.get(timeout=self._poll_interval)
            except queue.Empty:
                continue

            if line is _HOST_EOF:
                # Closing our end is how the child learns about end-of-input.
                self._close_child_stdin()
                return ForwardOutcome.HOST_EOF

            if not self._write_line(line):
                self._close_child_stdin()
                return ForwardOutcome.CHILD_CLOSED
            self.lines_forwarded += 1

        self._close_child_stdin()
        return ForwardOutcome.CANCELLED

    def _write_line(self, line: str) -> bool:
        payload = memoryview(f"{line}\n".encode(self._encoding))
        try:
            while payload:
                written = self._child_stdin.write(payload)
                if written is None:
                    continue
                payload = payload[written:]
            # The child sees each line as soon as it is typed.
            self._child_stdin.flush()
        except (OSError, ValueError):
            return False
        return True

    def _close_child_stdin(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._child_stdin.close()
        except OSError:
            logger.debug("Child stdin already gone at close.", exc_info=True)
