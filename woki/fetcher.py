"""Deadline-bounded copy of one container's log tail into a sink.

A watchdog thread closes the source stream when the deadline passes (or the
scrape is cancelled), which unblocks a read that is stuck waiting on the
runtime. The stream is always closed exactly once, whichever side gets there
first.
"""

from __future__ import annotations

import threading
import time
from typing import Optional, Protocol

import structlog

from .models import Completed, Failed, FailureKind, FetchOutcome, TailRequest, TimedOut
from .runtime.base import ByteSink, Closable, LogSource, LogStream

logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
CANCEL_POLL_SECONDS = 0.05

_DEADLINE = "deadline"
_CANCELLED = "cancelled"


class CancelFlag(Protocol):
    def is_set(self) -> bool:
        ...


class _StreamHandle:
    """Idempotent, thread-safe close around whatever the source has open.

    Before ``open`` returns the target is the pending connection the source
    registered; afterwards it is the stream itself. A target attached after
    the handle was closed is closed on arrival.
    """

    def __init__(self) -> None:
        self._target: Closable | None = None
        self._stream: LogStream | None = None
        self._lock = threading.Lock()
        self._closed = False

    def attach(self, target: Closable) -> None:
        with self._lock:
            if not self._closed:
                self._target = target
                return
        self._close_target(target)

    def attach_stream(self, stream: LogStream) -> None:
        self._stream = stream
        self.attach(stream)

    def read(self, size: int) -> bytes:
        if self._stream is None:
            raise RuntimeError("no stream attached")
        return self._stream.read(size)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            target = self._target
        if target is not None:
            self._close_target(target)

    @staticmethod
    def _close_target(target: Closable) -> None:
        try:
            target.close()
        except Exception as exc:
            logger.warning("Failed to close log stream", error=str(exc))


class _Watchdog:
    def __init__(self, handle: _StreamHandle, deadline: float, cancel: Optional[CancelFlag]):
        self._handle = handle
        self._deadline = deadline
        self._cancel = cancel
        self._done = threading.Event()
        self._lock = threading.Lock()
        self.reason: str | None = None
        self._thread = threading.Thread(target=self._run, name="woki-fetch-watchdog", daemon=True)

    @property
    def tripped(self) -> bool:
        return self.reason is not None

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> str | None:
        with self._lock:
            self._done.set()
        self._thread.join()
        return self.reason

    def _run(self) -> None:
        while True:
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                self._trip(_DEADLINE)
                return
            if self._cancel is not None and self._cancel.is_set():
                self._trip(_CANCELLED)
                return
            wait = remaining if self._cancel is None else min(remaining, CANCEL_POLL_SECONDS)
            if self._done.wait(wait):
                return

    def _trip(self, reason: str) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self.reason = reason
        self._handle.close()


class BoundedFetcher:
    """Copies a log tail to a sink without outliving the request's timeout.

    The deadline covers opening the stream as well as reading it: sources
    hand their pending connection to ``on_connect`` so the watchdog can
    abort a slow open.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size

    def fetch(
        self,
        source: LogSource,
        request: TailRequest,
        sink: ByteSink,
        cancel: Optional[CancelFlag] = None,
    ) -> FetchOutcome:
        container = request.container
        deadline = time.monotonic() + request.timeout
        log = logger.bind(container=container.short_id, name=container.name)

        if cancel is not None and cancel.is_set():
            log.info("Fetch skipped, scrape cancelled")
            return Failed(FailureKind.CANCELLED, "scrape cancelled before fetch started")

        handle = _StreamHandle()
        watchdog = _Watchdog(handle, deadline, cancel)
        written = 0
        failure: Failed | None = None
        reason: str | None = None
        watchdog.start()
        try:
            try:
                stream = source.open(
                    container.id,
                    request.tail_lines,
                    request.timestamps,
                    timeout=max(deadline - time.monotonic(), 0.001),
                    on_connect=handle.attach,
                )
            except Exception as exc:
                if not watchdog.tripped:
                    failure = Failed(FailureKind.OPEN, str(exc))
            else:
                handle.attach_stream(stream)
                written, failure = self._copy(handle, sink, watchdog)
            # Decided here so a deadline that lands after EOF does not turn it into a timeout.
            reason = watchdog.reason
        finally:
            watchdog.stop()
            handle.close()

        if failure is not None and failure.kind is FailureKind.SINK:
            outcome: FetchOutcome = failure
        elif reason == _CANCELLED:
            outcome = Failed(FailureKind.CANCELLED, "scrape cancelled during fetch", written)
        elif reason == _DEADLINE:
            outcome = TimedOut(written)
        elif failure is not None:
            outcome = failure
        else:
            outcome = Completed(written)

        if isinstance(outcome, Failed):
            log.warning("Log fetch failed", kind=outcome.kind.value, error=outcome.message, bytes=written)
        else:
            log.info("Log fetch finished", status=outcome.status, bytes=written)
        return outcome

    def _copy(self, handle: _StreamHandle, sink: ByteSink, watchdog: _Watchdog) -> tuple[int, Failed | None]:
        written = 0
        while not watchdog.tripped:
            try:
                chunk = handle.read(self.chunk_size)
            except Exception as exc:
                if watchdog.tripped:
                    break
                return written, Failed(FailureKind.READ, str(exc), written)
            if not chunk:
                break
            # A chunk already read still counts when the deadline lands during the read.
            try:
                sink.write(chunk)
            except Exception as exc:
                return written, Failed(FailureKind.SINK, str(exc), written)
            written += len(chunk)
        return written, None
