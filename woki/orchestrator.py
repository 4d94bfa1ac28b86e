"""Scrape orchestration: discover running containers, fetch each tail, report.

Fetches are isolated from one another: a failed or timed-out container is
recorded and the scrape moves on. Only a failure to list containers aborts
the whole scrape.
"""

from __future__ import annotations

import asyncio
import io
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import structlog

from .errors import DirectoryUnreachable
from .fetcher import BoundedFetcher
from .models import (
    ContainerRef,
    Failed,
    FailureKind,
    FetchOutcome,
    ReportBuilder,
    ScrapeReport,
    TailRequest,
    validate_tail_options,
)
from .runtime.base import ByteSink, LogSource, RuntimeDirectory

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 16

SinkFactory = Callable[[ContainerRef], ByteSink]


class _CancelSignal:
    """Cancel flag for one scrape, also raised by the caller's event.

    Setting it never touches the caller's event, so that event can be
    reused for the next scrape.
    """

    def __init__(self, parent: Optional[threading.Event] = None):
        self._parent = parent
        self._own = threading.Event()

    def set(self) -> None:
        self._own.set()

    def is_set(self) -> bool:
        return self._own.is_set() or (self._parent is not None and self._parent.is_set())


class ScrapeOrchestrator:
    """Drives one bounded fetch per running container."""

    def __init__(
        self,
        directory: RuntimeDirectory,
        source: LogSource,
        fetcher: BoundedFetcher | None = None,
        sink_factory: SinkFactory | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.directory = directory
        self.source = source
        self.fetcher = fetcher or BoundedFetcher()
        self.sink_factory = sink_factory
        self.concurrency = concurrency
        self.last_report: ScrapeReport | None = None

    def discover(self) -> tuple[list[ContainerRef], int]:
        """Return the running containers in listing order and the total listed."""
        try:
            containers = list(self.directory.list_containers())
        except DirectoryUnreachable:
            raise
        except Exception as exc:
            logger.error("Container listing failed", error=str(exc))
            raise DirectoryUnreachable(str(exc)) from exc

        running = [c for c in containers if c.is_running]
        logger.info("Discovered containers", total=len(containers), running=len(running))
        return running, len(containers)

    def _fetch_one(self, request: TailRequest, cancel: _CancelSignal) -> tuple[FetchOutcome, bytes]:
        if self.sink_factory is not None:
            try:
                sink = self.sink_factory(request.container)
            except Exception as exc:
                logger.warning("Sink factory failed", container=request.container.short_id, error=str(exc))
                return Failed(FailureKind.SINK, str(exc)), b""
            return self.fetcher.fetch(self.source, request, sink, cancel), b""
        buffer = io.BytesIO()
        outcome = self.fetcher.fetch(self.source, request, buffer, cancel)
        return outcome, buffer.getvalue()

    def scrape(
        self,
        per_fetch_timeout: float,
        tail_lines: int,
        timestamps: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> ScrapeReport:
        """Fetch every running container's tail, one after another.

        An interrupt (e.g. ``KeyboardInterrupt``) while a fetch is running
        keeps the partial report in ``last_report`` before propagating.
        """
        requests, builder = self._prepare(per_fetch_timeout, tail_lines, timestamps)
        stop = _CancelSignal(cancel)
        try:
            for slot, request in enumerate(requests):
                outcome, output = self._fetch_one(request, stop)
                builder.record(slot, outcome, output)
        except BaseException:
            stop.set()
            self._finish(builder, "sequential", cancelled=True)
            raise
        return self._finish(builder, "sequential")

    async def scrape_async(
        self,
        per_fetch_timeout: float,
        tail_lines: int,
        timestamps: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> ScrapeReport:
        """Fetch every running container's tail concurrently.

        Each fetch runs in a worker thread and owns its report slot, reserved
        in discovery order before anything is dispatched. Cancelling the
        calling task signals every in-flight fetch to close its stream, waits
        for them to do so, keeps the partial report in ``last_report`` and
        re-raises ``asyncio.CancelledError``.
        """
        requests, builder = await asyncio.to_thread(self._prepare, per_fetch_timeout, tail_lines, timestamps)
        stop = _CancelSignal(cancel)
        sem = asyncio.Semaphore(self.concurrency)
        loop = asyncio.get_running_loop()
        # One worker per slot; the default executor would cap concurrency below the semaphore.
        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="woki-fetch")

        async def _run(slot: int, request: TailRequest) -> None:
            async with sem:
                work = loop.run_in_executor(executor, self._fetch_one, request, stop)
                try:
                    outcome, output = await asyncio.shield(work)
                except asyncio.CancelledError:
                    stop.set()
                    outcome, output = await work
                    builder.record(slot, outcome, output)
                    raise
            builder.record(slot, outcome, output)

        tasks = [asyncio.create_task(_run(slot, request)) for slot, request in enumerate(requests)]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            stop.set()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._finish(builder, "concurrent", cancelled=True)
            raise
        finally:
            executor.shutdown(wait=False)
        return self._finish(builder, "concurrent")

    def _prepare(
        self, per_fetch_timeout: float, tail_lines: int, timestamps: bool
    ) -> tuple[list[TailRequest], ReportBuilder]:
        validate_tail_options(tail_lines, per_fetch_timeout)
        running, discovered = self.discover()
        requests = [TailRequest(c, tail_lines, timestamps, per_fetch_timeout) for c in running]
        return requests, ReportBuilder(running, discovered)

    def _finish(self, builder: ReportBuilder, mode: str, cancelled: bool = False) -> ScrapeReport:
        report = builder.finalize()
        self.last_report = report
        logger.info("Scrape finished", mode=mode, cancelled=cancelled, **report.summary())
        return report


def scrape(
    directory: RuntimeDirectory,
    source: LogSource,
    per_fetch_timeout: float,
    tail_lines: int,
    timestamps: bool = True,
    cancel: Optional[threading.Event] = None,
) -> ScrapeReport:
    """Sequential scrape with a default fetcher and in-memory sinks."""
    return ScrapeOrchestrator(directory, source).scrape(per_fetch_timeout, tail_lines, timestamps, cancel)
