from __future__ import annotations

import asyncio
import io
import threading
import time

import pytest
from fakes import FakeDirectory, FakeSource, FakeStream, log_lines, running, stopped

from woki.errors import DirectoryUnreachable, SourceOpenError
from woki.models import Completed, Failed, FailureKind, TimedOut
from woki.orchestrator import ScrapeOrchestrator, scrape


def _assert_abc_report(report, source: FakeSource) -> None:
    assert len(report) == 2
    assert report.discovered == 3
    assert [e.container.name for e in report] == ["alpha", "charlie"]

    a, c = report
    assert isinstance(a.outcome, Completed)
    assert a.output.count(b"\n") == 10
    assert isinstance(c.outcome, TimedOut)
    assert c.outcome.bytes_written == len(c.output) > 0

    opened = [entry[0] for entry in source.opened]
    assert "b" * 64 not in opened
    assert all(source.streams[cid].close_calls == 1 for cid in opened)


def test_sequential_scrape_skips_stopped_and_times_out_stalled(abc_runtime) -> None:
    directory, source = abc_runtime

    report = ScrapeOrchestrator(directory, source).scrape(per_fetch_timeout=0.3, tail_lines=10)

    _assert_abc_report(report, source)
    assert report.summary() == {"discovered": 3, "scraped": 2, "completed": 1, "timed_out": 1, "failed": 0}


@pytest.mark.asyncio
async def test_concurrent_scrape_skips_stopped_and_times_out_stalled(abc_runtime) -> None:
    directory, source = abc_runtime

    report = await ScrapeOrchestrator(directory, source).scrape_async(per_fetch_timeout=0.3, tail_lines=10)

    _assert_abc_report(report, source)


def test_module_level_scrape_uses_sequential_orchestrator(abc_runtime) -> None:
    directory, source = abc_runtime

    report = scrape(directory, source, per_fetch_timeout=0.3, tail_lines=10)

    _assert_abc_report(report, source)


def test_directory_failure_aborts_without_report() -> None:
    directory = FakeDirectory(error=DirectoryUnreachable("docker_list_failed: socket_not_found"))
    orchestrator = ScrapeOrchestrator(directory, FakeSource({}))

    with pytest.raises(DirectoryUnreachable):
        orchestrator.scrape(per_fetch_timeout=1.0, tail_lines=10)
    assert orchestrator.last_report is None


@pytest.mark.asyncio
async def test_unexpected_directory_error_is_wrapped() -> None:
    directory = FakeDirectory(error=ConnectionRefusedError("refused"))

    with pytest.raises(DirectoryUnreachable, match="refused"):
        await ScrapeOrchestrator(directory, FakeSource({})).scrape_async(per_fetch_timeout=1.0, tail_lines=10)


def test_no_containers_gives_empty_report() -> None:
    report = ScrapeOrchestrator(FakeDirectory([]), FakeSource({})).scrape(per_fetch_timeout=1.0, tail_lines=10)

    assert len(report) == 0
    assert report.discovered == 0
    assert list(report) == []


def test_only_stopped_containers_gives_empty_report() -> None:
    directory = FakeDirectory([stopped("x"), stopped("y")])

    report = ScrapeOrchestrator(directory, FakeSource({})).scrape(per_fetch_timeout=1.0, tail_lines=10)

    assert len(report) == 0
    assert report.discovered == 2


def test_invalid_options_rejected_before_listing() -> None:
    directory = FakeDirectory([running("x")])
    orchestrator = ScrapeOrchestrator(directory, FakeSource({}))

    with pytest.raises(ValueError):
        orchestrator.scrape(per_fetch_timeout=0, tail_lines=10)
    with pytest.raises(ValueError):
        orchestrator.scrape(per_fetch_timeout=1.0, tail_lines=0)
    assert directory.calls == 0


def test_failures_do_not_stop_other_containers() -> None:
    directory = FakeDirectory([running("one"), running("two"), running("three")])
    source = FakeSource(
        {
            "one": FakeStream(log_lines(2)),
            "two": SourceOpenError("two", "http_500: boom"),
            "three": FakeStream(log_lines(4)),
        }
    )

    report = ScrapeOrchestrator(directory, source).scrape(per_fetch_timeout=1.0, tail_lines=10)

    assert [e.outcome.status for e in report] == ["completed", "failed", "completed"]
    assert report[1].outcome.kind is FailureKind.OPEN
    assert report.failed()[0].container.id == "two"
    assert len(report.completed()) == 2


@pytest.mark.asyncio
async def test_concurrent_stalls_are_bounded_by_one_timeout() -> None:
    ids = [f"c{i}" for i in range(6)]
    directory = FakeDirectory([running(cid) for cid in ids])
    source = FakeSource({cid: FakeStream(block_forever=True) for cid in ids})

    started = time.monotonic()
    report = await ScrapeOrchestrator(directory, source, concurrency=6).scrape_async(
        per_fetch_timeout=0.3, tail_lines=10
    )
    elapsed = time.monotonic() - started

    assert len(report) == 6
    assert all(isinstance(e.outcome, TimedOut) for e in report)
    assert elapsed < 1.2
    assert all(source.streams[cid].close_calls == 1 for cid in ids)


@pytest.mark.asyncio
async def test_concurrent_report_keeps_discovery_order() -> None:
    directory = FakeDirectory([running("slow"), running("medium"), running("fast")])
    source = FakeSource(
        {
            "slow": FakeStream(log_lines(1, "slow"), delay=0.2),
            "medium": FakeStream(log_lines(1, "medium"), delay=0.1),
            "fast": FakeStream(log_lines(1, "fast")),
        }
    )

    report = await ScrapeOrchestrator(directory, source).scrape_async(per_fetch_timeout=2.0, tail_lines=10)

    assert [e.container.id for e in report] == ["slow", "medium", "fast"]
    assert all(isinstance(e.outcome, Completed) for e in report)
    assert b"slow" in report[0].output


def test_cancel_signal_records_every_container() -> None:
    directory = FakeDirectory([running("one"), running("two"), running("three")])
    source = FakeSource({cid: FakeStream(log_lines(1), block_forever=True) for cid in ("one", "two", "three")})
    cancel = threading.Event()
    threading.Timer(0.1, cancel.set).start()

    started = time.monotonic()
    report = ScrapeOrchestrator(directory, source).scrape(per_fetch_timeout=5.0, tail_lines=10, cancel=cancel)

    assert time.monotonic() - started < 1.5
    assert len(report) == 3
    assert all(isinstance(e.outcome, Failed) and e.outcome.kind is FailureKind.CANCELLED for e in report)
    # Only the first fetch was in flight; the rest never opened a stream.
    assert [entry[0] for entry in source.opened] == ["one"]


@pytest.mark.asyncio
async def test_task_cancellation_releases_streams_and_keeps_partial_report() -> None:
    ids = ["one", "two", "three"]
    directory = FakeDirectory([running(cid) for cid in ids])
    source = FakeSource({cid: FakeStream(log_lines(1), block_forever=True) for cid in ids})
    orchestrator = ScrapeOrchestrator(directory, source, concurrency=2)

    task = asyncio.create_task(orchestrator.scrape_async(per_fetch_timeout=5.0, tail_lines=10))
    await asyncio.sleep(0.2)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    report = orchestrator.last_report
    assert report is not None
    assert len(report) == 3
    assert all(isinstance(e.outcome, Failed) and e.outcome.kind is FailureKind.CANCELLED for e in report)
    for cid, *_ in source.opened:
        assert source.streams[cid].close_calls == 1


def test_sink_factory_receives_bytes_instead_of_report_output() -> None:
    directory = FakeDirectory([running("one")])
    source = FakeSource({"one": FakeStream(log_lines(3))})
    sinks: dict[str, io.BytesIO] = {}

    def factory(container):
        sinks[container.id] = io.BytesIO()
        return sinks[container.id]

    report = ScrapeOrchestrator(directory, source, sink_factory=factory).scrape(per_fetch_timeout=1.0, tail_lines=3)

    assert report[0].output == b""
    assert sinks["one"].getvalue() == b"".join(log_lines(3))


def test_sink_factory_error_is_a_sink_failure() -> None:
    directory = FakeDirectory([running("one"), running("two")])
    source = FakeSource({"one": FakeStream(log_lines(1)), "two": FakeStream(log_lines(1))})

    def factory(container):
        if container.id == "one":
            raise PermissionError("read-only filesystem")
        return io.BytesIO()

    report = ScrapeOrchestrator(directory, source, sink_factory=factory).scrape(per_fetch_timeout=1.0, tail_lines=3)

    assert report[0].outcome.kind is FailureKind.SINK
    assert isinstance(report[1].outcome, Completed)


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ScrapeOrchestrator(FakeDirectory(), FakeSource({}), concurrency=0)


@pytest.mark.asyncio
async def test_wide_scrape_runs_every_fetch_at_once() -> None:
    ids = [f"w{i}" for i in range(20)]
    directory = FakeDirectory([running(cid) for cid in ids])
    source = FakeSource({cid: FakeStream(block_forever=True) for cid in ids})

    started = time.monotonic()
    report = await ScrapeOrchestrator(directory, source, concurrency=20).scrape_async(
        per_fetch_timeout=0.5, tail_lines=10
    )
    elapsed = time.monotonic() - started

    assert len(report) == 20
    assert all(isinstance(e.outcome, TimedOut) for e in report)
    # Twenty stalls share one deadline instead of queueing behind a small thread pool.
    assert elapsed < 1.5


def test_interrupted_sequential_scrape_keeps_partial_report() -> None:
    directory = FakeDirectory([running("one"), running("two"), running("three")])
    interrupted = FakeStream(log_lines(1), fail_with=KeyboardInterrupt())
    source = FakeSource({"one": FakeStream(log_lines(2)), "two": interrupted, "three": FakeStream(log_lines(2))})
    orchestrator = ScrapeOrchestrator(directory, source)

    with pytest.raises(KeyboardInterrupt):
        orchestrator.scrape(per_fetch_timeout=2.0, tail_lines=10)

    report = orchestrator.last_report
    assert report is not None
    assert [e.container.id for e in report] == ["one", "two", "three"]
    assert isinstance(report[0].outcome, Completed)
    assert [e.outcome.kind for e in report[1:]] == [FailureKind.CANCELLED, FailureKind.CANCELLED]
    assert interrupted.close_calls == 1
    assert [entry[0] for entry in source.opened] == ["one", "two"]


@pytest.mark.asyncio
async def test_task_cancellation_leaves_caller_event_untouched() -> None:
    directory = FakeDirectory([running("one"), running("two")])
    source = FakeSource({cid: FakeStream(block_forever=True) for cid in ("one", "two")})
    orchestrator = ScrapeOrchestrator(directory, source)
    cancel = threading.Event()

    task = asyncio.create_task(orchestrator.scrape_async(per_fetch_timeout=5.0, tail_lines=10, cancel=cancel))
    await asyncio.sleep(0.2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not cancel.is_set()

    # The same event drives the next scrape as if it were fresh.
    source.streams = {cid: FakeStream(log_lines(1)) for cid in ("one", "two")}
    report = await orchestrator.scrape_async(per_fetch_timeout=2.0, tail_lines=10, cancel=cancel)
    assert all(isinstance(e.outcome, Completed) for e in report)
