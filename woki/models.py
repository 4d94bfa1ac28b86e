"""Data types shared by the fetcher, the orchestrator and the reporter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Union

RUNNING = "running"
MAX_TAIL_LINES = 100_000


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str
    state: str

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING

    @property
    def short_id(self) -> str:
        return self.id[:12]


def validate_tail_options(tail_lines: int, timeout: float) -> None:
    if isinstance(tail_lines, bool) or not isinstance(tail_lines, int):
        raise ValueError(f"tail_lines must be an integer, got {tail_lines!r}")
    if not 1 <= tail_lines <= MAX_TAIL_LINES:
        raise ValueError(f"tail_lines must be between 1 and {MAX_TAIL_LINES}, got {tail_lines}")
    if not timeout > 0:
        raise ValueError(f"timeout must be positive, got {timeout}")


@dataclass(frozen=True)
class TailRequest:
    """Options for fetching one container's log tail."""

    container: ContainerRef
    tail_lines: int
    timestamps: bool = True
    timeout: float = 2.0

    def __post_init__(self) -> None:
        validate_tail_options(self.tail_lines, self.timeout)


class FailureKind(str, Enum):
    OPEN = "open"
    READ = "read"
    SINK = "sink"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Completed:
    bytes_written: int

    status = "completed"


@dataclass(frozen=True)
class TimedOut:
    # Bytes forwarded to the sink before the deadline cut the copy short.
    bytes_written: int

    status = "timed_out"


@dataclass(frozen=True)
class Failed:
    kind: FailureKind
    message: str
    bytes_written: int = 0

    status = "failed"


FetchOutcome = Union[Completed, TimedOut, Failed]


@dataclass(frozen=True)
class ScrapeEntry:
    container: ContainerRef
    outcome: FetchOutcome
    output: bytes = b""


@dataclass(frozen=True)
class ScrapeReport:
    """Per-container outcomes of one scrape, in discovery order.

    ``discovered`` counts every container the runtime listed, running or
    not; ``entries`` only holds the running ones.
    """

    entries: tuple[ScrapeEntry, ...] = ()
    discovered: int = 0

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ScrapeEntry]:
        return iter(self.entries)

    def __getitem__(self, index: int) -> ScrapeEntry:
        return self.entries[index]

    def completed(self) -> list[ScrapeEntry]:
        return [e for e in self.entries if isinstance(e.outcome, Completed)]

    def timed_out(self) -> list[ScrapeEntry]:
        return [e for e in self.entries if isinstance(e.outcome, TimedOut)]

    def failed(self) -> list[ScrapeEntry]:
        return [e for e in self.entries if isinstance(e.outcome, Failed)]

    def summary(self) -> dict[str, int]:
        counts = {"discovered": self.discovered, "scraped": len(self.entries)}
        for status in (Completed.status, TimedOut.status, Failed.status):
            counts[status] = 0
        for entry in self.entries:
            counts[entry.outcome.status] += 1
        return counts


@dataclass
class ReportBuilder:
    """Reserves one slot per running container before any fetch starts."""

    containers: list[ContainerRef]
    discovered: int
    _slots: list[ScrapeEntry | None] = field(init=False)

    def __post_init__(self) -> None:
        self._slots = [None] * len(self.containers)

    def record(self, slot: int, outcome: FetchOutcome, output: bytes = b"") -> None:
        if self._slots[slot] is not None:
            raise RuntimeError(f"slot {slot} already recorded")
        self._slots[slot] = ScrapeEntry(self.containers[slot], outcome, output)

    def is_recorded(self, slot: int) -> bool:
        return self._slots[slot] is not None

    def finalize(self) -> ScrapeReport:
        """Freeze the report, marking unresolved slots as cancelled."""
        entries = []
        for container, entry in zip(self.containers, self._slots):
            if entry is None:
                entry = ScrapeEntry(container, Failed(FailureKind.CANCELLED, "scrape cancelled before fetch finished"))
            entries.append(entry)
        return ScrapeReport(entries=tuple(entries), discovered=self.discovered)
