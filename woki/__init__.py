"""woki: fetch a bounded, time-limited tail of every running container's logs."""

from .errors import (
    DirectoryUnreachable,
    SinkError,
    SourceError,
    SourceOpenError,
    SourceReadError,
    WokiError,
)
from .fetcher import BoundedFetcher
from .models import (
    Completed,
    ContainerRef,
    Failed,
    FailureKind,
    FetchOutcome,
    ScrapeEntry,
    ScrapeReport,
    TailRequest,
    TimedOut,
)
from .orchestrator import ScrapeOrchestrator, scrape

__version__ = "0.1.0"

__all__ = [
    "BoundedFetcher",
    "Completed",
    "ContainerRef",
    "DirectoryUnreachable",
    "Failed",
    "FailureKind",
    "FetchOutcome",
    "ScrapeEntry",
    "ScrapeOrchestrator",
    "ScrapeReport",
    "SinkError",
    "SourceError",
    "SourceOpenError",
    "SourceReadError",
    "TailRequest",
    "TimedOut",
    "WokiError",
    "scrape",
]
