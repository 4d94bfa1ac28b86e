"""Exception types raised by the scraper and its runtime collaborators."""


class WokiError(Exception):
    """Base class for all scraper errors."""


class DirectoryUnreachable(WokiError):
    """The container runtime could not be asked for its container list."""


class SourceError(WokiError):
    """A single container's log source misbehaved."""

    def __init__(self, container_id: str, message: str):
        super().__init__(f"{container_id}: {message}")
        self.container_id = container_id
        self.message = message


class SourceOpenError(SourceError):
    """The log stream could not be opened."""


class SourceReadError(SourceError):
    """Reading from an open log stream failed."""


class SinkError(WokiError):
    """The downstream sink refused bytes."""
