"""Interfaces the scraper expects from a container runtime client."""

from __future__ import annotations

from typing import Callable, Optional, Protocol, Sequence

from ..models import ContainerRef


class Closable(Protocol):
    def close(self) -> None:
        ...


class LogStream(Protocol):
    def read(self, size: int) -> bytes:
        """Return up to ``size`` bytes, or ``b""`` at end of stream. May block."""
        ...

    def close(self) -> None:
        """Release the stream. Must unblock a ``read`` pending in another thread."""
        ...


class LogSource(Protocol):
    def open(
        self,
        container_id: str,
        tail_lines: int,
        timestamps: bool,
        timeout: Optional[float] = None,
        on_connect: Optional[Callable[[Closable], None]] = None,
    ) -> LogStream:
        """Open the combined stdout/stderr stream of one container.

        ``on_connect`` receives the pending connection before the source
        blocks on it; closing that object from another thread must make
        ``open`` fail promptly.

        Raises:
            SourceOpenError: If the stream cannot be opened.
        """
        ...


class RuntimeDirectory(Protocol):
    def list_containers(self) -> Sequence[ContainerRef]:
        """List every container the runtime knows about, in any state.

        Raises:
            DirectoryUnreachable: If the runtime cannot be queried.
        """
        ...


class ByteSink(Protocol):
    def write(self, data: bytes) -> object:
        ...
