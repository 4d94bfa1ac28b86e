"""Docker Engine API client over a unix socket or plain TCP.

Only the two read-only endpoints the scraper needs are used:
``/containers/json`` for discovery and ``/containers/{id}/logs`` for tails.
"""

from __future__ import annotations

import http.client
import json
import os
import socket
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote, urlencode, urlsplit

import structlog

from ..errors import DirectoryUnreachable, SourceOpenError, SourceReadError
from ..models import ContainerRef

logger = structlog.get_logger(__name__)

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
DEFAULT_TIMEOUT_SECONDS = 5.0


class _UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(self, *, socket_path: str, timeout: Optional[float]) -> None:
        super().__init__("localhost", timeout=timeout)
        self._socket_path = socket_path

    def connect(self) -> None:  # type: ignore[override]
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        # Visible before connecting so an abort from another thread can shut it down.
        self.sock = sock
        sock.connect(self._socket_path)


@dataclass(frozen=True)
class DockerEndpoint:
    scheme: str
    address: str
    port: int = 0

    @classmethod
    def parse(cls, docker_host: Optional[str] = None) -> "DockerEndpoint":
        """Resolve ``docker_host``, then ``$DOCKER_HOST``, then the default socket."""
        raw = str(docker_host or os.getenv("DOCKER_HOST") or DEFAULT_DOCKER_HOST).strip()
        parts = urlsplit(raw)
        if parts.scheme == "unix":
            path = parts.path or parts.netloc
            if not path:
                raise ValueError(f"Missing socket path in docker host: {raw}")
            return cls(scheme="unix", address=path)
        if parts.scheme in ("tcp", "http"):
            if not parts.hostname:
                raise ValueError(f"Missing host in docker host: {raw}")
            return cls(scheme="tcp", address=parts.hostname, port=parts.port or 2375)
        raise ValueError(f"Unsupported docker host: {raw}")

    def connect(self, timeout: Optional[float]) -> http.client.HTTPConnection:
        if self.scheme == "unix":
            return _UnixHTTPConnection(socket_path=self.address, timeout=timeout)
        return http.client.HTTPConnection(self.address, self.port, timeout=timeout)


@dataclass(frozen=True)
class DockerResponse:
    status: int
    ok: bool
    data: Any
    error: str | None


def _error_message(status: int, raw: bytes) -> str:
    try:
        payload = json.loads(raw.decode("utf-8")) if raw else None
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return f"http_{status}: {payload['message']}"
    return f"http_{status}"


class DockerClient:
    """Minimal HTTP client for the Docker Engine API."""

    def __init__(self, docker_host: Optional[str] = None, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.endpoint = DockerEndpoint.parse(docker_host)
        self.timeout_seconds = timeout_seconds

    def get_json(self, path: str) -> DockerResponse:
        p = path if path.startswith("/") else "/" + path
        conn: http.client.HTTPConnection | None = None
        try:
            conn = self.endpoint.connect(max(0.5, float(self.timeout_seconds)))
            conn.request("GET", p, headers={"Host": "docker"})
            resp = conn.getresponse()
            raw = resp.read()
            status = int(resp.status)
            ok = 200 <= status < 300
            if not ok:
                return DockerResponse(status=status, ok=False, data=None, error=_error_message(status, raw))
            try:
                data = json.loads(raw.decode("utf-8")) if raw else None
            except ValueError:
                data = raw.decode("utf-8", errors="replace")
            return DockerResponse(status=status, ok=True, data=data, error=None)
        except FileNotFoundError:
            return DockerResponse(status=0, ok=False, data=None, error="socket_not_found")
        except (OSError, http.client.HTTPException) as exc:
            return DockerResponse(status=0, ok=False, data=None, error=f"{type(exc).__name__}: {exc}")
        finally:
            if conn is not None:
                conn.close()

    def open_stream(
        self,
        path: str,
        timeout: Optional[float],
        on_connect: Optional[Callable[["PendingOpen"], None]] = None,
    ) -> tuple[http.client.HTTPConnection, http.client.HTTPResponse]:
        """Send a GET and return the connection with its unread response.

        ``on_connect`` receives a PendingOpen before anything blocks; closing
        it aborts the request from another thread.
        """
        conn = self.endpoint.connect(timeout)
        pending = PendingOpen(conn)
        if on_connect is not None:
            on_connect(pending)
        try:
            pending.check()
            conn.connect()
            pending.check()
            conn.request("GET", path, headers={"Host": "docker"})
            resp = conn.getresponse()
            pending.check()
            return conn, resp
        except BaseException:
            conn.close()
            raise


def _container_from_json(item: dict[str, Any]) -> ContainerRef:
    container_id = str(item.get("Id") or "")
    names = item.get("Names") if isinstance(item.get("Names"), list) else []
    name = str(names[0]).lstrip("/") if names else ""
    return ContainerRef(id=container_id, name=name or container_id[:12], state=str(item.get("State") or ""))


class DockerDirectory:
    """Lists containers known to the Docker daemon."""

    def __init__(self, client: DockerClient):
        self.client = client

    def list_containers(self) -> list[ContainerRef]:
        listing = self.client.get_json("/containers/json?all=1")
        if not listing.ok or not isinstance(listing.data, list):
            logger.error("Docker container listing failed", status=listing.status, error=listing.error)
            raise DirectoryUnreachable(f"docker_list_failed: {listing.error or listing.status}")

        containers = [_container_from_json(item) for item in listing.data if isinstance(item, dict)]
        logger.debug("Listed containers", count=len(containers))
        return containers


def _shutdown(conn: http.client.HTTPConnection) -> None:
    sock = conn.sock
    if sock is not None:
        try:
            # Wakes a connect/recv blocked in another thread.
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass


class PendingOpen:
    """Abort handle for a connection that has not produced a response yet."""

    def __init__(self, conn: http.client.HTTPConnection):
        self._conn = conn
        self.aborted = False

    def check(self) -> None:
        if self.aborted:
            raise ConnectionAbortedError("open aborted")

    def close(self) -> None:
        self.aborted = True
        _shutdown(self._conn)


class DockerLogStream:
    """Open ``/logs`` response; ``close`` may be called from another thread."""

    def __init__(self, container_id: str, conn: http.client.HTTPConnection, resp: http.client.HTTPResponse):
        self.container_id = container_id
        self._conn = conn
        self._resp = resp

    def read(self, size: int) -> bytes:
        try:
            return self._resp.read1(size)
        except http.client.IncompleteRead as exc:
            raise SourceReadError(self.container_id, f"truncated stream after {len(exc.partial)} bytes") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise SourceReadError(self.container_id, f"{type(exc).__name__}: {exc}") from exc

    def close(self) -> None:
        _shutdown(self._conn)
        self._resp.close()
        self._conn.close()


class DockerLogSource:
    """Opens container log tails through the Docker Engine API."""

    def __init__(self, client: DockerClient):
        self.client = client

    def open(
        self,
        container_id: str,
        tail_lines: int,
        timestamps: bool,
        timeout: Optional[float] = None,
        on_connect: Optional[Callable[[PendingOpen], None]] = None,
    ) -> DockerLogStream:
        query = urlencode(
            {
                "stdout": 1,
                "stderr": 1,
                "timestamps": 1 if timestamps else 0,
                "tail": int(tail_lines),
            }
        )
        path = f"/containers/{quote(container_id, safe='')}/logs?{query}"
        try:
            conn, resp = self.client.open_stream(path, timeout, on_connect)
        except FileNotFoundError as exc:
            raise SourceOpenError(container_id, "socket_not_found") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise SourceOpenError(container_id, f"{type(exc).__name__}: {exc}") from exc

        if resp.status != 200:
            try:
                raw = resp.read()
            except (OSError, http.client.HTTPException):
                raw = b""
            finally:
                conn.close()
            raise SourceOpenError(container_id, _error_message(resp.status, raw))

        if conn.sock is not None:
            # Reads block until data, EOF or close(); the caller owns the deadline.
            conn.sock.settimeout(None)
        logger.debug("Opened log stream", container=container_id[:12], tail=tail_lines, timestamps=timestamps)
        return DockerLogStream(container_id, conn, resp)


def docker_runtime(docker_host: Optional[str] = None, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> tuple[DockerDirectory, DockerLogSource]:
    """Build a directory/log-source pair sharing one endpoint."""
    client = DockerClient(docker_host, timeout_seconds=timeout_seconds)
    return DockerDirectory(client), DockerLogSource(client)
