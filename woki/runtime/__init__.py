"""Container runtime collaborators: discovery and log sources."""

from .base import ByteSink, LogSource, LogStream, RuntimeDirectory
from .docker import DockerClient, DockerDirectory, DockerEndpoint, DockerLogSource, docker_runtime

__all__ = [
    "ByteSink",
    "DockerClient",
    "DockerDirectory",
    "DockerEndpoint",
    "DockerLogSource",
    "LogSource",
    "LogStream",
    "RuntimeDirectory",
    "docker_runtime",
]
