"""Container runtime boundary.

The control plane treats the container runtime as an opaque API.  Everything
it needs is captured by the ``ContainerRuntime`` protocol below; the Docker
implementation lives in ``runtime.docker``.  Resources are always addressed by
the deterministic name from ``provisioning.naming``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RuntimeUnreachableError(ConnectionError):
    """The runtime boundary itself could not be reached (or did not answer in time)."""


class RuntimeAPIError(RuntimeError):
    """The runtime answered with an error status."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"[{status}] {message}")

    @property
    def not_found(self) -> bool:
        return self.status == 404

    @property
    def not_modified(self) -> bool:
        """Already in the requested state (e.g. starting a running container)."""
        return self.status == 304


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HealthCheck:
    test: list[str]
    interval_s: int = 30
    timeout_s: int = 10
    retries: int = 3
    start_period_s: int = 60


@dataclass
class ContainerSpec:
    """Everything the runtime needs to create one workload resource."""

    name: str
    image: str
    env: dict[str, str] = field(default_factory=dict)
    port_bindings: dict[int, int] = field(default_factory=dict)
    """Container TCP port -> host port."""

    memory_bytes: int | None = None
    binds: list[str] = field(default_factory=list)
    """``host_path:container_path`` volume binds."""

    restart_policy: str = "unless-stopped"
    healthcheck: HealthCheck | None = None
    labels: dict[str, str] = field(default_factory=dict)
    log_max_size: str = "10m"
    log_max_files: int = 5


@dataclass
class RuntimeState:
    """Subset of an inspect result the control plane cares about."""

    resource_id: str
    name: str
    running: bool
    status: str
    health: str = "none"
    started_at: str | None = None
    restart_count: int = 0
    memory_limit: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ConsoleStream(Protocol):
    """Bidirectional byte stream attached to a resource's standard I/O."""

    async def read(self) -> bytes | None:
        """Next chunk of output, or ``None`` once the stream has ended."""
        ...

    async def write(self, data: bytes) -> None:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ContainerRuntime(Protocol):
    """Async protocol for the container runtime boundary.

    Raises ``RuntimeAPIError`` for error responses and
    ``RuntimeUnreachableError`` when the runtime cannot be contacted.
    """

    async def create(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a resource.  Returns its id."""
        ...

    async def start(self, name: str) -> None:
        ...

    async def stop(self, name: str, *, timeout: int) -> None:
        """Signal a cooperative stop; force it after *timeout* seconds."""
        ...

    async def restart(self, name: str, *, timeout: int) -> None:
        ...

    async def kill(self, name: str) -> None:
        ...

    async def remove(self, name: str, *, keep_volumes: bool = True) -> None:
        ...

    async def inspect(self, name: str) -> RuntimeState:
        ...

    async def attach(self, name: str) -> ConsoleStream:
        ...

    def stats(self, name: str) -> AsyncIterator[bytes | dict[str, Any]]:
        """Continuous stream of raw usage samples (possibly fragmented payloads)."""
        ...

    async def logs(self, name: str, *, tail: int = 100) -> str:
        ...

    async def ping(self) -> dict[str, Any]:
        """Return runtime info; raises ``RuntimeUnreachableError`` if down."""
        ...

    async def pull_image(self, image: str) -> None:
        ...

    async def close(self) -> None:
        ...
