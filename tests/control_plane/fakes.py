"""In-memory stand-ins for the container runtime and a console viewer."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from shardhost.control_plane.db.tables import Workload
from shardhost.control_plane.runtime.base import ContainerSpec, RuntimeAPIError, RuntimeState

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"
TOKENS = {"token-a": TENANT_A, "token-b": TENANT_B}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeConsole:
    """``ConsoleStream`` backed by a queue the test feeds."""

    def __init__(self) -> None:
        self._chunks: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.written: list[bytes] = []
        self.closed = False

    def feed(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def end(self) -> None:
        self._chunks.put_nowait(None)

    async def read(self) -> bytes | None:
        if self.closed:
            return None
        return await self._chunks.get()

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise RuntimeAPIError(409, "stream closed")
        self.written.append(data)

    async def close(self) -> None:
        self.closed = True
        self._chunks.put_nowait(None)


class FakeRuntime:
    """In-memory ``ContainerRuntime``.

    ``fail_on[operation]`` makes that operation raise.  Each ``stats``
    subscription consumes one script from ``stats_scripts``; items are
    yielded in order (exceptions are raised), then the stream stays open
    until cancelled unless ``stats_hold_open`` is false.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.containers: dict[str, RuntimeState] = {}
        self.specs: dict[str, ContainerSpec] = {}
        self.fail_on: dict[str, Exception] = {}
        self.running_after_start = True
        self.stop_timeouts: list[int] = []
        self.removed: list[tuple[str, bool]] = []
        self.console = FakeConsole()
        self.stats_scripts: list[list[Any]] = []
        self.stats_hold_open = True
        self.stats_closed = 0
        self.logs_text = "[Server thread/INFO]: Done (3.2s)!\n"
        self.closed = False

    def _record(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        exc = self.fail_on.get(operation)
        if exc is not None:
            raise exc

    def _get(self, name: str) -> RuntimeState:
        try:
            return self.containers[name]
        except KeyError:
            raise RuntimeAPIError(404, f"No such container: {name}") from None

    def add_running(self, name: str) -> RuntimeState:
        state = RuntimeState(resource_id=f"id-{name}", name=name, running=True, status="running", health="healthy")
        self.containers[name] = state
        return state

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]

    async def create(self, spec: ContainerSpec) -> str:
        self._record("create", spec.name)
        if spec.name in self.containers:
            raise RuntimeAPIError(409, f"Conflict: {spec.name} already exists")
        self.specs[spec.name] = spec
        self.containers[spec.name] = RuntimeState(
            resource_id=f"id-{spec.name}", name=spec.name, running=False, status="created"
        )
        return f"id-{spec.name}"

    async def start(self, name: str) -> None:
        self._record("start", name)
        state = self._get(name)
        if state.running:
            raise RuntimeAPIError(304, "container already started")
        state.running = self.running_after_start
        state.status = "running" if state.running else "exited"

    async def stop(self, name: str, *, timeout: int) -> None:
        self._record("stop", name)
        self.stop_timeouts.append(timeout)
        state = self._get(name)
        if not state.running:
            raise RuntimeAPIError(304, "container already stopped")
        state.running = False
        state.status = "exited"

    async def restart(self, name: str, *, timeout: int) -> None:
        self._record("restart", name)
        state = self._get(name)
        state.running = True
        state.status = "running"

    async def kill(self, name: str) -> None:
        self._record("kill", name)
        state = self._get(name)
        if not state.running:
            raise RuntimeAPIError(409, f"Container {name} is not running")
        state.running = False
        state.status = "exited"

    async def remove(self, name: str, *, keep_volumes: bool = True) -> None:
        self._record("remove", name)
        self._get(name)
        self.removed.append((name, keep_volumes))
        del self.containers[name]

    async def inspect(self, name: str) -> RuntimeState:
        self._record("inspect", name)
        return self._get(name)

    async def attach(self, name: str) -> FakeConsole:
        self._record("attach", name)
        return self.console

    async def stats(self, name: str) -> AsyncIterator[Any]:
        self.calls.append(("stats", name))
        script = self.stats_scripts.pop(0) if self.stats_scripts else []
        try:
            for item in script:
                if isinstance(item, Exception):
                    raise item
                yield item
                await asyncio.sleep(0)
            if self.stats_hold_open:
                await asyncio.Event().wait()
        finally:
            self.stats_closed += 1

    async def logs(self, name: str, *, tail: int = 100) -> str:
        self._record("logs", name)
        self._get(name)
        return self.logs_text

    async def ping(self) -> dict[str, Any]:
        self._record("ping", "daemon")
        return {"containers": len(self.containers), "images": 1}

    async def pull_image(self, image: str) -> None:
        self._record("pull", image)

    async def close(self) -> None:
        self.closed = True


class FakeViewer:
    """Relay viewer recording everything it is sent."""

    def __init__(self) -> None:
        self.output: list[bytes] = []
        self.notices: list[str] = []
        self.errors: list[str] = []
        self.metrics: list[Any] = []
        self._inputs: asyncio.Queue[bytes | None] = asyncio.Queue()

    def type(self, data: bytes) -> None:
        self._inputs.put_nowait(data)

    def disconnect(self) -> None:
        self._inputs.put_nowait(None)

    async def send_output(self, data: bytes) -> None:
        self.output.append(data)

    async def send_notice(self, message: str) -> None:
        self.notices.append(message)

    async def send_error(self, message: str) -> None:
        self.errors.append(message)

    async def send_metrics(self, snapshot: Any) -> None:
        self.metrics.append(snapshot)

    async def receive_input(self) -> bytes | None:
        return await self._inputs.get()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds; fail the test after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.005)


def make_workload(**overrides: Any) -> Workload:
    """Transient workload row (not added to any session)."""
    values: dict[str, Any] = {
        "workload_id": "w1",
        "external_id": "00000000-0000-0000-0000-000000000001",
        "name": "Survival World",
        "tenant_id": TENANT_A,
        "port": 25565,
        "address": "154.12.1.7",
        "region": "US-East",
        "location": "us-east-1",
        "memory_gib": 2,
        "disk_gib": 10,
        "version": "LATEST",
        "status": "provisioning",
        "admin_secret": "AdminSecret1",
        "console_secret": "ConsoleSecr1",
    }
    values.update(overrides)
    return Workload(**values)


