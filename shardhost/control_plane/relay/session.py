"""Session relay -- bridges one viewer to a workload's console and metrics.

A session runs three concurrent loops that only talk to their own viewer:

- console output: runtime bytes forwarded verbatim, one chunk at a time;
- viewer input: bytes written verbatim to the workload's stdin;
- metrics: raw samples parsed, paired and throttled into snapshots.

The input loop owns the session: when the viewer goes away the other two
loops are cancelled and both runtime subscriptions are closed, whichever
of them is mid-flight.  Console end is terminal for the console only.
Metrics faults trigger a bounded number of delayed re-subscriptions and
never end the session.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import TYPE_CHECKING, Protocol, TypeVar

from loguru import logger

from shardhost.control_plane.context import RelaySession
from shardhost.control_plane.errors import MetricsStreamFault, SessionAuthDenied
from shardhost.control_plane.managers import workloads as workload_mgr
from shardhost.control_plane.provisioning.naming import container_name
from shardhost.control_plane.registry import ShuttingDownError
from shardhost.control_plane.relay.metrics import EmitThrottle, SampleTracker
from shardhost.control_plane.runtime.base import RuntimeAPIError, RuntimeUnreachableError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from shardhost.control_plane.db.tables import Workload
    from shardhost.control_plane.registry import RelayRegistry
    from shardhost.control_plane.relay.metrics import MetricsSnapshot
    from shardhost.control_plane.runtime.base import ContainerRuntime, RuntimeState

T = TypeVar("T")

_RUNTIME_ERRORS = (RuntimeAPIError, RuntimeUnreachableError)


class Viewer(Protocol):
    """The remote end of a relay session (a WebSocket in production)."""

    async def send_output(self, data: bytes) -> None:
        ...

    async def send_notice(self, message: str) -> None:
        ...

    async def send_error(self, message: str) -> None:
        ...

    async def send_metrics(self, snapshot: MetricsSnapshot) -> None:
        ...

    async def receive_input(self) -> bytes | None:
        """Next chunk typed by the viewer, or ``None`` on disconnect."""
        ...


class SessionRelay:
    """Opens and runs relay sessions; one instance per process."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        registry: RelayRegistry,
        *,
        metrics_interval: float = 1.0,
        metrics_retry_delay: float = 5.0,
        metrics_max_retries: int = 1,
        runtime_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runtime = runtime
        self._registry = registry
        self._metrics_interval = metrics_interval
        self._metrics_retry_delay = metrics_retry_delay
        self._metrics_max_retries = metrics_max_retries
        self._runtime_timeout = runtime_timeout
        self._clock = clock

    @property
    def registry(self) -> RelayRegistry:
        return self._registry

    # -- Entry points ----------------------------------------------------------

    async def authorize(self, db: AsyncSession, workload_id: str, tenant_id: str) -> Workload:
        """Return the workload if *tenant_id* owns it, else raise ``SessionAuthDenied``.

        Only the database is consulted; the runtime is never contacted for a
        denied request.
        """
        workload = await workload_mgr.find_owned_workload(db, workload_id, tenant_id)
        if workload is None:
            logger.warning("Relay: tenant {} denied access to workload {}", tenant_id, workload_id)
            raise SessionAuthDenied(workload_id, tenant_id)
        return workload

    async def open_session(self, db: AsyncSession, workload_id: str, tenant_id: str, viewer: Viewer) -> None:
        workload = await self.authorize(db, workload_id, tenant_id)
        await self.run(workload, tenant_id, viewer)

    async def run(self, workload: Workload, tenant_id: str, viewer: Viewer) -> None:
        """Relay until the viewer disconnects (or the task is cancelled)."""
        name = container_name(workload.workload_id, workload.name)
        try:
            state = await self._bounded(self._runtime.inspect(name))
        except _RUNTIME_ERRORS as exc:
            logger.warning("Relay: cannot resolve {}: {}", name, exc)
            await viewer.send_error(f"Connection error: {exc}")
            return

        session = RelaySession(tenant_id=tenant_id, workload_id=workload.workload_id, resource_name=name)
        session.task = asyncio.current_task()
        try:
            self._registry.register(session)
        except ShuttingDownError:
            await viewer.send_error("Service is shutting down")
            return

        logger.info("Relay {}: tenant {} attached to {}", session.session_id, tenant_id, name)
        tasks: list[asyncio.Task[None]] = []
        try:
            await self._attach_console(session, viewer, workload, state)
            if session.console is not None:
                tasks.append(asyncio.create_task(self._pump_console(session, viewer), name=f"console-{name}"))
            tasks.append(asyncio.create_task(self._pump_metrics(session, viewer), name=f"metrics-{name}"))
            await self._pump_input(session, viewer)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self._close_console(session)
            self._registry.unregister(session.session_id)
            logger.info("Relay {}: detached from {}", session.session_id, name)

    # -- Console ---------------------------------------------------------------

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._runtime_timeout)
        except TimeoutError:
            msg = f"Runtime did not answer within {self._runtime_timeout}s"
            raise RuntimeUnreachableError(msg) from None

    async def _attach_console(
        self, session: RelaySession, viewer: Viewer, workload: Workload, state: RuntimeState
    ) -> None:
        try:
            session.console = await self._bounded(self._runtime.attach(session.resource_name))
        except _RUNTIME_ERRORS as exc:
            logger.error("Relay {}: attach to {} failed: {}", session.session_id, session.resource_name, exc)
            await viewer.send_error(f"Could not attach to server console: {exc}")
            return

        await viewer.send_notice("Connected to live console")
        await viewer.send_notice(f"Server: {workload.name} | Port: {workload.port} | Status: {state.status}")

    async def _pump_console(self, session: RelaySession, viewer: Viewer) -> None:
        console = session.console
        if console is None:
            return
        try:
            while (chunk := await console.read()) is not None:
                await viewer.send_output(chunk)
        except _RUNTIME_ERRORS as exc:
            logger.warning("Relay {}: console stream error: {}", session.session_id, exc)
            await self._close_console(session)
            await viewer.send_error(f"Stream error: {exc}")
            return

        logger.info("Relay {}: console stream ended", session.session_id)
        await self._close_console(session)
        await viewer.send_notice("Console disconnected")

    async def _pump_input(self, session: RelaySession, viewer: Viewer) -> None:
        while (data := await viewer.receive_input()) is not None:
            console = session.console
            if console is None:
                await viewer.send_error("Console not connected")
                continue
            try:
                await console.write(data)
            except _RUNTIME_ERRORS as exc:
                logger.warning("Relay {}: console write failed: {}", session.session_id, exc)
                await self._close_console(session)
                await viewer.send_error(f"Stream error: {exc}")

    async def _close_console(self, session: RelaySession) -> None:
        console, session.console = session.console, None
        if console is None:
            return
        try:
            await console.close()
        except _RUNTIME_ERRORS as exc:
            logger.debug("Relay {}: console close failed: {}", session.session_id, exc)

    # -- Metrics ---------------------------------------------------------------

    async def _pump_metrics(self, session: RelaySession, viewer: Viewer) -> None:
        """Stream metrics, re-subscribing after a fault at most ``metrics_max_retries`` times."""
        throttle = EmitThrottle(self._metrics_interval, self._clock)
        tracker = SampleTracker(throttle)
        while True:
            try:
                await self._stream_metrics(session, viewer, tracker, throttle)
            except MetricsStreamFault as exc:
                if session.metrics_retries >= self._metrics_max_retries:
                    logger.warning("Relay {}: {}; metrics disabled for this session", session.session_id, exc)
                    return
                session.metrics_retries += 1
                logger.warning(
                    "Relay {}: {}; re-subscribing in {}s ({}/{})",
                    session.session_id,
                    exc,
                    self._metrics_retry_delay,
                    session.metrics_retries,
                    self._metrics_max_retries,
                )
                await asyncio.sleep(self._metrics_retry_delay)
                continue

            logger.debug("Relay {}: metrics stream ended", session.session_id)
            return

    async def _stream_metrics(
        self, session: RelaySession, viewer: Viewer, tracker: SampleTracker, throttle: EmitThrottle
    ) -> None:
        stream = self._runtime.stats(session.resource_name)
        session.metrics_stream = stream
        try:
            async with aclosing(stream):
                async for raw in stream:
                    snapshot = tracker.feed(raw)
                    if snapshot is None:
                        continue
                    session.last_metrics_emit = throttle.last_emit
                    await viewer.send_metrics(snapshot)
        except _RUNTIME_ERRORS as exc:
            msg = f"Metrics stream for {session.resource_name} failed: {exc}"
            raise MetricsStreamFault(msg) from exc
        finally:
            session.metrics_stream = None
