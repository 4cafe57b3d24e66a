"""Workload supervisor -- drives runtime resources for workloads.

The supervisor translates a workload record into runtime calls (create,
start, verify, stop, restart, kill, remove) and never touches the database;
the provisioning service maps its outcomes onto persisted status.

Every runtime call is bounded by ``runtime_timeout`` on our side.  A timeout
or a connection failure surfaces as ``RuntimeUnreachableError``; anything
that goes wrong while launching is wrapped in ``RuntimeLaunchFailure`` so
the caller can park the workload in ``waiting`` without losing its
reservation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from loguru import logger

from shardhost.control_plane.errors import RuntimeLaunchFailure
from shardhost.control_plane.provisioning.naming import container_name, volume_path
from shardhost.control_plane.runtime.base import (
    ContainerSpec,
    HealthCheck,
    RuntimeAPIError,
    RuntimeState,
    RuntimeUnreachableError,
)

if TYPE_CHECKING:
    from shardhost.control_plane.db.tables import Workload
    from shardhost.control_plane.runtime.base import ContainerRuntime
    from shardhost.control_plane.settings import ShardSettings

T = TypeVar("T")

GIB = 1024**3

# Gameplay defaults applied to every new server.
GAMEPLAY_ENV: dict[str, str] = {
    "DIFFICULTY": "3",
    "GAMEMODE": "survival",
    "ONLINE_MODE": "true",
    "ENABLE_COMMAND_BLOCK": "true",
    "SPAWN_PROTECTION": "16",
}


@dataclass
class LaunchResult:
    resource_id: str
    resource_name: str
    running: bool
    health: str


def resource_name_for(workload: Workload) -> str:
    return container_name(workload.workload_id, workload.name)


class WorkloadSupervisor:
    """Runtime-facing half of the workload lifecycle."""

    def __init__(self, runtime: ContainerRuntime, settings: ShardSettings) -> None:
        self._runtime = runtime
        self._settings = settings

    @property
    def runtime(self) -> ContainerRuntime:
        return self._runtime

    async def _call(self, operation: str, awaitable: Awaitable[T], *, extra: float = 0.0) -> T:
        """Await a runtime call under the caller-side timeout."""
        timeout = self._settings.runtime_timeout + extra
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except TimeoutError:
            msg = f"Runtime did not answer {operation} within {timeout}s"
            raise RuntimeUnreachableError(msg) from None

    # -- Launch ----------------------------------------------------------------

    def build_spec(self, workload: Workload) -> ContainerSpec:
        """Translate a reserved workload into the runtime create request."""
        if workload.port is None or workload.console_secret is None:
            msg = f"Workload '{workload.workload_id}' has no reserved endpoint"
            raise ValueError(msg)

        s = self._settings
        env = {
            "EULA": "TRUE",
            "VERSION": workload.version,
            "MEMORY": f"{workload.memory_gib}G",
            "ENABLE_RCON": "true",
            "RCON_PASSWORD": workload.console_secret,
            "RCON_PORT": str(s.admin_port),
            **GAMEPLAY_ENV,
            "JVM_XX_OPTS": s.jvm_flags,
            "JVM_OPTS": "-XX:+AlwaysPreTouch",
        }
        return ContainerSpec(
            name=resource_name_for(workload),
            image=s.image,
            env=env,
            port_bindings={s.service_port: workload.port, s.admin_port: s.admin_host_port},
            memory_bytes=workload.memory_gib * GIB,
            binds=[f"{volume_path(s.data_root, workload.workload_id)}:/data"],
            healthcheck=HealthCheck(test=["CMD-SHELL", "mc-health"]),
            labels={
                "shardhost.workload-id": workload.workload_id,
                "shardhost.workload-name": workload.name,
                "shardhost.tenant-id": workload.tenant_id,
                "shardhost.port": str(workload.port),
                "shardhost.created-at": datetime.now(UTC).isoformat(),
            },
        )

    async def launch(self, workload: Workload) -> LaunchResult:
        """Create, start and verify the workload's runtime resource.

        Raises ``RuntimeLaunchFailure`` (with the cause chained) if any step
        fails or the resource is not running afterwards.
        """
        spec = self.build_spec(workload)
        logger.info("Launching {} on port {}", spec.name, workload.port)
        try:
            await self._discard_stale(spec.name)
            resource_id = await self._call("create", self._runtime.create(spec))
            await self._call("start", self._runtime.start(spec.name))
            state = await self._call("inspect", self._runtime.inspect(spec.name))
        except (RuntimeAPIError, RuntimeUnreachableError) as exc:
            logger.error("Launch of {} failed: {}", spec.name, exc)
            msg = f"Failed to launch '{spec.name}': {exc}"
            raise RuntimeLaunchFailure(msg) from exc

        if not state.running:
            msg = f"Resource '{spec.name}' started but is not running (status={state.status})"
            logger.error(msg)
            raise RuntimeLaunchFailure(msg)

        logger.info("{} is live on port {} ({})", spec.name, workload.port, resource_id[:12])
        return LaunchResult(resource_id=resource_id, resource_name=spec.name, running=True, health=state.health)

    async def _discard_stale(self, name: str) -> None:
        """Remove a leftover resource from an earlier failed launch (volumes kept)."""
        try:
            await self._call("remove", self._runtime.remove(name, keep_volumes=True))
        except RuntimeAPIError as exc:
            if not exc.not_found:
                raise
        else:
            logger.info("Removed stale resource {} before relaunch", name)

    # -- Power -----------------------------------------------------------------

    async def start(self, name: str) -> None:
        try:
            await self._call("start", self._runtime.start(name))
        except RuntimeAPIError as exc:
            if not exc.not_modified:
                raise
            logger.debug("{} already running", name)

    async def stop(self, name: str, timeout: int | None = None) -> None:
        """Cooperative stop with a grace period, forced by the runtime afterwards."""
        grace = self._settings.stop_timeout if timeout is None else timeout
        logger.info("Stopping {} ({}s grace period)", name, grace)
        try:
            await self._call("stop", self._runtime.stop(name, timeout=grace), extra=grace)
        except RuntimeAPIError as exc:
            if not exc.not_modified:
                raise
            logger.debug("{} already stopped", name)

    async def restart(self, name: str, timeout: int | None = None) -> None:
        grace = self._settings.stop_timeout if timeout is None else timeout
        logger.info("Restarting {}", name)
        await self._call("restart", self._runtime.restart(name, timeout=grace), extra=grace)

    async def kill(self, name: str) -> None:
        logger.info("Killing {}", name)
        try:
            await self._call("kill", self._runtime.kill(name))
        except RuntimeAPIError as exc:
            # Docker answers 409 when the container is not running.
            if not (exc.not_modified or exc.status == 409):
                raise

    async def remove(self, name: str, *, keep_volumes: bool = True) -> None:
        """Stop (if running) and remove the resource.  Durable data is kept by default."""
        try:
            await self.stop(name)
        except (RuntimeAPIError, RuntimeUnreachableError) as exc:
            logger.warning("Could not stop {} before removal: {}", name, exc)
        await self._call("remove", self._runtime.remove(name, keep_volumes=keep_volumes))
        logger.info("Removed {} (volumes {})", name, "kept" if keep_volumes else "deleted")

    # -- Observation -----------------------------------------------------------

    async def inspect(self, name: str) -> RuntimeState:
        return await self._call("inspect", self._runtime.inspect(name))

    async def logs(self, name: str, tail: int = 100) -> str:
        return await self._call("logs", self._runtime.logs(name, tail=tail))
