"""Provisioning service -- create flow and power control for workloads.

Create flow::

    provisioning --(reserve endpoint + credentials)--> provisioning
                 --(launch ok)-----------------------> online
                 --(launch failed)-------------------> waiting   (reservation kept)
    provisioning --(allocation failed)---------------> failed

Allocation and launch errors are recorded in the persisted status and also
returned to the caller; nothing is swallowed.  Runtime unreachability while
*observing* a workload is reported as an unknown live state and leaves the
persisted status alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from shardhost.control_plane.errors import AllocationError, InvalidTransitionError, RuntimeLaunchFailure
from shardhost.control_plane.managers import workloads as workload_mgr
from shardhost.control_plane.models.enums import LifecycleAction, PowerAction, RuntimeHealth, WorkloadStatus
from shardhost.control_plane.provisioning.allocator import make_probe
from shardhost.control_plane.provisioning.credentials import WorkloadCredentials, generate_credentials
from shardhost.control_plane.provisioning.lifecycle import transition
from shardhost.control_plane.provisioning.supervisor import resource_name_for
from shardhost.control_plane.runtime.base import RuntimeAPIError, RuntimeUnreachableError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from shardhost.control_plane.db.tables import Workload
    from shardhost.control_plane.models.api import WorkloadCreate
    from shardhost.control_plane.provisioning.allocator import PortProbe
    from shardhost.control_plane.provisioning.supervisor import WorkloadSupervisor
    from shardhost.control_plane.runtime.base import RuntimeState
    from shardhost.control_plane.settings import ShardSettings


@dataclass
class ProvisionResult:
    """Outcome of ``create_workload``.  Credentials are only ever returned here."""

    workload: Workload
    credentials: WorkloadCredentials
    launched: bool
    warning: str | None = None


@dataclass
class LiveStatus:
    workload_id: str
    persisted_status: str
    runtime_state: RuntimeHealth
    runtime: RuntimeState | None = None
    error: str | None = None


_POWER_ACTIONS: dict[PowerAction, LifecycleAction] = {
    PowerAction.START: LifecycleAction.START,
    PowerAction.STOP: LifecycleAction.STOP,
    PowerAction.RESTART: LifecycleAction.RESTART,
    PowerAction.KILL: LifecycleAction.KILL,
}


class ProvisioningService:
    """Process-level singleton wiring the allocator, credentials and supervisor to storage."""

    def __init__(
        self,
        supervisor: WorkloadSupervisor,
        settings: ShardSettings,
        *,
        probe: PortProbe | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._settings = settings
        self._probe = probe or make_probe(settings.probe_host, settings.probe_timeout)

    @property
    def supervisor(self) -> WorkloadSupervisor:
        return self._supervisor

    # -- Create ----------------------------------------------------------------

    async def create_workload(self, db: AsyncSession, tenant_id: str, body: WorkloadCreate) -> ProvisionResult:
        """Create, reserve and launch a workload.

        Raises ``AllocationError`` (after marking the workload ``failed``) if
        no endpoint could be reserved.  A launch failure is *not* raised: the
        workload is parked in ``waiting`` and the result carries a warning.
        """
        s = self._settings
        workload = await workload_mgr.create_workload_row(
            db,
            tenant_id=tenant_id,
            name=body.name,
            memory_gib=body.memory_gib,
            disk_gib=body.disk_gib,
            version=body.version or s.default_version,
        )
        credentials = generate_credentials(workload.workload_id, length=s.secret_length, panel_url=s.panel_url)

        try:
            workload = await workload_mgr.reserve_endpoint(
                db,
                workload,
                credentials=credentials,
                range_min=s.port_range_min,
                range_max=s.port_range_max,
                regions=s.regions,
                probe=self._probe,
                max_attempts=s.allocation_max_attempts,
            )
        except AllocationError as exc:
            logger.error("Provisioning of {} failed: {}", workload.workload_id, exc)
            await workload_mgr.apply_action(db, workload, LifecycleAction.ALLOCATION_FAILED)
            raise

        launched, warning = await self._launch(db, workload)
        return ProvisionResult(workload=workload, credentials=credentials, launched=launched, warning=warning)

    async def relaunch(self, db: AsyncSession, workload: Workload) -> ProvisionResult:
        """Retry the launch of a ``waiting`` workload without re-allocating."""
        if workload.status != WorkloadStatus.WAITING:
            raise InvalidTransitionError(workload.status, LifecycleAction.LAUNCH)

        launched, warning = await self._launch(db, workload)
        return ProvisionResult(
            workload=workload,
            credentials=self.stored_credentials(workload),
            launched=launched,
            warning=warning,
        )

    async def _launch(self, db: AsyncSession, workload: Workload) -> tuple[bool, str | None]:
        try:
            await self._supervisor.launch(workload)
        except RuntimeLaunchFailure as exc:
            await workload_mgr.apply_action(db, workload, LifecycleAction.LAUNCH_FAILED)
            logger.warning("Workload {} parked in waiting: {}", workload.workload_id, exc)
            return False, f"Resources reserved but launch failed: {exc}"

        await workload_mgr.apply_action(db, workload, LifecycleAction.LAUNCH)
        return True, None

    def stored_credentials(self, workload: Workload) -> WorkloadCredentials:
        return WorkloadCredentials(
            panel_username=f"user_{workload.workload_id}",
            admin_secret=workload.admin_secret or "",
            console_secret=workload.console_secret or "",
            panel_url=self._settings.panel_url.rstrip("/"),
        )

    # -- Power -----------------------------------------------------------------

    async def power(self, db: AsyncSession, workload: Workload, action: PowerAction) -> Workload:
        """Apply a power action at the runtime, then persist the resulting status.

        The transition is validated before touching the runtime, so an invalid
        request (e.g. stopping an offline workload) has no side effect.
        """
        lifecycle_action = _POWER_ACTIONS[action]
        transition(workload.status, lifecycle_action)

        name = resource_name_for(workload)
        if action == PowerAction.START:
            await self._supervisor.start(name)
        elif action == PowerAction.STOP:
            await self._supervisor.stop(name, self._settings.stop_timeout)
        elif action == PowerAction.RESTART:
            await self._supervisor.restart(name)
        else:
            await self._supervisor.kill(name)

        return await workload_mgr.apply_action(db, workload, lifecycle_action)

    # -- Teardown --------------------------------------------------------------

    async def teardown(self, db: AsyncSession, workload: Workload) -> None:
        """Remove the compute resource and the record; the data volume stays on disk."""
        name = resource_name_for(workload)
        try:
            await self._supervisor.remove(name, keep_volumes=True)
        except RuntimeAPIError as exc:
            if not exc.not_found:
                logger.warning("Teardown of {}: runtime removal failed: {}", name, exc)
        except RuntimeUnreachableError as exc:
            logger.warning("Teardown of {}: runtime unreachable: {}", name, exc)
        await workload_mgr.delete_workload(db, workload)

    # -- Observation -----------------------------------------------------------

    async def live_status(self, workload: Workload) -> LiveStatus:
        name = resource_name_for(workload)
        try:
            state = await self._supervisor.inspect(name)
        except RuntimeUnreachableError as exc:
            return LiveStatus(workload.workload_id, workload.status, RuntimeHealth.UNKNOWN, error=str(exc))
        except RuntimeAPIError as exc:
            health = RuntimeHealth.MISSING if exc.not_found else RuntimeHealth.UNKNOWN
            return LiveStatus(workload.workload_id, workload.status, health, error=exc.message)

        health = RuntimeHealth.RUNNING if state.running else RuntimeHealth.STOPPED
        return LiveStatus(workload.workload_id, workload.status, health, runtime=state)

    async def logs(self, workload: Workload, tail: int = 100) -> str:
        return await self._supervisor.logs(resource_name_for(workload), tail)
