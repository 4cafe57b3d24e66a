"""Workload data access.

Create, endpoint reservation (the persisted side of port allocation), status
transitions, ownership lookups and startup recovery.  The unique constraint
on ``workloads.port`` is the only cross-request coordination: a commit that
violates it is rolled back and allocation is re-run on a fresh snapshot.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from shardhost.control_plane.db.tables import Workload
from shardhost.control_plane.errors import AllocationConflictError, WorkloadNotFoundError
from shardhost.control_plane.models.enums import LifecycleAction, WorkloadStatus
from shardhost.control_plane.provisioning.allocator import allocate_port, assign_address, probe_port
from shardhost.control_plane.provisioning.lifecycle import transition

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from shardhost.control_plane.provisioning.allocator import PortProbe
    from shardhost.control_plane.provisioning.credentials import WorkloadCredentials
    from shardhost.control_plane.settings import RegionDescriptor


# -- Create ------------------------------------------------------------------


async def create_workload_row(
    db: AsyncSession,
    *,
    tenant_id: str,
    name: str,
    memory_gib: int,
    disk_gib: int,
    version: str = "LATEST",
) -> Workload:
    """Insert a workload in ``provisioning`` with no endpoint yet."""
    workload = Workload(
        workload_id=uuid.uuid4().hex,
        external_id=str(uuid.uuid4()),
        name=name,
        tenant_id=tenant_id,
        memory_gib=memory_gib,
        disk_gib=disk_gib,
        version=version,
        status=WorkloadStatus.PROVISIONING,
    )
    db.add(workload)
    await db.commit()
    await db.refresh(workload)
    logger.info("Workload created: {} (tenant={}, name={!r})", workload.workload_id, tenant_id, name)
    return workload


# -- Endpoint reservation ----------------------------------------------------


async def list_ports_in_range(db: AsyncSession, range_min: int, range_max: int) -> set[int]:
    """Snapshot of ports already recorded in ``[range_min, range_max]``."""
    stmt = select(Workload.port).where(Workload.port.is_not(None), Workload.port.between(range_min, range_max))
    result = await db.execute(stmt)
    return {port for port in result.scalars().all() if port is not None}


async def reserve_endpoint(
    db: AsyncSession,
    workload: Workload,
    *,
    credentials: WorkloadCredentials,
    range_min: int,
    range_max: int,
    regions: Sequence[RegionDescriptor],
    probe: PortProbe = probe_port,
    max_attempts: int = 5,
) -> Workload:
    """Allocate a port and address and persist them with the credentials.

    Each attempt takes a fresh snapshot, runs ``allocate_port`` and commits.
    A uniqueness violation means another request won the same port between
    probe and commit: roll back and try again, up to *max_attempts* times,
    then raise ``AllocationConflictError``.  ``AllocationExhaustedError``
    from the allocator propagates immediately.
    """
    if workload.admin_secret is not None or workload.console_secret is not None:
        msg = f"Workload '{workload.workload_id}' already has credentials; they are never re-issued"
        raise ValueError(msg)

    for attempt in range(1, max_attempts + 1):
        existing = await list_ports_in_range(db, range_min, range_max)
        port = await allocate_port(existing, range_min, range_max, probe=probe)
        assignment = assign_address(regions)

        workload.port = port
        workload.address = assignment.address
        workload.region = assignment.region
        workload.location = assignment.location
        workload.admin_secret = credentials.admin_secret
        workload.console_secret = credentials.console_secret
        workload.status = transition(workload.status, LifecycleAction.ALLOCATE)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            await db.refresh(workload)
            logger.warning(
                "Port reservation conflict on {} for workload {} (attempt {}/{})",
                port,
                workload.workload_id,
                attempt,
                max_attempts,
            )
            continue

        await db.refresh(workload)
        logger.info(
            "Endpoint reserved: workload {} -> {}:{} ({})",
            workload.workload_id,
            workload.address,
            workload.port,
            workload.region,
        )
        return workload

    raise AllocationConflictError(max_attempts)


# -- Status ------------------------------------------------------------------


async def apply_action(db: AsyncSession, workload: Workload, action: LifecycleAction) -> Workload:
    """Move *workload* through the state machine and persist the new status."""
    previous = workload.status
    workload.status = transition(previous, action)
    await db.commit()
    await db.refresh(workload)
    logger.info("Workload {}: {} --{}--> {}", workload.workload_id, previous, action, workload.status)
    return workload


# -- Read --------------------------------------------------------------------


async def get_workload(db: AsyncSession, workload_id: str) -> Workload:
    """Get a workload by ID.  Raises ``WorkloadNotFoundError`` if missing."""
    workload = await db.get(Workload, workload_id)
    if workload is None:
        raise WorkloadNotFoundError(workload_id)
    return workload


async def find_owned_workload(db: AsyncSession, workload_id: str, tenant_id: str) -> Workload | None:
    stmt = select(Workload).where(Workload.workload_id == workload_id, Workload.tenant_id == tenant_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_owned_workload(db: AsyncSession, workload_id: str, tenant_id: str) -> Workload:
    """Like ``find_owned_workload`` but raises ``WorkloadNotFoundError``.

    A workload owned by another tenant is reported exactly like a missing one.
    """
    workload = await find_owned_workload(db, workload_id, tenant_id)
    if workload is None:
        raise WorkloadNotFoundError(workload_id)
    return workload


async def list_workloads(
    db: AsyncSession,
    tenant_id: str,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[Workload]:
    """List a tenant's workloads, newest first."""
    stmt = (
        select(Workload)
        .where(Workload.tenant_id == tenant_id)
        .order_by(Workload.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# -- Delete ------------------------------------------------------------------


async def delete_workload(db: AsyncSession, workload: Workload) -> None:
    await db.delete(workload)
    await db.commit()
    logger.info("Workload deleted: {}", workload.workload_id)


# -- Startup recovery --------------------------------------------------------


async def recover_orphaned_workloads(db: AsyncSession) -> int:
    """Settle workloads left in ``provisioning`` by a crash or restart.

    With an endpoint reserved they become ``waiting`` (relaunchable);
    without one they become ``failed``.  Returns the number of rows touched.
    """
    reserved = (
        update(Workload)
        .where(Workload.status == WorkloadStatus.PROVISIONING, Workload.port.is_not(None))
        .values(status=transition(WorkloadStatus.PROVISIONING, LifecycleAction.LAUNCH_FAILED))
    )
    unreserved = (
        update(Workload)
        .where(Workload.status == WorkloadStatus.PROVISIONING, Workload.port.is_(None))
        .values(status=transition(WorkloadStatus.PROVISIONING, LifecycleAction.ALLOCATION_FAILED))
    )
    waiting = (await db.execute(reserved)).rowcount  # type: ignore[attr-defined]
    failed = (await db.execute(unreserved)).rowcount  # type: ignore[attr-defined]
    await db.commit()

    count = waiting + failed
    if count > 0:
        logger.warning("Startup recovery: {} orphaned workloads -> waiting, {} -> failed", waiting, failed)
    return count
