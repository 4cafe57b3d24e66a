"""Integration tests for workload persistence and the provisioning flow (PostgreSQL)."""

from __future__ import annotations

import asyncio

import pytest
from fakes import TENANT_A, TENANT_B, FakeRuntime
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shardhost.control_plane.db.tables import Workload
from shardhost.control_plane.errors import AllocationExhaustedError, WorkloadNotFoundError
from shardhost.control_plane.managers import workloads as workload_mgr
from shardhost.control_plane.models.api import WorkloadCreate
from shardhost.control_plane.models.enums import WorkloadStatus
from shardhost.control_plane.provisioning.credentials import generate_credentials
from shardhost.control_plane.provisioning.service import ProvisioningService
from shardhost.control_plane.provisioning.supervisor import WorkloadSupervisor
from shardhost.control_plane.settings import DEFAULT_REGIONS, ShardSettings

pytestmark = pytest.mark.integration

RANGE = {"range_min": 25565, "range_max": 25600, "regions": DEFAULT_REGIONS}


@pytest.fixture
def service(runtime: FakeRuntime, settings: ShardSettings, always_free) -> ProvisioningService:
    return ProvisioningService(WorkloadSupervisor(runtime, settings), settings, probe=always_free)


async def _new_row(db: AsyncSession, tenant_id: str = TENANT_A, name: str = "World") -> Workload:
    return await workload_mgr.create_workload_row(db, tenant_id=tenant_id, name=name, memory_gib=2, disk_gib=10)


def _body(name: str, memory_gib: int = 2) -> WorkloadCreate:
    return WorkloadCreate(name=name, memory_gib=memory_gib, disk_gib=10)


# ---------------------------------------------------------------------------
# Managers
# ---------------------------------------------------------------------------


async def test_created_row_has_no_endpoint(db_session: AsyncSession) -> None:
    workload = await _new_row(db_session)
    assert workload.status == WorkloadStatus.PROVISIONING
    assert workload.port is None
    assert workload.admin_secret is None
    assert workload.version == "LATEST"
    assert workload.created_at is not None


async def test_reserve_endpoint_persists_port_address_and_credentials(db_session: AsyncSession, always_free) -> None:
    workload = await _new_row(db_session)
    creds = generate_credentials(workload.workload_id, panel_url="https://panel.example")

    await workload_mgr.reserve_endpoint(db_session, workload, credentials=creds, probe=always_free, **RANGE)

    row = (await db_session.execute(select(Workload).where(Workload.workload_id == workload.workload_id))).scalar_one()
    assert row.port == 25565
    assert row.address is not None
    assert row.region in {r.name for r in DEFAULT_REGIONS}
    assert row.admin_secret == creds.admin_secret
    assert row.console_secret == creds.console_secret
    assert row.admin_secret != row.console_secret


async def test_credentials_are_write_once(db_session: AsyncSession, always_free) -> None:
    workload = await _new_row(db_session)
    creds = generate_credentials(workload.workload_id, panel_url="https://panel.example")
    await workload_mgr.reserve_endpoint(db_session, workload, credentials=creds, probe=always_free, **RANGE)

    with pytest.raises(ValueError, match="never re-issued"):
        await workload_mgr.reserve_endpoint(db_session, workload, credentials=creds, probe=always_free, **RANGE)


async def test_recorded_ports_are_not_reused(db_session: AsyncSession, always_free) -> None:
    ports = []
    for i in range(3):
        workload = await _new_row(db_session, name=f"World {i}")
        creds = generate_credentials(workload.workload_id, panel_url="https://panel.example")
        workload = await workload_mgr.reserve_endpoint(
            db_session, workload, credentials=creds, probe=always_free, **RANGE
        )
        ports.append(workload.port)
    assert ports == [25565, 25566, 25567]


async def test_ownership_lookup(db_session: AsyncSession) -> None:
    workload = await _new_row(db_session)

    assert await workload_mgr.find_owned_workload(db_session, workload.workload_id, TENANT_A) is not None
    assert await workload_mgr.find_owned_workload(db_session, workload.workload_id, TENANT_B) is None
    with pytest.raises(WorkloadNotFoundError):
        await workload_mgr.get_owned_workload(db_session, workload.workload_id, TENANT_B)


async def test_list_is_tenant_scoped(db_session: AsyncSession) -> None:
    await _new_row(db_session, TENANT_A, "a1")
    await _new_row(db_session, TENANT_A, "a2")
    await _new_row(db_session, TENANT_B, "b1")

    names = {w.name for w in await workload_mgr.list_workloads(db_session, TENANT_A)}
    assert names == {"a1", "a2"}


async def test_recover_orphaned_workloads(db_session: AsyncSession, always_free) -> None:
    unreserved = await _new_row(db_session, name="never reserved")
    reserved = await _new_row(db_session, name="reserved")
    creds = generate_credentials(reserved.workload_id, panel_url="https://panel.example")
    await workload_mgr.reserve_endpoint(db_session, reserved, credentials=creds, probe=always_free, **RANGE)

    assert await workload_mgr.recover_orphaned_workloads(db_session) == 2

    await db_session.refresh(unreserved)
    await db_session.refresh(reserved)
    assert unreserved.status == WorkloadStatus.FAILED
    assert reserved.status == WorkloadStatus.WAITING
    assert reserved.port is not None


async def test_concurrent_reservations_get_distinct_ports(
    clean_engine: async_sessionmaker[AsyncSession], always_free
) -> None:
    async def _create_and_reserve(i: int) -> int | None:
        async with clean_engine() as db:
            workload = await _new_row(db, name=f"Race {i}")
            creds = generate_credentials(workload.workload_id, panel_url="https://panel.example")
            workload = await workload_mgr.reserve_endpoint(
                db, workload, credentials=creds, probe=always_free, max_attempts=10, **RANGE
            )
            return workload.port

    ports = await asyncio.gather(*(_create_and_reserve(i) for i in range(6)))
    assert None not in ports
    assert len(set(ports)) == 6


# ---------------------------------------------------------------------------
# Provisioning service
# ---------------------------------------------------------------------------


async def test_create_goes_online(db_session: AsyncSession, service: ProvisioningService, runtime: FakeRuntime) -> None:
    result = await service.create_workload(db_session, TENANT_A, _body("Survival World", memory_gib=4))

    assert result.launched is True
    assert result.warning is None
    assert result.workload.status == WorkloadStatus.ONLINE
    assert len(result.credentials.admin_secret) == 12
    assert result.credentials.panel_username == f"user_{result.workload.workload_id}"

    spec = next(iter(runtime.specs.values()))
    assert spec.env["RCON_PASSWORD"] == result.credentials.console_secret
    assert spec.port_bindings[25565] == result.workload.port


async def test_launch_failure_parks_in_waiting_and_relaunch_reuses_reservation(
    db_session: AsyncSession, service: ProvisioningService, runtime: FakeRuntime
) -> None:
    runtime.running_after_start = False
    result = await service.create_workload(db_session, TENANT_A, _body("Flaky"))

    assert result.launched is False
    assert result.warning is not None
    assert result.workload.status == WorkloadStatus.WAITING
    port = result.workload.port
    assert port is not None

    runtime.running_after_start = True
    again = await service.relaunch(db_session, result.workload)

    assert again.launched is True
    assert again.workload.status == WorkloadStatus.ONLINE
    assert again.workload.port == port
    assert again.credentials.admin_secret == result.credentials.admin_secret
    assert again.credentials.console_secret == result.credentials.console_secret


async def test_exhausted_range_marks_failed(
    db_session: AsyncSession, service: ProvisioningService, settings: ShardSettings, runtime: FakeRuntime
) -> None:
    settings.port_range_min = settings.port_range_max = 25565
    await service.create_workload(db_session, TENANT_A, _body("First"))

    with pytest.raises(AllocationExhaustedError):
        await service.create_workload(db_session, TENANT_A, _body("Second"))

    failed = (await db_session.execute(select(Workload).where(Workload.name == "Second"))).scalar_one()
    assert failed.status == WorkloadStatus.FAILED
    assert failed.port is None
    assert [op for op in runtime.operations() if op == "create"] == ["create"]
