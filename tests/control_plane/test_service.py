"""ProvisioningService behaviour that does not need a database."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import FakeRuntime, make_workload

from shardhost.control_plane.errors import InvalidTransitionError
from shardhost.control_plane.managers import workloads as workload_mgr
from shardhost.control_plane.models.enums import LifecycleAction, PowerAction, RuntimeHealth
from shardhost.control_plane.provisioning.lifecycle import transition
from shardhost.control_plane.provisioning.service import ProvisioningService
from shardhost.control_plane.provisioning.supervisor import WorkloadSupervisor
from shardhost.control_plane.runtime.base import RuntimeUnreachableError
from shardhost.control_plane.settings import ShardSettings

NAME = "mc-w1-survival-world"


@pytest.fixture
def service(runtime: FakeRuntime, settings: ShardSettings, always_free) -> ProvisioningService:
    return ProvisioningService(WorkloadSupervisor(runtime, settings), settings, probe=always_free)


@pytest.fixture
def apply_action(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    async def _apply(db, workload, action):
        workload.status = transition(workload.status, action)
        return workload

    mock = AsyncMock(side_effect=_apply)
    monkeypatch.setattr(workload_mgr, "apply_action", mock)
    return mock


# ---------------------------------------------------------------------------
# Live status
# ---------------------------------------------------------------------------


async def test_live_status_running(service: ProvisioningService, runtime: FakeRuntime) -> None:
    runtime.add_running(NAME)
    live = await service.live_status(make_workload(status="online"))
    assert live.runtime_state == RuntimeHealth.RUNNING
    assert live.runtime is not None
    assert live.error is None


async def test_live_status_missing(service: ProvisioningService) -> None:
    live = await service.live_status(make_workload(status="online"))
    assert live.runtime_state == RuntimeHealth.MISSING
    assert live.persisted_status == "online"


async def test_unreachable_runtime_reports_unknown_and_keeps_status(
    service: ProvisioningService, runtime: FakeRuntime
) -> None:
    runtime.fail_on["inspect"] = RuntimeUnreachableError("socket gone")
    workload = make_workload(status="online")

    live = await service.live_status(workload)

    assert live.runtime_state == RuntimeHealth.UNKNOWN
    assert live.error == "socket gone"
    assert workload.status == "online"


# ---------------------------------------------------------------------------
# Power
# ---------------------------------------------------------------------------


async def test_invalid_power_action_has_no_side_effect(
    service: ProvisioningService, runtime: FakeRuntime, apply_action: AsyncMock
) -> None:
    with pytest.raises(InvalidTransitionError):
        await service.power(MagicMock(), make_workload(status="offline"), PowerAction.STOP)
    assert runtime.calls == []
    apply_action.assert_not_awaited()


async def test_stop_uses_grace_period_and_persists(
    service: ProvisioningService, runtime: FakeRuntime, apply_action: AsyncMock
) -> None:
    runtime.add_running(NAME)
    workload = await service.power(MagicMock(), make_workload(status="online"), PowerAction.STOP)

    assert runtime.stop_timeouts == [10]
    assert workload.status == "offline"
    assert apply_action.await_args.args[2] == LifecycleAction.STOP


async def test_start_offline_workload(
    service: ProvisioningService, runtime: FakeRuntime, apply_action: AsyncMock
) -> None:
    runtime.add_running(NAME).running = False
    workload = await service.power(MagicMock(), make_workload(status="offline"), PowerAction.START)
    assert runtime.containers[NAME].running
    assert workload.status == "online"


async def test_kill(service: ProvisioningService, runtime: FakeRuntime, apply_action: AsyncMock) -> None:
    runtime.add_running(NAME)
    workload = await service.power(MagicMock(), make_workload(status="online"), PowerAction.KILL)
    assert runtime.operations() == ["kill"]
    assert workload.status == "offline"


async def test_relaunch_requires_waiting(service: ProvisioningService) -> None:
    with pytest.raises(InvalidTransitionError):
        await service.relaunch(MagicMock(), make_workload(status="online"))


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


async def test_teardown_keeps_volume_and_deletes_record(
    service: ProvisioningService, runtime: FakeRuntime, monkeypatch: pytest.MonkeyPatch
) -> None:
    delete = AsyncMock()
    monkeypatch.setattr(workload_mgr, "delete_workload", delete)
    runtime.add_running(NAME)
    workload = make_workload(status="online")

    await service.teardown(MagicMock(), workload)

    assert runtime.removed == [(NAME, True)]
    delete.assert_awaited_once()


async def test_teardown_tolerates_missing_resource(
    service: ProvisioningService, monkeypatch: pytest.MonkeyPatch
) -> None:
    delete = AsyncMock()
    monkeypatch.setattr(workload_mgr, "delete_workload", delete)
    await service.teardown(MagicMock(), make_workload(status="waiting"))
    delete.assert_awaited_once()


def test_stored_credentials(service: ProvisioningService) -> None:
    creds = service.stored_credentials(make_workload())
    assert creds.panel_username == "user_w1"
    assert creds.admin_secret == "AdminSecret1"
    assert creds.console_secret == "ConsoleSecr1"
