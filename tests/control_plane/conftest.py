"""Shared fixtures for control-plane tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from fakes import TOKENS, FakeRuntime, FakeViewer
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shardhost.control_plane.provisioning.allocator import PortProbe
from shardhost.control_plane.settings import ShardSettings


@pytest.fixture
def settings(tmp_path: Path) -> ShardSettings:
    return ShardSettings(
        data_root=str(tmp_path / "data"),
        tenant_tokens=TOKENS,
        runtime_timeout=1.0,
        stop_timeout=10,
        metrics_retry_delay=0.01,
    )


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def viewer() -> FakeViewer:
    return FakeViewer()


@pytest.fixture
def always_free() -> PortProbe:
    async def _probe(port: int) -> bool:
        return True

    return _probe


@pytest.fixture
async def client(
    db_session: AsyncSession,
    runtime: FakeRuntime,
    settings: ShardSettings,
    always_free: PortProbe,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with a test DB session and a fake runtime.

    Overrides ``get_db`` so every request uses the savepoint-isolated
    ``db_session`` fixture from the root conftest.  The app lifespan does
    NOT run under ``ASGITransport``, so state fields are pre-set here.
    """
    import shardhost.control_plane.deps as deps_module
    import shardhost.control_plane.routers.workloads as workloads_module
    from shardhost.control_plane.app import app
    from shardhost.control_plane.deps import get_db
    from shardhost.control_plane.provisioning.service import ProvisioningService
    from shardhost.control_plane.provisioning.supervisor import WorkloadSupervisor
    from shardhost.control_plane.registry import RelayRegistry
    from shardhost.control_plane.relay.session import SessionRelay

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        yield db_session

    monkeypatch.setattr(deps_module, "get_settings", lambda: settings)
    monkeypatch.setattr(workloads_module, "get_settings", lambda: settings)
    app.dependency_overrides[get_db] = _override_get_db

    # Pre-set state fields (lifespan does not run under ASGITransport).
    app.state.db_engine = None
    app.state.db_session_factory = None
    app.state.runtime = runtime
    app.state.provisioning = ProvisioningService(WorkloadSupervisor(runtime, settings), settings, probe=always_free)
    app.state.relay = SessionRelay(runtime, RelayRegistry(), metrics_retry_delay=0.01)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
