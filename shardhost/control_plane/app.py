from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.routing import APIRouter
from loguru import logger

from shardhost.control_plane.db.engine import create_engine, create_session_factory, ping_database
from shardhost.control_plane.errors import RuntimeAPIError, RuntimeUnreachableError
from shardhost.control_plane.log import setup_logging
from shardhost.control_plane.managers.workloads import recover_orphaned_workloads
from shardhost.control_plane.provisioning.service import ProvisioningService
from shardhost.control_plane.provisioning.supervisor import WorkloadSupervisor
from shardhost.control_plane.registry import RelayRegistry
from shardhost.control_plane.relay.session import SessionRelay
from shardhost.control_plane.runtime.docker import DockerRuntime
from shardhost.control_plane.settings import get_settings

# ---------------------------------------------------------------------------
# Shared singletons initialised during lifespan
# ---------------------------------------------------------------------------
registry = RelayRegistry()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, serialize=settings.log_json)

    logger.info("Shardhost control plane starting (host={}, port={})", settings.host, settings.port)
    logger.info(
        "Port range {}-{}, data root {}, image {}",
        settings.port_range_min,
        settings.port_range_max,
        settings.data_root,
        settings.image,
    )
    if not settings.tenant_tokens:
        logger.warning("No SHARDHOST_TENANT_TOKENS set -- every request will be rejected as unauthenticated")

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.db_engine = None
    _app.state.db_session_factory = None
    _app.state.runtime = None
    _app.state.provisioning = None
    _app.state.relay = None
    _app.state.registry = registry

    # -- Database --------------------------------------------------------------
    if settings.database_url:
        engine = create_engine(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
        _app.state.db_engine = engine
        _app.state.db_session_factory = create_session_factory(engine)
        logger.info(
            "PostgreSQL: connected (pool_size={}, max_overflow={})",
            settings.db_pool_size,
            settings.db_max_overflow,
        )
    else:
        logger.warning("SHARDHOST_DATABASE_URL not set -- workload features disabled")

    # -- Container runtime -----------------------------------------------------
    runtime = DockerRuntime(settings.docker_url)
    _app.state.runtime = runtime
    try:
        info = await runtime.ping()
    except (RuntimeAPIError, RuntimeUnreachableError) as exc:
        logger.warning("Docker: unavailable at startup ({}); workloads will report unknown state", exc)
    else:
        logger.info("Docker: connected ({} containers, {} images)", info.get("containers"), info.get("images"))

    _app.state.relay = SessionRelay(
        runtime,
        registry,
        metrics_interval=settings.metrics_interval,
        metrics_retry_delay=settings.metrics_retry_delay,
        metrics_max_retries=settings.metrics_max_retries,
        runtime_timeout=settings.runtime_timeout,
    )

    # -- Provisioning ----------------------------------------------------------
    if _app.state.db_session_factory is not None:
        supervisor = WorkloadSupervisor(runtime, settings)
        _app.state.provisioning = ProvisioningService(supervisor, settings)
        logger.info("ProvisioningService: initialised")

        # Startup recovery: settle workloads left mid-provisioning.
        async with _app.state.db_session_factory() as db:
            recovered = await recover_orphaned_workloads(db)
            if recovered > 0:
                logger.info("Startup recovery: {} orphaned workloads settled", recovered)

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Shardhost control plane shutting down (active_relays={})", registry.active_count)

    # 1. Stop accepting new console sessions.
    registry.begin_shutdown()

    # 2. Give viewers a chance to disconnect on their own, then cut them off.
    if registry.active_count > 0:
        timeout = settings.graceful_shutdown_timeout
        logger.info("Waiting for {} console sessions to close (timeout={}s)...", registry.active_count, timeout)
        drained = await registry.wait_until_drained(timeout=timeout)
        if not drained:
            cancelled = registry.cancel_all()
            logger.warning("Cancelled {} console sessions after timeout", cancelled)
            await registry.wait_until_drained(timeout=5.0)

    # 3. Close the runtime client (releases its HTTP connector).
    await runtime.close()
    logger.info("Docker: closed")

    # Dispose DB engine (closes all pooled connections).
    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="Shardhost Control Plane", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health(request: Request) -> dict[str, str]:
    engine = getattr(request.app.state, "db_engine", None)
    if engine is None:
        return {"status": "ok", "database": "disabled"}
    database = "ok" if await ping_database(engine) else "unreachable"
    return {"status": "ok", "database": database}


@api.get("/health/runtime")
async def runtime_health(request: Request) -> dict[str, object]:
    """Docker Engine connectivity; 503 when the runtime cannot be reached."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Container runtime not configured.")
    try:
        info = await runtime.ping()
    except (RuntimeAPIError, RuntimeUnreachableError) as exc:
        detail = f"Container runtime unavailable: {exc}"
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail) from exc
    return {"status": "ok", "containers": info.get("containers"), "images": info.get("images")}


# -- Routers -----------------------------------------------------------------
from shardhost.control_plane.routers.console import router as console_router  # noqa: E402
from shardhost.control_plane.routers.workloads import router as workloads_router  # noqa: E402

api.include_router(workloads_router)
api.include_router(console_router)

app.include_router(api)
