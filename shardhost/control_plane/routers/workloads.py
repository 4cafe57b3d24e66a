"""Workload endpoints (RPC-style).

All write operations use POST; reads use GET.  Every route is scoped to the
caller's tenant: a workload owned by someone else is reported as not found.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query, status

from shardhost.control_plane.db.tables import Workload
from shardhost.control_plane.deps import DbSession, Provisioning, TenantId
from shardhost.control_plane.errors import (
    AllocationConflictError,
    AllocationExhaustedError,
    InvalidTransitionError,
    RuntimeAPIError,
    RuntimeUnreachableError,
    WorkloadNotFoundError,
)
from shardhost.control_plane.managers import workloads as workload_mgr
from shardhost.control_plane.models.api import (
    CredentialsResponse,
    LiveStatusResponse,
    LogsResponse,
    PowerRequest,
    ProvisionResponse,
    RuntimeDetail,
    WorkloadCreate,
    WorkloadResponse,
)
from shardhost.control_plane.settings import get_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from shardhost.control_plane.provisioning.service import ProvisionResult

router = APIRouter(prefix="/workloads", tags=["workloads"])


async def _get_owned(db: AsyncSession, workload_id: str, tenant_id: str) -> Workload:
    try:
        return await workload_mgr.get_owned_workload(db, workload_id, tenant_id)
    except WorkloadNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Workload '{workload_id}' not found.") from None


def _runtime_http_error(exc: RuntimeAPIError | RuntimeUnreachableError) -> HTTPException:
    if isinstance(exc, RuntimeUnreachableError):
        return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Container runtime unreachable: {exc}")
    if exc.not_found:
        return HTTPException(status.HTTP_404_NOT_FOUND, detail="Workload has no runtime resource.")
    return HTTPException(status.HTTP_502_BAD_GATEWAY, detail=f"Container runtime error: {exc.message}")


def _provision_response(result: ProvisionResult) -> ProvisionResponse:
    creds = result.credentials
    return ProvisionResponse(
        workload=WorkloadResponse.model_validate(result.workload),
        credentials=CredentialsResponse(
            panel_url=creds.panel_login_url,
            panel_username=creds.panel_username,
            admin_secret=creds.admin_secret,
            console_secret=creds.console_secret,
            console_port=get_settings().admin_host_port,
        ),
        launched=result.launched,
        warning=result.warning,
    )


# -- Create / relaunch ---------------------------------------------------------


@router.post("/create", response_model=ProvisionResponse, status_code=status.HTTP_201_CREATED)
async def create_workload(
    body: WorkloadCreate, tenant_id: TenantId, db: DbSession, service: Provisioning
) -> ProvisionResponse:
    """Reserve an endpoint, issue credentials and launch the workload.

    A launch failure still returns 201 with ``launched=false``: the workload
    is parked in ``waiting`` and can be relaunched.
    """
    try:
        result = await service.create_workload(db, tenant_id, body)
    except AllocationExhaustedError as exc:
        raise HTTPException(status.HTTP_507_INSUFFICIENT_STORAGE, detail=str(exc)) from exc
    except AllocationConflictError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _provision_response(result)


@router.post("/{workload_id}/relaunch", response_model=ProvisionResponse)
async def relaunch_workload(
    workload_id: str, tenant_id: TenantId, db: DbSession, service: Provisioning
) -> ProvisionResponse:
    """Retry the launch of a ``waiting`` workload with its existing reservation."""
    workload = await _get_owned(db, workload_id, tenant_id)
    try:
        result = await service.relaunch(db, workload)
    except InvalidTransitionError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _provision_response(result)


# -- Read ----------------------------------------------------------------------


@router.get("/list", response_model=list[WorkloadResponse])
async def list_workloads(
    tenant_id: TenantId,
    db: DbSession,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[Workload]:
    """List the caller's workloads, newest first."""
    return await workload_mgr.list_workloads(db, tenant_id, limit=limit, offset=offset)


@router.get("/{workload_id}/get", response_model=WorkloadResponse)
async def get_workload(workload_id: str, tenant_id: TenantId, db: DbSession) -> Workload:
    return await _get_owned(db, workload_id, tenant_id)


@router.get("/{workload_id}/status", response_model=LiveStatusResponse)
async def get_live_status(
    workload_id: str, tenant_id: TenantId, db: DbSession, service: Provisioning
) -> LiveStatusResponse:
    """Persisted status plus the runtime's current view.

    An unreachable runtime yields ``runtime_state=unknown`` rather than an
    error; the persisted status is left alone.
    """
    workload = await _get_owned(db, workload_id, tenant_id)
    live = await service.live_status(workload)
    return LiveStatusResponse(
        workload_id=live.workload_id,
        status=live.persisted_status,
        runtime_state=live.runtime_state,
        runtime=RuntimeDetail.model_validate(live.runtime) if live.runtime is not None else None,
        error=live.error,
    )


@router.get("/{workload_id}/logs", response_model=LogsResponse)
async def get_logs(
    workload_id: str,
    tenant_id: TenantId,
    db: DbSession,
    service: Provisioning,
    tail: int = Query(default=100, ge=1, le=5000),
) -> LogsResponse:
    workload = await _get_owned(db, workload_id, tenant_id)
    try:
        logs = await service.logs(workload, tail)
    except (RuntimeAPIError, RuntimeUnreachableError) as exc:
        raise _runtime_http_error(exc) from exc
    return LogsResponse(workload_id=workload_id, tail=tail, logs=logs)


# -- Control -------------------------------------------------------------------


@router.post("/{workload_id}/power", response_model=WorkloadResponse)
async def power_workload(
    workload_id: str, body: PowerRequest, tenant_id: TenantId, db: DbSession, service: Provisioning
) -> Workload:
    """Start, stop, restart or kill a workload."""
    workload = await _get_owned(db, workload_id, tenant_id)
    try:
        return await service.power(db, workload, body.action)
    except InvalidTransitionError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (RuntimeAPIError, RuntimeUnreachableError) as exc:
        raise _runtime_http_error(exc) from exc


@router.post("/{workload_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workload(workload_id: str, tenant_id: TenantId, db: DbSession, service: Provisioning) -> None:
    """Remove the runtime resource and the record.  The data volume is kept."""
    workload = await _get_owned(db, workload_id, tenant_id)
    await service.teardown(db, workload)
