"""FastAPI dependency injection for DB sessions, services and tenant auth.

Usage in route handlers::

    @router.post("/workloads/create")
    async def create(body: WorkloadCreate, db: DbSession, tenant_id: TenantId,
                     service: Provisioning) -> ProvisionResponse:
        ...

Dependencies raise HTTP 503 if the backing service was not configured
(``SHARDHOST_DATABASE_URL`` unset, runtime not initialised).  They take an
``HTTPConnection`` so the same dependencies serve HTTP routes and the
console WebSocket.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from shardhost.control_plane.provisioning.service import ProvisioningService
from shardhost.control_plane.settings import get_settings


async def get_db(conn: HTTPConnection) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    Managers commit their own writes.  If the handler raises, the session is
    simply closed and the open transaction is rolled back.
    """
    session_factory = conn.app.state.db_session_factory
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured (SHARDHOST_DATABASE_URL is unset).",
        )
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


def get_provisioning(conn: HTTPConnection) -> ProvisioningService:
    service: ProvisioningService | None = conn.app.state.provisioning
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Provisioning not available (database or runtime not configured).",
        )
    return service


def extract_token(conn: HTTPConnection) -> str | None:
    """Bearer token from the ``Authorization`` header, or the ``token`` query parameter.

    Browsers cannot set headers on a WebSocket handshake, hence the query
    fallback.
    """
    header = conn.headers.get("authorization")
    if header:
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            return credentials.strip()
    return conn.query_params.get("token")


def get_tenant_id(conn: HTTPConnection) -> str:
    """Resolve the caller's tenant from its bearer token."""
    tenant_id = get_settings().resolve_tenant(extract_token(conn))
    if tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return tenant_id


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

TenantId = Annotated[str, Depends(get_tenant_id)]
"""Annotated dependency: tenant id resolved from the bearer token."""

Provisioning = Annotated[ProvisioningService, Depends(get_provisioning)]
