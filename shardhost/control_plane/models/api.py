"""API request / response schemas for workload endpoints.

- **Create** schemas validate user input and provide defaults.
- **Response** schemas serialize ORM rows via ``from_attributes``.

Secrets never appear on ``WorkloadResponse``; they are only returned in
``ProvisionResponse.credentials``, from ``create`` and again from ``relaunch``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from shardhost.control_plane.models.enums import PowerAction, RuntimeHealth, WorkloadStatus

# ---------------------------------------------------------------------------
# Workload
# ---------------------------------------------------------------------------


class WorkloadCreate(BaseModel):
    """Input for creating a new workload."""

    name: str = Field(min_length=1, max_length=64)
    memory_gib: int = Field(ge=1, le=16, description="Memory ceiling in GiB.")
    disk_gib: int = Field(ge=5, le=500, description="Requested disk space in GiB.")
    version: str | None = Field(default=None, description="Server version; settings default if omitted.")


class WorkloadResponse(BaseModel):
    """Serialized workload returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    workload_id: str
    external_id: str
    name: str
    tenant_id: str
    port: int | None = None
    address: str | None = None
    region: str | None = None
    location: str | None = None
    memory_gib: int
    disk_gib: int
    version: str
    status: WorkloadStatus
    created_at: datetime
    updated_at: datetime


class CredentialsResponse(BaseModel):
    panel_url: str
    panel_username: str
    admin_secret: str
    console_secret: str
    console_port: int


class ProvisionResponse(BaseModel):
    """Result of a create or relaunch request."""

    workload: WorkloadResponse
    credentials: CredentialsResponse
    launched: bool
    warning: str | None = None


# ---------------------------------------------------------------------------
# Control
# ---------------------------------------------------------------------------


class PowerRequest(BaseModel):
    action: PowerAction


class RuntimeDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_id: str
    name: str
    running: bool
    status: str
    health: str
    started_at: str | None = None
    restart_count: int = 0
    memory_limit: int | None = None


class LiveStatusResponse(BaseModel):
    """Persisted status alongside what the runtime reports right now."""

    workload_id: str
    status: WorkloadStatus
    runtime_state: RuntimeHealth
    runtime: RuntimeDetail | None = None
    error: str | None = None


class LogsResponse(BaseModel):
    workload_id: str
    tail: int
    logs: str
