"""Data models for the control plane."""

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
from shardhost.control_plane.models.enums import (
    LifecycleAction,
    PowerAction,
    RelayEventType,
    RuntimeHealth,
    WorkloadStatus,
)

__all__ = [
    # API schemas
    "CredentialsResponse",
    # Enums
    "LifecycleAction",
    "LiveStatusResponse",
    "LogsResponse",
    "PowerAction",
    "PowerRequest",
    "ProvisionResponse",
    "RelayEventType",
    "RuntimeDetail",
    "RuntimeHealth",
    "WorkloadCreate",
    "WorkloadResponse",
    "WorkloadStatus",
]
