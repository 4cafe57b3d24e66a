"""Shared enumerations used across the control plane."""

from __future__ import annotations

from enum import StrEnum

# -- Workload ----------------------------------------------------------------


class WorkloadStatus(StrEnum):
    """Durable workload status persisted in PG."""

    PROVISIONING = "provisioning"
    ONLINE = "online"
    WAITING = "waiting"
    """Endpoint and credentials reserved, compute not running yet."""

    OFFLINE = "offline"
    FAILED = "failed"
    """Endpoint could not be reserved."""


class LifecycleAction(StrEnum):
    ALLOCATE = "allocate"
    ALLOCATION_FAILED = "allocation_failed"
    LAUNCH = "launch"
    LAUNCH_FAILED = "launch_failed"
    START = "start"
    STOP = "stop"
    KILL = "kill"
    RESTART = "restart"


class PowerAction(StrEnum):
    """Power actions exposed to tenants."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    KILL = "kill"


# -- Runtime -----------------------------------------------------------------


class RuntimeHealth(StrEnum):
    """Live view of the runtime resource, independent of the persisted status."""

    RUNNING = "running"
    STOPPED = "stopped"
    MISSING = "missing"
    UNKNOWN = "unknown"


# -- Relay -------------------------------------------------------------------


class RelayEventType(StrEnum):
    """JSON events sent to console viewers alongside raw output frames."""

    CONSOLE_NOTICE = "console_notice"
    CONSOLE_ERROR = "console_error"
    SERVER_STATS = "server_stats"
