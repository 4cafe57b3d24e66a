"""Domain exceptions for the control plane.

Managers, the supervisor and the relay raise these; routers translate them
to HTTP responses.  Runtime boundary errors live in
``shardhost.control_plane.runtime.base`` and are re-exported here.
"""

from __future__ import annotations

from shardhost.control_plane.runtime.base import RuntimeAPIError, RuntimeUnreachableError

__all__ = [
    "AllocationConflictError",
    "AllocationError",
    "AllocationExhaustedError",
    "InvalidTransitionError",
    "MetricsStreamFault",
    "RuntimeAPIError",
    "RuntimeLaunchFailure",
    "RuntimeUnreachableError",
    "SessionAuthDenied",
    "WorkloadNotFoundError",
]


# -- Allocation --------------------------------------------------------------


class AllocationError(RuntimeError):
    """Base class for endpoint reservation failures.  The workload goes to ``failed``."""


class AllocationExhaustedError(AllocationError):
    """Every port in the configured range is recorded or held by the host."""

    def __init__(self, range_min: int, range_max: int) -> None:
        self.range_min = range_min
        self.range_max = range_max
        size = range_max - range_min + 1
        super().__init__(f"No free ports available in range {range_min}-{range_max} ({size} ports in use)")


class AllocationConflictError(AllocationError):
    """The port uniqueness constraint kept rejecting commits after all retries."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Port reservation conflicted {attempts} times; giving up")


# -- Lifecycle ---------------------------------------------------------------


class InvalidTransitionError(ValueError):
    def __init__(self, from_status: str, action: str) -> None:
        self.from_status = from_status
        self.action = action
        super().__init__(f"No valid transition for action '{action}' from status '{from_status}'")


class RuntimeLaunchFailure(RuntimeError):
    """Create/start/verify failed after the endpoint was reserved.

    Recoverable: the workload moves to ``waiting`` and can be relaunched
    without a new allocation.
    """


# -- Lookup ------------------------------------------------------------------


class WorkloadNotFoundError(LookupError):
    """Raised when a workload is not found (or not owned by the caller)."""


# -- Relay -------------------------------------------------------------------


class SessionAuthDenied(PermissionError):
    """The requesting tenant does not own the target workload."""

    def __init__(self, workload_id: str, tenant_id: str) -> None:
        self.workload_id = workload_id
        self.tenant_id = tenant_id
        super().__init__(f"Workload '{workload_id}' not found or access denied")


class MetricsStreamFault(RuntimeError):
    """The metrics subscription failed.  Handled inside the relay, never surfaced."""
