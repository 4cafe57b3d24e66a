"""Workload status state machine.

All persisted status changes go through ``transition``; unknown
(status, action) pairs are rejected instead of assigning arbitrary strings.
Teardown is not a status: it deletes the record and is allowed from any
status.
"""

from __future__ import annotations

from dataclasses import dataclass

from shardhost.control_plane.errors import InvalidTransitionError
from shardhost.control_plane.models.enums import LifecycleAction, WorkloadStatus


@dataclass(frozen=True)
class Transition:
    from_status: WorkloadStatus
    action: LifecycleAction
    to_status: WorkloadStatus


_S = WorkloadStatus
_A = LifecycleAction

TRANSITIONS: tuple[Transition, ...] = (
    # Provisioning flow
    Transition(_S.PROVISIONING, _A.ALLOCATE, _S.PROVISIONING),
    Transition(_S.PROVISIONING, _A.ALLOCATION_FAILED, _S.FAILED),
    Transition(_S.PROVISIONING, _A.LAUNCH, _S.ONLINE),
    Transition(_S.PROVISIONING, _A.LAUNCH_FAILED, _S.WAITING),
    # Out-of-band relaunch of a reserved workload
    Transition(_S.WAITING, _A.LAUNCH, _S.ONLINE),
    Transition(_S.WAITING, _A.LAUNCH_FAILED, _S.WAITING),
    # Power control
    Transition(_S.ONLINE, _A.STOP, _S.OFFLINE),
    Transition(_S.ONLINE, _A.KILL, _S.OFFLINE),
    Transition(_S.ONLINE, _A.RESTART, _S.ONLINE),
    Transition(_S.OFFLINE, _A.START, _S.ONLINE),
    Transition(_S.OFFLINE, _A.RESTART, _S.ONLINE),
)

_TABLE: dict[tuple[WorkloadStatus, LifecycleAction], WorkloadStatus] = {
    (t.from_status, t.action): t.to_status for t in TRANSITIONS
}


def can_transition(status: WorkloadStatus | str, action: LifecycleAction | str) -> bool:
    try:
        key = (WorkloadStatus(status), LifecycleAction(action))
    except ValueError:
        return False
    return key in _TABLE


def transition(status: WorkloadStatus | str, action: LifecycleAction | str) -> WorkloadStatus:
    """Return the status reached by applying *action* in *status*.

    Raises ``InvalidTransitionError`` for pairs not in ``TRANSITIONS``.
    """
    try:
        key = (WorkloadStatus(status), LifecycleAction(action))
    except ValueError:
        raise InvalidTransitionError(str(status), str(action)) from None
    try:
        return _TABLE[key]
    except KeyError:
        raise InvalidTransitionError(key[0].value, key[1].value) from None


def allowed_actions(status: WorkloadStatus | str) -> list[LifecycleAction]:
    current = WorkloadStatus(status)
    return [t.action for t in TRANSITIONS if t.from_status == current]
