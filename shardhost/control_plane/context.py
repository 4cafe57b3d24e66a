"""Relay session context.

One ``RelaySession`` exists per connected viewer.  It holds the live handles
the relay needs to tear the session down deterministically: the attached
console stream, the metrics stream and the task running the relay loop.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shardhost.control_plane.runtime.base import ConsoleStream


@dataclass
class RelaySession:
    """In-flight state for a single viewer attached to a workload.

    Created by the relay after authorization; registered in the
    ``RelayRegistry`` for shutdown; discarded on disconnect.
    """

    # -- Identity --------------------------------------------------------------
    tenant_id: str
    workload_id: str
    resource_name: str
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    # -- Live references (set while relaying) ----------------------------------
    console: ConsoleStream | None = None
    metrics_stream: Any = None  # async generator from ContainerRuntime.stats
    task: asyncio.Task[Any] | None = None

    # -- Metrics bookkeeping ---------------------------------------------------
    last_metrics_emit: float | None = None
    metrics_retries: int = 0

    @property
    def console_connected(self) -> bool:
        return self.console is not None
