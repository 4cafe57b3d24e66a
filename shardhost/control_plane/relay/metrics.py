"""Telemetry sample parsing, CPU/memory normalisation and emit throttling.

The runtime emits raw usage snapshots (Docker ``/stats`` format) at its own
pace and sometimes in fragments.  Fragments that do not parse, or parse
without CPU counters and memory usage, are dropped.
CPU usage counters are cumulative, so a percentage only makes sense as a
delta between two consecutive samples.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True)
class CpuCounters:
    """Cumulative CPU counters from one sample."""

    total_usage: int
    system_usage: int
    online_cpus: int


def parse_sample(raw: bytes | str | Mapping[str, Any]) -> dict[str, Any] | None:
    """Decode one raw sample.  Partial or non-JSON payloads yield ``None``."""
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        decoded = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(decoded, dict):
        return None
    return decoded


def _cpu_count(cpu_stats: Mapping[str, Any]) -> int:
    online = cpu_stats.get("online_cpus")
    if online:
        return int(online)
    percpu = (cpu_stats.get("cpu_usage") or {}).get("percpu_usage") or []
    return len(percpu) or 1


def extract_cpu(stats_block: Mapping[str, Any] | None) -> CpuCounters | None:
    """Pull counters out of a ``cpu_stats`` / ``precpu_stats`` block."""
    if not stats_block:
        return None
    usage = stats_block.get("cpu_usage") or {}
    total = usage.get("total_usage")
    system = stats_block.get("system_cpu_usage")
    if total is None or system is None:
        return None
    return CpuCounters(total_usage=int(total), system_usage=int(system), online_cpus=_cpu_count(stats_block))


def cpu_percent(current: CpuCounters, previous: CpuCounters) -> float:
    """``(cpu_delta / system_delta) * cpus * 100``; ``0.0`` when the system delta is not positive."""
    system_delta = current.system_usage - previous.system_usage
    cpu_delta = current.total_usage - previous.total_usage
    if system_delta <= 0 or cpu_delta < 0:
        return 0.0
    return (cpu_delta / system_delta) * current.online_cpus * 100.0


def _memory_usage(memory_stats: Any) -> int | None:
    if not isinstance(memory_stats, Mapping):
        return None
    usage = memory_stats.get("usage")
    if isinstance(usage, bool) or not isinstance(usage, int | float):
        return None
    return int(usage)


class MetricsSnapshot(BaseModel):
    """Normalised telemetry sent to viewers."""

    cpu: float
    memory_bytes: int
    memory_limit: int
    memory_percent: float
    timestamp: float


def build_snapshot(sample: Mapping[str, Any], previous: CpuCounters | None, *, now: float) -> MetricsSnapshot:
    """Build a snapshot from *sample* paired with the *previous* sample's counters.

    Without a previous sample the payload's own ``precpu_stats`` is used.
    """
    current = extract_cpu(sample.get("cpu_stats"))
    baseline = previous or extract_cpu(sample.get("precpu_stats"))
    cpu = cpu_percent(current, baseline) if current and baseline else 0.0

    memory = sample.get("memory_stats") or {}
    usage = int(memory.get("usage") or 0)
    limit = int(memory.get("limit") or 0)
    return MetricsSnapshot(
        cpu=cpu,
        memory_bytes=usage,
        memory_limit=limit,
        memory_percent=(usage / limit * 100.0) if limit > 0 else 0.0,
        timestamp=now,
    )


class EmitThrottle:
    """Allow at most one emission per *interval* seconds."""

    def __init__(self, interval: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self.last_emit: float | None = None

    def ready(self) -> bool:
        """Return ``True`` (and record the emission) if the window has elapsed."""
        now = self._clock()
        if self.last_emit is not None and now - self.last_emit < self.interval:
            return False
        self.last_emit = now
        return True


class SampleTracker:
    """Pairs consecutive samples and throttles the resulting snapshots.

    Samples without usable CPU counters and memory usage are dropped before
    the throttle is consulted, so they never take an emission window.
    """

    def __init__(self, throttle: EmitThrottle, wall_clock: Callable[[], float] = time.time) -> None:
        self._throttle = throttle
        self._wall_clock = wall_clock
        self._previous: CpuCounters | None = None

    def feed(self, raw: bytes | str | Mapping[str, Any]) -> MetricsSnapshot | None:
        """Consume one raw sample; return a snapshot when one is due for emission."""
        sample = parse_sample(raw)
        if sample is None:
            return None

        previous = self._previous
        try:
            current = extract_cpu(sample.get("cpu_stats"))
            if current is None or _memory_usage(sample.get("memory_stats")) is None:
                return None
            snapshot = build_snapshot(sample, previous, now=self._wall_clock())
        except (ValueError, TypeError, AttributeError):
            return None

        # Track every valid sample, emitted or not, so deltas stay consecutive.
        self._previous = current
        if not self._throttle.ready():
            return None
        return snapshot
