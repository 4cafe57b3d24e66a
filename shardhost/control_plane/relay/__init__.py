"""Console and metrics relay between viewers and running workloads."""

from shardhost.control_plane.relay.metrics import EmitThrottle, MetricsSnapshot, cpu_percent, parse_sample
from shardhost.control_plane.relay.session import SessionRelay, Viewer

__all__ = ["EmitThrottle", "MetricsSnapshot", "SessionRelay", "Viewer", "cpu_percent", "parse_sample"]
