"""Container runtime boundary and its Docker implementation."""

from shardhost.control_plane.runtime.base import (
    ConsoleStream,
    ContainerRuntime,
    ContainerSpec,
    HealthCheck,
    RuntimeAPIError,
    RuntimeState,
    RuntimeUnreachableError,
)

__all__ = [
    "ConsoleStream",
    "ContainerRuntime",
    "ContainerSpec",
    "HealthCheck",
    "RuntimeAPIError",
    "RuntimeState",
    "RuntimeUnreachableError",
]
