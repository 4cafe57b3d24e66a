"""Docker Engine implementation of the runtime boundary (aiodocker).

``build_container_config`` is the pure translation from ``ContainerSpec`` to
the Engine API create payload; it is kept separate so it can be tested
without a daemon.  All aiodocker errors are mapped onto the boundary's
``RuntimeAPIError`` / ``RuntimeUnreachableError``.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Iterator
from typing import Any

import aiodocker
import aiohttp
from aiodocker.exceptions import DockerError
from loguru import logger

from shardhost.control_plane.runtime.base import (
    ContainerSpec,
    RuntimeAPIError,
    RuntimeState,
    RuntimeUnreachableError,
)

_NANOS = 1_000_000_000


def build_container_config(spec: ContainerSpec) -> dict[str, Any]:
    """Translate a ``ContainerSpec`` into a Docker ``POST /containers/create`` body."""
    exposed = {f"{port}/tcp": {} for port in spec.port_bindings}
    bindings = {f"{port}/tcp": [{"HostPort": str(host_port)}] for port, host_port in spec.port_bindings.items()}

    host_config: dict[str, Any] = {
        "PortBindings": bindings,
        "Binds": list(spec.binds),
        "RestartPolicy": {"Name": spec.restart_policy, "MaximumRetryCount": 0},
        "LogConfig": {
            "Type": "json-file",
            "Config": {"max-size": spec.log_max_size, "max-file": str(spec.log_max_files)},
        },
    }
    if spec.memory_bytes is not None:
        host_config["Memory"] = spec.memory_bytes

    config: dict[str, Any] = {
        "Image": spec.image,
        "Env": [f"{key}={value}" for key, value in spec.env.items()],
        "ExposedPorts": exposed,
        "HostConfig": host_config,
        "Labels": dict(spec.labels),
        # stdin must stay open for the console relay to write into it.
        "OpenStdin": True,
        "AttachStdin": True,
        "Tty": False,
    }
    if spec.healthcheck is not None:
        hc = spec.healthcheck
        config["Healthcheck"] = {
            "Test": list(hc.test),
            "Interval": hc.interval_s * _NANOS,
            "Timeout": hc.timeout_s * _NANOS,
            "Retries": hc.retries,
            "StartPeriod": hc.start_period_s * _NANOS,
        }
    return config


def parse_inspect(data: dict[str, Any]) -> RuntimeState:
    """Build a ``RuntimeState`` from a ``GET /containers/{id}/json`` payload."""
    state = data.get("State") or {}
    health = (state.get("Health") or {}).get("Status") or "none"
    return RuntimeState(
        resource_id=data.get("Id", ""),
        name=(data.get("Name") or "").lstrip("/"),
        running=bool(state.get("Running")),
        status=state.get("Status", "unknown"),
        health=health,
        started_at=state.get("StartedAt"),
        restart_count=data.get("RestartCount", 0),
        memory_limit=(data.get("HostConfig") or {}).get("Memory"),
        raw=data,
    )


@contextlib.contextmanager
def _translate_errors(operation: str, name: str) -> Iterator[None]:
    try:
        yield
    except RuntimeUnreachableError:
        raise
    except DockerError as exc:
        raise RuntimeAPIError(exc.status, exc.message) from exc
    except (OSError, TimeoutError, aiohttp.ClientError) as exc:
        msg = f"Docker unreachable during {operation} of '{name}': {exc}"
        raise RuntimeUnreachableError(msg) from exc


class _DockerConsoleStream:
    """Adapts an aiodocker attach ``Stream`` to the ``ConsoleStream`` protocol."""

    def __init__(self, stream: Any, name: str) -> None:
        self._stream = stream
        self._name = name

    async def read(self) -> bytes | None:
        with _translate_errors("console read", self._name):
            message = await self._stream.read_out()
        if message is None:
            return None
        return message.data

    async def write(self, data: bytes) -> None:
        with _translate_errors("console write", self._name):
            await self._stream.write_in(data)

    async def close(self) -> None:
        await self._stream.close()


class DockerRuntime:
    """``ContainerRuntime`` backed by the Docker Engine API."""

    def __init__(self, url: str | None = None) -> None:
        self._url = url
        self._client: aiodocker.Docker | None = None

    @property
    def _docker(self) -> aiodocker.Docker:
        # Created on first use so a host without Docker can still serve the API.
        if self._client is None:
            try:
                self._client = aiodocker.Docker(url=self._url)
            except ValueError as exc:
                msg = f"No Docker endpoint available: {exc}"
                raise RuntimeUnreachableError(msg) from exc
        return self._client

    def _container(self, name: str) -> Any:
        return self._docker.containers.container(name)

    # -- Lifecycle -------------------------------------------------------------

    async def create(self, spec: ContainerSpec) -> str:
        with _translate_errors("create", spec.name):
            container = await self._docker.containers.create(build_container_config(spec), name=spec.name)
        logger.debug("Docker: created {} ({})", spec.name, container.id[:12])
        return container.id

    async def start(self, name: str) -> None:
        with _translate_errors("start", name):
            await self._container(name).start()

    async def stop(self, name: str, *, timeout: int) -> None:
        with _translate_errors("stop", name):
            await self._container(name).stop(t=timeout)

    async def restart(self, name: str, *, timeout: int) -> None:
        with _translate_errors("restart", name):
            await self._container(name).restart(t=timeout)

    async def kill(self, name: str) -> None:
        with _translate_errors("kill", name):
            await self._container(name).kill()

    async def remove(self, name: str, *, keep_volumes: bool = True) -> None:
        with _translate_errors("remove", name):
            await self._container(name).delete(v=not keep_volumes, force=False)

    # -- Observation -----------------------------------------------------------

    async def inspect(self, name: str) -> RuntimeState:
        with _translate_errors("inspect", name):
            data = await self._container(name).show()
        return parse_inspect(data)

    async def attach(self, name: str) -> _DockerConsoleStream:
        # The hijacked connection is opened lazily on the first read/write.
        stream = self._container(name).attach(stdout=True, stderr=True, stdin=True)
        return _DockerConsoleStream(stream, name)

    async def stats(self, name: str) -> AsyncIterator[bytes | dict[str, Any]]:
        with _translate_errors("stats", name):
            async for sample in self._container(name).stats(stream=True):
                yield sample

    async def logs(self, name: str, *, tail: int = 100) -> str:
        with _translate_errors("logs", name):
            lines = await self._container(name).log(stdout=True, stderr=True, tail=tail, timestamps=True)
        return "".join(lines)

    # -- Daemon ----------------------------------------------------------------

    async def ping(self) -> dict[str, Any]:
        with _translate_errors("ping", "daemon"):
            info = await self._docker.system.info()
        return {"containers": info.get("Containers"), "images": info.get("Images")}

    async def pull_image(self, image: str) -> None:
        with _translate_errors("pull", image):
            await self._docker.images.pull(image)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
