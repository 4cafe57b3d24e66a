"""Port and address allocation.

Port allocation is a dual check:

1. the **snapshot** of ports already recorded for workloads (passed in by the
   caller, see ``managers.workloads.reserve_endpoint``), and
2. a **live bind probe** against the host network stack, which catches ports
   held by unrelated host processes the records know nothing about.

Candidates are tried in ascending order and the first one passing both checks
wins, so the result is reproducible for a fixed snapshot.  Two concurrent
callers may still agree on a port between the probe and the commit; the
unique constraint on ``workloads.port`` settles that and the caller retries.
No in-process lock is held.
"""

from __future__ import annotations

import asyncio
import secrets
import socket
from collections.abc import Awaitable, Callable, Collection, Sequence
from dataclasses import dataclass
from functools import partial

from anyio import to_thread
from loguru import logger

from shardhost.control_plane.errors import AllocationExhaustedError
from shardhost.control_plane.settings import RegionDescriptor

PortProbe = Callable[[int], Awaitable[bool]]

MIN_PORT = 1
MAX_PORT = 65535


# ---------------------------------------------------------------------------
# Live bind probe
# ---------------------------------------------------------------------------


def _bind_and_release(host: str, port: int) -> None:
    """Bind a listening socket and close it straight away.  Raises ``OSError`` if taken."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, port))
        sock.listen(1)


async def probe_port(port: int, *, host: str = "0.0.0.0", timeout: float = 2.0) -> bool:  # noqa: S104
    """Return ``True`` if *port* can be bound on *host* right now.

    Any bind error, or no answer within *timeout*, counts as unavailable.
    """
    try:
        await asyncio.wait_for(to_thread.run_sync(partial(_bind_and_release, host, port)), timeout=timeout)
    except OSError as exc:
        logger.debug("Port probe: {} unavailable ({})", port, exc.strerror or exc)
        return False
    except TimeoutError:
        logger.debug("Port probe: {} timed out after {}s", port, timeout)
        return False
    return True


def make_probe(host: str, timeout: float) -> PortProbe:
    """Bind ``probe_port`` to configured host/timeout."""
    return partial(probe_port, host=host, timeout=timeout)


# ---------------------------------------------------------------------------
# Port allocation
# ---------------------------------------------------------------------------


async def allocate_port(
    existing_ports: Collection[int],
    range_min: int,
    range_max: int,
    *,
    probe: PortProbe = probe_port,
) -> int:
    """Return the lowest port in ``[range_min, range_max]`` that is free.

    Free means: not in *existing_ports* and accepted by *probe*.  Raises
    ``AllocationExhaustedError`` when no candidate passes; nothing is
    retried here.
    """
    if not (MIN_PORT <= range_min <= range_max <= MAX_PORT):
        msg = f"Invalid port range {range_min}-{range_max}"
        raise ValueError(msg)

    used = set(existing_ports)
    for port in range(range_min, range_max + 1):
        if port in used:
            continue
        if await probe(port):
            return port
        logger.warning("Port allocation: {} is held by a host process", port)

    raise AllocationExhaustedError(range_min, range_max)


# ---------------------------------------------------------------------------
# Address assignment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddressAssignment:
    address: str
    region: str
    location: str


_system_random = secrets.SystemRandom()


def assign_address(
    regions: Sequence[RegionDescriptor],
    *,
    rng: secrets.SystemRandom = _system_random,
) -> AddressAssignment:
    """Pick a region uniformly and synthesize an address inside its block.

    Simulated pool: a real deployment swaps this for an address-pool
    integration while keeping the same return shape.
    """
    if not regions:
        msg = "No regions configured for address assignment"
        raise ValueError(msg)

    region = rng.choice(list(regions))
    octet = rng.randrange(256)
    return AddressAssignment(address=f"{region.prefix}{octet}", region=region.name, location=region.location)
