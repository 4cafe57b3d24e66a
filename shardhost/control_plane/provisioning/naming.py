"""Deterministic runtime resource naming.

Every call site that addresses a workload's container (launch, status,
stop, logs, console attach) goes through ``container_name`` so no lookup
table is needed and the names cannot drift apart.
"""

from __future__ import annotations

import re
from pathlib import Path

RESOURCE_PREFIX = "mc"

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9-]")


def sanitize_name(name: str) -> str:
    """Lowercase, whitespace runs -> ``-``, drop anything outside ``[a-z0-9-]``."""
    return _DISALLOWED.sub("", _WHITESPACE.sub("-", name.lower()))


def container_name(workload_id: str, name: str) -> str:
    return f"{RESOURCE_PREFIX}-{workload_id}-{sanitize_name(name)}"


def volume_path(data_root: str | Path, workload_id: str) -> Path:
    """Host directory holding the workload's durable data."""
    return Path(data_root) / workload_id
