"""Credential generation for workload administrative channels.

Secrets are drawn from the OS CSPRNG (``secrets``), base64-encoded and reduced
to ``[A-Za-z0-9]`` so they survive admin protocols (RCON, panel logins,
shell-quoted env values) that mishandle punctuation.
"""

from __future__ import annotations

import base64
import math
import re
import secrets
from dataclasses import dataclass

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

ALPHABET_SIZE = 62


def generate_secret(length: int = 12) -> str:
    """Return a cryptographically random alphanumeric secret of exactly *length* chars."""
    if length < 1:
        msg = f"Secret length must be positive, got {length}"
        raise ValueError(msg)

    secret = ""
    while len(secret) < length:
        chunk = base64.b64encode(secrets.token_bytes(length)).decode("ascii")
        secret += _NON_ALNUM.sub("", chunk)
    return secret[:length]


def secret_entropy_bits(length: int) -> float:
    """Entropy of an alphanumeric secret: ``length * log2(62)``."""
    return length * math.log2(ALPHABET_SIZE)


@dataclass(frozen=True)
class WorkloadCredentials:
    """Credentials handed to the tenant once, at provisioning time.

    ``admin_secret`` logs into the control panel; ``console_secret`` is the
    admin-protocol (RCON) password injected into the container.  They are
    generated independently so one leaking does not expose the other channel.
    """

    panel_username: str
    admin_secret: str
    console_secret: str
    panel_url: str

    @property
    def panel_login_url(self) -> str:
        return f"{self.panel_url}/auth/login?username={self.panel_username}"


def generate_credentials(workload_id: str, *, length: int = 12, panel_url: str) -> WorkloadCredentials:
    return WorkloadCredentials(
        panel_username=f"user_{workload_id}",
        admin_secret=generate_secret(length),
        console_secret=generate_secret(length),
        panel_url=panel_url.rstrip("/"),
    )
