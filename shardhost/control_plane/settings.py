"""Service configuration loaded from SHARDHOST_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RegionDescriptor(BaseModel):
    """A regional address block used for synthetic address assignment."""

    name: str
    prefix: str
    """Dotted /24 prefix including the trailing dot, e.g. ``154.12.1.``."""

    location: str


DEFAULT_REGIONS: list[RegionDescriptor] = [
    RegionDescriptor(name="US-East", prefix="154.12.1.", location="us-east-1"),
    RegionDescriptor(name="US-West", prefix="185.45.2.", location="us-west-1"),
    RegionDescriptor(name="EU-Central", prefix="95.211.3.", location="eu-central-1"),
    RegionDescriptor(name="Asia-Pacific", prefix="103.21.4.", location="ap-southeast-1"),
]


class ShardSettings(BaseSettings):
    """Shardhost control plane settings.

    All fields are read from environment variables with the ``SHARDHOST_``
    prefix.  For example, ``SHARDHOST_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    Structured fields (``regions``, ``tenant_tokens``) are given as JSON.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHARDHOST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Emit one JSON object per log line instead of the coloured console format."""

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (psycopg).  Required for full operation."""

    db_pool_size: int = 5
    db_max_overflow: int = 10

    docker_url: str | None = None
    """Docker Engine endpoint.  ``None`` lets the client pick DOCKER_HOST or the local socket."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 30
    """Seconds to wait for open console sessions to close during shutdown."""

    # -- Auth ------------------------------------------------------------------
    tenant_tokens: dict[str, str] = Field(default_factory=dict)
    """Bearer token -> tenant id.  Tokens are issued elsewhere; this service only resolves them."""

    # -- Workload image --------------------------------------------------------
    image: str = "itzg/minecraft-server:latest"
    data_root: str = "/var/lib/shardhost/data"
    """Host directory holding one durable volume per workload."""

    default_version: str = "LATEST"
    jvm_flags: str = (
        "-XX:+UseG1GC -XX:+ParallelRefProcEnabled -XX:MaxGCPauseMillis=200 "
        "-XX:+UnlockExperimentalVMOptions -XX:+DisableExplicitGC"
    )

    # -- Allocation ------------------------------------------------------------
    port_range_min: int = 25565
    port_range_max: int = 26000
    probe_host: str = "0.0.0.0"  # noqa: S104
    probe_timeout: float = 2.0
    allocation_max_attempts: int = 5
    """Upper bound on re-allocation after a port uniqueness conflict at commit."""

    regions: list[RegionDescriptor] = Field(default_factory=lambda: list(DEFAULT_REGIONS))

    # -- Ports inside the container -------------------------------------------
    service_port: int = 25565
    admin_port: int = 25575
    admin_host_port: int = 25575
    """Host port the admin-protocol (RCON) port is published on."""

    # -- Credentials -----------------------------------------------------------
    secret_length: int = 12
    panel_url: str = "https://panel.shardhost.io"

    # -- Runtime ---------------------------------------------------------------
    stop_timeout: int = 10
    """Grace period (seconds) given to a workload to save state before a forced stop."""

    runtime_timeout: float = 60.0
    """Caller-side ceiling for a single runtime API call."""

    # -- Relay -----------------------------------------------------------------
    metrics_interval: float = 1.0
    metrics_retry_delay: float = 5.0
    metrics_max_retries: int = 1

    # -- Helpers ---------------------------------------------------------------

    def resolve_tenant(self, token: str | None) -> str | None:
        """Return the tenant id for a bearer token, or ``None`` if unknown."""
        if not token:
            return None
        return self.tenant_tokens.get(token)


@lru_cache(maxsize=1)
def _get_settings_cached() -> ShardSettings:
    return ShardSettings()


def get_settings() -> ShardSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()
