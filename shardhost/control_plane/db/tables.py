"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema.  Alembic reads
``Base.metadata`` to autogenerate migration scripts.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


# Apply naming convention to the metadata for deterministic constraint names.
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Workload(Base):
    __tablename__ = "workloads"
    __table_args__ = (
        # Final serialization point for concurrent port allocation.
        UniqueConstraint("port", name="uq_workloads_port"),
        UniqueConstraint("external_id", name="uq_workloads_external_id"),
        Index("ix_workloads_tenant_id", "tenant_id"),
        Index("ix_workloads_status", "status"),
    )

    workload_id: Mapped[str] = mapped_column(primary_key=True)
    external_id: Mapped[str]
    name: Mapped[str]
    tenant_id: Mapped[str]

    # Endpoint (NULL until reserved; NULLs do not collide under the unique constraint)
    port: Mapped[int | None]
    address: Mapped[str | None]
    region: Mapped[str | None]
    location: Mapped[str | None]

    memory_gib: Mapped[int]
    disk_gib: Mapped[int]
    version: Mapped[str] = mapped_column(server_default="LATEST")
    status: Mapped[str] = mapped_column(server_default="provisioning")

    # Write-once credentials
    admin_secret: Mapped[str | None]
    console_secret: Mapped[str | None]

    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())
