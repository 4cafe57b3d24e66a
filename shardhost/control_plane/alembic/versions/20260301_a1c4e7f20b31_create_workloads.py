"""create workloads

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-03-01 09:12:44.102837+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1c4e7f20b31"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "workloads",
        sa.Column("workload_id", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("port", sa.Integer(), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("region", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("memory_gib", sa.Integer(), nullable=False),
        sa.Column("disk_gib", sa.Integer(), nullable=False),
        sa.Column("version", sa.String(), server_default="LATEST", nullable=False),
        sa.Column("status", sa.String(), server_default="provisioning", nullable=False),
        sa.Column("admin_secret", sa.String(), nullable=True),
        sa.Column("console_secret", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("workload_id", name=op.f("pk_workloads")),
        sa.UniqueConstraint("external_id", name="uq_workloads_external_id"),
        sa.UniqueConstraint("port", name="uq_workloads_port"),
    )
    op.create_index("ix_workloads_status", "workloads", ["status"], unique=False)
    op.create_index("ix_workloads_tenant_id", "workloads", ["tenant_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_workloads_tenant_id", table_name="workloads")
    op.drop_index("ix_workloads_status", table_name="workloads")
    op.drop_table("workloads")
