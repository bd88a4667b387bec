"""init

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "instance_metrics",
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("instance_id", sa.String(length=255), nullable=False),
        sa.Column("client_type", sa.String(length=64), nullable=False),
        sa.Column("upload_speed", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("download_speed", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("total_uploaded", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("total_downloaded", sa.BigInteger(), server_default="0", nullable=False),
        sa.PrimaryKeyConstraint("timestamp", "instance_id"),
    )
    op.create_index(
        "ix_instance_metrics_type", "instance_metrics", ["timestamp", "client_type"]
    )

    op.create_table(
        "metadata",
        sa.Column("key", sa.String(length=255), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("metadata")
    op.drop_index("ix_instance_metrics_type", table_name="instance_metrics")
    op.drop_table("instance_metrics")
