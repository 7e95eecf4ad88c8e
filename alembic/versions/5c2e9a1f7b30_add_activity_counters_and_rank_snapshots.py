"""Add activity_counters and rank_snapshots tables

Revision ID: 5c2e9a1f7b30
Revises:
Create Date: 2026-10-16 09:12:04.118230

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e9a1f7b30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the counter and snapshot tables owned by statrank."""

    # --- activity_counters ---
    op.create_table(
        "activity_counters",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("platform", sa.String(60), nullable=False),
        sa.Column("scope", sa.String(150), nullable=False),
        sa.Column("user_id", sa.String(150), nullable=False),
        sa.Column("activity", sa.String(150), nullable=False),
        sa.Column("count", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("last_activity_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("scope_name", sa.String(255), nullable=True),
        sa.UniqueConstraint(
            "platform", "scope", "user_id", "activity",
            name="uq_activity_counters_key",
        ),
    )
    op.create_index(
        "ix_activity_counters_activity", "activity_counters", ["activity"],
    )
    op.create_index(
        "ix_activity_counters_scope", "activity_counters", ["platform", "scope"],
    )

    # --- rank_snapshots ---
    op.create_table(
        "rank_snapshots",
        sa.Column("counter_id", sa.Integer, nullable=False),
        sa.Column("bucket", sa.DateTime(timezone=True), nullable=False),
        sa.Column("count", sa.BigInteger, nullable=False),
        sa.Column("rank", sa.Integer, nullable=False),
        sa.PrimaryKeyConstraint("counter_id", "bucket"),
    )
    op.create_index("ix_rank_snapshots_bucket", "rank_snapshots", ["bucket"])


def downgrade() -> None:
    """Drop rank_snapshots and activity_counters tables."""
    op.drop_index("ix_rank_snapshots_bucket", table_name="rank_snapshots")
    op.drop_table("rank_snapshots")
    op.drop_index("ix_activity_counters_scope", table_name="activity_counters")
    op.drop_index("ix_activity_counters_activity", table_name="activity_counters")
    op.drop_table("activity_counters")
