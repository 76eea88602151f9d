"""create counter tables

Revision ID: 5c1e7a2d9b40
Revises:
Create Date: 2026-10-18 09:12:41.508311

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e7a2d9b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create counters and their append-only history."""
    op.create_table(
        "counter",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_counter_user_id", "counter", ["user_id"])

    op.create_table(
        "counter_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("counter_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["counter_id"], ["counter.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "counter_id", "timestamp", name="uq_counter_history_counter_timestamp"
        ),
    )
    op.create_index(
        "ix_counter_history_counter_timestamp",
        "counter_history",
        ["counter_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop the counter tables."""
    op.drop_index("ix_counter_history_counter_timestamp", table_name="counter_history")
    op.drop_table("counter_history")
    op.drop_index("ix_counter_user_id", table_name="counter")
    op.drop_table("counter")
