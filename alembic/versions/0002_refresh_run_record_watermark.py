"""Track the highest record id seen by participant refresh runs.

Revision ID: 0002_refresh_run_record_watermark
Revises: 0001_initial
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_refresh_run_record_watermark"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add the record watermark column to refresh runs."""
    op.add_column(
        "participant_refresh_runs",
        sa.Column("record_watermark", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    """Drop the record watermark column."""
    with op.batch_alter_table("participant_refresh_runs") as batch_op:
        batch_op.drop_column("record_watermark")
