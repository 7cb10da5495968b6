"""Track summed minutes and overlap flag on shifts

Revision ID: 0002_shift_overlap_totals
Revises: 0001_initial
Create Date: 2026-10-12 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002_shift_overlap_totals"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "shifts",
        sa.Column("summed_activity_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.add_column(
        "shifts",
        sa.Column("has_overlaps", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    # Existing rows keep the stored hours/minutes until the next recalculation run.
    op.execute(
        "UPDATE shifts SET summed_activity_minutes = total_activity_hours * 60 + total_activity_minutes"
    )


def downgrade() -> None:
    op.drop_column("shifts", "has_overlaps")
    op.drop_column("shifts", "summed_activity_minutes")
