"""schedule panelists

Revision ID: 8c3d4e1f2a60
Revises: 5b1e2c7d9a10
Create Date: 2026-10-17 15:40:22.604117
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "8c3d4e1f2a60"
down_revision: Union[str, None] = "5b1e2c7d9a10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "schedule_panelists",
        sa.Column(
            "schedule_id", sa.Uuid(), sa.ForeignKey("defense_schedules.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("staff_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_schedule_panelists_staff_id", "schedule_panelists", ["staff_id"])


def downgrade() -> None:
    op.drop_index("ix_schedule_panelists_staff_id", table_name="schedule_panelists")
    op.drop_table("schedule_panelists")
