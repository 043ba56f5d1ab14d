import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
import sqlalchemy as sa

from defense_eval.db.base import Base


class SchedulePanelist(Base):
    """Staff member sitting on the panel of one defense."""

    __tablename__ = "schedule_panelists"

    schedule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("defense_schedules.id", ondelete="CASCADE"), primary_key=True
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )

    staff = relationship("User", lazy="selectin")
