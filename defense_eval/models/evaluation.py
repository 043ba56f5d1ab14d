import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, CheckConstraint, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column
import sqlalchemy as sa

from defense_eval.db.base import Base

EVALUATION_STATUSES = ("pending", "submitted", "locked")


class Evaluation(Base):
    __tablename__ = "evaluations"
    __table_args__ = (
        UniqueConstraint("schedule_id", "evaluator_id", name="uq_evaluations_assignment"),
        CheckConstraint(
            "status IN ('pending','submitted','locked')",
            name="ck_evaluations_status",
        ),

        # Timestamp sanity (DB invariant)
        # pending => no locked timestamp
        CheckConstraint(
            "(status <> 'pending') OR (locked_at IS NULL)",
            name="ck_eval_ts_pending",
        ),
        # submitted => must have submitted_at; must not have locked_at
        CheckConstraint(
            "(status <> 'submitted') OR (submitted_at IS NOT NULL AND locked_at IS NULL)",
            name="ck_eval_ts_submitted",
        ),
        # locked => must have locked_at (submitted_at is optional, incomplete evaluations may be locked)
        CheckConstraint(
            "(status <> 'locked') OR (locked_at IS NOT NULL)",
            name="ck_eval_ts_locked",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    schedule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("defense_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    evaluator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        onupdate=datetime.utcnow,
    )
    # Optimistic locking
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}
