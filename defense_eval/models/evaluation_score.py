import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, CheckConstraint, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column
import sqlalchemy as sa

from defense_eval.db.base import Base

SUBJECT_TYPES = ("group", "student")


class EvaluationScore(Base):
    __tablename__ = "evaluation_scores"
    __table_args__ = (
        # one row per criterion per scored subject; concurrent upserts collide here
        UniqueConstraint(
            "evaluation_id", "criterion_id", "subject_type", "subject_id",
            name="uq_eval_score_criterion_subject",
        ),
        CheckConstraint("subject_type IN ('group','student')", name="ck_eval_score_subject_type"),
        Index("ix_eval_score_evaluation_subject", "evaluation_id", "subject_type", "subject_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    evaluation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("evaluations.id", ondelete="CASCADE"), nullable=False
    )
    criterion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rubric_criteria.id", ondelete="CASCADE"), nullable=False
    )

    # group_id when subject_type = group, student user id when subject_type = student
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    score: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
