import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, CheckConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from defense_eval.db.base import Base


class RubricCriterion(Base):
    __tablename__ = "rubric_criteria"
    __table_args__ = (
        CheckConstraint("max_score >= min_score", name="ck_rubric_criteria_score_range"),
        CheckConstraint("weight >= 0", name="ck_rubric_criteria_weight"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rubric_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # percentage contribution of this criterion to the weighted total
    weight: Mapped[float] = mapped_column(Numeric(6, 3, asdecimal=False), nullable=False, default=1)
    min_score: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_score: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    template = relationship("RubricTemplate", back_populates="criteria")
