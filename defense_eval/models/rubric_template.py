import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint, CheckConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from defense_eval.db.base import Base


class RubricTemplate(Base):
    __tablename__ = "rubric_templates"
    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_rubric_templates_name_version"),
        CheckConstraint("version >= 1", name="ck_rubric_templates_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    criteria = relationship(
        "RubricCriterion",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="RubricCriterion.created_at",
        lazy="selectin",
    )
