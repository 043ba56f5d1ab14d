from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from defense_eval.schemas.aliases import accepts


class StudentEvaluationUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schedule_id: str = Field(validation_alias=accepts("schedule_id"))
    # students always write their own row; admins name the student
    student_id: str | None = Field(default=None, validation_alias=accepts("student_id"))
    # omitted answers leave the stored ones untouched; given answers are merged in
    answers: dict[str, Any] | None = None
    status: Literal["pending", "submitted"] | None = None


class StudentEvaluationUpdate(BaseModel):
    answers: dict[str, Any] | None = None
    status: Literal["pending", "submitted", "locked"] | None = None


class StudentEvaluationOut(BaseModel):
    id: str
    schedule_id: str
    student_id: str
    status: str
    answers: dict[str, Any]
    submitted_at: datetime | None
    locked_at: datetime | None
    created_at: datetime
    updated_at: datetime
