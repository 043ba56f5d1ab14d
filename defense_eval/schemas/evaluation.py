from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from defense_eval.schemas.aliases import FIELD_ALIASES, SUBJECT_TYPE_VALUES, accepts


class EvaluationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schedule_id: str = Field(validation_alias=accepts("schedule_id"))
    # defaults to the acting user; only admins may create for someone else
    evaluator_id: str | None = Field(default=None, validation_alias=accepts("evaluator_id"))


class EvaluationStatusUpdate(BaseModel):
    status: Literal["pending", "submitted", "locked"]


class EvaluationOut(BaseModel):
    id: str
    schedule_id: str
    evaluator_id: str
    status: str
    submitted_at: datetime | None
    locked_at: datetime | None
    created_at: datetime
    updated_at: datetime
    version: int


class ScoreUpsert(BaseModel):
    """
    One score cell. Accepts the wire spellings listed in aliases.FIELD_ALIASES;
    student_id / group_id imply the subject type when it is not given.
    """
    model_config = ConfigDict(populate_by_name=True)

    criterion_id: str = Field(validation_alias=accepts("criterion_id"))
    subject_type: Literal["group", "student"] | None = Field(default=None, validation_alias=accepts("subject_type"))
    subject_id: str | None = Field(default=None, validation_alias=accepts("subject_id"))
    score: float = Field(validation_alias=accepts("score"), allow_inf_nan=False)
    comment: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _implied_subject(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        student_id = data.get("student_id") or data.get("studentId")
        group_id = data.get("group_id") or data.get("groupId")
        has_type = any(data.get(k) for k in FIELD_ALIASES["subject_type"])

        if not has_type:
            if student_id:
                data["subject_type"] = "student"
            elif group_id:
                data["subject_type"] = "group"

        has_id = any(data.get(k) for k in FIELD_ALIASES["subject_id"])
        if not has_id:
            explicit_type = next((data.get(k) for k in FIELD_ALIASES["subject_type"] if data.get(k)), None)
            kind = SUBJECT_TYPE_VALUES.get(str(explicit_type).strip().lower()) if explicit_type else None
            if kind == "student" and student_id:
                data["subject_id"] = student_id
            elif kind == "group" and group_id:
                data["subject_id"] = group_id
            elif student_id or group_id:
                data["subject_id"] = student_id or group_id
        return data

    @field_validator("subject_type", mode="before")
    @classmethod
    def _subject_type(cls, v):
        if v is None:
            return None
        kind = SUBJECT_TYPE_VALUES.get(str(v).strip().lower())
        if kind is None:
            raise ValueError('subject_type must be either "group" or "student"')
        return kind

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, v):
        if isinstance(v, bool):
            raise ValueError("score must be a number")
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("comment", mode="before")
    @classmethod
    def _comment(cls, v):
        return v if v is None or isinstance(v, str) else None


class BulkScoresPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # items are validated one by one so a bad row fails alone
    scores: list[dict] = Field(default_factory=list, validation_alias=accepts("scores"))


class ScoreOut(BaseModel):
    id: str
    evaluation_id: str
    criterion_id: str
    subject_type: str
    subject_id: str
    score: int
    comment: str | None
    updated_at: datetime | None


class BulkItemError(BaseModel):
    index: int
    message: str


class BulkScoresOut(BaseModel):
    ok: bool
    items: list[ScoreOut]
    saved: int
    failed: int
    errors: list[BulkItemError]
    message: str | None = None


class SummaryOut(BaseModel):
    scored: int
    total: int
    total_raw: float
    max_raw: float
    total_weighted: float
    max_weighted: float
    percent: float


class CriterionRef(BaseModel):
    id: str
    name: str
    weight: float
    min_score: int
    max_score: int


class TargetSummaryOut(BaseModel):
    subject_type: str
    subject_id: str
    name: str | None
    email: str | None
    summary: SummaryOut
    scores: dict[str, int | None]


class EvaluationSummaryOut(BaseModel):
    evaluation: EvaluationOut
    criteria_source: str | None
    criteria: list[CriterionRef]
    targets: list[TargetSummaryOut]
    overall: SummaryOut
    remaining: int
    can_submit: bool
