from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator

from defense_eval.schemas.aliases import accepts


class RubricTemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    version: int = Field(default=1, ge=1)
    active: bool = True
    description: str | None = Field(default=None, max_length=1000)


class RubricTemplateUpdate(BaseModel):
    """Partial patch; only fields present in the body are applied."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    version: int | None = Field(default=None, ge=1)
    active: bool | None = None
    description: str | None = Field(default=None, max_length=1000)


class RubricTemplateOut(BaseModel):
    id: str
    name: str
    version: int
    active: bool
    description: str | None
    created_at: datetime
    updated_at: datetime


class RubricCriterionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    template_id: str = Field(validation_alias=accepts("template_id"))
    name: str = Field(min_length=1, max_length=300, validation_alias=accepts("criterion_name"))
    description: str | None = None
    weight: float = Field(default=1, ge=0)
    min_score: int = Field(default=1, validation_alias=accepts("min_score"))
    max_score: int = Field(default=5, validation_alias=accepts("max_score"))

    @model_validator(mode="after")
    def _range(self):
        if self.max_score < self.min_score:
            raise ValueError("max_score must be >= min_score")
        return self


class RubricCriterionUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, min_length=1, max_length=300, validation_alias=accepts("criterion_name"))
    description: str | None = None
    weight: float | None = Field(default=None, ge=0)
    min_score: int | None = Field(default=None, validation_alias=accepts("min_score"))
    max_score: int | None = Field(default=None, validation_alias=accepts("max_score"))


class RubricCriterionOut(BaseModel):
    id: str
    template_id: str
    name: str
    description: str | None
    weight: float
    min_score: int
    max_score: int
    created_at: datetime
