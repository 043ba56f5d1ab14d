from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from defense_eval.schemas.aliases import accepts


class ThesisGroupCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=300)
    adviser_id: str | None = Field(default=None, validation_alias=accepts("adviser_id"))
    program: str | None = Field(default=None, max_length=120)
    term: str | None = Field(default=None, max_length=60)
    member_ids: list[str] = Field(default_factory=list, validation_alias=accepts("member_ids"))


class GroupMemberAdd(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: str = Field(validation_alias=accepts("student_id"))


class GroupMemberOut(BaseModel):
    student_id: str
    name: str | None
    email: str | None


class ThesisGroupOut(BaseModel):
    id: str
    title: str
    adviser_id: str | None
    program: str | None
    term: str | None
    members: list[GroupMemberOut]
    created_at: datetime


class DefenseScheduleCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_id: str = Field(validation_alias=accepts("group_id"))
    scheduled_at: datetime = Field(validation_alias=accepts("scheduled_at"))
    room: str | None = Field(default=None, max_length=120)
    rubric_template_id: str | None = Field(default=None, validation_alias=accepts("rubric_template_id"))


class DefenseScheduleOut(BaseModel):
    id: str
    group_id: str
    scheduled_at: datetime
    room: str | None
    status: str
    rubric_template_id: str | None
    created_by: str | None
    created_at: datetime


class PanelAssign(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    staff_ids: list[str] = Field(default_factory=list, validation_alias=accepts("staff_ids"))
    # also open a pending evaluation for every panelist that lacks one
    create_evaluations: bool = Field(default=False, validation_alias=accepts("create_evaluations"))


class PanelistOut(BaseModel):
    staff_id: str
    name: str | None
    email: str | None
    evaluation_id: str | None
    evaluation_status: str | None


class PanelOut(BaseModel):
    ok: bool = True
    items: list[PanelistOut]
    created_evaluations: int = 0


class PanelistRemovedOut(BaseModel):
    ok: bool = True
    deleted: int
    evaluation_removed: bool
