from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from defense_eval.core.audit import log_event
from defense_eval.core.errors import NotFound, ValidationError
from defense_eval.core.panels import assign_panelists, get_schedule_or_404, list_panelists, unassign_panelist
from defense_eval.core.rbac import ADMIN, PANELIST, STAFF, STUDENT, require_roles
from defense_eval.core.rubric_registry import get_template_or_404, parse_uuid
from defense_eval.core.security import Actor, get_current_actor
from defense_eval.db.session import get_db
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.schedule_panelist import SchedulePanelist
from defense_eval.models.thesis_group import GroupMember, ThesisGroup
from defense_eval.models.user import User
from defense_eval.schemas.envelope import DeletedResponse, ItemResponse, ItemsResponse
from defense_eval.schemas.thesis import (
    DefenseScheduleCreate,
    DefenseScheduleOut,
    GroupMemberAdd,
    GroupMemberOut,
    PanelAssign,
    PanelistOut,
    PanelistRemovedOut,
    PanelOut,
    ThesisGroupCreate,
    ThesisGroupOut,
)

router = APIRouter(tags=["thesis"])


def group_to_out(g: ThesisGroup) -> ThesisGroupOut:
    return ThesisGroupOut(
        id=str(g.id),
        title=g.title,
        adviser_id=str(g.adviser_id) if g.adviser_id else None,
        program=g.program,
        term=g.term,
        members=[
            GroupMemberOut(
                student_id=str(m.student_id),
                name=m.student.name if m.student else None,
                email=m.student.email if m.student else None,
            )
            for m in g.members
        ],
        created_at=g.created_at,
    )


def schedule_to_out(s: DefenseSchedule) -> DefenseScheduleOut:
    return DefenseScheduleOut(
        id=str(s.id),
        group_id=str(s.group_id),
        scheduled_at=s.scheduled_at,
        room=s.room,
        status=s.status,
        rubric_template_id=str(s.rubric_template_id) if s.rubric_template_id else None,
        created_by=str(s.created_by) if s.created_by else None,
        created_at=s.created_at,
    )


def _get_group_or_404(db: Session, group_id) -> ThesisGroup:
    g = db.get(ThesisGroup, parse_uuid(group_id, "group_id"))
    if not g:
        raise NotFound("Thesis group not found")
    return g


def _get_student_or_404(db: Session, student_id) -> User:
    u = db.get(User, parse_uuid(student_id, "student_id"))
    if not u:
        raise NotFound(f"Student {student_id} not found")
    return u


# ---- thesis groups ----


@router.get("/thesis-groups", response_model=ItemsResponse[ThesisGroupOut])
def list_groups(
    term: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _=Depends(require_roles(ADMIN, STAFF, PANELIST)),
):
    q = db.query(ThesisGroup)
    if term:
        q = q.filter(ThesisGroup.term == term)
    return ItemsResponse(items=[group_to_out(g) for g in q.order_by(ThesisGroup.title.asc()).all()])


@router.get("/thesis-groups/{group_id}", response_model=ItemResponse[ThesisGroupOut])
def get_group(
    group_id: str,
    db: Session = Depends(get_db),
    _=Depends(require_roles(ADMIN, STAFF, PANELIST, STUDENT)),
):
    return ItemResponse(item=group_to_out(_get_group_or_404(db, group_id)))


@router.post("/thesis-groups", response_model=ItemResponse[ThesisGroupOut], status_code=status.HTTP_201_CREATED)
def create_group(
    payload: ThesisGroupCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    adviser_id = parse_uuid(payload.adviser_id, "adviser_id") if payload.adviser_id else None
    if adviser_id and not db.get(User, adviser_id):
        raise NotFound("Adviser not found")

    g = ThesisGroup(title=payload.title.strip(), adviser_id=adviser_id, program=payload.program, term=payload.term)
    db.add(g)

    member_ids = []
    for raw in payload.member_ids:
        student = _get_student_or_404(db, raw)
        if student.id in member_ids:
            continue
        member_ids.append(student.id)
        g.members.append(GroupMember(student_id=student.id))

    db.flush()  # ensures g.id exists for audit

    log_event(
        db=db,
        actor=actor.user,
        action="THESIS_GROUP_CREATED",
        entity_type="thesis_group",
        entity_id=g.id,
        metadata={"title": g.title, "members": [str(m) for m in member_ids]},
    )
    return ItemResponse(item=group_to_out(g))


@router.post("/thesis-groups/{group_id}/members", response_model=ItemResponse[ThesisGroupOut])
def add_member(
    group_id: str,
    payload: GroupMemberAdd,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    g = _get_group_or_404(db, group_id)
    student = _get_student_or_404(db, payload.student_id)

    if any(m.student_id == student.id for m in g.members):
        raise ValidationError("Student is already a member of this group")

    g.members.append(GroupMember(student_id=student.id))
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="GROUP_MEMBER_ADDED",
        entity_type="thesis_group",
        entity_id=g.id,
        metadata={"student_id": str(student.id)},
    )
    return ItemResponse(item=group_to_out(g))


@router.delete("/thesis-groups/{group_id}/members/{student_id}", response_model=DeletedResponse)
def remove_member(
    group_id: str,
    student_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    g = _get_group_or_404(db, group_id)
    sid = parse_uuid(student_id, "student_id")
    member = next((m for m in g.members if m.student_id == sid), None)
    if not member:
        raise NotFound("Student is not a member of this group")

    g.members.remove(member)
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="GROUP_MEMBER_REMOVED",
        entity_type="thesis_group",
        entity_id=g.id,
        metadata={"student_id": str(sid)},
    )
    return DeletedResponse(deleted=1)


# ---- defense schedules ----


@router.get("/defense-schedules", response_model=ItemsResponse[DefenseScheduleOut])
def list_schedules(
    group_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    q = db.query(DefenseSchedule)
    if group_id:
        q = q.filter(DefenseSchedule.group_id == parse_uuid(group_id, "group_id"))
    return ItemsResponse(items=[schedule_to_out(s) for s in q.order_by(DefenseSchedule.scheduled_at.desc()).all()])


@router.get("/defense-schedules/{schedule_id}", response_model=ItemResponse[DefenseScheduleOut])
def get_schedule(
    schedule_id: str,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    return ItemResponse(item=schedule_to_out(get_schedule_or_404(db, schedule_id)))


@router.post(
    "/defense-schedules",
    response_model=ItemResponse[DefenseScheduleOut],
    status_code=status.HTTP_201_CREATED,
)
def create_schedule(
    payload: DefenseScheduleCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    g = _get_group_or_404(db, payload.group_id)
    template = get_template_or_404(db, payload.rubric_template_id) if payload.rubric_template_id else None

    s = DefenseSchedule(
        group_id=g.id,
        scheduled_at=payload.scheduled_at,
        room=payload.room,
        status="scheduled",
        rubric_template_id=template.id if template else None,
        created_by=actor.id,
    )
    db.add(s)
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="DEFENSE_SCHEDULED",
        entity_type="defense_schedule",
        entity_id=s.id,
        metadata={
            "group_id": str(g.id),
            "scheduled_at": s.scheduled_at.isoformat(),
            "rubric_template_id": str(template.id) if template else None,
        },
    )
    return ItemResponse(item=schedule_to_out(s))


# ---- panels ----


def panel_to_out(db: Session, schedule: DefenseSchedule, panelists: list[SchedulePanelist], created=0) -> PanelOut:
    evaluations = {
        e.evaluator_id: e for e in db.query(Evaluation).filter(Evaluation.schedule_id == schedule.id).all()
    }
    items = []
    for p in panelists:
        e = evaluations.get(p.staff_id)
        items.append(
            PanelistOut(
                staff_id=str(p.staff_id),
                name=p.staff.name if p.staff else None,
                email=p.staff.email if p.staff else None,
                evaluation_id=str(e.id) if e else None,
                evaluation_status=e.status if e else None,
            )
        )
    return PanelOut(items=items, created_evaluations=created)


@router.get("/defense-schedules/{schedule_id}/panelists", response_model=PanelOut)
def get_panel(
    schedule_id: str,
    db: Session = Depends(get_db),
    _=Depends(require_roles(ADMIN, STAFF, PANELIST)),
):
    schedule = get_schedule_or_404(db, schedule_id)
    return panel_to_out(db, schedule, list_panelists(db, schedule))


@router.post("/defense-schedules/{schedule_id}/panelists", response_model=PanelOut)
def assign_panel(
    schedule_id: str,
    payload: PanelAssign,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    panelists, opened = assign_panelists(
        db, actor, schedule_id, payload.staff_ids, create_evaluations=payload.create_evaluations
    )
    return panel_to_out(db, get_schedule_or_404(db, schedule_id), panelists, created=len(opened))


@router.delete("/defense-schedules/{schedule_id}/panelists/{staff_id}", response_model=PanelistRemovedOut)
def unassign_panel_member(
    schedule_id: str,
    staff_id: str,
    force: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    result = unassign_panelist(db, actor, schedule_id, staff_id, force=force)
    return PanelistRemovedOut(deleted=1, evaluation_removed=result.evaluation_removed)
