"""
Defense panels: which staff members sit on a schedule's panel.

Staff may only open an evaluation on a defense whose panel they belong to.
Admins assign and unassign panelists, and can open the pending evaluations
for a whole panel in one call.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from defense_eval.core.audit import log_event
from defense_eval.core.errors import Conflict, NotFound, ValidationError
from defense_eval.core.rbac import STAFF_ROLES, get_user_role_names
from defense_eval.core.rubric_registry import parse_uuid
from defense_eval.core.security import Actor
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.schedule_panelist import SchedulePanelist
from defense_eval.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class UnassignResult:
    staff_id: uuid.UUID
    evaluation_removed: bool


def get_schedule_or_404(db: Session, schedule_id) -> DefenseSchedule:
    schedule = db.get(DefenseSchedule, parse_uuid(schedule_id, "schedule_id"))
    if not schedule:
        raise NotFound("Defense schedule not found")
    return schedule


def is_panelist(db: Session, schedule_id, staff_id) -> bool:
    return db.get(SchedulePanelist, (schedule_id, staff_id)) is not None


def list_panelists(db: Session, schedule: DefenseSchedule) -> list[SchedulePanelist]:
    return (
        db.query(SchedulePanelist)
        .filter(SchedulePanelist.schedule_id == schedule.id)
        .order_by(SchedulePanelist.created_at.asc())
        .all()
    )


def _get_panel_staff(db: Session, staff_id) -> User:
    user = db.get(User, parse_uuid(staff_id, "staff_id"))
    if not user:
        raise NotFound(f"User {staff_id} not found")
    if not (get_user_role_names(db, user) & STAFF_ROLES):
        raise ValidationError(f"User {user.email} must be staff or a panelist")
    return user


def _is_finished(evaluation: Evaluation) -> bool:
    return (
        evaluation.status in ("submitted", "locked")
        or evaluation.submitted_at is not None
        or evaluation.locked_at is not None
    )


def open_panel_evaluations(db: Session, actor: Actor, schedule: DefenseSchedule) -> list[Evaluation]:
    """Creates a pending evaluation for every panelist that has none yet."""
    existing = {
        evaluator_id
        for (evaluator_id,) in db.query(Evaluation.evaluator_id).filter(Evaluation.schedule_id == schedule.id)
    }
    created = []
    for panelist in list_panelists(db, schedule):
        if panelist.staff_id in existing:
            continue
        try:
            with db.begin_nested():
                evaluation = Evaluation(schedule_id=schedule.id, evaluator_id=panelist.staff_id, status="pending")
                db.add(evaluation)
                db.flush()
        except IntegrityError:
            # opened concurrently by the panelist
            continue
        created.append(evaluation)
        log_event(
            db=db,
            actor=actor.user,
            action="EVALUATION_CREATED",
            entity_type="evaluation",
            entity_id=evaluation.id,
            metadata={"schedule_id": str(schedule.id), "evaluator_id": str(panelist.staff_id), "via": "panel"},
        )
    return created


def assign_panelists(
    db: Session, actor: Actor, schedule_id, staff_ids: list[str], *, create_evaluations: bool = False
) -> tuple[list[SchedulePanelist], list[Evaluation]]:
    """
    Adds staff to the panel; already-assigned staff are left alone. Returns the
    full panel and any evaluations opened for it.
    """
    schedule = get_schedule_or_404(db, schedule_id)
    if not staff_ids and not create_evaluations:
        raise ValidationError("staff_ids is required")

    added = []
    for raw in staff_ids:
        user = _get_panel_staff(db, raw)
        if user.id in added or is_panelist(db, schedule.id, user.id):
            continue
        try:
            with db.begin_nested():
                db.add(SchedulePanelist(schedule_id=schedule.id, staff_id=user.id))
                db.flush()
        except IntegrityError:
            continue
        added.append(user.id)

    if added:
        log_event(
            db=db,
            actor=actor.user,
            action="PANELISTS_ASSIGNED",
            entity_type="defense_schedule",
            entity_id=schedule.id,
            metadata={"staff_ids": [str(s) for s in added]},
        )

    opened = open_panel_evaluations(db, actor, schedule) if create_evaluations else []
    return list_panelists(db, schedule), opened


def unassign_panelist(db: Session, actor: Actor, schedule_id, staff_id, *, force: bool = False) -> UnassignResult:
    """
    Removes a panelist together with their evaluation of this defense. A
    submitted or locked evaluation is only removed when ``force`` is set.
    """
    schedule = get_schedule_or_404(db, schedule_id)
    sid = parse_uuid(staff_id, "staff_id")
    panelist = db.get(SchedulePanelist, (schedule.id, sid))
    evaluation = (
        db.query(Evaluation)
        .filter(Evaluation.schedule_id == schedule.id, Evaluation.evaluator_id == sid)
        .with_for_update()
        .one_or_none()
    )
    if panelist is None and evaluation is None:
        raise NotFound("Staff member is not on this panel")

    if evaluation is not None and _is_finished(evaluation) and not force:
        raise Conflict(
            "Evaluation is already submitted or locked; pass force=1 to remove it",
            evaluation_id=str(evaluation.id),
            status=evaluation.status,
        )

    if evaluation is not None:
        logger.info(
            "removing evaluation %s (%s) of %s from schedule %s", evaluation.id, evaluation.status, sid, schedule.id
        )
        db.delete(evaluation)
    if panelist is not None:
        db.delete(panelist)
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="PANELIST_UNASSIGNED",
        entity_type="defense_schedule",
        entity_id=schedule.id,
        metadata={
            "staff_id": str(sid),
            "evaluation_id": str(evaluation.id) if evaluation is not None else None,
            "forced": force,
        },
    )
    return UnassignResult(staff_id=sid, evaluation_removed=evaluation is not None)
