from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from defense_eval.core.access import (
    assert_can_access_student_evaluation,
    assert_can_write_student_evaluation,
)
from defense_eval.core.audit import log_event
from defense_eval.core.errors import Forbidden, NotFound, ValidationError
from defense_eval.core.rubric_registry import parse_uuid
from defense_eval.core.security import Actor
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.student_evaluation import StudentEvaluation
from defense_eval.models.user import User
from defense_eval.schemas.student_evaluation import StudentEvaluationUpdate, StudentEvaluationUpsert


def get_student_evaluation_or_404(db: Session, row_id) -> StudentEvaluation:
    row = db.get(StudentEvaluation, parse_uuid(row_id, "id"))
    if not row:
        raise NotFound("Student evaluation not found")
    return row


def get_student_evaluation(db: Session, actor: Actor, row_id) -> StudentEvaluation:
    row = get_student_evaluation_or_404(db, row_id)
    assert_can_access_student_evaluation(actor, row)
    return row


def list_student_evaluations(db: Session, actor: Actor, *, schedule_id=None, student_id=None) -> list[StudentEvaluation]:
    q = db.query(StudentEvaluation)
    if schedule_id:
        q = q.filter(StudentEvaluation.schedule_id == parse_uuid(schedule_id, "schedule_id"))

    if actor.is_admin or actor.is_staff:
        if student_id:
            q = q.filter(StudentEvaluation.student_id == parse_uuid(student_id, "student_id"))
    elif actor.is_student:
        q = q.filter(StudentEvaluation.student_id == actor.id)
    else:
        raise Forbidden("Forbidden")

    return q.order_by(StudentEvaluation.created_at.desc()).all()


def _apply_status(actor: Actor, row: StudentEvaluation, status: str | None) -> str | None:
    """Returns the previous status when it changed."""
    if status is None or status == row.status:
        return None

    previous = row.status
    now = datetime.utcnow()
    if status == "locked":
        if not actor.is_admin:
            raise Forbidden("Only admins can lock student evaluations")
        row.locked_at = now
    elif status == "submitted":
        row.submitted_at = now
    elif status == "pending":
        if not actor.is_admin:
            raise Forbidden("Students can only move an evaluation from pending to submitted")
        row.submitted_at = None
    else:
        raise ValidationError(f"Unknown status {status!r}")

    row.status = status
    return previous


def _assert_editable(actor: Actor, row: StudentEvaluation) -> None:
    if row.status == "locked":
        raise Forbidden("Student evaluation is locked")
    # once submitted only an admin may change it
    if row.status != "pending" and not actor.is_admin:
        raise Forbidden("This feedback has already been submitted and can no longer be edited")


def _merge_answers(row: StudentEvaluation, answers: dict | None) -> None:
    if answers is None:
        return
    row.answers = {**(row.answers or {}), **answers}


def upsert_student_evaluation(
    db: Session, actor: Actor, payload: StudentEvaluationUpsert
) -> tuple[StudentEvaluation, bool]:
    schedule = db.get(DefenseSchedule, parse_uuid(payload.schedule_id, "schedule_id"))
    if not schedule:
        raise NotFound("Defense schedule not found")

    if payload.student_id:
        student_id = parse_uuid(payload.student_id, "student_id")
    elif actor.is_student:
        student_id = actor.id
    else:
        raise ValidationError("student_id is required")

    if student_id != actor.id and not actor.is_admin:
        raise Forbidden("Students can only submit their own evaluations")
    if student_id == actor.id and not (actor.is_student or actor.is_admin):
        raise Forbidden("Only students can submit student evaluations")
    if student_id != actor.id and not db.get(User, student_id):
        raise NotFound("Student not found")

    def _existing() -> StudentEvaluation | None:
        return (
            db.query(StudentEvaluation)
            .filter(StudentEvaluation.schedule_id == schedule.id, StudentEvaluation.student_id == student_id)
            .one_or_none()
        )

    row = _existing()
    created = False
    if row is None:
        try:
            with db.begin_nested():
                row = StudentEvaluation(
                    schedule_id=schedule.id, student_id=student_id, status="pending", answers={}
                )
                db.add(row)
                db.flush()
            created = True
        except IntegrityError:
            row = _existing()

    _assert_editable(actor, row)
    _merge_answers(row, payload.answers)
    previous = _apply_status(actor, row, payload.status)
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="STUDENT_EVALUATION_CREATED" if created else "STUDENT_EVALUATION_UPDATED",
        entity_type="student_evaluation",
        entity_id=row.id,
        metadata={
            "schedule_id": str(row.schedule_id),
            "status": row.status,
            "from_status": previous,
        },
    )
    return row, created


def update_student_evaluation(db: Session, actor: Actor, row_id, payload: StudentEvaluationUpdate) -> StudentEvaluation:
    row = get_student_evaluation_or_404(db, row_id)
    assert_can_write_student_evaluation(actor, row)
    _assert_editable(actor, row)

    changes = payload.model_dump(exclude_unset=True)
    _merge_answers(row, changes.get("answers"))
    previous = _apply_status(actor, row, changes.get("status"))
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="STUDENT_EVALUATION_UPDATED",
        entity_type="student_evaluation",
        entity_id=row.id,
        metadata={"fields": sorted(changes), "status": row.status, "from_status": previous},
    )
    return row


def delete_student_evaluation(db: Session, actor: Actor, row_id) -> int:
    if not actor.is_admin:
        raise Forbidden("Only admins can delete student evaluations")
    row = get_student_evaluation_or_404(db, row_id)
    db.delete(row)
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="STUDENT_EVALUATION_DELETED",
        entity_type="student_evaluation",
        entity_id=row.id,
        metadata={"schedule_id": str(row.schedule_id), "student_id": str(row.student_id)},
    )
    return 1
