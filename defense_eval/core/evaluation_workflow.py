"""
Evaluation status workflow and score persistence.

    pending   --submit (remaining == 0)-->  submitted
    pending   --lock------------------->    locked
    submitted --lock------------------->    locked

Scores may be written until the evaluation is locked. Every score mutation
re-reads the evaluation under a row lock so a concurrent lock cannot be
overtaken by a late write.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError as PayloadError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from defense_eval.core.access import assert_can_author_evaluation, assert_can_read_evaluation
from defense_eval.core.audit import log_event
from defense_eval.core.errors import AppError, Forbidden, NotFound, ValidationError
from defense_eval.core.optimistic_lock import assert_version_matches
from defense_eval.core.panels import is_panelist
from defense_eval.core.rubric_registry import get_criterion_or_404, parse_uuid
from defense_eval.core.scoring import (
    GROUP,
    STUDENT,
    CriterionSpec,
    Summary,
    TargetSummary,
    index_scores,
    summarize_overall,
    summarize_target,
)
from defense_eval.core.security import Actor
from defense_eval.core.targets import (
    is_target,
    load_schedule,
    load_scores,
    resolve_criteria,
    resolve_targets,
    scorable_template_id,
)
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.evaluation_score import EvaluationScore
from defense_eval.models.user import User
from defense_eval.schemas.evaluation import EvaluationCreate, EvaluationStatusUpdate, ScoreUpsert

logger = logging.getLogger(__name__)


@dataclass
class EvaluationSummary:
    evaluation: Evaluation
    criteria_source: str | None
    criteria: list[CriterionSpec]
    targets: list[TargetSummary]
    overall: Summary

    @property
    def remaining(self) -> int:
        return self.overall.remaining


@dataclass
class BulkResult:
    items: list[EvaluationScore]
    errors: list[dict]

    @property
    def saved(self) -> int:
        return len(self.items)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def message(self) -> str | None:
        return self.errors[0]["message"] if self.errors else None


# ---- lookups ----


def get_evaluation_or_404(db: Session, evaluation_id) -> Evaluation:
    evaluation = db.get(Evaluation, parse_uuid(evaluation_id, "evaluation_id"))
    if not evaluation:
        raise NotFound("Evaluation not found")
    return evaluation


def lock_evaluation_row(db: Session, evaluation_id) -> Evaluation:
    """SELECT ... FOR UPDATE on the evaluation; status read here is current until commit."""
    evaluation = (
        db.query(Evaluation)
        .filter(Evaluation.id == parse_uuid(evaluation_id, "evaluation_id"))
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if not evaluation:
        raise NotFound("Evaluation not found")
    return evaluation


def get_evaluation(db: Session, actor: Actor, evaluation_id) -> Evaluation:
    evaluation = get_evaluation_or_404(db, evaluation_id)
    assert_can_read_evaluation(actor, evaluation)
    return evaluation


def get_by_assignment(db: Session, actor: Actor, schedule_id, evaluator_id=None) -> Evaluation:
    evaluator = parse_uuid(evaluator_id, "evaluator_id") if evaluator_id else actor.id
    evaluation = (
        db.query(Evaluation)
        .filter(
            Evaluation.schedule_id == parse_uuid(schedule_id, "schedule_id"),
            Evaluation.evaluator_id == evaluator,
        )
        .one_or_none()
    )
    if not evaluation:
        raise NotFound("Evaluation not found")
    assert_can_read_evaluation(actor, evaluation)
    return evaluation


def list_evaluations(
    db: Session,
    actor: Actor,
    *,
    schedule_id=None,
    status: str | None = None,
    evaluator_id=None,
) -> list[Evaluation]:
    q = db.query(Evaluation)
    if schedule_id:
        q = q.filter(Evaluation.schedule_id == parse_uuid(schedule_id, "schedule_id"))
    if status:
        q = q.filter(Evaluation.status == status.strip().lower())

    if actor.is_admin:
        if evaluator_id:
            q = q.filter(Evaluation.evaluator_id == parse_uuid(evaluator_id, "evaluator_id"))
    else:
        # staff only ever see their own evaluations
        q = q.filter(Evaluation.evaluator_id == actor.id)

    return q.order_by(Evaluation.created_at.desc()).all()


# ---- creation ----


def create_or_get_evaluation(db: Session, actor: Actor, payload: EvaluationCreate) -> tuple[Evaluation, bool]:
    """Returns (evaluation, created). One evaluation exists per schedule and evaluator."""
    schedule = db.get(DefenseSchedule, parse_uuid(payload.schedule_id, "schedule_id"))
    if not schedule:
        raise NotFound("Defense schedule not found")

    evaluator_id = parse_uuid(payload.evaluator_id, "evaluator_id") if payload.evaluator_id else actor.id
    if evaluator_id != actor.id:
        if not actor.is_admin:
            raise Forbidden("Only admins can create evaluations for another evaluator")
        if not db.get(User, evaluator_id):
            raise NotFound("Evaluator not found")
    elif not (actor.is_admin or actor.is_staff):
        raise Forbidden("Only staff or panelists can evaluate defenses")

    def _existing() -> Evaluation | None:
        return (
            db.query(Evaluation)
            .filter(Evaluation.schedule_id == schedule.id, Evaluation.evaluator_id == evaluator_id)
            .one_or_none()
        )

    existing = _existing()
    if existing:
        return existing, False

    if evaluator_id == actor.id and not actor.is_admin and not is_panelist(db, schedule.id, actor.id):
        raise Forbidden("Only panelists assigned to this defense can evaluate it")

    # SAVEPOINT so a concurrent insert of the same pair doesn't poison the transaction
    try:
        with db.begin_nested():
            evaluation = Evaluation(schedule_id=schedule.id, evaluator_id=evaluator_id, status="pending")
            db.add(evaluation)
            db.flush()
    except IntegrityError:
        return _existing(), False

    log_event(
        db=db,
        actor=actor.user,
        action="EVALUATION_CREATED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={"schedule_id": str(schedule.id), "evaluator_id": str(evaluator_id)},
    )
    return evaluation, True


# ---- scores ----


def _assert_writable(actor: Actor, evaluation: Evaluation) -> None:
    assert_can_author_evaluation(actor, evaluation)
    if evaluation.status == "locked":
        raise Forbidden("Evaluation is locked")


def _integer_score(value: float) -> int:
    if not math.isfinite(value):
        raise ValidationError("score must be a finite number")
    if value != int(value):
        raise ValidationError("score must be an integer")
    return int(value)


def _resolve_subject(db: Session, schedule: DefenseSchedule, payload: ScoreUpsert):
    subject_type = payload.subject_type
    subject_id = parse_uuid(payload.subject_id, "subject_id") if payload.subject_id else None

    if subject_type is None:
        if subject_id is None or subject_id == schedule.group_id:
            subject_type = GROUP
        else:
            subject_type = STUDENT
    if subject_id is None:
        if subject_type == STUDENT:
            raise ValidationError("subject_id is required for student scores")
        subject_id = schedule.group_id

    if not is_target(db, schedule, subject_type, subject_id):
        raise ValidationError(f"{subject_type} {subject_id} is not a target of this evaluation")
    return subject_type, subject_id


def _apply_score(db: Session, evaluation: Evaluation, payload: ScoreUpsert) -> tuple[EvaluationScore, bool]:
    criterion = get_criterion_or_404(db, payload.criterion_id)
    schedule = db.get(DefenseSchedule, evaluation.schedule_id)
    if not schedule:
        raise NotFound("Defense schedule not found")

    template_id = scorable_template_id(db, evaluation, schedule)
    if template_id is not None and criterion.template_id != template_id:
        raise ValidationError("Criterion does not belong to the rubric in use for this defense")

    score = _integer_score(payload.score)
    if score < criterion.min_score or score > criterion.max_score:
        raise ValidationError(
            f"score must be between {criterion.min_score} and {criterion.max_score}",
            min_score=criterion.min_score,
            max_score=criterion.max_score,
        )

    subject_type, subject_id = _resolve_subject(db, schedule, payload)

    def _existing() -> EvaluationScore | None:
        return (
            db.query(EvaluationScore)
            .filter(
                EvaluationScore.evaluation_id == evaluation.id,
                EvaluationScore.criterion_id == criterion.id,
                EvaluationScore.subject_type == subject_type,
                EvaluationScore.subject_id == subject_id,
            )
            .one_or_none()
        )

    row = _existing()
    created = False
    if row is None:
        try:
            with db.begin_nested():
                row = EvaluationScore(
                    evaluation_id=evaluation.id,
                    criterion_id=criterion.id,
                    subject_type=subject_type,
                    subject_id=subject_id,
                    score=score,
                    comment=payload.comment,
                    updated_at=datetime.utcnow(),
                )
                db.add(row)
                db.flush()
            created = True
        except IntegrityError:
            # lost the insert race; the winner's row is updated below
            row = _existing()

    if not created:
        row.score = score
        row.comment = payload.comment
        row.updated_at = datetime.utcnow()
        db.flush()
    return row, created


def upsert_score(db: Session, actor: Actor, evaluation_id, payload: ScoreUpsert) -> tuple[EvaluationScore, bool]:
    evaluation = lock_evaluation_row(db, evaluation_id)
    _assert_writable(actor, evaluation)

    row, created = _apply_score(db, evaluation, payload)
    log_event(
        db=db,
        actor=actor.user,
        action="SCORE_UPSERTED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={
            "criterion_id": str(row.criterion_id),
            "subject_type": row.subject_type,
            "subject_id": str(row.subject_id),
            "score": row.score,
            "created": created,
        },
    )
    return row, created


def _payload_error_message(exc: PayloadError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def bulk_upsert_scores(db: Session, actor: Actor, evaluation_id, items: list) -> BulkResult:
    """
    Applies each item in its own SAVEPOINT. A failing item rolls back alone and
    is reported by index; the others stay applied.
    """
    if not items:
        raise ValidationError("scores must be a non-empty list")

    evaluation = lock_evaluation_row(db, evaluation_id)
    _assert_writable(actor, evaluation)

    saved: list[EvaluationScore] = []
    errors: list[dict] = []
    for index, item in enumerate(items):
        try:
            with db.begin_nested():
                payload = ScoreUpsert.model_validate(item)
                row, _ = _apply_score(db, evaluation, payload)
            saved.append(row)
        except PayloadError as exc:
            errors.append({"index": index, "message": _payload_error_message(exc)})
        except AppError as exc:
            errors.append({"index": index, "message": exc.message})

    if errors:
        logger.info(
            "bulk score upsert on evaluation %s: %d saved, %d failed", evaluation.id, len(saved), len(errors)
        )

    log_event(
        db=db,
        actor=actor.user,
        action="SCORES_BULK_UPSERTED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={"saved": len(saved), "failed": len(errors)},
    )
    return BulkResult(items=saved, errors=errors)


def list_scores(db: Session, actor: Actor, evaluation_id) -> list[EvaluationScore]:
    evaluation = get_evaluation(db, actor, evaluation_id)
    return (
        db.query(EvaluationScore)
        .filter(EvaluationScore.evaluation_id == evaluation.id)
        .order_by(EvaluationScore.created_at.asc())
        .all()
    )


def delete_scores(db: Session, actor: Actor, evaluation_id) -> int:
    """Resets an evaluation's scores. The evaluation status is left as it is."""
    evaluation = lock_evaluation_row(db, evaluation_id)
    _assert_writable(actor, evaluation)

    deleted = (
        db.query(EvaluationScore)
        .filter(EvaluationScore.evaluation_id == evaluation.id)
        .delete(synchronize_session="fetch")
    )
    log_event(
        db=db,
        actor=actor.user,
        action="SCORES_DELETED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={"deleted": deleted, "status": evaluation.status},
    )
    return deleted


# ---- summary ----


def compute_summary(db: Session, evaluation: Evaluation) -> EvaluationSummary:
    schedule = load_schedule(db, evaluation)
    source, criteria_rows = resolve_criteria(db, evaluation, schedule)
    criteria = [CriterionSpec.from_row(c) for c in criteria_rows]

    scores = index_scores(load_scores(db, evaluation.id))
    targets = [summarize_target(t, criteria, scores) for t in resolve_targets(db, schedule)]

    return EvaluationSummary(
        evaluation=evaluation,
        criteria_source=source,
        criteria=criteria,
        targets=targets,
        overall=summarize_overall(targets),
    )


def summarize_evaluation(db: Session, actor: Actor, evaluation_id) -> EvaluationSummary:
    return compute_summary(db, get_evaluation(db, actor, evaluation_id))


# ---- transitions ----


def submit_evaluation(db: Session, actor: Actor, evaluation_id, *, if_match: int | None = None) -> Evaluation:
    evaluation = lock_evaluation_row(db, evaluation_id)
    assert_can_author_evaluation(actor, evaluation)
    assert_version_matches(current_version=evaluation.version, if_match_version=if_match)

    if evaluation.status == "submitted":
        return evaluation
    if evaluation.status == "locked":
        raise Forbidden("Evaluation is locked")

    summary = compute_summary(db, evaluation)
    if summary.remaining > 0:
        raise ValidationError(
            f"Cannot submit: {summary.remaining} score(s) remaining",
            remaining=summary.remaining,
        )

    evaluation.status = "submitted"
    evaluation.submitted_at = datetime.utcnow()
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="EVALUATION_SUBMITTED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={"overall_percent": round(summary.overall.percent, 2)},
    )
    return evaluation


def lock_evaluation(db: Session, actor: Actor, evaluation_id, *, if_match: int | None = None) -> Evaluation:
    """Locks regardless of completeness. Irreversible."""
    evaluation = lock_evaluation_row(db, evaluation_id)
    assert_can_author_evaluation(actor, evaluation)
    assert_version_matches(current_version=evaluation.version, if_match_version=if_match)

    if evaluation.status == "locked":
        return evaluation

    from_status = evaluation.status
    evaluation.status = "locked"
    evaluation.locked_at = datetime.utcnow()
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="EVALUATION_LOCKED",
        entity_type="evaluation",
        entity_id=evaluation.id,
        metadata={"from_status": from_status},
    )
    return evaluation


def update_evaluation_status(
    db: Session,
    actor: Actor,
    evaluation_id,
    payload: EvaluationStatusUpdate,
    *,
    if_match: int | None = None,
) -> Evaluation:
    if payload.status == "submitted":
        return submit_evaluation(db, actor, evaluation_id, if_match=if_match)
    if payload.status == "locked":
        return lock_evaluation(db, actor, evaluation_id, if_match=if_match)

    evaluation = get_evaluation_or_404(db, evaluation_id)
    assert_can_author_evaluation(actor, evaluation)
    if evaluation.status != "pending":
        raise ValidationError(f"Cannot move a {evaluation.status} evaluation back to pending")
    return evaluation
