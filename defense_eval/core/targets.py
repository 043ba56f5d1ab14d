"""
Criteria and target resolution for one evaluation.

Criteria come from the first source that yields rows:
  schedule_template -> template pinned on the defense schedule
  active_template   -> highest-version active template
  scored_criteria   -> criteria already referenced by this evaluation's scores
"""
from __future__ import annotations

from sqlalchemy.orm import Session

from defense_eval.core.rubric_registry import resolve_active_template
from defense_eval.core.scoring import STUDENT, Target, merge_targets
from defense_eval.core.sources import DataSource, fetch_or_default, first_success
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.evaluation_score import EvaluationScore
from defense_eval.models.rubric_criterion import RubricCriterion
from defense_eval.models.thesis_group import GroupMember
from defense_eval.models.user import User


def _criteria_for_template(db: Session, template_id) -> list[RubricCriterion]:
    if template_id is None:
        return []
    return (
        db.query(RubricCriterion)
        .filter(RubricCriterion.template_id == template_id)
        .order_by(RubricCriterion.created_at.asc())
        .all()
    )


def _active_template_criteria(db: Session) -> list[RubricCriterion]:
    template = resolve_active_template(db)
    return _criteria_for_template(db, template.id if template else None)


def _scored_criteria(db: Session, evaluation_id) -> list[RubricCriterion]:
    criterion_ids = (
        db.query(EvaluationScore.criterion_id)
        .filter(EvaluationScore.evaluation_id == evaluation_id)
        .distinct()
    )
    return (
        db.query(RubricCriterion)
        .filter(RubricCriterion.id.in_(criterion_ids))
        .order_by(RubricCriterion.created_at.asc())
        .all()
    )


def criteria_sources(
    db: Session, evaluation: Evaluation, schedule: DefenseSchedule | None
) -> list[DataSource[list[RubricCriterion]]]:
    pinned = schedule.rubric_template_id if schedule else None
    return [
        DataSource("schedule_template", lambda: _criteria_for_template(db, pinned)),
        DataSource("active_template", lambda: _active_template_criteria(db)),
        DataSource("scored_criteria", lambda: _scored_criteria(db, evaluation.id)),
    ]


def resolve_criteria(
    db: Session, evaluation: Evaluation, schedule: DefenseSchedule | None
) -> tuple[str | None, list[RubricCriterion]]:
    return first_success(db, criteria_sources(db, evaluation, schedule), [])


TEMPLATE_SOURCES = ("schedule_template", "active_template")


def scorable_template_id(db: Session, evaluation: Evaluation, schedule: DefenseSchedule | None):
    """
    Template whose criteria may be scored, read from the same source the summary
    uses. None when criteria come from existing scores or nothing resolves.
    """
    source, rows = resolve_criteria(db, evaluation, schedule)
    if source in TEMPLATE_SOURCES and rows:
        return rows[0].template_id
    return None


def _member_targets(db: Session, group_id) -> list[Target]:
    rows = (
        db.query(GroupMember.student_id, User.name, User.email)
        .outerjoin(User, User.id == GroupMember.student_id)
        .filter(GroupMember.group_id == group_id)
        .order_by(User.name.asc())
        .all()
    )
    return [Target(subject_type=STUDENT, subject_id=str(sid), name=name, email=email) for sid, name, email in rows]


def resolve_targets(db: Session, schedule: DefenseSchedule | None) -> list[Target]:
    if schedule is None:
        return []
    members = fetch_or_default(
        db, DataSource("group_members", lambda: _member_targets(db, schedule.group_id)), []
    )
    return merge_targets(schedule.group_id, members)


def load_schedule(db: Session, evaluation: Evaluation) -> DefenseSchedule | None:
    return fetch_or_default(
        db, DataSource("schedule", lambda: db.get(DefenseSchedule, evaluation.schedule_id)), None
    )


def load_scores(db: Session, evaluation_id) -> list[EvaluationScore]:
    return fetch_or_default(
        db,
        DataSource(
            "evaluation_scores",
            lambda: db.query(EvaluationScore)
            .filter(EvaluationScore.evaluation_id == evaluation_id)
            .order_by(EvaluationScore.created_at.asc())
            .all(),
        ),
        [],
    )


def is_target(db: Session, schedule: DefenseSchedule, subject_type: str, subject_id) -> bool:
    if subject_type == "group":
        return subject_id == schedule.group_id
    return (
        db.query(GroupMember)
        .filter(GroupMember.group_id == schedule.group_id, GroupMember.student_id == subject_id)
        .one_or_none()
        is not None
    )
