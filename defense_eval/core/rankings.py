"""
Leaderboard over finished evaluations.

Only evaluations that are submitted or locked count. Each score row adds the
same weighted contribution the evaluation summary uses, so a subject's ranking
percent is the weighted percent over every finished evaluation of it.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from defense_eval.core.errors import ValidationError
from defense_eval.core.scoring import GROUP, STUDENT, CriterionSpec, compute_percent, weighted_contribution
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.evaluation_score import EvaluationScore
from defense_eval.models.rubric_criterion import RubricCriterion
from defense_eval.models.thesis_group import ThesisGroup
from defense_eval.models.user import User

FINISHED_STATUSES = ("submitted", "locked")


@dataclass
class RankingRow:
    subject_type: str
    subject_id: str
    name: str | None = None
    total_weighted: float = 0.0
    max_weighted: float = 0.0
    evaluations: int = 0
    latest_defense_at: datetime | None = None
    percent: float = 0.0
    rank: int = 0


def _names(db: Session, target: str, ids: list) -> dict[str, str]:
    if not ids:
        return {}
    if target == GROUP:
        rows = db.query(ThesisGroup.id, ThesisGroup.title).filter(ThesisGroup.id.in_(ids)).all()
    else:
        rows = [
            (uid, name or email)
            for uid, name, email in db.query(User.id, User.name, User.email).filter(User.id.in_(ids)).all()
        ]
    return {str(i): n for i, n in rows}


def compute_rankings(db: Session, target: str, limit: int | None = None) -> list[RankingRow]:
    target = (target or "").strip().lower()
    if target == "individual":
        target = STUDENT
    if target not in (GROUP, STUDENT):
        raise ValidationError('target must be either "group" or "student"')

    rows = (
        db.query(EvaluationScore, RubricCriterion, Evaluation.id, DefenseSchedule.scheduled_at)
        .join(RubricCriterion, RubricCriterion.id == EvaluationScore.criterion_id)
        .join(Evaluation, Evaluation.id == EvaluationScore.evaluation_id)
        .join(DefenseSchedule, DefenseSchedule.id == Evaluation.schedule_id)
        .filter(Evaluation.status.in_(FINISHED_STATUSES), EvaluationScore.subject_type == target)
        .all()
    )

    by_subject: dict[str, RankingRow] = {}
    seen_evaluations: dict[str, set] = {}
    for score, criterion, evaluation_id, scheduled_at in rows:
        key = str(score.subject_id)
        entry = by_subject.setdefault(key, RankingRow(subject_type=target, subject_id=key))

        weighted, max_weighted = weighted_contribution(score.score, CriterionSpec.from_row(criterion))
        entry.total_weighted += weighted
        entry.max_weighted += max_weighted

        seen_evaluations.setdefault(key, set()).add(evaluation_id)
        if scheduled_at and (entry.latest_defense_at is None or scheduled_at > entry.latest_defense_at):
            entry.latest_defense_at = scheduled_at

    names = _names(db, target, [r.subject_id for r in by_subject.values()])
    out = list(by_subject.values())
    for entry in out:
        entry.name = names.get(entry.subject_id)
        entry.evaluations = len(seen_evaluations[entry.subject_id])
        # no unscored criteria here, so the count fallback never applies
        entry.percent = round(compute_percent(entry.total_weighted, entry.max_weighted, 0, 0), 2)

    # stable sorts, least significant key first
    out.sort(key=lambda r: (r.name or "").lower())
    out.sort(key=lambda r: r.latest_defense_at.timestamp() if r.latest_defense_at else float("-inf"), reverse=True)
    out.sort(key=lambda r: r.percent, reverse=True)

    rank = 0
    previous = None
    for entry in out:
        if entry.percent != previous:
            rank += 1
            previous = entry.percent
        entry.rank = rank

    return out[:limit] if limit else out
