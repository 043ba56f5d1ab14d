"""
Weighted rubric aggregation.

Pure functions over plain values so the same arithmetic serves the evaluation
summary view, submit-time completeness checks and the rankings:

    per target:  scored / total criteria, raw sum / raw max,
                 weighted = sum((score / max) * weight), weighted max = sum(weight)
    overall:     the per-target sums added up, percent recomputed the same way
    remaining:   overall total - overall scored
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, NamedTuple

GROUP = "group"
STUDENT = "student"


def _key_part(value) -> str:
    return str(value).strip().lower()


class ScoreKey(NamedTuple):
    """Composite identity of one score cell: (subject_type, subject_id, criterion_id)."""

    subject_type: str
    subject_id: str
    criterion_id: str

    @classmethod
    def of(cls, subject_type, subject_id, criterion_id) -> "ScoreKey":
        # ids compare case-insensitively
        return cls(_key_part(subject_type), _key_part(subject_id), _key_part(criterion_id))


@dataclass(frozen=True)
class CriterionSpec:
    id: str
    name: str
    weight: float
    min_score: int
    max_score: int

    @classmethod
    def from_row(cls, row) -> "CriterionSpec":
        return cls(
            id=str(row.id),
            name=row.name,
            weight=float(row.weight or 0),
            min_score=int(row.min_score),
            max_score=int(row.max_score),
        )


@dataclass
class Target:
    subject_type: str
    subject_id: str
    name: str | None = None
    email: str | None = None


@dataclass
class Summary:
    scored: int = 0
    total: int = 0
    total_raw: float = 0.0
    max_raw: float = 0.0
    total_weighted: float = 0.0
    max_weighted: float = 0.0
    percent: float = 0.0

    @property
    def remaining(self) -> int:
        return max(self.total - self.scored, 0)


@dataclass
class TargetSummary:
    target: Target
    summary: Summary
    scores: dict[str, int | None] = field(default_factory=dict)  # criterion id -> score


def compute_percent(total_weighted: float, max_weighted: float, scored: int, total: int) -> float:
    if max_weighted > 0:
        pct = (total_weighted / max_weighted) * 100
    elif total > 0:
        pct = (scored / total) * 100
    else:
        pct = 0.0
    return min(max(pct, 0.0), 100.0)


def weighted_contribution(score: float, criterion: CriterionSpec) -> tuple[float, float]:
    """(weighted score, weighted max) one criterion adds; zero when weight or max is not positive."""
    if criterion.max_score <= 0 or criterion.weight <= 0:
        return 0.0, 0.0
    return (score / criterion.max_score) * criterion.weight, criterion.weight


def index_scores(rows: Iterable) -> dict[ScoreKey, int]:
    """
    Map score rows (anything with subject_type/subject_id/criterion_id/score)
    by composite key. The first row for a key wins.
    """
    out: dict[ScoreKey, int] = {}
    for r in rows:
        if r.score is None:
            continue
        key = ScoreKey.of(r.subject_type, r.subject_id, r.criterion_id)
        if key not in out:
            out[key] = int(r.score)
    return out


def summarize_target(
    target: Target,
    criteria: list[CriterionSpec],
    scores: Mapping[ScoreKey, int],
) -> TargetSummary:
    s = Summary(total=len(criteria))
    cells: dict[str, int | None] = {}

    for c in criteria:
        value = scores.get(ScoreKey.of(target.subject_type, target.subject_id, c.id))
        cells[c.id] = value

        s.max_raw += c.max_score
        _, max_w = weighted_contribution(0, c)
        s.max_weighted += max_w

        if value is None:
            continue
        s.scored += 1
        s.total_raw += value
        w, _ = weighted_contribution(value, c)
        s.total_weighted += w

    s.percent = compute_percent(s.total_weighted, s.max_weighted, s.scored, s.total)
    return TargetSummary(target=target, summary=s, scores=cells)


def summarize_overall(items: Iterable[TargetSummary]) -> Summary:
    overall = Summary()
    for ts in items:
        s = ts.summary
        overall.scored += s.scored
        overall.total += s.total
        overall.total_raw += s.total_raw
        overall.max_raw += s.max_raw
        overall.total_weighted += s.total_weighted
        overall.max_weighted += s.max_weighted
    overall.percent = compute_percent(
        overall.total_weighted, overall.max_weighted, overall.scored, overall.total
    )
    return overall


def _richer(current: str | None, candidate: str | None) -> str | None:
    current = (current or "").strip() or None
    candidate = (candidate or "").strip() or None
    if not current:
        return candidate
    if candidate and len(candidate) > len(current):
        return candidate
    return current


def merge_targets(group_id, members: Iterable[Target]) -> list[Target]:
    """
    The group target first, then one target per distinct student. Duplicate
    members (case-insensitive id) collapse into one, keeping the richest
    name/email seen.
    """
    targets = [Target(subject_type=GROUP, subject_id=str(group_id))] if group_id else []

    seen: dict[str, Target] = {}
    for m in members:
        key = _key_part(m.subject_id)
        if not key:
            continue
        existing = seen.get(key)
        if existing is None:
            seen[key] = Target(
                subject_type=STUDENT,
                subject_id=str(m.subject_id),
                name=_richer(None, m.name),
                email=_richer(None, m.email),
            )
        else:
            existing.name = _richer(existing.name, m.name)
            existing.email = _richer(existing.email, m.email)

    return targets + list(seen.values())
