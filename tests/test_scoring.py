from types import SimpleNamespace

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from defense_eval.core.scoring import (
    GROUP,
    STUDENT,
    CriterionSpec,
    ScoreKey,
    Target,
    compute_percent,
    index_scores,
    merge_targets,
    summarize_overall,
    summarize_target,
    weighted_contribution,
)
from defense_eval.core.sources import DataSource, fetch_or_default, first_success
from defense_eval.models.user import User


def _criteria():
    return [
        CriterionSpec(id="c1", name="Content", weight=40, min_score=1, max_score=5),
        CriterionSpec(id="c2", name="Delivery", weight=60, min_score=1, max_score=5),
    ]


def _row(subject_type, subject_id, criterion_id, score):
    return SimpleNamespace(subject_type=subject_type, subject_id=subject_id, criterion_id=criterion_id, score=score)


def test_weighted_percent_example():
    group = Target(subject_type=GROUP, subject_id="g1")
    scores = index_scores([_row("group", "g1", "c1", 4), _row("group", "g1", "c2", 3)])

    ts = summarize_target(group, _criteria(), scores)

    assert ts.summary.total_weighted == pytest.approx(68.0)
    assert ts.summary.max_weighted == pytest.approx(100.0)
    assert ts.summary.percent == pytest.approx(68.0)
    assert ts.summary.scored == 2
    assert ts.summary.total_raw == 7
    assert ts.summary.max_raw == 10
    assert ts.scores == {"c1": 4, "c2": 3}


def test_unscored_target_is_exactly_zero():
    ts = summarize_target(Target(GROUP, "g1"), _criteria(), {})
    assert ts.summary.percent == 0
    assert ts.summary.scored == 0
    assert ts.summary.remaining == 2
    # unscored criteria still count toward the maximum
    assert ts.summary.max_raw == 10
    assert ts.summary.max_weighted == 100


def test_no_criteria_gives_zero_not_nan():
    ts = summarize_target(Target(GROUP, "g1"), [], {})
    assert ts.summary.percent == 0
    assert ts.summary.total == 0


def test_zero_weights_fall_back_to_scored_ratio():
    criteria = [
        CriterionSpec(id="c1", name="a", weight=0, min_score=1, max_score=5),
        CriterionSpec(id="c2", name="b", weight=0, min_score=1, max_score=5),
    ]
    scores = index_scores([_row("group", "g1", "c1", 5)])
    ts = summarize_target(Target(GROUP, "g1"), criteria, scores)
    assert ts.summary.max_weighted == 0
    assert ts.summary.percent == pytest.approx(50.0)


def test_percent_is_clamped():
    assert compute_percent(150, 100, 1, 1) == 100
    assert compute_percent(-5, 100, 1, 1) == 0


def test_weighted_contribution_skips_non_positive_max_or_weight():
    assert weighted_contribution(3, CriterionSpec("c", "c", weight=10, min_score=0, max_score=0)) == (0.0, 0.0)
    assert weighted_contribution(3, CriterionSpec("c", "c", weight=0, min_score=1, max_score=5)) == (0.0, 0.0)
    assert weighted_contribution(5, CriterionSpec("c", "c", weight=10, min_score=1, max_score=5)) == (10.0, 10)


def test_score_keys_compare_case_insensitively():
    scores = index_scores([_row("Student", "ABC", "C1", 2)])
    assert scores[ScoreKey.of("student", "abc", "c1")] == 2

    ts = summarize_target(
        Target(STUDENT, "abc"),
        [CriterionSpec(id="C1", name="x", weight=1, min_score=1, max_score=5)],
        scores,
    )
    assert ts.summary.scored == 1


def test_first_score_row_wins_for_duplicate_keys():
    scores = index_scores([_row("group", "g1", "c1", 2), _row("GROUP", "G1", "c1", 5)])
    assert scores[ScoreKey.of("group", "g1", "c1")] == 2


def test_overall_sums_targets_and_recomputes_percent():
    criteria = _criteria()
    scores = index_scores(
        [
            _row("group", "g1", "c1", 5),
            _row("group", "g1", "c2", 5),
            _row("student", "s1", "c1", 5),
        ]
    )
    items = [summarize_target(t, criteria, scores) for t in (Target(GROUP, "g1"), Target(STUDENT, "s1"))]
    overall = summarize_overall(items)

    assert overall.total == 4
    assert overall.scored == 3
    assert overall.remaining == 1
    assert overall.max_weighted == pytest.approx(200)
    assert overall.total_weighted == pytest.approx(140)
    assert overall.percent == pytest.approx(70)


def test_merge_targets_puts_group_first_and_dedupes_members():
    members = [
        Target(STUDENT, "S1", name="Ann", email=None),
        Target(STUDENT, "s1", name="Ann Lee", email="ann@local.test"),
        Target(STUDENT, "s2", name=None, email="bob@local.test"),
        Target(STUDENT, "", name="ghost"),
    ]

    targets = merge_targets("g1", members)

    assert [(t.subject_type, t.subject_id) for t in targets] == [(GROUP, "g1"), (STUDENT, "S1"), (STUDENT, "s2")]
    assert targets[1].name == "Ann Lee"
    assert targets[1].email == "ann@local.test"
    assert targets[2].email == "bob@local.test"


def test_merge_targets_without_group():
    assert merge_targets(None, []) == []


def _broken():
    raise OperationalError("SELECT 1", {}, Exception("connection reset"))


def test_failing_source_degrades_to_default(caplog):
    caplog.set_level("WARNING", logger="defense_eval.core.sources")

    assert fetch_or_default(None, DataSource("schedule", _broken), None) is None
    assert fetch_or_default(None, DataSource("scores", _broken), []) == []

    def generic():
        raise SQLAlchemyError("mapper failure")

    assert fetch_or_default(None, DataSource("members", generic), []) == []
    assert "schedule" in caplog.text


def test_first_success_skips_failing_and_empty_sources():
    sources = [
        DataSource("schedule_template", _broken),
        DataSource("active_template", lambda: []),
        DataSource("scored_criteria", lambda: ["c1"]),
    ]
    assert first_success(None, sources, []) == ("scored_criteria", ["c1"])

    assert first_success(None, sources[:2], []) == (None, [])


def test_non_database_errors_are_not_swallowed():
    def boom():
        raise KeyError("c1")

    with pytest.raises(KeyError):
        fetch_or_default(None, DataSource("criteria", boom), [])


def test_failed_lookup_leaves_the_session_usable(db_session):
    def missing_table():
        return db_session.execute(text("SELECT id FROM no_such_table")).all()

    name, result = first_success(
        db_session,
        [DataSource("missing", missing_table), DataSource("users", lambda: db_session.query(User).all() or ["none"])],
        [],
    )
    assert name == "users"
    assert result == ["none"]
