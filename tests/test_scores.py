import pytest
from fastapi.testclient import TestClient

from defense_eval.core.errors import ValidationError
from defense_eval.core.evaluation_workflow import _integer_score
from defense_eval.models.evaluation_score import EvaluationScore

from tests.helpers import (
    as_user,
    create_criterion,
    create_evaluation,
    create_schedule,
    create_template,
    create_user,
    defense_setup,
)


def _scores_url(evaluation) -> str:
    return f"/evaluations/{evaluation.id}/scores"


def _rows(db, evaluation):
    db.expire_all()
    return db.query(EvaluationScore).filter(EvaluationScore.evaluation_id == evaluation.id).all()


def test_upsert_group_score_defaults_subject_to_group(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]

    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterion_id": str(c1.id), "score": 4, "comment": "clear"},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 201, r.text
    item = r.json()["item"]
    assert item["subject_type"] == "group"
    assert item["subject_id"] == str(ctx["group"].id)
    assert item["score"] == 4
    assert item["comment"] == "clear"


def test_upsert_is_idempotent_per_criterion_and_subject(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]
    body = {"criterion_id": str(c1.id), "subject_type": "group", "subject_id": str(ctx["group"].id), "score": 2}

    r1 = client.post(_scores_url(ctx["evaluation"]), json=body, headers=as_user(ctx["staff"]))
    r2 = client.post(_scores_url(ctx["evaluation"]), json={**body, "score": 5}, headers=as_user(ctx["staff"]))

    assert r1.status_code == 201
    assert r2.status_code == 200
    assert r2.json()["item"]["id"] == r1.json()["item"]["id"]

    rows = _rows(db_session, ctx["evaluation"])
    assert len(rows) == 1
    assert rows[0].score == 5


def test_wire_aliases_are_accepted(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1, c2 = ctx["criteria"]
    student = ctx["students"][0]

    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criteriaId": str(c1.id), "targetType": "individual", "targetId": str(student.id), "value": "4"},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 201, r.text
    assert r.json()["item"]["subject_type"] == "student"
    assert r.json()["item"]["score"] == 4

    # studentId alone implies a student score
    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterionId": str(c2.id), "studentId": str(student.id), "score": 3},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 201, r.text
    assert r.json()["item"]["subject_type"] == "student"
    assert r.json()["item"]["subject_id"] == str(student.id)


def test_score_outside_criterion_range_is_rejected(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]

    for bad in (0, 6):
        r = client.post(
            _scores_url(ctx["evaluation"]),
            json={"criterion_id": str(c1.id), "score": bad},
            headers=as_user(ctx["staff"]),
        )
        assert r.status_code == 400
        body = r.json()
        assert body["ok"] is False
        assert body["min_score"] == 1
        assert body["max_score"] == 5

    assert _rows(db_session, ctx["evaluation"]) == []


def test_non_integer_and_non_numeric_scores_are_rejected(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]

    for bad in (3.5, "abc", True):
        r = client.post(
            _scores_url(ctx["evaluation"]),
            json={"criterion_id": str(c1.id), "score": bad},
            headers=as_user(ctx["staff"]),
        )
        assert r.status_code == 400, bad


def test_non_finite_scores_are_rejected(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]

    for bad in ("nan", "inf", "-Infinity"):
        r = client.post(
            _scores_url(ctx["evaluation"]),
            json={"criterion_id": str(c1.id), "score": bad},
            headers=as_user(ctx["staff"]),
        )
        assert r.status_code == 400, bad
        assert r.json()["ok"] is False

    # bare NaN / Infinity literals as some JSON encoders emit them
    for literal in ("NaN", "Infinity"):
        r = client.post(
            _scores_url(ctx["evaluation"]),
            content=f'{{"criterion_id": "{c1.id}", "score": {literal}}}',
            headers={**as_user(ctx["staff"]), "Content-Type": "application/json"},
        )
        assert r.status_code == 400, literal

    assert _rows(db_session, ctx["evaluation"]) == []

    with pytest.raises(ValidationError):
        _integer_score(float("nan"))
    with pytest.raises(ValidationError):
        _integer_score(float("inf"))


def test_bulk_non_finite_item_fails_alone(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1, c2 = ctx["criteria"]

    r = client.post(
        f"{_scores_url(ctx['evaluation'])}/bulk",
        json={"items": [{"criterion_id": str(c1.id), "score": 4}, {"criterion_id": str(c2.id), "score": "nan"}]},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 207, r.text
    body = r.json()
    assert body["saved"] == 1
    assert [e["index"] for e in body["errors"]] == [1]

    rows = _rows(db_session, ctx["evaluation"])
    assert [(row.criterion_id, row.score) for row in rows] == [(c1.id, 4)]


def test_student_score_requires_a_member_of_the_group(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]
    outsider = create_user(db_session, "outsider@local.test", "Outsider", "student")

    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterion_id": str(c1.id), "subject_type": "student", "subject_id": str(outsider.id), "score": 3},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 400
    assert "not a target" in r.json()["message"]

    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterion_id": str(c1.id), "subject_type": "student", "score": 3},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 400


def test_criterion_must_belong_to_the_rubric_in_use(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    old = create_template(db_session, name="Old Rubric", version=1, active=False)
    stale = create_criterion(db_session, old, name="Stale")

    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterion_id": str(stale.id), "score": 3},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 400

    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterion_id": "7f1f4d8e-2d2c-4c55-9a57-0d7a2f0b9d11", "score": 3},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 404


def test_scores_on_locked_evaluation_are_forbidden(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]
    locked = create_evaluation(
        db_session, create_schedule(db_session, ctx["group"]), ctx["staff"], status="locked"
    )

    r = client.post(
        _scores_url(locked),
        json={"criterion_id": str(c1.id), "score": 3},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 403

    r = client.post(
        f"{_scores_url(locked)}/bulk",
        json={"scores": [{"criterion_id": str(c1.id), "score": 3}]},
        headers=as_user(ctx["admin"]),
    )
    assert r.status_code == 403


def test_scores_on_submitted_evaluation_stay_editable(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]
    submitted = create_evaluation(
        db_session, create_schedule(db_session, ctx["group"]), ctx["staff"], status="submitted"
    )

    r = client.post(
        _scores_url(submitted),
        json={"criterion_id": str(c1.id), "score": 3},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 201


def test_other_evaluators_cannot_write_scores(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    other = create_user(db_session, "other@local.test", "Other", "panelist")

    r = client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterion_id": str(ctx["criteria"][0].id), "score": 3},
        headers=as_user(other),
    )
    assert r.status_code == 403


def test_bulk_partial_failure_reports_by_index(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1, c2 = ctx["criteria"]
    s1 = ctx["students"][0]

    r = client.post(
        f"{_scores_url(ctx['evaluation'])}/bulk",
        json={
            "items": [
                {"criterion_id": str(c1.id), "score": 4},
                {"criterion_id": str(c2.id), "score": 9},
                {"criterion_id": str(c1.id), "student_id": str(s1.id), "score": 5},
                {"score": 2},
            ]
        },
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 207, r.text
    body = r.json()
    assert body["ok"] is False
    assert body["saved"] == 2
    assert body["failed"] == 2
    assert [e["index"] for e in body["errors"]] == [1, 3]
    assert body["message"] == body["errors"][0]["message"]

    rows = _rows(db_session, ctx["evaluation"])
    assert sorted((r.subject_type, r.score) for r in rows) == [("group", 4), ("student", 5)]


def test_bulk_all_saved_and_all_failed(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1, c2 = ctx["criteria"]

    r = client.post(
        f"{_scores_url(ctx['evaluation'])}/bulk",
        json={"scores": [{"criterion_id": str(c1.id), "score": 4}, {"criterion_id": str(c2.id), "score": 3}]},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["saved"] == 2

    r = client.post(
        f"{_scores_url(ctx['evaluation'])}/bulk",
        json={"scores": [{"criterion_id": str(c1.id), "score": 0}]},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 400
    assert r.json()["saved"] == 0

    r = client.post(f"{_scores_url(ctx['evaluation'])}/bulk", json={"scores": []}, headers=as_user(ctx["staff"]))
    assert r.status_code == 400


def test_list_scores(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]
    client.post(
        _scores_url(ctx["evaluation"]),
        json={"criterion_id": str(c1.id), "score": 4},
        headers=as_user(ctx["staff"]),
    )

    r = client.get(_scores_url(ctx["evaluation"]), headers=as_user(ctx["staff"]))
    assert r.status_code == 200
    items = r.json()["items"]
    assert len(items) == 1
    assert items[0]["criterion_id"] == str(c1.id)
