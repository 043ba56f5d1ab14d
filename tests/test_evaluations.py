from fastapi.testclient import TestClient

from defense_eval.models.audit_event import AuditEvent
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.evaluation_score import EvaluationScore

from tests.helpers import (
    as_user,
    assign_panelist,
    create_criterion,
    create_evaluation,
    create_schedule,
    create_score,
    create_template,
    create_user,
    defense_setup,
)


def _count_audit(db, action: str, entity_id) -> int:
    return (
        db.query(AuditEvent)
        .filter(AuditEvent.action == action, AuditEvent.entity_id == entity_id)
        .count()
    )


def other_schedule_eval_id(db, schedule):
    return db.query(Evaluation.id).filter(Evaluation.schedule_id == schedule.id).scalar()


def _score_everything(db, ctx, value=3):
    evaluation = ctx["evaluation"]
    for c in ctx["criteria"]:
        create_score(db, evaluation, c, "group", ctx["group"].id, value)
        for s in ctx["students"]:
            create_score(db, evaluation, c, "student", s.id, value)


def test_create_or_get_evaluation_is_idempotent(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    other_schedule = create_schedule(db_session, ctx["group"])
    assign_panelist(db_session, other_schedule, ctx["staff"])

    r = client.post(
        "/evaluations",
        json={"scheduleId": str(other_schedule.id)},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["ok"] is True
    item = body["item"]
    assert item["status"] == "pending"
    assert item["evaluator_id"] == str(ctx["staff"].id)
    assert r.headers["ETag"] == '"1"'

    r2 = client.post(
        "/evaluations",
        json={"schedule_id": str(other_schedule.id)},
        headers=as_user(ctx["staff"]),
    )
    assert r2.status_code == 200
    assert r2.json()["item"]["id"] == item["id"]

    assert db_session.query(Evaluation).filter(Evaluation.schedule_id == other_schedule.id).count() == 1
    assert _count_audit(db_session, "EVALUATION_CREATED", other_schedule_eval_id(db_session, other_schedule)) == 1


def test_only_admin_creates_for_another_evaluator(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    panelist = create_user(db_session, "panelist@local.test", "Panelist", "panelist")
    schedule = create_schedule(db_session, ctx["group"])

    r = client.post(
        "/evaluations",
        json={"schedule_id": str(schedule.id), "evaluator_id": str(panelist.id)},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 403
    assert r.json()["ok"] is False

    r = client.post(
        "/evaluations",
        json={"schedule_id": str(schedule.id), "evaluator_id": str(panelist.id)},
        headers=as_user(ctx["admin"]),
    )
    assert r.status_code == 201
    assert r.json()["item"]["evaluator_id"] == str(panelist.id)


def test_staff_must_sit_on_the_panel_to_open_an_evaluation(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    outsider = create_user(db_session, "outsider@local.test", "Outsider", "staff")

    r = client.post("/evaluations", json={"scheduleId": str(ctx["schedule"].id)}, headers=as_user(outsider))
    assert r.status_code == 403
    assert r.json()["message"] == "Only panelists assigned to this defense can evaluate it"
    assert db_session.query(Evaluation).filter(Evaluation.evaluator_id == outsider.id).count() == 0

    assign_panelist(db_session, ctx["schedule"], outsider)
    r = client.post("/evaluations", json={"scheduleId": str(ctx["schedule"].id)}, headers=as_user(outsider))
    assert r.status_code == 201

    # an admin-created evaluation stays reachable without a panel seat
    schedule = create_schedule(db_session, ctx["group"])
    created = create_evaluation(db_session, schedule, outsider)
    r = client.post("/evaluations", json={"scheduleId": str(schedule.id)}, headers=as_user(outsider))
    assert r.status_code == 200
    assert r.json()["item"]["id"] == str(created.id)


def test_students_cannot_use_evaluations(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    r = client.get(f"/evaluations/{ctx['evaluation'].id}", headers=as_user(ctx["students"][0]))
    assert r.status_code == 403


def test_staff_only_see_their_own_evaluations(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    other = create_user(db_session, "other@local.test", "Other Staff", "staff")
    other_eval = create_evaluation(db_session, ctx["schedule"], other)

    r = client.get("/evaluations", headers=as_user(ctx["staff"]))
    assert r.status_code == 200
    ids = {e["id"] for e in r.json()["items"]}
    assert ids == {str(ctx["evaluation"].id)}

    r = client.get(f"/evaluations/{other_eval.id}", headers=as_user(ctx["staff"]))
    assert r.status_code == 403

    r = client.get("/evaluations", headers=as_user(ctx["admin"]))
    assert len(r.json()["items"]) == 2


def test_get_by_assignment(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    r = client.get(
        "/evaluations/by-assignment",
        params={"schedule_id": str(ctx["schedule"].id)},
        headers=as_user(ctx["staff"]),
    )
    assert r.status_code == 200
    assert r.json()["item"]["id"] == str(ctx["evaluation"].id)


def test_summary_reports_weighted_percent(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1, c2 = ctx["criteria"]
    create_score(db_session, ctx["evaluation"], c1, "group", ctx["group"].id, 4)
    create_score(db_session, ctx["evaluation"], c2, "group", ctx["group"].id, 3)

    r = client.get(f"/evaluations/{ctx['evaluation'].id}/summary", headers=as_user(ctx["staff"]))
    assert r.status_code == 200, r.text
    summary = r.json()["item"]

    assert summary["criteria_source"] == "active_template"
    assert [t["subject_type"] for t in summary["targets"]] == ["group", "student", "student"]
    group = summary["targets"][0]
    assert group["summary"]["total_weighted"] == 68
    assert group["summary"]["max_weighted"] == 100
    assert group["summary"]["percent"] == 68
    for student in summary["targets"][1:]:
        assert student["summary"]["percent"] == 0
        assert student["summary"]["scored"] == 0
    assert summary["remaining"] == 4
    assert summary["can_submit"] is False


def test_summary_prefers_template_pinned_on_schedule(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    pinned = create_template(db_session, name="Pinned", version=1, active=False)
    create_criterion(db_session, pinned, name="Only", weight=100)
    ctx["schedule"].rubric_template_id = pinned.id
    db_session.commit()

    r = client.get(f"/evaluations/{ctx['evaluation'].id}/summary", headers=as_user(ctx["staff"]))
    summary = r.json()["item"]
    assert summary["criteria_source"] == "schedule_template"
    assert [c["name"] for c in summary["criteria"]] == ["Only"]


def test_pinned_template_without_criteria_scores_against_active_rubric(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    empty = create_template(db_session, name="Draft", version=1, active=False)
    ctx["schedule"].rubric_template_id = empty.id
    db_session.commit()
    evaluation = ctx["evaluation"]
    staff = as_user(ctx["staff"])

    summary = client.get(f"/evaluations/{evaluation.id}/summary", headers=staff).json()["item"]
    assert summary["criteria_source"] == "active_template"
    assert summary["remaining"] == 6

    subjects = [{"subject_type": "group"}] + [
        {"subject_type": "student", "subject_id": str(s.id)} for s in ctx["students"]
    ]
    for c in ctx["criteria"]:
        for subject in subjects:
            r = client.post(
                f"/evaluations/{evaluation.id}/scores",
                json={"criterion_id": str(c.id), "score": 4, **subject},
                headers=staff,
            )
            assert r.status_code == 201, r.text

    summary = client.get(f"/evaluations/{evaluation.id}/summary", headers=staff).json()["item"]
    assert summary["remaining"] == 0

    r = client.post(f"/evaluations/{evaluation.id}/submit", headers=staff)
    assert r.status_code == 200, r.text
    assert r.json()["item"]["status"] == "submitted"


def test_summary_falls_back_to_scored_criteria(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1 = ctx["criteria"][0]
    create_score(db_session, ctx["evaluation"], c1, "group", ctx["group"].id, 5)
    ctx["template"].active = False
    db_session.commit()

    r = client.get(f"/evaluations/{ctx['evaluation'].id}/summary", headers=as_user(ctx["staff"]))
    summary = r.json()["item"]
    assert summary["criteria_source"] == "scored_criteria"
    assert [c["id"] for c in summary["criteria"]] == [str(c1.id)]


def test_summary_missing_evaluation_is_404(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    r = client.get(
        "/evaluations/00000000-0000-0000-0000-000000000000/summary",
        headers=as_user(ctx["admin"]),
    )
    assert r.status_code == 404
    assert r.json() == {"ok": False, "message": "Evaluation not found"}


def test_submit_blocked_until_every_target_is_scored(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    c1, c2 = ctx["criteria"]
    evaluation = ctx["evaluation"]
    create_score(db_session, evaluation, c1, "group", ctx["group"].id, 4)
    create_score(db_session, evaluation, c2, "group", ctx["group"].id, 3)

    r = client.post(f"/evaluations/{evaluation.id}/submit", headers=as_user(ctx["staff"]))
    assert r.status_code == 400
    assert r.json()["ok"] is False
    assert r.json()["remaining"] == 4
    assert db_session.get(Evaluation, evaluation.id).status == "pending"

    for c in (c1, c2):
        for s in ctx["students"]:
            create_score(db_session, evaluation, c, "student", s.id, 5)

    r = client.post(f"/evaluations/{evaluation.id}/submit", headers=as_user(ctx["staff"]))
    assert r.status_code == 200, r.text
    item = r.json()["item"]
    assert item["status"] == "submitted"
    assert item["submitted_at"] is not None
    assert r.headers["ETag"] == f'"{item["version"]}"'
    assert _count_audit(db_session, "EVALUATION_SUBMITTED", evaluation.id) == 1

    # re-submitting is a no-op
    r = client.post(f"/evaluations/{evaluation.id}/submit", headers=as_user(ctx["staff"]))
    assert r.status_code == 200
    assert r.json()["item"]["version"] == item["version"]


def test_only_owner_or_admin_can_submit(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    _score_everything(db_session, ctx)
    other = create_user(db_session, "other@local.test", "Other Staff", "staff")

    r = client.post(f"/evaluations/{ctx['evaluation'].id}/submit", headers=as_user(other))
    assert r.status_code == 403

    r = client.post(f"/evaluations/{ctx['evaluation'].id}/submit", headers=as_user(ctx["admin"]))
    assert r.status_code == 200


def test_lock_does_not_require_completeness_and_is_final(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    evaluation = ctx["evaluation"]

    r = client.post(f"/evaluations/{evaluation.id}/lock", headers=as_user(ctx["staff"]))
    assert r.status_code == 200, r.text
    item = r.json()["item"]
    assert item["status"] == "locked"
    assert item["locked_at"] is not None

    # idempotent
    r = client.post(f"/evaluations/{evaluation.id}/lock", headers=as_user(ctx["staff"]))
    assert r.status_code == 200
    assert r.json()["item"]["version"] == item["version"]

    r = client.post(f"/evaluations/{evaluation.id}/submit", headers=as_user(ctx["staff"]))
    assert r.status_code == 403

    r = client.patch(f"/evaluations/{evaluation.id}", json={"status": "pending"}, headers=as_user(ctx["admin"]))
    assert r.status_code == 400

    assert _count_audit(db_session, "EVALUATION_LOCKED", evaluation.id) == 1


def test_patch_status_routes_through_state_machine(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    _score_everything(db_session, ctx)
    evaluation = ctx["evaluation"]

    r = client.patch(f"/evaluations/{evaluation.id}", json={"status": "submitted"}, headers=as_user(ctx["staff"]))
    assert r.status_code == 200
    assert r.json()["item"]["status"] == "submitted"

    r = client.patch(f"/evaluations/{evaluation.id}", json={"status": "pending"}, headers=as_user(ctx["staff"]))
    assert r.status_code == 400

    r = client.patch(f"/evaluations/{evaluation.id}", json={"status": "archived"}, headers=as_user(ctx["staff"]))
    assert r.status_code == 400

    r = client.patch(f"/evaluations/{evaluation.id}", json={"status": "locked"}, headers=as_user(ctx["staff"]))
    assert r.status_code == 200
    assert r.json()["item"]["status"] == "locked"
    assert r.json()["item"]["submitted_at"] is not None


def test_if_match_must_match_current_version(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    evaluation = ctx["evaluation"]

    r = client.get(f"/evaluations/{evaluation.id}", headers=as_user(ctx["staff"]))
    etag = r.headers["ETag"]
    assert etag == '"1"'

    r = client.post(
        f"/evaluations/{evaluation.id}/lock",
        headers={**as_user(ctx["staff"]), "If-Match": '"7"'},
    )
    assert r.status_code == 409
    assert r.json()["expected"] == 1
    assert r.json()["got"] == 7

    r = client.post(
        f"/evaluations/{evaluation.id}/lock",
        headers={**as_user(ctx["staff"]), "If-Match": "abc"},
    )
    assert r.status_code == 400

    r = client.post(
        f"/evaluations/{evaluation.id}/lock",
        headers={**as_user(ctx["staff"]), "If-Match": etag},
    )
    assert r.status_code == 200


def test_delete_scores_returns_count_and_keeps_status(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    _score_everything(db_session, ctx)
    evaluation = ctx["evaluation"]

    r = client.delete(f"/evaluations/{evaluation.id}/scores", headers=as_user(ctx["staff"]))
    assert r.status_code == 200
    assert r.json() == {"ok": True, "deleted": 6}

    db_session.expire_all()
    assert db_session.query(EvaluationScore).filter(EvaluationScore.evaluation_id == evaluation.id).count() == 0
    assert db_session.get(Evaluation, evaluation.id).status == "pending"
    assert _count_audit(db_session, "SCORES_DELETED", evaluation.id) == 1


def test_delete_scores_forbidden_when_locked(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    locked = create_evaluation(
        db_session, create_schedule(db_session, ctx["group"]), ctx["staff"], status="locked"
    )
    r = client.delete(f"/evaluations/{locked.id}/scores", headers=as_user(ctx["admin"]))
    assert r.status_code == 403


def test_unauthenticated_requests_are_rejected(db_session, client: TestClient):
    ctx = defense_setup(db_session)
    r = client.get(f"/evaluations/{ctx['evaluation'].id}")
    assert r.status_code == 401
    assert r.json()["ok"] is False

    r = client.get(f"/evaluations/{ctx['evaluation'].id}", headers=as_user("nobody@local.test"))
    assert r.status_code == 401
