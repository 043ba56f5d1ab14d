"""
Single-endpoint resource dispatcher: ``/api?resource=<name>``.

Maps (verb, resource) onto the same core operations the dedicated routers
use, so both surfaces share role checks, validation and envelopes.
Query parameters are accepted in camelCase or snake_case.
"""
from typing import Any, Callable

from fastapi import APIRouter, Body, Depends, Header, Request, Response
from sqlalchemy.orm import Session

from defense_eval.api.evaluations import (
    bulk_status_code,
    bulk_to_out,
    eval_to_out,
    score_to_out,
)
from defense_eval.api.rubrics import criterion_to_out, template_to_out
from defense_eval.api.student_evaluations import student_eval_to_out
from defense_eval.core import evaluation_workflow as workflow
from defense_eval.core import rubric_registry
from defense_eval.core import student_evaluations
from defense_eval.core.errors import ValidationError
from defense_eval.core.optimistic_lock import parse_if_match, set_etag
from defense_eval.core.rbac import ADMIN, PANELIST, STAFF, assert_roles
from defense_eval.core.security import Actor, get_current_actor
from defense_eval.db.session import get_db
from defense_eval.schemas.aliases import FIELD_ALIASES
from defense_eval.schemas.evaluation import BulkScoresPayload, EvaluationCreate, EvaluationStatusUpdate, ScoreUpsert
from defense_eval.schemas.rubric import (
    RubricCriterionCreate,
    RubricCriterionUpdate,
    RubricTemplateCreate,
    RubricTemplateUpdate,
)
from defense_eval.schemas.student_evaluation import StudentEvaluationUpdate, StudentEvaluationUpsert

router = APIRouter(tags=["resources"])


class Call:
    """Everything one dispatched operation needs."""

    def __init__(self, request: Request, response: Response, db: Session, actor: Actor, body: dict, if_match):
        self.request = request
        self.response = response
        self.db = db
        self.actor = actor
        self.body = body
        self.if_match = if_match

    def param(self, field: str, required: bool = False) -> str | None:
        names = FIELD_ALIASES.get(field, (field,))
        for name in names:
            value = self.request.query_params.get(name)
            if value:
                return value
        for name in names:
            value = self.body.get(name)
            if value:
                return str(value)
        if required:
            raise ValidationError(f"{names[1] if len(names) > 1 else field} is required")
        return None

    def flag(self, name: str) -> bool:
        return (self.request.query_params.get(name) or "").strip().lower() in ("1", "true", "yes")

    def require_evaluator(self) -> None:
        assert_roles(self.actor.roles, ADMIN, STAFF, PANELIST)

    def require_admin(self) -> None:
        assert_roles(self.actor.roles, ADMIN)


# ---- rubricTemplates ----


def _get_templates(c: Call):
    template_id = c.param("id")
    if template_id:
        return {"ok": True, "item": template_to_out(rubric_registry.get_template_or_404(c.db, template_id))}
    items = rubric_registry.list_templates(c.db, active_only=c.flag("active"))
    return {"ok": True, "items": [template_to_out(t) for t in items]}


def _post_template(c: Call):
    c.require_admin()
    payload = RubricTemplateCreate.model_validate(c.body)
    c.response.status_code = 201
    return {"ok": True, "item": template_to_out(rubric_registry.create_template(c.db, c.actor, payload))}


def _patch_template(c: Call):
    c.require_admin()
    payload = RubricTemplateUpdate.model_validate(c.body)
    item = rubric_registry.update_template(c.db, c.actor, c.param("id", required=True), payload)
    return {"ok": True, "item": template_to_out(item)}


def _delete_template(c: Call):
    c.require_admin()
    return {"ok": True, "deleted": rubric_registry.delete_template(c.db, c.actor, c.param("id", required=True))}


# ---- rubricCriteria ----


def _get_criteria(c: Call):
    criterion_id = c.param("id")
    if criterion_id:
        return {"ok": True, "item": criterion_to_out(rubric_registry.get_criterion_or_404(c.db, criterion_id))}
    items = rubric_registry.list_criteria(c.db, c.param("template_id", required=True))
    return {"ok": True, "items": [criterion_to_out(x) for x in items]}


def _post_criterion(c: Call):
    c.require_admin()
    body = dict(c.body)
    template_id = c.param("template_id")
    if template_id:
        body.setdefault("template_id", template_id)
    payload = RubricCriterionCreate.model_validate(body)
    c.response.status_code = 201
    return {"ok": True, "item": criterion_to_out(rubric_registry.create_criterion(c.db, c.actor, payload))}


def _patch_criterion(c: Call):
    c.require_admin()
    payload = RubricCriterionUpdate.model_validate(c.body)
    item = rubric_registry.update_criterion(c.db, c.actor, c.param("id", required=True), payload)
    return {"ok": True, "item": criterion_to_out(item)}


def _delete_criterion(c: Call):
    c.require_admin()
    return {"ok": True, "deleted": rubric_registry.delete_criterion(c.db, c.actor, c.param("id", required=True))}


# ---- evaluations ----


def _evaluation_item(c: Call, e):
    out = eval_to_out(e)
    set_etag(c.response, out.version)
    return {"ok": True, "item": out}


def _get_evaluations(c: Call):
    c.require_evaluator()
    evaluation_id = c.param("id")
    if evaluation_id:
        return _evaluation_item(c, workflow.get_evaluation(c.db, c.actor, evaluation_id))

    schedule_id = c.param("schedule_id")
    evaluator_id = c.param("evaluator_id")
    if schedule_id and (evaluator_id or c.flag("mine")):
        return _evaluation_item(c, workflow.get_by_assignment(c.db, c.actor, schedule_id, evaluator_id))

    items = workflow.list_evaluations(
        c.db,
        c.actor,
        schedule_id=schedule_id,
        status=c.request.query_params.get("status"),
        evaluator_id=evaluator_id,
    )
    return {"ok": True, "items": [eval_to_out(e) for e in items]}


def _post_evaluation(c: Call):
    c.require_evaluator()
    e, created = workflow.create_or_get_evaluation(c.db, c.actor, EvaluationCreate.model_validate(c.body))
    c.response.status_code = 201 if created else 200
    return _evaluation_item(c, e)


def _patch_evaluation(c: Call):
    c.require_evaluator()
    payload = EvaluationStatusUpdate.model_validate(c.body)
    e = workflow.update_evaluation_status(
        c.db, c.actor, c.param("id", required=True), payload, if_match=parse_if_match(c.if_match)
    )
    return _evaluation_item(c, e)


# ---- evaluationScores ----


def _get_scores(c: Call):
    c.require_evaluator()
    rows = workflow.list_scores(c.db, c.actor, c.param("evaluation_id", required=True))
    return {"ok": True, "items": [score_to_out(s) for s in rows]}


def _post_score(c: Call):
    c.require_evaluator()
    evaluation_id = c.param("evaluation_id", required=True)
    row, created = workflow.upsert_score(c.db, c.actor, evaluation_id, ScoreUpsert.model_validate(c.body))
    c.response.status_code = 201 if created else 200
    return {"ok": True, "item": score_to_out(row)}


def _delete_scores(c: Call):
    c.require_evaluator()
    return {"ok": True, "deleted": workflow.delete_scores(c.db, c.actor, c.param("evaluation_id", required=True))}


def _post_scores_bulk(c: Call):
    c.require_evaluator()
    evaluation_id = c.param("evaluation_id", required=True)
    payload = BulkScoresPayload.model_validate(c.body)
    result = workflow.bulk_upsert_scores(c.db, c.actor, evaluation_id, payload.scores)
    c.response.status_code = bulk_status_code(result)
    return bulk_to_out(result)


# ---- studentEvaluations ----


def _get_student_evaluations(c: Call):
    row_id = c.param("id")
    if row_id:
        row = student_evaluations.get_student_evaluation(c.db, c.actor, row_id)
        return {"ok": True, "item": student_eval_to_out(row)}
    rows = student_evaluations.list_student_evaluations(
        c.db, c.actor, schedule_id=c.param("schedule_id"), student_id=c.param("student_id")
    )
    return {"ok": True, "items": [student_eval_to_out(r) for r in rows]}


def _post_student_evaluation(c: Call):
    body = dict(c.body)
    schedule_id = c.param("schedule_id")
    if schedule_id:
        body.setdefault("schedule_id", schedule_id)
    row, created = student_evaluations.upsert_student_evaluation(
        c.db, c.actor, StudentEvaluationUpsert.model_validate(body)
    )
    c.response.status_code = 201 if created else 200
    return {"ok": True, "item": student_eval_to_out(row)}


def _patch_student_evaluation(c: Call):
    row = student_evaluations.update_student_evaluation(
        c.db, c.actor, c.param("id", required=True), StudentEvaluationUpdate.model_validate(c.body)
    )
    return {"ok": True, "item": student_eval_to_out(row)}


def _delete_student_evaluation(c: Call):
    return {"ok": True, "deleted": student_evaluations.delete_student_evaluation(c.db, c.actor, c.param("id", required=True))}


HANDLERS: dict[tuple[str, str], Callable[[Call], Any]] = {
    ("GET", "rubricTemplates"): _get_templates,
    ("POST", "rubricTemplates"): _post_template,
    ("PATCH", "rubricTemplates"): _patch_template,
    ("DELETE", "rubricTemplates"): _delete_template,
    ("GET", "rubricCriteria"): _get_criteria,
    ("POST", "rubricCriteria"): _post_criterion,
    ("PATCH", "rubricCriteria"): _patch_criterion,
    ("DELETE", "rubricCriteria"): _delete_criterion,
    ("GET", "evaluations"): _get_evaluations,
    ("POST", "evaluations"): _post_evaluation,
    ("PATCH", "evaluations"): _patch_evaluation,
    ("GET", "evaluationScores"): _get_scores,
    ("POST", "evaluationScores"): _post_score,
    ("DELETE", "evaluationScores"): _delete_scores,
    ("POST", "evaluationScoresBulk"): _post_scores_bulk,
    ("GET", "studentEvaluations"): _get_student_evaluations,
    ("POST", "studentEvaluations"): _post_student_evaluation,
    ("PATCH", "studentEvaluations"): _patch_student_evaluation,
    ("DELETE", "studentEvaluations"): _delete_student_evaluation,
}

RESOURCES = sorted({name for _, name in HANDLERS})


@router.api_route("/api", methods=["GET", "POST", "PATCH", "DELETE"])
def dispatch(
    request: Request,
    response: Response,
    resource: str | None = None,
    body: dict | None = Body(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    if_match: str | None = Header(default=None, alias="If-Match"),
):
    if not resource:
        raise ValidationError(f"resource is required (one of: {', '.join(RESOURCES)})")
    if resource not in RESOURCES:
        raise ValidationError(f"Unknown resource {resource!r}")

    handler = HANDLERS.get((request.method, resource))
    if handler is None:
        raise ValidationError(f"{request.method} is not supported for {resource}")

    return handler(Call(request, response, db, actor, body or {}, if_match))
