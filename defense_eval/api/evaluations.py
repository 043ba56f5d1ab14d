from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.orm import Session

from defense_eval.core import evaluation_workflow as workflow
from defense_eval.core.evaluation_workflow import BulkResult, EvaluationSummary
from defense_eval.core.optimistic_lock import parse_if_match, set_etag
from defense_eval.core.rbac import ADMIN, PANELIST, STAFF, require_roles
from defense_eval.core.scoring import Summary
from defense_eval.core.security import Actor
from defense_eval.db.session import get_db
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.evaluation_score import EvaluationScore
from defense_eval.schemas.envelope import DeletedResponse, ItemResponse, ItemsResponse
from defense_eval.schemas.evaluation import (
    BulkItemError,
    BulkScoresOut,
    BulkScoresPayload,
    CriterionRef,
    EvaluationCreate,
    EvaluationOut,
    EvaluationStatusUpdate,
    EvaluationSummaryOut,
    ScoreOut,
    ScoreUpsert,
    SummaryOut,
    TargetSummaryOut,
)

router = APIRouter(prefix="/evaluations", tags=["evaluations"])

evaluator = require_roles(ADMIN, STAFF, PANELIST)


def eval_to_out(e: Evaluation) -> EvaluationOut:
    return EvaluationOut(
        id=str(e.id),
        schedule_id=str(e.schedule_id),
        evaluator_id=str(e.evaluator_id),
        status=e.status,
        submitted_at=e.submitted_at,
        locked_at=e.locked_at,
        created_at=e.created_at,
        updated_at=e.updated_at,
        version=e.version,
    )


def score_to_out(s: EvaluationScore) -> ScoreOut:
    return ScoreOut(
        id=str(s.id),
        evaluation_id=str(s.evaluation_id),
        criterion_id=str(s.criterion_id),
        subject_type=s.subject_type,
        subject_id=str(s.subject_id),
        score=s.score,
        comment=s.comment,
        updated_at=s.updated_at,
    )


def _summary_out(s: Summary) -> SummaryOut:
    return SummaryOut(
        scored=s.scored,
        total=s.total,
        total_raw=s.total_raw,
        max_raw=s.max_raw,
        total_weighted=s.total_weighted,
        max_weighted=s.max_weighted,
        percent=s.percent,
    )


def summary_to_out(summary: EvaluationSummary) -> EvaluationSummaryOut:
    return EvaluationSummaryOut(
        evaluation=eval_to_out(summary.evaluation),
        criteria_source=summary.criteria_source,
        criteria=[
            CriterionRef(id=c.id, name=c.name, weight=c.weight, min_score=c.min_score, max_score=c.max_score)
            for c in summary.criteria
        ],
        targets=[
            TargetSummaryOut(
                subject_type=ts.target.subject_type,
                subject_id=ts.target.subject_id,
                name=ts.target.name,
                email=ts.target.email,
                summary=_summary_out(ts.summary),
                scores=ts.scores,
            )
            for ts in summary.targets
        ],
        overall=_summary_out(summary.overall),
        remaining=summary.remaining,
        can_submit=summary.evaluation.status == "pending" and summary.remaining == 0,
    )


def bulk_to_out(result: BulkResult) -> BulkScoresOut:
    return BulkScoresOut(
        ok=result.failed == 0,
        items=[score_to_out(s) for s in result.items],
        saved=result.saved,
        failed=result.failed,
        errors=[BulkItemError(**e) for e in result.errors],
        message=result.message,
    )


def bulk_status_code(result: BulkResult) -> int:
    if result.failed == 0:
        return status.HTTP_200_OK
    if result.saved == 0:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_207_MULTI_STATUS


def _item(response: Response, e: Evaluation) -> ItemResponse[EvaluationOut]:
    out = eval_to_out(e)
    set_etag(response, out.version)
    return ItemResponse(item=out)


@router.get("", response_model=ItemsResponse[EvaluationOut])
def list_evaluations(
    schedule_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status", description="pending, submitted or locked"),
    evaluator_id: str | None = Query(default=None, description="Admins only; staff always see their own"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    items = workflow.list_evaluations(
        db, actor, schedule_id=schedule_id, status=status_filter, evaluator_id=evaluator_id
    )
    return ItemsResponse(items=[eval_to_out(e) for e in items])


@router.post("", response_model=ItemResponse[EvaluationOut], status_code=status.HTTP_201_CREATED)
def create_or_get_evaluation(
    payload: EvaluationCreate,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    e, created = workflow.create_or_get_evaluation(db, actor, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    return _item(response, e)


@router.get("/by-assignment", response_model=ItemResponse[EvaluationOut])
def get_by_assignment(
    response: Response,
    schedule_id: str = Query(...),
    evaluator_id: str | None = Query(default=None, description="Defaults to the acting user"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    return _item(response, workflow.get_by_assignment(db, actor, schedule_id, evaluator_id))


@router.get("/{evaluation_id}", response_model=ItemResponse[EvaluationOut])
def get_evaluation(
    evaluation_id: str,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    return _item(response, workflow.get_evaluation(db, actor, evaluation_id))


@router.patch("/{evaluation_id}", response_model=ItemResponse[EvaluationOut])
def update_evaluation_status(
    evaluation_id: str,
    payload: EvaluationStatusUpdate,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
    if_match: str | None = Header(default=None, alias="If-Match"),
):
    e = workflow.update_evaluation_status(
        db, actor, evaluation_id, payload, if_match=parse_if_match(if_match)
    )
    return _item(response, e)


@router.post("/{evaluation_id}/submit", response_model=ItemResponse[EvaluationOut])
def submit_evaluation(
    evaluation_id: str,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
    if_match: str | None = Header(default=None, alias="If-Match"),
):
    e = workflow.submit_evaluation(db, actor, evaluation_id, if_match=parse_if_match(if_match))
    return _item(response, e)


@router.post("/{evaluation_id}/lock", response_model=ItemResponse[EvaluationOut])
def lock_evaluation(
    evaluation_id: str,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
    if_match: str | None = Header(default=None, alias="If-Match"),
):
    e = workflow.lock_evaluation(db, actor, evaluation_id, if_match=parse_if_match(if_match))
    return _item(response, e)


@router.get("/{evaluation_id}/summary", response_model=ItemResponse[EvaluationSummaryOut])
def get_summary(
    evaluation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    return ItemResponse(item=summary_to_out(workflow.summarize_evaluation(db, actor, evaluation_id)))


# ---- scores ----


@router.get("/{evaluation_id}/scores", response_model=ItemsResponse[ScoreOut])
def list_scores(
    evaluation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    return ItemsResponse(items=[score_to_out(s) for s in workflow.list_scores(db, actor, evaluation_id)])


@router.post("/{evaluation_id}/scores", response_model=ItemResponse[ScoreOut])
def upsert_score(
    evaluation_id: str,
    payload: ScoreUpsert,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    row, created = workflow.upsert_score(db, actor, evaluation_id, payload)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return ItemResponse(item=score_to_out(row))


@router.post("/{evaluation_id}/scores/bulk", response_model=BulkScoresOut)
def bulk_upsert_scores(
    evaluation_id: str,
    payload: BulkScoresPayload,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    """
    Saves each score independently. 200 when all saved, 207 when some failed,
    400 when none did; ``errors`` lists the failed items by index.
    """
    result = workflow.bulk_upsert_scores(db, actor, evaluation_id, payload.scores)
    response.status_code = bulk_status_code(result)
    return bulk_to_out(result)


@router.delete("/{evaluation_id}/scores", response_model=DeletedResponse)
def delete_scores(
    evaluation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(evaluator),
):
    return DeletedResponse(deleted=workflow.delete_scores(db, actor, evaluation_id))
