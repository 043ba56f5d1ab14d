from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from defense_eval.core import student_evaluations as service
from defense_eval.core.security import Actor, get_current_actor
from defense_eval.db.session import get_db
from defense_eval.models.student_evaluation import StudentEvaluation
from defense_eval.schemas.envelope import DeletedResponse, ItemResponse, ItemsResponse
from defense_eval.schemas.student_evaluation import (
    StudentEvaluationOut,
    StudentEvaluationUpdate,
    StudentEvaluationUpsert,
)

router = APIRouter(prefix="/student-evaluations", tags=["student-evaluations"])


def student_eval_to_out(r: StudentEvaluation) -> StudentEvaluationOut:
    return StudentEvaluationOut(
        id=str(r.id),
        schedule_id=str(r.schedule_id),
        student_id=str(r.student_id),
        status=r.status,
        answers=r.answers or {},
        submitted_at=r.submitted_at,
        locked_at=r.locked_at,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


@router.get("", response_model=ItemsResponse[StudentEvaluationOut])
def list_student_evaluations(
    schedule_id: str | None = Query(default=None),
    student_id: str | None = Query(default=None, description="Ignored for students"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    rows = service.list_student_evaluations(db, actor, schedule_id=schedule_id, student_id=student_id)
    return ItemsResponse(items=[student_eval_to_out(r) for r in rows])


@router.get("/{row_id}", response_model=ItemResponse[StudentEvaluationOut])
def get_student_evaluation(
    row_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ItemResponse(item=student_eval_to_out(service.get_student_evaluation(db, actor, row_id)))


@router.post("", response_model=ItemResponse[StudentEvaluationOut])
def upsert_student_evaluation(
    payload: StudentEvaluationUpsert,
    response: Response,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    row, created = service.upsert_student_evaluation(db, actor, payload)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return ItemResponse(item=student_eval_to_out(row))


@router.patch("/{row_id}", response_model=ItemResponse[StudentEvaluationOut])
def update_student_evaluation(
    row_id: str,
    payload: StudentEvaluationUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ItemResponse(item=student_eval_to_out(service.update_student_evaluation(db, actor, row_id, payload)))


@router.delete("/{row_id}", response_model=DeletedResponse)
def delete_student_evaluation(
    row_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return DeletedResponse(deleted=service.delete_student_evaluation(db, actor, row_id))
