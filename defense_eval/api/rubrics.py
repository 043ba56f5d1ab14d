from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from defense_eval.core import rubric_registry
from defense_eval.core.errors import NotFound
from defense_eval.core.rbac import ADMIN, require_roles
from defense_eval.core.security import Actor, get_current_actor
from defense_eval.db.session import get_db
from defense_eval.models.rubric_criterion import RubricCriterion
from defense_eval.models.rubric_template import RubricTemplate
from defense_eval.schemas.envelope import DeletedResponse, ItemResponse, ItemsResponse
from defense_eval.schemas.rubric import (
    RubricCriterionCreate,
    RubricCriterionOut,
    RubricCriterionUpdate,
    RubricTemplateCreate,
    RubricTemplateOut,
    RubricTemplateUpdate,
)

router = APIRouter(tags=["rubrics"])


def template_to_out(t: RubricTemplate) -> RubricTemplateOut:
    return RubricTemplateOut(
        id=str(t.id),
        name=t.name,
        version=t.version,
        active=t.active,
        description=t.description,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


def criterion_to_out(c: RubricCriterion) -> RubricCriterionOut:
    return RubricCriterionOut(
        id=str(c.id),
        template_id=str(c.template_id),
        name=c.name,
        description=c.description,
        weight=float(c.weight),
        min_score=c.min_score,
        max_score=c.max_score,
        created_at=c.created_at,
    )


# ---- templates ----


@router.get("/rubric-templates", response_model=ItemsResponse[RubricTemplateOut])
def list_templates(
    active: bool = Query(default=False, description="Only active templates"),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    items = rubric_registry.list_templates(db, active_only=active)
    return ItemsResponse(items=[template_to_out(t) for t in items])


@router.get("/rubric-templates/active", response_model=ItemResponse[RubricTemplateOut])
def get_active_template(
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    template = rubric_registry.resolve_active_template(db)
    if not template:
        raise NotFound("No active rubric template")
    return ItemResponse(item=template_to_out(template))


@router.get("/rubric-templates/{template_id}", response_model=ItemResponse[RubricTemplateOut])
def get_template(
    template_id: str,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    return ItemResponse(item=template_to_out(rubric_registry.get_template_or_404(db, template_id)))


@router.post(
    "/rubric-templates",
    response_model=ItemResponse[RubricTemplateOut],
    status_code=status.HTTP_201_CREATED,
)
def create_template(
    payload: RubricTemplateCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    return ItemResponse(item=template_to_out(rubric_registry.create_template(db, actor, payload)))


@router.patch("/rubric-templates/{template_id}", response_model=ItemResponse[RubricTemplateOut])
def update_template(
    template_id: str,
    payload: RubricTemplateUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    return ItemResponse(item=template_to_out(rubric_registry.update_template(db, actor, template_id, payload)))


@router.delete("/rubric-templates/{template_id}", response_model=DeletedResponse)
def delete_template(
    template_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    return DeletedResponse(deleted=rubric_registry.delete_template(db, actor, template_id))


# ---- criteria ----


@router.get("/rubric-criteria", response_model=ItemsResponse[RubricCriterionOut])
def list_criteria(
    template_id: str = Query(..., description="Template whose criteria to list"),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    items = rubric_registry.list_criteria(db, template_id)
    return ItemsResponse(items=[criterion_to_out(c) for c in items])


@router.get("/rubric-criteria/{criterion_id}", response_model=ItemResponse[RubricCriterionOut])
def get_criterion(
    criterion_id: str,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    return ItemResponse(item=criterion_to_out(rubric_registry.get_criterion_or_404(db, criterion_id)))


@router.post(
    "/rubric-criteria",
    response_model=ItemResponse[RubricCriterionOut],
    status_code=status.HTTP_201_CREATED,
)
def create_criterion(
    payload: RubricCriterionCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    return ItemResponse(item=criterion_to_out(rubric_registry.create_criterion(db, actor, payload)))


@router.patch("/rubric-criteria/{criterion_id}", response_model=ItemResponse[RubricCriterionOut])
def update_criterion(
    criterion_id: str,
    payload: RubricCriterionUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    return ItemResponse(item=criterion_to_out(rubric_registry.update_criterion(db, actor, criterion_id, payload)))


@router.delete("/rubric-criteria/{criterion_id}", response_model=DeletedResponse)
def delete_criterion(
    criterion_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ADMIN)),
):
    return DeletedResponse(deleted=rubric_registry.delete_criterion(db, actor, criterion_id))
