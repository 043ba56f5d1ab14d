from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from defense_eval.core.audit import log_event
from defense_eval.core.errors import NotFound, ValidationError
from defense_eval.core.security import Actor
from defense_eval.models.rubric_criterion import RubricCriterion
from defense_eval.models.rubric_template import RubricTemplate
from defense_eval.schemas.rubric import (
    RubricCriterionCreate,
    RubricCriterionUpdate,
    RubricTemplateCreate,
    RubricTemplateUpdate,
)

# columns that may be patched to NULL; everything else ignores an explicit null
_NULLABLE_PATCH_FIELDS = {"description"}


def parse_uuid(value, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError):
        raise ValidationError(f"{field} must be a valid UUID")


def _patch(obj, changes: dict) -> list[str]:
    applied = []
    for key, value in changes.items():
        if value is None and key not in _NULLABLE_PATCH_FIELDS:
            continue
        setattr(obj, key, value)
        applied.append(key)
    return applied


# ---- templates ----


def list_templates(db: Session, *, active_only: bool = False) -> list[RubricTemplate]:
    q = db.query(RubricTemplate)
    if active_only:
        q = q.filter(RubricTemplate.active.is_(True))
    return q.order_by(RubricTemplate.active.desc(), RubricTemplate.updated_at.desc()).all()


def get_template_or_404(db: Session, template_id) -> RubricTemplate:
    template = db.get(RubricTemplate, parse_uuid(template_id, "template_id"))
    if not template:
        raise NotFound("Rubric template not found")
    return template


def resolve_active_template(db: Session) -> RubricTemplate | None:
    """The template in effect for new evaluations: highest version among active ones."""
    return (
        db.query(RubricTemplate)
        .filter(RubricTemplate.active.is_(True))
        .order_by(RubricTemplate.version.desc(), RubricTemplate.updated_at.desc())
        .first()
    )


def _flush_or_duplicate(db: Session, message: str) -> None:
    try:
        with db.begin_nested():
            db.flush()
    except IntegrityError:
        raise ValidationError(message)


def create_template(db: Session, actor: Actor, payload: RubricTemplateCreate) -> RubricTemplate:
    now = datetime.utcnow()
    template = RubricTemplate(
        name=payload.name.strip(),
        version=payload.version,
        active=payload.active,
        description=payload.description,
        created_at=now,
        updated_at=now,
    )
    db.add(template)
    _flush_or_duplicate(db, "Rubric template name+version already exists")

    log_event(
        db=db,
        actor=actor.user,
        action="RUBRIC_TEMPLATE_CREATED",
        entity_type="rubric_template",
        entity_id=template.id,
        metadata={"name": template.name, "version": template.version, "active": template.active},
    )
    return template


def update_template(db: Session, actor: Actor, template_id, payload: RubricTemplateUpdate) -> RubricTemplate:
    template = get_template_or_404(db, template_id)
    applied = _patch(template, payload.model_dump(exclude_unset=True))
    if not applied:
        return template

    template.updated_at = datetime.utcnow()
    _flush_or_duplicate(db, "Rubric template name+version already exists")

    log_event(
        db=db,
        actor=actor.user,
        action="RUBRIC_TEMPLATE_UPDATED",
        entity_type="rubric_template",
        entity_id=template.id,
        metadata={"fields": applied},
    )
    return template


def delete_template(db: Session, actor: Actor, template_id) -> int:
    """Deletes the template and, through the ORM cascade, all of its criteria."""
    template = get_template_or_404(db, template_id)
    criteria_count = len(template.criteria)

    db.delete(template)
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="RUBRIC_TEMPLATE_DELETED",
        entity_type="rubric_template",
        entity_id=template.id,
        metadata={"name": template.name, "version": template.version, "criteria_deleted": criteria_count},
    )
    return 1


# ---- criteria ----


def list_criteria(db: Session, template_id) -> list[RubricCriterion]:
    return (
        db.query(RubricCriterion)
        .filter(RubricCriterion.template_id == parse_uuid(template_id, "template_id"))
        .order_by(RubricCriterion.created_at.asc())
        .all()
    )


def get_criterion_or_404(db: Session, criterion_id) -> RubricCriterion:
    criterion = db.get(RubricCriterion, parse_uuid(criterion_id, "criterion_id"))
    if not criterion:
        raise NotFound("Rubric criterion not found")
    return criterion


def create_criterion(db: Session, actor: Actor, payload: RubricCriterionCreate) -> RubricCriterion:
    template = get_template_or_404(db, payload.template_id)

    criterion = RubricCriterion(
        template_id=template.id,
        name=payload.name.strip(),
        description=payload.description,
        weight=payload.weight,
        min_score=payload.min_score,
        max_score=payload.max_score,
        created_at=datetime.utcnow(),
    )
    db.add(criterion)
    template.updated_at = datetime.utcnow()
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="RUBRIC_CRITERION_CREATED",
        entity_type="rubric_criterion",
        entity_id=criterion.id,
        metadata={
            "template_id": str(template.id),
            "weight": criterion.weight,
            "min_score": criterion.min_score,
            "max_score": criterion.max_score,
        },
    )
    return criterion


def update_criterion(db: Session, actor: Actor, criterion_id, payload: RubricCriterionUpdate) -> RubricCriterion:
    criterion = get_criterion_or_404(db, criterion_id)
    changes = payload.model_dump(exclude_unset=True)

    min_score = changes.get("min_score") if changes.get("min_score") is not None else criterion.min_score
    max_score = changes.get("max_score") if changes.get("max_score") is not None else criterion.max_score
    if max_score < min_score:
        raise ValidationError("max_score must be >= min_score")

    applied = _patch(criterion, changes)
    if applied:
        db.flush()
        log_event(
            db=db,
            actor=actor.user,
            action="RUBRIC_CRITERION_UPDATED",
            entity_type="rubric_criterion",
            entity_id=criterion.id,
            metadata={"fields": applied},
        )
    return criterion


def delete_criterion(db: Session, actor: Actor, criterion_id) -> int:
    criterion = get_criterion_or_404(db, criterion_id)
    db.delete(criterion)
    db.flush()

    log_event(
        db=db,
        actor=actor.user,
        action="RUBRIC_CRITERION_DELETED",
        entity_type="rubric_criterion",
        entity_id=criterion.id,
        metadata={"template_id": str(criterion.template_id)},
    )
    return 1
