from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from defense_eval.core.rankings import compute_rankings
from defense_eval.core.rbac import ADMIN, require_roles
from defense_eval.db.session import get_db
from defense_eval.schemas.envelope import ItemsResponse
from defense_eval.schemas.ranking import RankingOut

router = APIRouter(prefix="/rankings", tags=["rankings"])


@router.get("", response_model=ItemsResponse[RankingOut])
def get_rankings(
    target: str = Query(default="group", description="group or student"),
    limit: int | None = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(require_roles(ADMIN)),
):
    rows = compute_rankings(db, target, limit)
    return ItemsResponse(
        items=[
            RankingOut(
                rank=r.rank,
                subject_type=r.subject_type,
                subject_id=r.subject_id,
                name=r.name,
                percent=r.percent,
                total_weighted=r.total_weighted,
                max_weighted=r.max_weighted,
                evaluations=r.evaluations,
                latest_defense_at=r.latest_defense_at,
            )
            for r in rows
        ]
    )
