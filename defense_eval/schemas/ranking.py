from datetime import datetime

from pydantic import BaseModel


class RankingOut(BaseModel):
    rank: int
    subject_type: str
    subject_id: str
    name: str | None
    percent: float
    total_weighted: float
    max_weighted: float
    evaluations: int
    latest_defense_at: datetime | None
