# db/schemas/leaderboard.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field
from hackscore.db.schemas._base import FrozenOrmModel

class CriterionScore(FrozenOrmModel):
    criterion: str
    score: float

class LeaderboardEntry(FrozenOrmModel):
    team_id: uuid.UUID
    team_title: str = ""
    submission_id: uuid.UUID
    project_name: str = ""
    # judge total + weighted public votes
    total_score: float
    judge_score: float = 0.0
    public_votes: float = 0.0
    scores: list[CriterionScore] = []
    rank: int = Field(ge=1)
    updated_at: datetime

class LeaderboardSnapshot(FrozenOrmModel):
    event_id: uuid.UUID
    event_title: str = ""
    version: int = 0
    updated_at: Optional[datetime] = None
    entries: list[LeaderboardEntry] = []
