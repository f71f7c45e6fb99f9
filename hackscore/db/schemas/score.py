# db/schemas/score.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field
from hackscore.db.schemas._base import FrozenOrmModel, OrmModel
from hackscore.db.enums import ScoreSource

class ScoreRecord(FrozenOrmModel):
    """One score contribution for one criterion of one submission."""
    criterion: str
    score: float
    max_score: float = 100.0
    judge_id: Optional[uuid.UUID] = None
    source: ScoreSource = ScoreSource.JUDGE
    feedback: Optional[str] = None
    created_at: Optional[datetime] = None

class ScoreInput(OrmModel):
    """Rubric line as sent by a judge; bounds are checked by the service."""
    criterion: str
    score: float
    max_score: float = 100.0
    feedback: Optional[str] = None

class VoteRead(FrozenOrmModel):
    submission_id: uuid.UUID
    user_id: uuid.UUID
    score: int = Field(ge=1, le=5)
    voted_at: Optional[datetime] = None
