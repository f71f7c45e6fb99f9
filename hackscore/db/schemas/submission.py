# db/schemas/submission.py
import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field
from hackscore.db.schemas._base import OrmModel
from hackscore.db.schemas.score import ScoreRecord, VoteRead
from hackscore.db.enums import JudgingStatus, SubmissionStatus
from hackscore.utils.sentinels import Missing

Rating = Optional[int]

class SubmissionMetadata(BaseModel):
    """Self-reported project metrics used by automated judging."""
    lines_of_code: Optional[int] = Field(default=None, ge=0)
    commits: Optional[int] = Field(default=None, ge=0)
    contributors: Optional[int] = Field(default=None, ge=0)
    technologies: list[str] = []
    complexity: Optional[Literal["low", "medium", "high"]] = None
    innovation: Rating = Field(default=None, ge=1, le=10)
    completeness: Rating = Field(default=None, ge=1, le=10)
    documentation: Rating = Field(default=None, ge=1, le=10)
    presentation: Rating = Field(default=None, ge=1, le=10)

class SubmissionBase(OrmModel):
    event_id: uuid.UUID
    team_id: uuid.UUID
    project_name: str
    description: str = ""
    technologies: list[str] = []
    project_metadata: Optional[SubmissionMetadata] = None
    status: SubmissionStatus = SubmissionStatus.DRAFT

class SubmissionCreate(SubmissionBase): ...

class SubmissionUpdate(OrmModel):
    id: uuid.UUID
    project_name: str | Missing = Missing()
    description: str | Missing = Missing()
    technologies: list[str] | Missing = Missing()
    project_metadata: SubmissionMetadata | Missing | None = Missing()
    status: SubmissionStatus | Missing = Missing()

class SubmissionRead(SubmissionBase):
    id: uuid.UUID
    submitted_by: Optional[uuid.UUID] = None
    judging_status: JudgingStatus = JudgingStatus.PENDING
    total_score: float = 0.0
    average_score: float = 0.0
    public_votes: float = 0.0
    submitted_at: Optional[datetime] = None
    created_at: datetime
    scores: list[ScoreRecord] = []
    votes: list[VoteRead] = []

class CriterionBreakdown(BaseModel):
    total: float = 0.0
    count: int = 0
    average: float = 0.0

class SubmissionAnalytics(BaseModel):
    submission_id: uuid.UUID
    vote_count: int
    vote_average: float
    vote_distribution: dict[int, int]
    total_score: float
    average_score: float
    criteria_breakdown: dict[str, CriterionBreakdown]
    rank: Optional[int] = None
