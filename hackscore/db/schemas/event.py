# db/schemas/event.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from hackscore.db.schemas._base import OrmModel
from hackscore.db.enums import EventStatus
from hackscore.utils.sentinels import Missing

class JudgingCriterion(BaseModel):
    name: str
    weight: float = 1.0
    description: Optional[str] = None

class EventJudgeRead(OrmModel):
    user_id: uuid.UUID

class EventBase(OrmModel):
    title: str
    slug: str
    organizer_id: uuid.UUID
    status: EventStatus = EventStatus.UPCOMING
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    max_teams: int = 100
    is_automated: bool = True
    criteria: list[JudgingCriterion] = []

class EventCreate(EventBase):
    judge_ids: list[uuid.UUID] = []

class EventUpdate(OrmModel):
    id: uuid.UUID
    title: str | Missing = Missing()
    status: EventStatus | Missing = Missing()
    is_automated: bool | Missing = Missing()
    criteria: list[JudgingCriterion] | Missing = Missing()
    max_teams: int | Missing = Missing()

class EventRead(EventBase):
    id: uuid.UUID
    judges: list[EventJudgeRead] = []
    leaderboard_version: int = 0
    created_at: Optional[datetime] = None

    @property
    def judge_ids(self) -> set[uuid.UUID]:
        return {j.user_id for j in self.judges}

    def can_judge(self, user_id: uuid.UUID) -> bool:
        return user_id == self.organizer_id or user_id in self.judge_ids
