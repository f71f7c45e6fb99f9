# db/schemas/team.py
import uuid
from typing import Optional
from hackscore.db.schemas._base import OrmModel

class TeamMemberRead(OrmModel):
    user_id: uuid.UUID

class TeamBase(OrmModel):
    title: str
    event_id: uuid.UUID
    leader_id: Optional[uuid.UUID] = None

class TeamRead(TeamBase):
    id: uuid.UUID
    members: list[TeamMemberRead] = []

    @property
    def member_ids(self) -> set[uuid.UUID]:
        return {m.user_id for m in self.members}
