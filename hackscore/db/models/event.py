# db/models/event.py
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import Boolean, DateTime, Enum as SAEnum, ForeignKey, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from hackscore.db.models._base import Base
from hackscore.db.enums import EventStatus

class Event(Base):
    __tablename__ = "event"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    status: Mapped[EventStatus] = mapped_column(
        SAEnum(EventStatus, name="event_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EventStatus.UPCOMING,
    )
    organizer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("user.id", ondelete="RESTRICT"), nullable=False)
    start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    end_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    max_teams: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # [{"name": ..., "weight": ..., "description": ...}]; weights are stored, not applied
    criteria: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # ordered LeaderboardEntry dumps, replaced wholesale on every rebuild
    leaderboard: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    leaderboard_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leaderboard_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, server_default=text("(NOW() AT TIME ZONE 'UTC')")
    )

    judges: Mapped[List["EventJudge"]] = relationship(
        back_populates="event", cascade="all, delete-orphan", passive_deletes=True, lazy="selectin"
    )
    teams: Mapped[List["Team"]] = relationship(back_populates="event", passive_deletes=True)
