# db/models/submission.py
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import Enum as SAEnum, DateTime, Float, ForeignKey, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from hackscore.db.models._base import Base
from hackscore.db.enums import JudgingStatus, SubmissionStatus

class Submission(Base):
    __tablename__ = "submission"
    __table_args__ = (UniqueConstraint("team_id", "event_id", name="uq_submission_team_event"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("event.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("team.id", ondelete="CASCADE"), nullable=False)
    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("user.id", ondelete="SET NULL"), nullable=True)

    project_name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    technologies: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    # "metadata" is reserved on declarative classes
    project_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, nullable=True)

    status: Mapped[SubmissionStatus] = mapped_column(
        SAEnum(SubmissionStatus, name="submission_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubmissionStatus.DRAFT,
    )
    judging_status: Mapped[JudgingStatus] = mapped_column(
        SAEnum(JudgingStatus, name="judging_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JudgingStatus.PENDING,
    )

    # derived from judge_score / vote rows; written only by DataBase._reaggregate
    total_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    public_votes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, server_default=text("(NOW() AT TIME ZONE 'UTC')")
    )

    scores: Mapped[List["JudgeScore"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan", passive_deletes=True,
        lazy="selectin", order_by="JudgeScore.seq",
    )
    votes: Mapped[List["Vote"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan", passive_deletes=True, lazy="selectin",
    )
