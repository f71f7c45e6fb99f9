# db/models/judge_score.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import BigInteger, Enum as SAEnum, DateTime, Float, ForeignKey, Identity, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from hackscore.db.models._base import Base
from hackscore.db.enums import ScoreSource

class JudgeScore(Base):
    __tablename__ = "judge_score"
    __table_args__ = (
        Index("ix_judge_score_submission_judge", "submission_id", "judge_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("submission.id", ondelete="CASCADE"), nullable=False)
    # NULL for automated records
    judge_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("user.id", ondelete="CASCADE"), nullable=True)
    source: Mapped[ScoreSource] = mapped_column(SAEnum(ScoreSource, name="score_source"), nullable=False, default=ScoreSource.JUDGE)
    # insertion order across all judges
    seq: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False)

    criterion: Mapped[str] = mapped_column(String(128), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    max_score: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, server_default=text("(NOW() AT TIME ZONE 'UTC')")
    )

    submission = relationship("Submission", back_populates="scores")
