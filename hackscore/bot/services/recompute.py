# bot/services/recompute.py
import logging
from uuid import UUID
from typing import ClassVar, Optional, Self

from hackscore.db.enums import RecomputeReason, SubmissionStatus
from hackscore.db.schemas.event import EventRead
from hackscore.db.schemas.leaderboard import LeaderboardSnapshot
from hackscore.bot.services.leaderboard import LeaderboardService

logger = logging.getLogger(__name__)


def status_change_affects_leaderboard(before: Optional[SubmissionStatus], after: SubmissionStatus) -> bool:
	"""Only moves into or out of ``submitted`` change leaderboard eligibility."""
	if before == after:
		return False
	return SubmissionStatus.SUBMITTED in (before, after)


def should_auto_judge(event: EventRead, before: Optional[SubmissionStatus], after: SubmissionStatus) -> bool:
	return event.is_automated and after == SubmissionStatus.SUBMITTED and before != SubmissionStatus.SUBMITTED


class RecomputeTrigger:
	"""
	Single entry point mutation handlers call after their write has committed.
	The rebuild runs before the handler returns, so callers observe the new ranking.
	"""

	_instance: ClassVar[Optional["RecomputeTrigger"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._leaderboard = LeaderboardService()
		self._initialized = True

	async def fire(
		self,
		event_id: UUID,
		*,
		reason: RecomputeReason,
		submission_id: Optional[UUID] = None,
	) -> LeaderboardSnapshot:
		logger.info("Recompute leaderboard of event %s: reason=%s submission=%s", event_id, reason, submission_id)
		return await self._leaderboard.recompute(event_id)


__all__ = [
	"RecomputeTrigger",
	"should_auto_judge",
	"status_change_affects_leaderboard",
]
