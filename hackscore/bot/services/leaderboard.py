"""Event leaderboard: ranking rules and the rebuild/persist/publish cycle.

:func:`rank_submissions` is a pure function of its inputs. :class:`LeaderboardService`
feeds it a locked, consistent view of the event through
:meth:`DataBase.rebuild_leaderboard`, which persists the result in the same
transaction, and then hands the committed snapshot to the broadcaster.
"""
from __future__ import annotations

import asyncio
import logging
import math
import uuid
from datetime import datetime
from typing import ClassVar, Dict, Iterable, Mapping, Optional, Sequence, Self

from hackscore.bot.services.aggregator import combined_score, criterion_totals
from hackscore.bot.services.audit_log import instrument_service_class
from hackscore.bot.services.leaderboard_broadcast import leaderboard_broadcaster
from hackscore.db.database import DataBase, utcnow
from hackscore.db.enums import SubmissionStatus
from hackscore.db.schemas.event import EventRead
from hackscore.db.schemas.leaderboard import LeaderboardEntry, LeaderboardSnapshot
from hackscore.db.schemas.submission import SubmissionRead
from hackscore.db.schemas.team import TeamRead
from hackscore.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


def _tie_key(
	submission: SubmissionRead,
	combined: float,
	prior_rank: Mapping[uuid.UUID, int],
) -> tuple:
	# higher score first, then previous rank, then insertion order, then identity
	return (
		-combined,
		prior_rank.get(submission.id, math.inf),
		submission.created_at,
		str(submission.id),
	)


def rank_submissions(
	submissions: Sequence[SubmissionRead],
	*,
	previous: Iterable[LeaderboardEntry] = (),
	teams: Optional[Mapping[uuid.UUID, TeamRead]] = None,
	now: Optional[datetime] = None,
) -> list[LeaderboardEntry]:
	"""
	Build the ordered leaderboard of one event.

	Only ``submitted`` submissions with a positive combined score are listed.
	Ranks are 1-based with no gaps; tied scores never share a rank.
	"""
	prior_rank = {entry.submission_id: entry.rank for entry in previous}
	teams = teams or {}
	stamp = now or utcnow()

	scored: list[tuple[tuple, SubmissionRead, float]] = []
	for submission in submissions:
		if submission.status != SubmissionStatus.SUBMITTED:
			continue
		combined = combined_score(submission.total_score, submission.public_votes)
		if combined <= 0:
			continue
		scored.append((_tie_key(submission, combined, prior_rank), submission, combined))

	scored.sort(key=lambda item: item[0])

	entries: list[LeaderboardEntry] = []
	for index, (_, submission, combined) in enumerate(scored):
		team = teams.get(submission.team_id)
		entries.append(
			LeaderboardEntry(
				team_id=submission.team_id,
				team_title=team.title if team is not None else "",
				submission_id=submission.id,
				project_name=submission.project_name,
				total_score=combined,
				judge_score=submission.total_score,
				public_votes=submission.public_votes,
				scores=criterion_totals(submission.scores),
				rank=index + 1,
				updated_at=stamp,
			)
		)
	return entries


def _build_entries(
	event: EventRead,
	previous: list[LeaderboardEntry],
	submissions: list[SubmissionRead],
	teams: dict[uuid.UUID, TeamRead],
) -> list[LeaderboardEntry]:
	return rank_submissions(submissions, previous=previous, teams=teams)


class LeaderboardService:
	"""
	Singleton owning the only write path to event leaderboards.

	Readers get the persisted snapshot as is; :meth:`recompute` is reached through
	:class:`~hackscore.bot.services.recompute.RecomputeTrigger`.
	"""

	_instance: ClassVar[Optional["LeaderboardService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._database = DataBase()
		self._locks: Dict[uuid.UUID, asyncio.Lock] = {}
		self._initialized = True

	def _get_lock(self, event_id: uuid.UUID) -> asyncio.Lock:
		lock = self._locks.get(event_id)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[event_id] = lock
		return lock

	async def get_snapshot(self, event_id: uuid.UUID) -> LeaderboardSnapshot:
		snapshot = await self._database.get_leaderboard(event_id)
		if snapshot is None:
			raise NotFoundError("Event not found")
		return snapshot

	async def get_leaderboard(self, event_id: uuid.UUID) -> list[LeaderboardEntry]:
		"""Ordered entries of an event; empty until the first rebuild."""
		return list((await self.get_snapshot(event_id)).entries)

	async def recompute(self, event_id: uuid.UUID) -> LeaderboardSnapshot:
		"""
		Rebuild the event leaderboard from persisted state, persist it and publish it.

		A store failure propagates and leaves the previous leaderboard untouched.
		Publishing is best-effort and never fails the rebuild.
		"""
		async with self._get_lock(event_id):
			snapshot = await self._database.rebuild_leaderboard(event_id, _build_entries)
		logger.info(
			"Leaderboard rebuilt for event %s: version=%s entries=%s",
			event_id,
			snapshot.version,
			len(snapshot.entries),
		)
		await leaderboard_broadcaster.publish(snapshot)
		return snapshot


def _snapshot_summary(snapshot: LeaderboardSnapshot) -> dict:
	return {"event_id": snapshot.event_id, "version": snapshot.version, "entries": len(snapshot.entries)}


instrument_service_class(
	LeaderboardService,
	prefix="services.leaderboard",
	exclude={"get_snapshot", "get_leaderboard"},
	summaries={"recompute": _snapshot_summary},
)

__all__ = ["LeaderboardService", "rank_submissions"]
