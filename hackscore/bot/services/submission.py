# bot/services/submission.py
import logging
from uuid import UUID
from typing import Any, ClassVar, Mapping, Optional, Self, Sequence

from pydantic import ValidationError as PydanticValidationError

from hackscore.db.database import DataBase
from hackscore.db.enums import EventStatus, RecomputeReason, SubmissionStatus
from hackscore.db.schemas.event import EventRead
from hackscore.db.schemas.score import ScoreInput, ScoreRecord
from hackscore.db.schemas.submission import SubmissionAnalytics, SubmissionCreate, SubmissionRead, SubmissionUpdate
from hackscore.db.schemas.team import TeamRead
from hackscore.bot.services.aggregator import VOTE_RANGE, criteria_breakdown, vote_distribution
from hackscore.bot.services.auto_judge import auto_judge
from hackscore.bot.services.recompute import RecomputeTrigger, should_auto_judge, status_change_affects_leaderboard
from hackscore.bot.services.audit_log import instrument_service_class
from hackscore.utils.errors import (
	InvalidRangeError,
	NoMetadataError,
	NotFoundError,
	UnauthorizedError,
	ValidationError,
	VotingClosedError,
)
import hackscore.bot.services.auto_judge_metrics  # noqa: F401

logger = logging.getLogger(__name__)

VOTING_STATUSES = frozenset({EventStatus.JUDGING, EventStatus.COMPLETED})

RubricItem = ScoreInput | Mapping[str, Any]


def _vote_score(score: Any) -> Optional[int]:
	"""Whole-number vote in 1..5 (integral floats allowed), or None."""
	if isinstance(score, bool) or not isinstance(score, (int, float)):
		return None
	if isinstance(score, float):
		if not score.is_integer():
			return None
		score = int(score)
	return score if score in VOTE_RANGE else None


class SubmissionService:
	_instance: ClassVar[Optional["SubmissionService"]] = None

	def __new__(cls, *args, **kwargs) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._database = DataBase()
		self._trigger = RecomputeTrigger()
		self._initialized = True

	async def get_submission(self, submission_id: UUID) -> SubmissionRead:
		submission = await self._database.get_submission_by_id(submission_id)
		if submission is None:
			raise NotFoundError("Submission is not found")
		return submission

	async def _get_event(self, event_id: UUID) -> EventRead:
		event = await self._database.get_event_by_id(event_id)
		if event is None:
			raise NotFoundError("Event is not found")
		return event

	async def _get_team(self, team_id: UUID) -> TeamRead:
		team = await self._database.get_team(team_id)
		if team is None:
			raise NotFoundError("Team is not found")
		return team

	# ---------------------------------
	# Scoring
	# ---------------------------------

	async def submit_vote(self, submission_id: UUID, user_id: UUID, score: float) -> float:
		"""
		Cast or overwrite the public vote of ``user_id`` and return the new vote mean.

		Raises:
			InvalidRangeError: score is not a whole number in 1..5.
			NotFoundError: unknown submission.
			VotingClosedError: the event is not judging or completed.
		"""
		vote = _vote_score(score)
		if vote is None:
			raise InvalidRangeError(f"Vote must be a whole number from {VOTE_RANGE[0]} to {VOTE_RANGE[-1]}, got {score!r}")

		submission = await self.get_submission(submission_id)
		event = await self._get_event(submission.event_id)
		if event.status not in VOTING_STATUSES:
			raise VotingClosedError(f"Voting is closed while the event is {event.status}")

		updated = await self._database.upsert_vote(submission.id, user_id, vote)
		await self._trigger.fire(event.id, reason=RecomputeReason.VOTE, submission_id=submission.id)
		return updated.public_votes

	async def submit_judge_scores(
		self,
		submission_id: UUID,
		judge_id: UUID,
		scores: Sequence[RubricItem],
		feedback: Optional[str] = None,
	) -> float:
		"""
		Replace the rubric of one judge on one submission and return the new total.

		``feedback`` applies to every line that carries none of its own.
		"""
		records = self._rubric_records(scores, feedback)

		submission = await self.get_submission(submission_id)
		event = await self._get_event(submission.event_id)
		if not event.can_judge(judge_id):
			raise UnauthorizedError("Only event judges and the organizer can score submissions")

		updated = await self._database.replace_judge_scores(submission.id, judge_id, records)
		await self._trigger.fire(event.id, reason=RecomputeReason.JUDGE_SCORES, submission_id=submission.id)
		return updated.total_score

	@staticmethod
	def _rubric_records(scores: Sequence[RubricItem], feedback: Optional[str]) -> list[ScoreRecord]:
		if not scores:
			raise ValidationError("Score set is empty")

		records: list[ScoreRecord] = []
		for item in scores:
			try:
				line = item if isinstance(item, ScoreInput) else ScoreInput.model_validate(item)
			except PydanticValidationError as exc:
				raise ValidationError(f"Malformed score line: {exc.errors()[0]['msg']}") from exc

			criterion = line.criterion.strip()
			if not criterion:
				raise ValidationError("Criterion name is blank")
			if line.max_score <= 0:
				raise InvalidRangeError(f"Max score of '{criterion}' must be positive")
			if not 0 <= line.score <= line.max_score:
				raise InvalidRangeError(f"Score of '{criterion}' must be within 0..{line.max_score:g}, got {line.score:g}")

			records.append(
				ScoreRecord(
					criterion=criterion,
					score=line.score,
					max_score=line.max_score,
					feedback=line.feedback or feedback,
				)
			)
		return records

	async def run_auto_judge(self, submission_id: UUID) -> list[ScoreRecord]:
		submission = await self.get_submission(submission_id)
		updated = await auto_judge.evaluate_submission(submission)
		await self._trigger.fire(updated.event_id, reason=RecomputeReason.AUTO_JUDGE, submission_id=updated.id)
		return list(updated.scores)

	# ---------------------------------
	# Lifecycle
	# ---------------------------------

	async def save_submission(self, payload: SubmissionCreate, actor_id: UUID) -> SubmissionRead:
		"""Create the team's submission for the event, or update the existing one."""
		team = await self._get_team(payload.team_id)
		if actor_id not in team.member_ids:
			raise UnauthorizedError("Only team members can edit the team submission")
		if team.event_id != payload.event_id:
			raise ValidationError("Team is not registered for this event")
		event = await self._get_event(payload.event_id)

		existing = await self._database.get_submission_by_team(team.id, event.id)
		if existing is None:
			before = None
			saved = await self._database.create_submission(payload, submitted_by=actor_id)
		else:
			before = existing.status
			saved = await self._database.update_submission(
				SubmissionUpdate(
					id=existing.id,
					project_name=payload.project_name,
					description=payload.description,
					technologies=payload.technologies,
					project_metadata=payload.project_metadata,
					status=payload.status,
				),
				actor_id=actor_id,
			)
		return await self._after_status_change(event, saved, before)

	async def change_status(self, submission_id: UUID, status: SubmissionStatus, actor_id: UUID) -> SubmissionRead:
		submission = await self.get_submission(submission_id)
		event = await self._get_event(submission.event_id)
		if actor_id != event.organizer_id:
			raise UnauthorizedError("Only the organizer can review submissions")

		updated = await self._database.update_submission(SubmissionUpdate(id=submission.id, status=status), actor_id=actor_id)
		return await self._after_status_change(event, updated, submission.status)

	async def _after_status_change(
		self,
		event: EventRead,
		submission: SubmissionRead,
		before: Optional[SubmissionStatus],
	) -> SubmissionRead:
		after = submission.status
		if should_auto_judge(event, before, after):
			try:
				submission = await auto_judge.evaluate_submission(submission)
			except NoMetadataError:
				logger.info("Submission %s has no metadata; left for human judges", submission.id)
			await self._trigger.fire(event.id, reason=RecomputeReason.AUTO_JUDGE, submission_id=submission.id)
		elif status_change_affects_leaderboard(before, after):
			await self._trigger.fire(event.id, reason=RecomputeReason.STATUS_CHANGE, submission_id=submission.id)
		return submission

	async def delete_submission(self, submission_id: UUID, actor_id: UUID) -> SubmissionRead:
		submission = await self.get_submission(submission_id)
		team = await self._get_team(submission.team_id)
		event = await self._get_event(submission.event_id)
		if actor_id not in (team.leader_id, event.organizer_id):
			raise UnauthorizedError("Only the team leader or the organizer can delete a submission")

		deleted = await self._database.delete_submission(submission.id)
		await self._trigger.fire(event.id, reason=RecomputeReason.SUBMISSION_DELETED, submission_id=deleted.id)
		return deleted

	# ---------------------------------
	# Reads
	# ---------------------------------

	async def get_submission_analytics(self, submission_id: UUID, actor_id: UUID) -> SubmissionAnalytics:
		submission = await self.get_submission(submission_id)
		team = await self._get_team(submission.team_id)
		event = await self._get_event(submission.event_id)
		if actor_id not in team.member_ids and not event.can_judge(actor_id):
			raise UnauthorizedError("Analytics are visible to the team, the judges and the organizer")

		vote_scores = [v.score for v in submission.votes]
		snapshot = await self._database.get_leaderboard(event.id)
		rank = None
		if snapshot is not None:
			rank = next((e.rank for e in snapshot.entries if e.submission_id == submission.id), None)

		return SubmissionAnalytics(
			submission_id=submission.id,
			vote_count=len(vote_scores),
			vote_average=submission.public_votes,
			vote_distribution=vote_distribution(vote_scores),
			total_score=submission.total_score,
			average_score=submission.average_score,
			criteria_breakdown=criteria_breakdown(submission.scores),
			rank=rank,
		)

	async def top_submissions(self, event_id: UUID, limit: int = 6) -> list[SubmissionRead]:
		event = await self._get_event(event_id)
		return await self._database.top_submissions(event.id, limit=limit)


instrument_service_class(
	SubmissionService,
	prefix="services.submission",
	exclude={"get_submission", "get_submission_analytics", "top_submissions"},
)
