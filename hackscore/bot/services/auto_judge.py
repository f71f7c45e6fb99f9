"""Registry of metadata-based scorers used for automated judging.

The :class:`AutoJudgeService` is a singleton registry keyed by criterion name.
Metric scorers are registered with the :meth:`AutoJudgeService.register` decorator
(see :mod:`hackscore.bot.services.auto_judge_metrics`) and run in registration
order, so the same metadata always produces the same records in the same order.
"""
from __future__ import annotations

import logging
from typing import Callable, ClassVar, Dict, Optional, Protocol

from hackscore.db.database import DataBase
from hackscore.db.enums import ScoreSource
from hackscore.db.schemas.score import ScoreRecord
from hackscore.db.schemas.submission import SubmissionMetadata, SubmissionRead
from hackscore.utils.errors import NoMetadataError, NotFoundError

logger = logging.getLogger(__name__)

AUTO_MAX_SCORE = 100.0


class _MetricScorer(Protocol):
	def __call__(self, metadata: SubmissionMetadata) -> Optional[float]: ...


def _is_blank(metadata: Optional[SubmissionMetadata]) -> bool:
	if metadata is None:
		return True
	return all(value is None or value == [] for value in metadata.model_dump().values())


class AutoJudgeService:
	"""Singleton registry that turns submission metadata into score records."""

	_instance: ClassVar[Optional["AutoJudgeService"]] = None

	def __new__(cls) -> "AutoJudgeService":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._scorers: Dict[str, _MetricScorer] = {}
		self._initialized = True

	def register(self, criterion: str) -> Callable[[_MetricScorer], _MetricScorer]:
		"""Return a decorator that registers a metric scorer under a criterion name."""
		name = criterion.strip()

		def _decorator(func: _MetricScorer) -> _MetricScorer:
			if name in self._scorers:
				logger.warning("Auto-judge scorer for '%s' replaced by %s", name, getattr(func, "__name__", func))
			self._scorers[name] = func
			return func

		return _decorator

	@property
	def criteria(self) -> list[str]:
		return list(self._scorers)

	def score_metadata(self, metadata: Optional[SubmissionMetadata]) -> list[ScoreRecord]:
		"""
		Pure scoring step: one record per metric present in the metadata, each in 0..100.
		Metrics whose scorer returns None are omitted rather than scored as zero.

		Raises:
			NoMetadataError: metadata is missing or carries no metric at all.
		"""
		if _is_blank(metadata):
			raise NoMetadataError("Submission has no metadata to score")

		records: list[ScoreRecord] = []
		for criterion, scorer in self._scorers.items():
			value = scorer(metadata)
			if value is None:
				continue
			value = max(0.0, min(float(value), AUTO_MAX_SCORE))
			records.append(
				ScoreRecord(criterion=criterion, score=value, max_score=AUTO_MAX_SCORE, source=ScoreSource.AUTO)
			)
		return records

	async def evaluate_submission(self, submission: SubmissionRead) -> SubmissionRead:
		"""Score a submission and overwrite its judging score list with the result."""
		records = self.score_metadata(submission.project_metadata)
		try:
			updated = await DataBase().replace_auto_scores(submission.id, records)
		except NotFoundError:
			logger.warning("Auto-judge target %s vanished before scores were stored", submission.id)
			raise
		logger.info(
			"Auto-judge scored submission %s: %s",
			submission.id,
			", ".join(f"{r.criterion}={r.score:g}" for r in records) or "no metrics",
		)
		return updated


auto_judge = AutoJudgeService()

__all__ = ["AutoJudgeService", "auto_judge", "AUTO_MAX_SCORE"]
