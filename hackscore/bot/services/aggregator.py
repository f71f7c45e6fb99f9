"""Derivation of a submission's scalar scores from its raw score and vote records.

Nothing in this module touches storage. :class:`~hackscore.db.database.DataBase`
calls :func:`aggregate_submission` inside the same transaction that writes score or
vote rows, so the persisted totals can never drift from the records they summarise.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from hackscore.db.schemas.leaderboard import CriterionScore
from hackscore.db.schemas.score import ScoreRecord
from hackscore.db.schemas.submission import CriterionBreakdown

# public votes (1-5) are scaled to sit next to 0-100 judge criteria
PUBLIC_VOTE_WEIGHT = 10
VOTE_RANGE = range(1, 6)


@dataclass(slots=True, frozen=True)
class SubmissionTotals:
	total_score: float = 0.0
	average_score: float = 0.0
	public_votes: float = 0.0


def aggregate_submission(scores: Sequence[ScoreRecord], vote_scores: Sequence[float]) -> SubmissionTotals:
	"""Sum every score record, average it per record and average the public votes.

	The total is a plain sum over all judges and criteria, not a mean of per-judge means.
	Both averages are 0 when their collection is empty.
	"""
	total = float(sum(record.score for record in scores))
	average = total / len(scores) if scores else 0.0
	public = float(sum(vote_scores)) / len(vote_scores) if vote_scores else 0.0
	return SubmissionTotals(total_score=total, average_score=average, public_votes=public)


def combined_score(total_score: float, public_votes: float) -> float:
	return total_score + public_votes * PUBLIC_VOTE_WEIGHT


def criterion_totals(scores: Iterable[ScoreRecord]) -> list[CriterionScore]:
	"""Per-criterion sums in first-seen order."""
	totals: dict[str, float] = {}
	for record in scores:
		totals[record.criterion] = totals.get(record.criterion, 0.0) + float(record.score)
	return [CriterionScore(criterion=name, score=value) for name, value in totals.items()]


def criteria_breakdown(scores: Iterable[ScoreRecord]) -> dict[str, CriterionBreakdown]:
	breakdown: dict[str, CriterionBreakdown] = {}
	for record in scores:
		item = breakdown.setdefault(record.criterion, CriterionBreakdown())
		item.total += float(record.score)
		item.count += 1
		item.average = item.total / item.count
	return breakdown


def vote_distribution(vote_scores: Iterable[int]) -> dict[int, int]:
	distribution = {value: 0 for value in VOTE_RANGE}
	for value in vote_scores:
		if value in distribution:
			distribution[value] += 1
	return distribution


__all__ = [
	"PUBLIC_VOTE_WEIGHT",
	"VOTE_RANGE",
	"SubmissionTotals",
	"aggregate_submission",
	"combined_score",
	"criterion_totals",
	"criteria_breakdown",
	"vote_distribution",
]
