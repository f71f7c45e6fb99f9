"""Metadata metrics scored by automated judging.

Each rating is self-reported on a 1-10 scale and mapped to 0-100. Technical
complexity blends the size of the technology stack with the amount of code:

* ``min(technologies * 10, 50)`` for the stack,
* ``min(lines_of_code / 100, 50)`` for the code base.

Registration order below is the order records are emitted in.
"""
from __future__ import annotations

from typing import Optional

from hackscore.bot.services.auto_judge import auto_judge
from hackscore.db.schemas.submission import SubmissionMetadata

RATING_SCALE = 10
TECH_POINTS_PER_ITEM = 10
TECH_POINTS_CAP = 50
LINES_PER_POINT = 100
CODE_POINTS_CAP = 50


def _rating(value: Optional[int]) -> Optional[float]:
	if not value:
		return None
	return float(value * RATING_SCALE)


@auto_judge.register("Innovation")
def innovation(metadata: SubmissionMetadata) -> Optional[float]:
	return _rating(metadata.innovation)


@auto_judge.register("Technical Complexity")
def technical_complexity(metadata: SubmissionMetadata) -> Optional[float]:
	if not metadata.lines_of_code:
		return None
	tech = min(len(metadata.technologies) * TECH_POINTS_PER_ITEM, TECH_POINTS_CAP)
	code = min(metadata.lines_of_code / LINES_PER_POINT, CODE_POINTS_CAP)
	return float(tech + code)


@auto_judge.register("Completeness")
def completeness(metadata: SubmissionMetadata) -> Optional[float]:
	return _rating(metadata.completeness)


@auto_judge.register("Documentation")
def documentation(metadata: SubmissionMetadata) -> Optional[float]:
	return _rating(metadata.documentation)


@auto_judge.register("Presentation")
def presentation(metadata: SubmissionMetadata) -> Optional[float]:
	return _rating(metadata.presentation)
