# utils/errors.py
"""Domain errors raised by the scoring core.

Every error subclasses :class:`HackscoreError` so transport layers can catch the
whole family at once, and also the closest builtin so code that already handles
``LookupError``/``ValueError`` keeps working.
"""


class HackscoreError(Exception):
	"""Base class for all scoring-core failures."""


class NotFoundError(HackscoreError, LookupError):
	"""A referenced submission, event, team or user does not exist."""


class ValidationError(HackscoreError, ValueError):
	"""Malformed input rejected before anything is written."""


class InvalidRangeError(ValidationError):
	"""A numeric input falls outside its allowed range."""


class NoMetadataError(ValidationError):
	"""Automated judging was requested for a submission without metadata."""


class UnauthorizedError(HackscoreError, PermissionError):
	"""The actor lacks the judge, organizer or team role the operation requires."""


class ConflictError(HackscoreError):
	"""A state precondition does not hold."""


class VotingClosedError(ConflictError):
	"""Public voting is only accepted while the event is judging or completed."""


class StoreError(HackscoreError):
	"""The underlying persistence layer failed; nothing was committed."""


__all__ = [
	"HackscoreError",
	"NotFoundError",
	"ValidationError",
	"InvalidRangeError",
	"NoMetadataError",
	"UnauthorizedError",
	"ConflictError",
	"VotingClosedError",
	"StoreError",
]
