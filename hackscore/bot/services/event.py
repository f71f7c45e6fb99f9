# bot/services/event.py
from uuid import UUID
from typing import ClassVar, Optional, Self

from hackscore.db.database import DataBase
from hackscore.db.enums import EventStatus
from hackscore.db.schemas.event import EventCreate, EventRead, EventUpdate
from hackscore.db.schemas.leaderboard import LeaderboardEntry, LeaderboardSnapshot
from hackscore.bot.services.leaderboard import LeaderboardService
from hackscore.bot.services.audit_log import instrument_service_class
from hackscore.utils.errors import NotFoundError, UnauthorizedError, ValidationError


class EventService:
	"""
	Singleton service layer for events and their judging configuration.

	Like every service it only talks to the DataBase facade and returns DTOs.
	The leaderboard itself is read here but only ever written by LeaderboardService.
	"""

	_instance: ClassVar[Optional["EventService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._database: DataBase = DataBase()
		self._leaderboard = LeaderboardService()
		self._initialized = True

	async def create_event(self, payload: EventCreate) -> EventRead:
		names = [c.name.strip() for c in payload.criteria]
		if any(not name for name in names):
			raise ValidationError("Criterion name is blank")
		if len(set(names)) != len(names):
			raise ValidationError("Criterion names must be unique")
		if any(c.weight <= 0 for c in payload.criteria):
			raise ValidationError("Criterion weight must be positive")
		return await self._database.create_event(payload)

	async def get_event(self, event_id: UUID) -> EventRead:
		event = await self._database.get_event_by_id(event_id)
		if event is None:
			raise NotFoundError("Event is not found")
		return event

	async def resolve_event(self, ref: str) -> EventRead:
		"""Find an event by its id or slug, as typed in a chat command."""
		ref = (ref or "").strip()
		try:
			event_id = UUID(ref)
		except ValueError:
			event = await self._database.get_event_by_slug(ref)
		else:
			event = await self._database.get_event_by_id(event_id)
		if event is None:
			raise NotFoundError(f"Event '{ref}' is not found")
		return event

	async def set_status(self, event_id: UUID, status: EventStatus, actor_id: UUID) -> EventRead:
		event = await self.get_event(event_id)
		self._ensure_organizer(event, actor_id)
		if event.status == status:
			return event
		return await self._database.update_event(EventUpdate(id=event.id, status=status))

	async def add_judge(self, event_id: UUID, judge_id: UUID, actor_id: UUID) -> EventRead:
		event = await self.get_event(event_id)
		self._ensure_organizer(event, actor_id)
		if judge_id in event.judge_ids:
			return event
		return await self._database.add_event_judge(event.id, judge_id)

	async def get_snapshot(self, event_id: UUID) -> LeaderboardSnapshot:
		return await self._leaderboard.get_snapshot(event_id)

	async def get_leaderboard(self, event_id: UUID) -> list[LeaderboardEntry]:
		return await self._leaderboard.get_leaderboard(event_id)

	@staticmethod
	def _ensure_organizer(event: EventRead, actor_id: UUID) -> None:
		if actor_id != event.organizer_id:
			raise UnauthorizedError("Only the organizer can manage the event")


instrument_service_class(
	EventService,
	prefix="services.event",
	exclude={"get_event", "resolve_event", "get_snapshot", "get_leaderboard"},
)
