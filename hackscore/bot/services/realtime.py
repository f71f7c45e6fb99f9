"""Live channel delivery over Telegram.

Subscribers are chats that asked to watch an event channel. The
:class:`SessionRegistry` tracks them per (event, channel) and per connection (chat)
id; :class:`TelegramChannel` renders payloads for each subscriber and sends them.

Each subscriber remembers the last snapshot version it was shown and delivery to
one subscriber is serialised by its own lock, so a chat never sees an older
leaderboard after a newer one even when rebuilds publish concurrently.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from hackscore.config import Settings
from hackscore.db.schemas.leaderboard import LeaderboardSnapshot
from hackscore.i18n import Localizer
from hackscore.bot.routers.utils import render_leaderboard

logger = logging.getLogger(__name__)

ChannelKey = Tuple[uuid.UUID, str]


@dataclass(slots=True)
class Subscriber:
	connection_id: int
	language: str
	last_version: int = -1
	lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class SessionRegistry:
	"""Connection registry owned by the real-time layer."""

	def __init__(self) -> None:
		self._sessions: Dict[ChannelKey, Dict[int, Subscriber]] = {}

	def add(self, event_id: uuid.UUID, channel: str, connection_id: int, language: str) -> Subscriber:
		"""Register a connection; an existing subscriber is kept so its version survives a rejoin."""
		subscribers = self._sessions.setdefault((event_id, channel), {})
		current = subscribers.get(connection_id)
		if current is not None:
			current.language = language
			return current
		current = Subscriber(connection_id=connection_id, language=language)
		subscribers[connection_id] = current
		return current

	def remove(self, event_id: uuid.UUID, channel: str, connection_id: int) -> bool:
		key = (event_id, channel)
		subscribers = self._sessions.get(key)
		if not subscribers or connection_id not in subscribers:
			return False
		del subscribers[connection_id]
		if not subscribers:
			del self._sessions[key]
		return True

	def remove_connection(self, connection_id: int) -> int:
		"""Drop a connection from every channel it watches."""
		removed = 0
		for key in list(self._sessions):
			if self.remove(key[0], key[1], connection_id):
				removed += 1
		return removed

	def get(self, event_id: uuid.UUID, channel: str, connection_id: int) -> Optional[Subscriber]:
		return self._sessions.get((event_id, channel), {}).get(connection_id)

	def lookup(self, event_id: uuid.UUID, channel: str) -> List[Subscriber]:
		return list(self._sessions.get((event_id, channel), {}).values())

	def channels_of(self, connection_id: int) -> List[ChannelKey]:
		return [key for key, subscribers in self._sessions.items() if connection_id in subscribers]


class RealtimeChannel(Protocol):
	registry: SessionRegistry

	async def send(self, event_id: uuid.UUID, payload: LeaderboardSnapshot, channel: str) -> None: ...

	async def send_to(self, subscriber: Subscriber, payload: LeaderboardSnapshot, *, force: bool = False) -> bool: ...


class TelegramChannel:
	"""Fire-and-forget delivery of leaderboard snapshots to subscribed chats."""

	def __init__(self, registry: Optional[SessionRegistry] = None, bot: Optional[Bot] = None) -> None:
		self.registry = registry or SessionRegistry()
		self._bot = bot

	def bind_bot(self, bot: Bot) -> None:
		self._bot = bot
		logger.info("Realtime channel bound to bot %s", getattr(bot, "id", None))

	async def send(self, event_id: uuid.UUID, payload: LeaderboardSnapshot, channel: str) -> None:
		subscribers = self.registry.lookup(event_id, channel)
		if not subscribers:
			return
		results = await asyncio.gather(
			*(self.send_to(sub, payload) for sub in subscribers),
			return_exceptions=True,
		)
		for sub, result in zip(subscribers, results):
			if isinstance(result, Exception):
				logger.error(
					"Failed to deliver leaderboard v%s to chat %s",
					payload.version,
					sub.connection_id,
					exc_info=result,
				)

	async def send_to(self, subscriber: Subscriber, payload: LeaderboardSnapshot, *, force: bool = False) -> bool:
		"""
		Deliver one snapshot to one subscriber unless it already saw a newer one.
		``force`` re-sends the version the subscriber already has (used on rejoin).
		"""
		async with subscriber.lock:
			if payload.version < subscriber.last_version:
				return False
			if payload.version == subscriber.last_version and not force:
				return False
			if self._bot is None:
				logger.debug("No active bot instance; dropping leaderboard v%s", payload.version)
				return False

			text = render_leaderboard(payload, Localizer(subscriber.language), Settings().leaderboard_max_rows)
			try:
				await self._bot.send_message(chat_id=subscriber.connection_id, text=text)
			except TelegramForbiddenError:
				logger.warning("Chat %s blocked the bot; dropping its subscriptions", subscriber.connection_id)
				self.registry.remove_connection(subscriber.connection_id)
				return False
			except TelegramBadRequest:
				logger.warning(
					"Failed to deliver leaderboard v%s to chat %s",
					payload.version,
					subscriber.connection_id,
					exc_info=True,
				)
				return False

			subscriber.last_version = payload.version
			return True


__all__ = ["RealtimeChannel", "SessionRegistry", "Subscriber", "TelegramChannel"]
