"""Pushes rebuilt leaderboards to everyone watching an event."""
from __future__ import annotations

import logging
import uuid
from typing import ClassVar, Optional

from hackscore.config import Settings
from hackscore.db.database import DataBase
from hackscore.db.schemas.leaderboard import LeaderboardSnapshot
from hackscore.bot.services.realtime import RealtimeChannel
from hackscore.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


class LeaderboardBroadcaster:
	"""Singleton that publishes snapshots on the event leaderboard channel."""

	_instance: ClassVar[Optional["LeaderboardBroadcaster"]] = None

	def __new__(cls) -> "LeaderboardBroadcaster":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return
		self._initialized = True
		self._channel: Optional[RealtimeChannel] = None

	@property
	def channel_name(self) -> str:
		return Settings().leaderboard_channel

	def bind_channel(self, channel: RealtimeChannel) -> None:
		"""Provide the live channel implementation snapshots are sent through."""
		self._channel = channel
		logger.info("Leaderboard broadcaster bound to %s", type(channel).__name__)

	async def publish(self, snapshot: LeaderboardSnapshot) -> None:
		"""Best-effort push of a committed snapshot to all current subscribers."""
		channel = self._channel
		if channel is None:
			logger.debug("Leaderboard broadcaster has no channel bound")
			return
		try:
			await channel.send(snapshot.event_id, snapshot, self.channel_name)
		except Exception:
			# delivery must never undo or fail a committed rebuild
			logger.exception(
				"Failed to broadcast leaderboard v%s for event %s",
				snapshot.version,
				snapshot.event_id,
			)

	async def subscribe(self, event_id: uuid.UUID, connection_id: int, language: str) -> LeaderboardSnapshot:
		"""
		Start watching an event and immediately receive its current leaderboard.

		The connection is registered before the snapshot is read, so a rebuild that
		commits in between is either delivered to it or already part of the snapshot.
		"""
		channel = self._require_channel()
		subscriber = channel.registry.add(event_id, self.channel_name, connection_id, language)
		snapshot = await DataBase().get_leaderboard(event_id)
		if snapshot is None:
			channel.registry.remove(event_id, self.channel_name, connection_id)
			raise NotFoundError("Event not found")
		await channel.send_to(subscriber, snapshot, force=True)
		logger.info("Chat %s watches event %s (v%s)", connection_id, event_id, snapshot.version)
		return snapshot

	async def unsubscribe(self, event_id: uuid.UUID, connection_id: int) -> bool:
		channel = self._require_channel()
		removed = channel.registry.remove(event_id, self.channel_name, connection_id)
		if removed:
			logger.info("Chat %s stopped watching event %s", connection_id, event_id)
		return removed

	def _require_channel(self) -> RealtimeChannel:
		if self._channel is None:
			raise RuntimeError("Leaderboard broadcaster has no channel bound")
		return self._channel


leaderboard_broadcaster = LeaderboardBroadcaster()

__all__ = ["LeaderboardBroadcaster", "leaderboard_broadcaster"]
