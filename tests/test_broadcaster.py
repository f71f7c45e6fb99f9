import uuid

import pytest
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError, TelegramNetworkError
from aiogram.methods import SendMessage

from hackscore.bot.services.leaderboard_broadcast import leaderboard_broadcaster
from hackscore.bot.services.realtime import SessionRegistry, TelegramChannel
from hackscore.bot.services.submission import SubmissionService
from hackscore.db.schemas.leaderboard import LeaderboardSnapshot
from hackscore.utils.errors import NotFoundError

CHANNEL = "leaderboard"


def _snapshot(event_id: uuid.UUID, version: int) -> LeaderboardSnapshot:
    return LeaderboardSnapshot(event_id=event_id, event_title="Spring Hack", version=version)


def _versions(bot, chat_id: int) -> list[int]:
    found = []
    for text in bot.texts_for(chat_id):
        marker = text.split("version ", 1)[1]
        found.append(int(marker.split(" ", 1)[0]))
    return found


def test_registry_tracks_connections_per_channel():
    """Test that the registry adds, looks up and removes connections per event channel."""
    registry = SessionRegistry()
    event_a, event_b = uuid.uuid4(), uuid.uuid4()

    first = registry.add(event_a, CHANNEL, 1, "english")
    again = registry.add(event_a, CHANNEL, 1, "russian")
    registry.add(event_b, CHANNEL, 1, "english")
    registry.add(event_a, CHANNEL, 2, "english")

    assert first is again and again.language == "russian"
    assert {s.connection_id for s in registry.lookup(event_a, CHANNEL)} == {1, 2}
    assert sorted(registry.channels_of(1), key=str) == sorted([(event_a, CHANNEL), (event_b, CHANNEL)], key=str)

    assert registry.remove_connection(1) == 2
    assert registry.get(event_a, CHANNEL, 1) is None
    assert registry.lookup(event_b, CHANNEL) == []
    assert registry.remove(event_b, CHANNEL, 1) is False


async def test_subscriber_never_sees_older_version(bot):
    """Test that delivery skips snapshots older than the one a subscriber already has."""
    channel = TelegramChannel(bot=bot)
    event_id = uuid.uuid4()
    channel.registry.add(event_id, CHANNEL, 10, "english")

    for version in (3, 2, 3, 5, 4):
        await channel.send(event_id, _snapshot(event_id, version), CHANNEL)

    assert _versions(bot, 10) == [3, 5]


async def test_send_reaches_only_that_events_subscribers(bot):
    """Test that a snapshot goes to every subscriber of its event and nobody else."""
    channel = TelegramChannel(bot=bot)
    event_id, other = uuid.uuid4(), uuid.uuid4()
    channel.registry.add(event_id, CHANNEL, 1, "english")
    channel.registry.add(event_id, CHANNEL, 2, "russian")
    channel.registry.add(other, CHANNEL, 3, "english")

    await channel.send(event_id, _snapshot(event_id, 1), CHANNEL)

    assert sorted(cid for cid, _ in bot.sent) == [1, 2]
    assert "версия 1" in bot.texts_for(2)[0]


async def test_blocked_chat_is_dropped(bot):
    """Test that a chat that blocked the bot loses all its subscriptions."""
    channel = TelegramChannel(bot=bot)
    event_id = uuid.uuid4()
    channel.registry.add(event_id, CHANNEL, 7, "english")
    channel.registry.add(event_id, CHANNEL, 8, "english")
    bot.fail_for[7] = TelegramForbiddenError(
        method=SendMessage(chat_id=7, text="x"), message="Forbidden: bot was blocked by the user"
    )

    await channel.send(event_id, _snapshot(event_id, 1), CHANNEL)

    assert channel.registry.get(event_id, CHANNEL, 7) is None
    assert _versions(bot, 8) == [1]


async def test_failed_delivery_can_be_retried_with_newer_version(bot):
    """Test that a rejected message does not advance the subscriber's version."""
    channel = TelegramChannel(bot=bot)
    event_id = uuid.uuid4()
    subscriber = channel.registry.add(event_id, CHANNEL, 9, "english")
    bot.fail_for[9] = TelegramBadRequest(method=SendMessage(chat_id=9, text="x"), message="Bad Request: chat not found")

    await channel.send(event_id, _snapshot(event_id, 1), CHANNEL)
    assert subscriber.last_version == -1

    del bot.fail_for[9]
    await channel.send(event_id, _snapshot(event_id, 2), CHANNEL)
    assert _versions(bot, 9) == [2]


async def test_network_error_for_one_chat_spares_the_others(bot, caplog):
    """Test that an unexpected delivery error is logged and the other subscribers still get the snapshot."""
    channel = TelegramChannel(bot=bot)
    event_id = uuid.uuid4()
    failing = channel.registry.add(event_id, CHANNEL, 11, "english")
    channel.registry.add(event_id, CHANNEL, 12, "english")
    bot.fail_for[11] = TelegramNetworkError(method=SendMessage(chat_id=11, text="x"), message="Connection reset")

    await channel.send(event_id, _snapshot(event_id, 4), CHANNEL)

    assert _versions(bot, 12) == [4]
    assert failing.last_version == -1
    assert channel.registry.get(event_id, CHANNEL, 11) is failing
    assert "Failed to deliver leaderboard v4 to chat 11" in caplog.text


async def test_subscribe_sends_current_snapshot_immediately(store, channel, bot, people, make_submission):
    """Test that joining the channel delivers the persisted leaderboard right away, even on rejoin."""
    submission = await make_submission("Owls")
    await SubmissionService().submit_judge_scores(submission.id, people["judge1"], [{"criterion": "A", "score": 10}])

    snapshot = await leaderboard_broadcaster.subscribe(submission.event_id, 42, "english")
    await leaderboard_broadcaster.subscribe(submission.event_id, 42, "english")

    assert snapshot.version == 1
    assert _versions(bot, 42) == [1, 1]
    assert "Owls" in bot.texts_for(42)[0]


async def test_subscribe_to_unknown_event(store, channel):
    """Test that subscribing to a missing event raises NotFoundError and registers nothing."""
    event_id = uuid.uuid4()

    with pytest.raises(NotFoundError):
        await leaderboard_broadcaster.subscribe(event_id, 42, "english")

    assert channel.registry.lookup(event_id, CHANNEL) == []


async def test_mutations_push_to_watchers(store, channel, bot, people, make_submission):
    """Test that each recompute pushes the new snapshot to live subscribers in order."""
    submission = await make_submission()
    await leaderboard_broadcaster.subscribe(submission.event_id, 5, "english")
    svc = SubmissionService()

    await svc.submit_vote(submission.id, people["voter1"], 4)
    await svc.submit_judge_scores(submission.id, people["judge1"], [{"criterion": "A", "score": 10}])

    assert _versions(bot, 5) == [0, 1, 2]


async def test_unsubscribe_stops_updates(store, channel, bot, people, make_submission):
    """Test that unsubscribed chats receive nothing further."""
    submission = await make_submission()
    await leaderboard_broadcaster.subscribe(submission.event_id, 5, "english")

    assert await leaderboard_broadcaster.unsubscribe(submission.event_id, 5) is True
    await SubmissionService().submit_vote(submission.id, people["voter1"], 4)

    assert _versions(bot, 5) == [0]
    assert await leaderboard_broadcaster.unsubscribe(submission.event_id, 5) is False


async def test_broadcast_failure_does_not_fail_the_mutation(store, people, make_submission, caplog):
    """Test that a crashing channel is logged while the vote still succeeds."""

    class BrokenChannel:
        registry = SessionRegistry()

        async def send(self, event_id, payload, channel):
            raise RuntimeError("socket closed")

        async def send_to(self, subscriber, payload, *, force=False):
            return False

    leaderboard_broadcaster.bind_channel(BrokenChannel())
    submission = await make_submission()

    public_votes = await SubmissionService().submit_vote(submission.id, people["voter1"], 4)

    assert public_votes == 4
    assert "Failed to broadcast leaderboard" in caplog.text
    board = await store.get_leaderboard(submission.event_id)
    assert board.version == 1
