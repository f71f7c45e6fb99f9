import asyncio
import uuid

import pytest

from hackscore.bot.services.event import EventService
from hackscore.bot.services.leaderboard import LeaderboardService
from hackscore.bot.services.recompute import (
    RecomputeTrigger,
    should_auto_judge,
    status_change_affects_leaderboard,
)
from hackscore.bot.services.submission import SubmissionService
from hackscore.db.enums import RecomputeReason, SubmissionStatus
from hackscore.utils.errors import NotFoundError, StoreError


async def test_failed_rebuild_keeps_previous_snapshot(store, people, make_submission):
    """Test that a store failure during rebuild propagates and leaves the old leaderboard."""
    submission = await make_submission()
    svc = SubmissionService()
    await svc.submit_judge_scores(submission.id, people["judge1"], [{"criterion": "A", "score": 10}])
    before = await EventService().get_snapshot(submission.event_id)

    store.fail_rebuilds = 1
    with pytest.raises(StoreError):
        await svc.submit_vote(submission.id, people["voter1"], 5)

    after_failure = await EventService().get_snapshot(submission.event_id)
    assert after_failure == before

    snapshot = await RecomputeTrigger().fire(submission.event_id, reason=RecomputeReason.VOTE)
    assert snapshot.version == before.version + 1
    assert snapshot.entries[0].total_score == 60


async def test_rebuild_is_idempotent_but_bumps_version(store, people, make_submission):
    """Test that rebuilding unchanged state yields the same entries under a new version."""
    submission = await make_submission()
    await SubmissionService().submit_judge_scores(submission.id, people["judge1"], [{"criterion": "A", "score": 10}])
    trigger = RecomputeTrigger()

    first = await trigger.fire(submission.event_id, reason=RecomputeReason.JUDGE_SCORES)
    second = await trigger.fire(submission.event_id, reason=RecomputeReason.JUDGE_SCORES)

    strip = lambda snap: [(e.submission_id, e.rank, e.total_score) for e in snap.entries]  # noqa: E731
    assert strip(first) == strip(second)
    assert second.version == first.version + 1


async def test_concurrent_mutations_end_consistent(store, people, make_submission):
    """Test that racing votes leave a leaderboard matching the final persisted state."""
    first = await make_submission("First", leader=people["voter1"])
    second = await make_submission("Second", leader=people["voter2"])
    svc = SubmissionService()

    await asyncio.gather(
        svc.submit_vote(first.id, people["voter1"], 5),
        svc.submit_vote(second.id, people["voter2"], 2),
        svc.submit_vote(first.id, people["voter3"], 3),
        svc.submit_judge_scores(second.id, people["judge1"], [{"criterion": "A", "score": 70}]),
    )

    snapshot = await EventService().get_snapshot(first.event_id)
    assert snapshot.version == 4
    assert [(e.submission_id, e.total_score, e.rank) for e in snapshot.entries] == [
        (second.id, 90, 1),
        (first.id, 40, 2),
    ]


async def test_recompute_of_unknown_event(store):
    """Test that rebuilding an unknown event raises NotFoundError."""
    with pytest.raises(NotFoundError):
        await LeaderboardService().recompute(uuid.uuid4())


async def test_recompute_is_audited(store, people, make_submission):
    """Test that every rebuild leaves an audit entry."""
    submission = await make_submission()

    await SubmissionService().submit_vote(submission.id, people["voter1"], 4)

    actions = [e.action for e in store.audit]
    assert "services.leaderboard.recompute" in actions
    assert "services.submission.submit_vote" in actions


async def test_recompute_audit_keeps_only_a_summary(store, people, make_submission):
    """Test that the audit entry of a rebuild records version and size instead of the full leaderboard."""
    submission = await make_submission()

    await SubmissionService().submit_vote(submission.id, people["voter1"], 4)

    (entry,) = [e for e in store.audit if e.action == "services.leaderboard.recompute"]
    assert entry.payload["result"] == {"event_id": str(submission.event_id), "version": 1, "entries": 1}


@pytest.mark.parametrize(
    "before, after, expected",
    [
        (SubmissionStatus.DRAFT, SubmissionStatus.SUBMITTED, True),
        (SubmissionStatus.SUBMITTED, SubmissionStatus.REJECTED, True),
        (SubmissionStatus.SUBMITTED, SubmissionStatus.SUBMITTED, False),
        (SubmissionStatus.DRAFT, SubmissionStatus.UNDER_REVIEW, False),
        (None, SubmissionStatus.SUBMITTED, True),
        (None, SubmissionStatus.DRAFT, False),
    ],
)
def test_status_changes_that_touch_the_leaderboard(before, after, expected):
    """Test that only moves into or out of submitted require a rebuild."""
    assert status_change_affects_leaderboard(before, after) is expected


async def test_auto_judge_only_on_transition_to_submitted(store, hackathon):
    """Test that automated judging fires only for automated events entering submitted."""
    automated = hackathon.model_copy(update={"is_automated": True})

    assert should_auto_judge(automated, SubmissionStatus.DRAFT, SubmissionStatus.SUBMITTED)
    assert not should_auto_judge(automated, SubmissionStatus.SUBMITTED, SubmissionStatus.SUBMITTED)
    assert not should_auto_judge(hackathon, SubmissionStatus.DRAFT, SubmissionStatus.SUBMITTED)
