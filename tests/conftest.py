"""Pytest configuration for all tests."""

import itertools
import uuid
from datetime import datetime, timedelta
from typing import Optional

import pytest

from hackscore.bot.services.aggregator import aggregate_submission
from hackscore.bot.services.event import EventService
from hackscore.bot.services.leaderboard import LeaderboardService
from hackscore.bot.services.leaderboard_broadcast import leaderboard_broadcaster
from hackscore.bot.services.realtime import TelegramChannel
from hackscore.bot.services.recompute import RecomputeTrigger
from hackscore.bot.services.submission import SubmissionService
from hackscore.bot.services.user import UserService
from hackscore.db.database import DataBase, LeaderboardBuilder
from hackscore.db.enums import EventStatus, JudgingStatus, ScoreSource, SubmissionStatus
from hackscore.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from hackscore.db.schemas.event import EventCreate, EventJudgeRead, EventRead, EventUpdate
from hackscore.db.schemas.leaderboard import LeaderboardSnapshot
from hackscore.db.schemas.score import ScoreRecord, VoteRead
from hackscore.db.schemas.submission import SubmissionCreate, SubmissionMetadata, SubmissionRead, SubmissionUpdate
from hackscore.db.schemas.team import TeamMemberRead, TeamRead
from hackscore.db.schemas.user import UserCreate, UserRead, UserUpdate
from hackscore.utils.errors import ConflictError, NotFoundError, StoreError
from hackscore.utils.sentinels import provided

SINGLETONS = (SubmissionService, EventService, LeaderboardService, RecomputeTrigger, UserService)


class FakeStore:
    """In-memory store honouring the DataBase method contracts used by the services."""

    def __init__(self) -> None:
        self.users: dict[uuid.UUID, UserRead] = {}
        self.events: dict[uuid.UUID, EventRead] = {}
        self.leaderboards: dict[uuid.UUID, LeaderboardSnapshot] = {}
        self.teams: dict[uuid.UUID, TeamRead] = {}
        self.submissions: dict[uuid.UUID, SubmissionRead] = {}
        self.scores: dict[uuid.UUID, list[ScoreRecord]] = {}
        self.votes: dict[uuid.UUID, dict[uuid.UUID, VoteRead]] = {}
        self.audit: list[AuditLogRead] = []
        self.rebuild_calls = 0
        self.fail_rebuilds = 0
        self._clock = itertools.count()

    def now(self) -> datetime:
        # strictly increasing so insertion order is observable
        return datetime(2026, 3, 1, 12, 0) + timedelta(seconds=next(self._clock))

    # users
    async def get_user_by_tg_id(self, tg_id: Optional[int] = None) -> Optional[UserRead]:
        return next((u for u in self.users.values() if u.tg_id == tg_id), None)

    async def create_user(self, data: UserCreate) -> UserRead:
        user = UserRead(id=uuid.uuid4(), **data.model_dump())
        self.users[user.id] = user
        return user

    async def update_user(self, data: UserUpdate) -> UserRead:
        user = self.users.get(data.id)
        if user is None:
            raise NotFoundError("User not found.")
        changes = {k: v for k, v in data.model_dump(exclude={"id"}).items() if provided(v)}
        user = user.model_copy(update=changes)
        self.users[user.id] = user
        return user

    # events
    async def create_event(self, payload: EventCreate) -> EventRead:
        slug = payload.slug.strip().lower()
        if any(e.slug == slug for e in self.events.values()):
            raise ConflictError(f"Event slug '{slug}' is already taken")
        data = payload.model_dump(exclude={"judge_ids"})
        data["slug"] = slug
        event = EventRead(
            id=uuid.uuid4(),
            judges=[EventJudgeRead(user_id=uid) for uid in dict.fromkeys(payload.judge_ids)],
            created_at=self.now(),
            **data,
        )
        self.events[event.id] = event
        return event

    async def get_event_by_id(self, event_id: uuid.UUID) -> Optional[EventRead]:
        return self.events.get(event_id)

    async def get_event_by_slug(self, slug: str) -> Optional[EventRead]:
        name = (slug or "").strip().lower()
        return next((e for e in self.events.values() if e.slug == name), None)

    async def update_event(self, payload: EventUpdate) -> EventRead:
        event = self.events.get(payload.id)
        if event is None:
            raise NotFoundError("Event not found.")
        changes = {}
        for name in ("title", "status", "is_automated", "criteria", "max_teams"):
            value = getattr(payload, name)
            if provided(value):
                changes[name] = value
        event = event.model_copy(update=changes)
        self.events[event.id] = event
        return event

    async def add_event_judge(self, event_id: uuid.UUID, user_id: uuid.UUID) -> EventRead:
        event = self.events.get(event_id)
        if event is None:
            raise NotFoundError("Event or user not found.")
        if user_id not in event.judge_ids:
            event = event.model_copy(update={"judges": [*event.judges, EventJudgeRead(user_id=user_id)]})
            self.events[event.id] = event
        return event

    # leaderboard
    async def get_leaderboard(self, event_id: uuid.UUID) -> Optional[LeaderboardSnapshot]:
        event = self.events.get(event_id)
        if event is None:
            return None
        return self.leaderboards.get(event_id) or LeaderboardSnapshot(event_id=event.id, event_title=event.title)

    async def rebuild_leaderboard(self, event_id: uuid.UUID, builder: LeaderboardBuilder) -> LeaderboardSnapshot:
        self.rebuild_calls += 1
        event = self.events.get(event_id)
        if event is None:
            raise NotFoundError("Event not found.")
        if self.fail_rebuilds:
            self.fail_rebuilds -= 1
            raise StoreError("OperationalError: connection reset")

        current = await self.get_leaderboard(event_id)
        submissions = self._event_submissions(event_id)
        teams = {t.id: t for t in self.teams.values() if t.event_id == event_id}
        entries = builder(event, list(current.entries), submissions, teams)

        snapshot = LeaderboardSnapshot(
            event_id=event.id,
            event_title=event.title,
            version=current.version + 1,
            updated_at=self.now(),
            entries=entries,
        )
        self.leaderboards[event_id] = snapshot
        self.events[event_id] = event.model_copy(update={"leaderboard_version": snapshot.version})
        return snapshot

    # teams
    def add_team(self, title: str, event_id: uuid.UUID, leader_id: uuid.UUID, member_ids: list[uuid.UUID]) -> TeamRead:
        member_ids = [leader_id, *(uid for uid in member_ids if uid != leader_id)]
        team = TeamRead(
            id=uuid.uuid4(),
            title=title,
            event_id=event_id,
            leader_id=leader_id,
            members=[TeamMemberRead(user_id=uid) for uid in member_ids],
        )
        self.teams[team.id] = team
        return team

    async def get_team(self, team_id: uuid.UUID) -> Optional[TeamRead]:
        return self.teams.get(team_id)

    # submissions
    def _read(self, sub_id: uuid.UUID) -> SubmissionRead:
        return self.submissions[sub_id].model_copy(
            update={
                "scores": list(self.scores.get(sub_id, [])),
                "votes": list(self.votes.get(sub_id, {}).values()),
            }
        )

    async def get_submission_by_id(self, sub_id: uuid.UUID) -> Optional[SubmissionRead]:
        if sub_id not in self.submissions:
            return None
        return self._read(sub_id)

    async def get_submission_by_team(self, team_id: uuid.UUID, event_id: uuid.UUID) -> Optional[SubmissionRead]:
        for sub in self.submissions.values():
            if sub.team_id == team_id and sub.event_id == event_id:
                return self._read(sub.id)
        return None

    def _event_submissions(self, event_id: uuid.UUID, *, status: SubmissionStatus | None = None) -> list[SubmissionRead]:
        subs = [
            self._read(s.id)
            for s in self.submissions.values()
            if s.event_id == event_id and (status is None or s.status == status)
        ]
        return sorted(subs, key=lambda s: (s.created_at, s.id))

    async def top_submissions(self, event_id: uuid.UUID, *, limit: int = 6) -> list[SubmissionRead]:
        subs = self._event_submissions(event_id, status=SubmissionStatus.SUBMITTED)
        subs.sort(key=lambda s: (-s.total_score, -s.public_votes, s.created_at))
        return subs[: max(0, int(limit))]

    async def create_submission(self, payload: SubmissionCreate, *, submitted_by: uuid.UUID | None = None) -> SubmissionRead:
        if any(s.team_id == payload.team_id and s.event_id == payload.event_id for s in self.submissions.values()):
            raise ConflictError("Team already has a submission for this event")
        now = self.now()
        sub = SubmissionRead(
            id=uuid.uuid4(),
            submitted_by=submitted_by,
            created_at=now,
            submitted_at=now if payload.status == SubmissionStatus.SUBMITTED else None,
            **payload.model_dump(),
        )
        self.submissions[sub.id] = sub
        return self._read(sub.id)

    async def update_submission(self, payload: SubmissionUpdate, *, actor_id: uuid.UUID | None = None) -> SubmissionRead:
        sub = self.submissions.get(payload.id)
        if sub is None:
            raise NotFoundError("Submission not found.")
        changes = {}
        for name in ("project_name", "description", "technologies", "project_metadata", "status"):
            value = getattr(payload, name)
            if provided(value):
                changes[name] = value
        if changes.get("status") == SubmissionStatus.SUBMITTED and sub.submitted_at is None:
            changes["submitted_at"] = self.now()
            changes["submitted_by"] = actor_id or sub.submitted_by
        self.submissions[sub.id] = sub.model_copy(update=changes)
        return self._read(sub.id)

    async def delete_submission(self, sub_id: uuid.UUID) -> SubmissionRead:
        if sub_id not in self.submissions:
            raise NotFoundError("Submission not found.")
        snapshot = self._read(sub_id)
        del self.submissions[sub_id]
        self.scores.pop(sub_id, None)
        self.votes.pop(sub_id, None)
        return snapshot

    async def replace_judge_scores(self, sub_id: uuid.UUID, judge_id: uuid.UUID, scores) -> SubmissionRead:
        if sub_id not in self.submissions:
            raise NotFoundError("Submission not found.")
        kept = [r for r in self.scores.get(sub_id, []) if r.judge_id != judge_id]
        self.scores[sub_id] = kept + self._records(scores, judge_id, ScoreSource.JUDGE)
        return self._reaggregate(sub_id)

    async def replace_auto_scores(self, sub_id: uuid.UUID, scores) -> SubmissionRead:
        if sub_id not in self.submissions:
            raise NotFoundError("Submission not found.")
        self.scores[sub_id] = self._records(scores, None, ScoreSource.AUTO)
        return self._reaggregate(sub_id)

    async def upsert_vote(self, sub_id: uuid.UUID, user_id: uuid.UUID, score: int) -> SubmissionRead:
        if sub_id not in self.submissions:
            raise NotFoundError("Submission not found.")
        self.votes.setdefault(sub_id, {})[user_id] = VoteRead(
            submission_id=sub_id, user_id=user_id, score=score, voted_at=self.now()
        )
        return self._reaggregate(sub_id, judged=False)

    def _records(self, scores, judge_id, source) -> list[ScoreRecord]:
        now = self.now()
        return [r.model_copy(update={"judge_id": judge_id, "source": source, "created_at": now}) for r in scores]

    def _reaggregate(self, sub_id: uuid.UUID, judged: bool = True) -> SubmissionRead:
        scores = self.scores.get(sub_id, [])
        votes = self.votes.get(sub_id, {})
        totals = aggregate_submission(scores, [v.score for v in votes.values()])
        changes = {
            "total_score": totals.total_score,
            "average_score": totals.average_score,
            "public_votes": totals.public_votes,
        }
        if judged:
            changes["judging_status"] = JudgingStatus.JUDGED
        self.submissions[sub_id] = self.submissions[sub_id].model_copy(update=changes)
        return self._read(sub_id)

    # audit
    async def create_audit_log(self, payload: AuditLogCreate) -> AuditLogRead:
        entry = AuditLogRead(id=uuid.uuid4(), created_at=self.now(), **payload.model_dump())
        self.audit.append(entry)
        return entry


class FakeBot:
    """Records outgoing messages; ``fail_for`` maps chat ids to exceptions to raise."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []
        self.fail_for: dict[int, Exception] = {}

    async def send_message(self, chat_id: int, text: str, **kwargs) -> None:
        error = self.fail_for.get(chat_id)
        if error is not None:
            raise error
        self.sent.append((chat_id, text))

    def texts_for(self, chat_id: int) -> list[str]:
        return [text for cid, text in self.sent if cid == chat_id]


@pytest.fixture
def store():
    """Install a fresh in-memory store as the DataBase singleton."""
    fake = FakeStore()
    DataBase._instance = fake
    for cls in SINGLETONS:
        cls._instance = None
    leaderboard_broadcaster._channel = None
    yield fake
    DataBase._instance = None
    for cls in SINGLETONS:
        cls._instance = None
    leaderboard_broadcaster._channel = None


@pytest.fixture
def bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def channel(store, bot) -> TelegramChannel:
    ch = TelegramChannel(bot=bot)
    leaderboard_broadcaster.bind_channel(ch)
    return ch


@pytest.fixture
def people() -> dict[str, uuid.UUID]:
    names = ("organizer", "judge1", "judge2", "leader", "member", "outsider", "voter1", "voter2", "voter3")
    return {name: uuid.uuid4() for name in names}


@pytest.fixture
async def hackathon(store, people) -> EventRead:
    """A judging-phase event with two judges and no automated scoring."""
    return await store.create_event(
        EventCreate(
            title="Spring Hack",
            slug="spring-hack",
            organizer_id=people["organizer"],
            status=EventStatus.JUDGING,
            is_automated=False,
            judge_ids=[people["judge1"], people["judge2"]],
        )
    )


@pytest.fixture
def make_submission(store, people, hackathon):
    """Create a team plus its submission in the hackathon."""

    async def _make(
        title: str = "Team",
        *,
        status: SubmissionStatus = SubmissionStatus.SUBMITTED,
        metadata: Optional[SubmissionMetadata] = None,
        leader: Optional[uuid.UUID] = None,
    ) -> SubmissionRead:
        team = store.add_team(title, hackathon.id, leader or people["leader"], [people["member"]])
        return await store.create_submission(
            SubmissionCreate(
                event_id=hackathon.id,
                team_id=team.id,
                project_name=f"{title} project",
                project_metadata=metadata,
                status=status,
            ),
            submitted_by=team.leader_id,
        )

    return _make
