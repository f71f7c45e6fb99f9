import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, ClassVar, Optional, Self, Any, List, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from hackscore.config import Settings
from hackscore.db.enums import JudgingStatus, ScoreSource, SubmissionStatus
from hackscore.db.models._base import Base
from hackscore.db.models.audit_log import AuditLog
from hackscore.db.models.event import Event
from hackscore.db.models.event_judge import EventJudge
from hackscore.db.models.judge_score import JudgeScore
from hackscore.db.models.submission import Submission
from hackscore.db.models.team import Team
from hackscore.db.models.team_member import TeamMember
from hackscore.db.models.user import User
from hackscore.db.models.vote import Vote
from hackscore.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from hackscore.db.schemas.event import EventCreate, EventRead, EventUpdate
from hackscore.db.schemas.leaderboard import LeaderboardEntry, LeaderboardSnapshot
from hackscore.db.schemas.score import ScoreRecord
from hackscore.db.schemas.submission import SubmissionCreate, SubmissionRead, SubmissionUpdate
from hackscore.db.schemas.team import TeamRead
from hackscore.db.schemas.user import UserCreate, UserRead, UserUpdate
from hackscore.bot.services.aggregator import aggregate_submission
from hackscore.utils.errors import ConflictError, NotFoundError, StoreError
from hackscore.utils.sentinels import provided

# (event, previous entries, submissions of the event, teams by id) -> ordered entries
LeaderboardBuilder = Callable[
    [EventRead, List[LeaderboardEntry], List[SubmissionRead], dict[uuid.UUID, TeamRead]],
    List[LeaderboardEntry],
]


def utcnow() -> datetime:
    """All datetimes in the project are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DataBase():
    """
    Async SQLAlchemy database singleton.
    Usage:
        db = DataBase()  # same instance everywhere
        async with db.session() as s:
            ...
    """
    _instance: ClassVar[Optional["DataBase"]] = None

    def __new__(cls, *args: Any, **kwargs: Any) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)

        return cls._instance

    def __init__(self, echo: bool = False) -> None:
        if getattr(self, "_initialized", False):
            return

        url = Settings().database_url
        self._engine: AsyncEngine = create_async_engine(url, echo=echo, pool_pre_ping=True)
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provides an AsyncSession with safe commit/rollback semantics.
        Driver and ORM failures leave the session rolled back and surface as StoreError;
        domain errors raised inside the block propagate unchanged.
        """
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise StoreError(f"{type(exc).__name__}: {exc}") from exc
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # --- schema management helpers (optional) ---

    async def create_all(self) -> None:
        """
        Create tables based on Base metadata. Use only in dev/tests; prefer Alembic in prod.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # ---------------------------------
    # Users
    # ---------------------------------

    async def get_user_by_tg_id(self, tg_id: Optional[int] = None) -> Optional[UserRead]:
        """
        Fetch a user by Telegram numeric ID.

        Notes:
            - `User.tg_id` carries a unique constraint, so at most one row matches.
        """
        if tg_id is None:
            return None
        async with self.session() as s:
            res = await s.execute(select(User).where(User.tg_id == tg_id))
            row = res.scalar_one_or_none()
        return UserRead.model_validate(row) if row is not None else None

    async def create_user(self, data: UserCreate) -> UserRead:
        username = data.tg_username[1:] if data.tg_username and data.tg_username.startswith("@") else data.tg_username
        user = User(
            tg_id=data.tg_id,
            tg_username=username,
            first_name=data.first_name,
            last_name=data.last_name,
            language_code=data.language_code,
            role=data.role,
        )
        async with self.session() as s:
            s.add(user)
            await s.flush()
            await s.refresh(user)
        return UserRead.model_validate(user)

    async def update_user(self, data: UserUpdate) -> UserRead:
        """
        Partially update a user by id. Fields left as MISSING are not touched;
        an explicit None NULLs the column.
        """
        async with self.session() as s:
            db_user = await s.get(User, data.id)
            if db_user is None:
                raise NotFoundError("User not found.")

            if provided(data.tg_username):
                db_user.tg_username = data.tg_username
            if provided(data.first_name):
                db_user.first_name = data.first_name
            if provided(data.last_name):
                db_user.last_name = data.last_name
            if provided(data.language_code):
                db_user.language_code = data.language_code
            if provided(data.role):
                db_user.role = data.role

            await s.flush()
            await s.refresh(db_user)
        return UserRead.model_validate(db_user)

    # ---------------------------------
    # Events
    # ---------------------------------

    async def create_event(self, payload: EventCreate) -> EventRead:
        event = Event(
            title=payload.title,
            slug=payload.slug.strip().lower(),
            organizer_id=payload.organizer_id,
            status=payload.status,
            start_at=payload.start_at,
            end_at=payload.end_at,
            max_teams=payload.max_teams,
            is_automated=payload.is_automated,
            criteria=[c.model_dump() for c in payload.criteria],
            leaderboard=[],
            leaderboard_version=0,
        )
        event.judges = [EventJudge(user_id=uid) for uid in dict.fromkeys(payload.judge_ids)]
        async with self.session() as s:
            s.add(event)
            try:
                await s.flush()
            except IntegrityError as exc:
                raise ConflictError(f"Event slug '{event.slug}' is already taken") from exc
            row = await self._load_event(s, event.id)
            return EventRead.model_validate(row)

    async def get_event_by_id(self, event_id: uuid.UUID) -> Optional[EventRead]:
        if not event_id:
            return None
        async with self.session() as s:
            row = await self._load_event(s, event_id)
        return EventRead.model_validate(row) if row is not None else None

    async def get_event_by_slug(self, slug: str) -> Optional[EventRead]:
        name = (slug or "").strip().lower()
        if not name:
            return None
        async with self.session() as s:
            res = await s.execute(select(Event).where(Event.slug == name))
            row = res.scalar_one_or_none()
        return EventRead.model_validate(row) if row is not None else None

    async def update_event(self, payload: EventUpdate) -> EventRead:
        """Partially update an event by id. The leaderboard is never touched here."""
        async with self.session() as s:
            db_obj = await self._load_event(s, payload.id, lock=True)
            if db_obj is None:
                raise NotFoundError("Event not found.")
            if provided(payload.title):
                db_obj.title = payload.title
            if provided(payload.status):
                db_obj.status = payload.status
            if provided(payload.is_automated):
                db_obj.is_automated = payload.is_automated
            if provided(payload.criteria):
                db_obj.criteria = [c.model_dump() for c in payload.criteria]
            if provided(payload.max_teams):
                db_obj.max_teams = payload.max_teams
            await s.flush()
            row = await self._load_event(s, payload.id)
            return EventRead.model_validate(row)

    async def add_event_judge(self, event_id: uuid.UUID, user_id: uuid.UUID) -> EventRead:
        async with self.session() as s:
            stmt = (
                pg_insert(EventJudge)
                .values(event_id=event_id, user_id=user_id)
                .on_conflict_do_nothing(index_elements=[EventJudge.event_id, EventJudge.user_id])
            )
            try:
                await s.execute(stmt)
            except IntegrityError as exc:
                raise NotFoundError("Event or user not found.") from exc
            row = await self._load_event(s, event_id)
            return EventRead.model_validate(row)

    async def _load_event(self, s: AsyncSession, event_id: uuid.UUID, *, lock: bool = False) -> Optional[Event]:
        stmt = select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
        if lock:
            stmt = stmt.with_for_update(of=Event)
        return (await s.execute(stmt)).scalar_one_or_none()

    # ---------------------------------
    # Leaderboard
    # ---------------------------------

    async def get_leaderboard(self, event_id: uuid.UUID) -> Optional[LeaderboardSnapshot]:
        """Return the persisted leaderboard, or None for an unknown event."""
        async with self.session() as s:
            row = await self._load_event(s, event_id)
            if row is None:
                return None
            return self._snapshot(row)

    async def rebuild_leaderboard(self, event_id: uuid.UUID, builder: LeaderboardBuilder) -> LeaderboardSnapshot:
        """
        Rebuild and persist an event leaderboard in a single transaction.

        The event row is locked first, so concurrent rebuilds of the same event run one
        after another and each reads every submission committed before it. If anything
        fails, the transaction rolls back and the previous leaderboard stays in place.
        """
        async with self.session() as s:
            event = await self._load_event(s, event_id, lock=True)
            if event is None:
                raise NotFoundError("Event not found.")

            previous = [LeaderboardEntry.model_validate(e) for e in (event.leaderboard or [])]
            sub_rows = (
                await s.execute(
                    select(Submission)
                    .where(Submission.event_id == event_id)
                    .order_by(Submission.created_at.asc(), Submission.id.asc())
                )
            ).scalars().all()
            team_rows = (await s.execute(select(Team).where(Team.event_id == event_id))).scalars().all()

            entries = builder(
                EventRead.model_validate(event),
                previous,
                [SubmissionRead.model_validate(r) for r in sub_rows],
                {t.id: TeamRead.model_validate(t) for t in team_rows},
            )

            event.leaderboard = [e.model_dump(mode="json") for e in entries]
            event.leaderboard_version = (event.leaderboard_version or 0) + 1
            event.leaderboard_updated_at = utcnow()
            await s.flush()
            return self._snapshot(event)

    @staticmethod
    def _snapshot(event: Event) -> LeaderboardSnapshot:
        return LeaderboardSnapshot(
            event_id=event.id,
            event_title=event.title,
            version=event.leaderboard_version or 0,
            updated_at=event.leaderboard_updated_at,
            entries=[LeaderboardEntry.model_validate(e) for e in (event.leaderboard or [])],
        )

    # ---------------------------------
    # Teams
    # ---------------------------------

    async def get_team(self, team_id: uuid.UUID) -> Optional[TeamRead]:
        if not team_id:
            return None
        async with self.session() as s:
            row = await s.get(Team, team_id)
            return TeamRead.model_validate(row) if row is not None else None

    # ---------------------------------
    # Submissions
    # ---------------------------------

    async def get_submission_by_id(self, sub_id: uuid.UUID) -> Optional[SubmissionRead]:
        if not sub_id:
            return None
        async with self.session() as s:
            row = await self._load_submission(s, sub_id)
        return SubmissionRead.model_validate(row) if row is not None else None

    async def get_submission_by_team(self, team_id: uuid.UUID, event_id: uuid.UUID) -> Optional[SubmissionRead]:
        async with self.session() as s:
            res = await s.execute(
                select(Submission).where(Submission.team_id == team_id, Submission.event_id == event_id)
            )
            row = res.scalar_one_or_none()
        return SubmissionRead.model_validate(row) if row is not None else None

    async def top_submissions(self, event_id: uuid.UUID, *, limit: int = 6) -> list[SubmissionRead]:
        limit = max(0, int(limit))
        if limit == 0:
            return []
        async with self.session() as s:
            stmt = (
                select(Submission)
                .where(Submission.event_id == event_id, Submission.status == SubmissionStatus.SUBMITTED)
                .order_by(Submission.total_score.desc(), Submission.public_votes.desc(), Submission.created_at.asc())
                .limit(limit)
            )
            rows = (await s.execute(stmt)).scalars().all()
        return [SubmissionRead.model_validate(r) for r in rows]

    async def create_submission(self, payload: SubmissionCreate, *, submitted_by: uuid.UUID | None = None) -> SubmissionRead:
        """
        Create the single submission of a team for an event.

        Raises:
            ConflictError: the team already has a submission for this event.
        """
        obj = Submission(
            event_id=payload.event_id,
            team_id=payload.team_id,
            submitted_by=submitted_by,
            project_name=payload.project_name,
            description=payload.description,
            technologies=list(payload.technologies),
            project_metadata=payload.project_metadata.model_dump() if payload.project_metadata is not None else None,
            status=payload.status,
            judging_status=JudgingStatus.PENDING,
            submitted_at=utcnow() if payload.status == SubmissionStatus.SUBMITTED else None,
        )
        async with self.session() as s:
            s.add(obj)
            try:
                await s.flush()
            except IntegrityError as exc:
                raise ConflictError("Team already has a submission for this event") from exc
            row = await self._load_submission(s, obj.id)
            return SubmissionRead.model_validate(row)

    async def update_submission(self, payload: SubmissionUpdate, *, actor_id: uuid.UUID | None = None) -> SubmissionRead:
        """
        Partially update project fields and lifecycle status.
        Scores, votes and the derived totals are not writable through this method.
        """
        async with self.session() as s:
            db_obj = await self._load_submission(s, payload.id, lock=True)
            if db_obj is None:
                raise NotFoundError("Submission not found.")

            if provided(payload.project_name):
                db_obj.project_name = payload.project_name
            if provided(payload.description):
                db_obj.description = payload.description
            if provided(payload.technologies):
                db_obj.technologies = list(payload.technologies)
            if provided(payload.project_metadata):
                meta = payload.project_metadata
                db_obj.project_metadata = meta.model_dump() if meta is not None else None
            if provided(payload.status):
                db_obj.status = payload.status
                if payload.status == SubmissionStatus.SUBMITTED and db_obj.submitted_at is None:
                    db_obj.submitted_at = utcnow()
                    db_obj.submitted_by = actor_id or db_obj.submitted_by

            await s.flush()
            row = await self._load_submission(s, payload.id)
            return SubmissionRead.model_validate(row)

    async def delete_submission(self, sub_id: uuid.UUID) -> SubmissionRead:
        """Delete a submission with its scores and votes; returns the last snapshot."""
        async with self.session() as s:
            db_obj = await self._load_submission(s, sub_id, lock=True)
            if db_obj is None:
                raise NotFoundError("Submission not found.")
            snapshot = SubmissionRead.model_validate(db_obj)
            await s.delete(db_obj)
            await s.flush()
        return snapshot

    async def replace_judge_scores(
        self,
        sub_id: uuid.UUID,
        judge_id: uuid.UUID,
        scores: Sequence[ScoreRecord],
    ) -> SubmissionRead:
        """
        Replace the full score set of one judge on one submission and re-aggregate.
        Other judges' records are left untouched.
        """
        async with self.session() as s:
            db_obj = await self._load_submission(s, sub_id, lock=True)
            if db_obj is None:
                raise NotFoundError("Submission not found.")

            kept = [r for r in db_obj.scores if r.judge_id != judge_id]
            db_obj.scores = kept + self._score_rows(scores, judge_id=judge_id, source=ScoreSource.JUDGE)
            db_obj.judging_status = JudgingStatus.JUDGED
            await s.flush()
            return await self._reaggregate(s, sub_id)

    async def replace_auto_scores(self, sub_id: uuid.UUID, scores: Sequence[ScoreRecord]) -> SubmissionRead:
        """
        Overwrite the whole judging score list with automated records and mark the
        submission judged.
        """
        async with self.session() as s:
            db_obj = await self._load_submission(s, sub_id, lock=True)
            if db_obj is None:
                raise NotFoundError("Submission not found.")

            db_obj.scores = self._score_rows(scores, judge_id=None, source=ScoreSource.AUTO)
            db_obj.judging_status = JudgingStatus.JUDGED
            await s.flush()
            return await self._reaggregate(s, sub_id)

    async def upsert_vote(self, sub_id: uuid.UUID, user_id: uuid.UUID, score: int) -> SubmissionRead:
        """
        Cast or overwrite the vote of a user. The (submission_id, user_id) primary key
        plus ON CONFLICT DO UPDATE keeps one vote per user under concurrent requests.
        """
        async with self.session() as s:
            db_obj = await self._load_submission(s, sub_id, lock=True)
            if db_obj is None:
                raise NotFoundError("Submission not found.")

            stmt = pg_insert(Vote).values(submission_id=sub_id, user_id=user_id, score=score)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Vote.submission_id, Vote.user_id],
                set_={"score": stmt.excluded.score, "voted_at": func.timezone("UTC", func.now())},
            )
            await s.execute(stmt)
            await s.flush()
            return await self._reaggregate(s, sub_id)

    @staticmethod
    def _score_rows(
        scores: Sequence[ScoreRecord],
        *,
        judge_id: uuid.UUID | None,
        source: ScoreSource,
    ) -> list[JudgeScore]:
        return [
            JudgeScore(
                judge_id=judge_id,
                source=source,
                criterion=record.criterion,
                score=float(record.score),
                max_score=float(record.max_score),
                feedback=record.feedback,
            )
            for record in scores
        ]

    async def _load_submission(self, s: AsyncSession, sub_id: uuid.UUID, *, lock: bool = False) -> Optional[Submission]:
        stmt = select(Submission).where(Submission.id == sub_id).execution_options(populate_existing=True)
        if lock:
            stmt = stmt.with_for_update(of=Submission)
        return (await s.execute(stmt)).scalar_one_or_none()

    async def _reaggregate(self, s: AsyncSession, sub_id: uuid.UUID) -> SubmissionRead:
        """Recompute the derived totals from the rows written in this transaction."""
        db_obj = await self._load_submission(s, sub_id)
        if db_obj is None:
            raise NotFoundError("Submission not found.")
        totals = aggregate_submission(
            [ScoreRecord.model_validate(r) for r in db_obj.scores],
            [v.score for v in db_obj.votes],
        )
        db_obj.total_score = totals.total_score
        db_obj.average_score = totals.average_score
        db_obj.public_votes = totals.public_votes
        await s.flush()
        return SubmissionRead.model_validate(db_obj)

    # ---------------------------------
    # Audit log helpers
    # ---------------------------------

    async def create_audit_log(self, payload: AuditLogCreate) -> AuditLogRead:
        """Persist a new audit log entry."""
        async with self.session() as s:
            record = AuditLog(
                actor_id=payload.actor_id,
                action=payload.action,
                payload=dict(payload.payload or {}),
            )
            s.add(record)
            await s.flush()
            await s.refresh(record)
            return AuditLogRead.model_validate(record)
