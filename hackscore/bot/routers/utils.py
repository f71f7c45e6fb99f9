import html
from datetime import datetime
from typing import Optional

from hackscore.i18n import Localizer, lang_code2language
from hackscore.db.schemas.leaderboard import LeaderboardSnapshot
from hackscore.db.schemas.user import UserRead
from hackscore.utils.errors import (
    ConflictError,
    HackscoreError,
    InvalidRangeError,
    NoMetadataError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
    ValidationError,
    VotingClosedError,
)

# most specific first
_ERROR_KEYS: tuple[tuple[type[HackscoreError], str], ...] = (
    (NoMetadataError, "errors.no_metadata"),
    (InvalidRangeError, "errors.invalid_range"),
    (ValidationError, "errors.validation"),
    (NotFoundError, "errors.not_found"),
    (UnauthorizedError, "errors.unauthorized"),
    (VotingClosedError, "errors.voting_closed"),
    (ConflictError, "errors.conflict"),
    (StoreError, "errors.store"),
)


def get_localizer_by_user(user: UserRead) -> Localizer:
    return Localizer(lang_code2language(user.language_code))


def format_value(value: Optional[float]) -> str:
    if value is None:
        return "-"
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return text or "0"


def _format_datetime(value: Optional[datetime], lz: Localizer) -> str:
    if value is None:
        return lz.get("leaderboard.never")
    return value.strftime("%Y-%m-%d %H:%M UTC")


def render_leaderboard(snapshot: LeaderboardSnapshot, lz: Localizer, limit: int) -> str:
    """HTML text of a leaderboard snapshot, at most ``limit`` rows."""
    lines = [
        lz.get(
            "leaderboard.header",
            title=html.escape(snapshot.event_title),
            version=snapshot.version,
            updated=_format_datetime(snapshot.updated_at, lz),
        ),
        "",
    ]
    if not snapshot.entries:
        lines.append(lz.get("leaderboard.empty"))
        return "\n".join(lines)

    for entry in snapshot.entries[:limit]:
        lines.append(
            lz.get(
                "leaderboard.row",
                rank=entry.rank,
                team=html.escape(entry.team_title or str(entry.team_id)[:8]),
                project=html.escape(entry.project_name),
                total=format_value(entry.total_score),
                judges=format_value(entry.judge_score),
                votes=format_value(entry.public_votes),
            )
        )
    hidden = len(snapshot.entries) - limit
    if hidden > 0:
        lines.append(lz.get("leaderboard.more", count=hidden))
    return "\n".join(lines)


def error_text(exc: HackscoreError, lz: Localizer) -> str:
    """Localized reply for a domain error raised by a service."""
    for cls, key in _ERROR_KEYS:
        if isinstance(exc, cls):
            return lz.get(key, detail=html.escape(str(exc)))
    return lz.get("errors.store")
