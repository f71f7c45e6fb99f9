# bot/routers/judging.py
import html
import uuid
from typing import Optional

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from hackscore.bot.routers.utils import error_text, format_value, get_localizer_by_user
from hackscore.bot.services.submission import SubmissionService
from hackscore.db.schemas.score import ScoreInput
from hackscore.db.schemas.user import UserRead
from hackscore.utils.errors import HackscoreError

router = Router(name="judging")


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def parse_rubric(text: str) -> tuple[list[ScoreInput], Optional[str], Optional[str]]:
    """
    Parse ``criterion=score ... [| feedback]``.
    Returns (lines, feedback, first unreadable token). Criteria with spaces are
    written with underscores: ``Code_Quality=80``.
    """
    body, _, feedback = text.partition("|")
    lines: list[ScoreInput] = []
    for token in body.split():
        name, sep, raw = token.partition("=")
        if not sep:
            return [], None, token
        try:
            score = float(raw.replace(",", "."))
        except ValueError:
            return [], None, token
        lines.append(ScoreInput(criterion=name.replace("_", " "), score=score))
    return lines, (feedback.strip() or None), None


@router.message(Command("vote"))
async def cast_vote(message: Message, command: CommandObject, current_user: UserRead) -> None:
    lz = get_localizer_by_user(current_user)
    parts = (command.args or "").split()
    sub_id = _parse_uuid(parts[0]) if len(parts) == 2 else None
    if sub_id is None or not parts[1].isdigit():
        await message.answer(lz.get("judging.vote.usage"))
        return

    try:
        public_votes = await SubmissionService().submit_vote(sub_id, current_user.id, int(parts[1]))
    except HackscoreError as exc:
        await message.answer(error_text(exc, lz))
        return

    await message.answer(lz.get("judging.vote.done", votes=format_value(public_votes)))


@router.message(Command("score"))
async def submit_scores(message: Message, command: CommandObject, current_user: UserRead) -> None:
    lz = get_localizer_by_user(current_user)
    head, _, rest = (command.args or "").strip().partition(" ")
    sub_id = _parse_uuid(head)
    if sub_id is None or not rest.strip():
        await message.answer(lz.get("judging.score.usage"))
        return

    lines, feedback, bad = parse_rubric(rest)
    if bad is not None:
        await message.answer(lz.get("judging.score.bad_line", line=html.escape(bad)))
        return

    try:
        total = await SubmissionService().submit_judge_scores(sub_id, current_user.id, lines, feedback=feedback)
    except HackscoreError as exc:
        await message.answer(error_text(exc, lz))
        return

    await message.answer(lz.get("judging.score.done", total=format_value(total)))
