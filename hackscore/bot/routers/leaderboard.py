# bot/routers/leaderboard.py
import html

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from hackscore.config import Settings
from hackscore.bot.routers.utils import error_text, get_localizer_by_user, render_leaderboard
from hackscore.bot.services.event import EventService
from hackscore.bot.services.leaderboard_broadcast import leaderboard_broadcaster
from hackscore.db.schemas.user import UserRead
from hackscore.utils.errors import HackscoreError

router = Router(name="leaderboard")


@router.message(Command("leaderboard"))
async def show_leaderboard(message: Message, command: CommandObject, current_user: UserRead) -> None:
    lz = get_localizer_by_user(current_user)
    if not command.args:
        await message.answer(lz.get("leaderboard.usage"))
        return

    svc = EventService()
    try:
        event = await svc.resolve_event(command.args)
        snapshot = await svc.get_snapshot(event.id)
    except HackscoreError as exc:
        await message.answer(error_text(exc, lz))
        return

    await message.answer(render_leaderboard(snapshot, lz, Settings().leaderboard_max_rows))


@router.message(Command("watch"))
async def watch_leaderboard(message: Message, command: CommandObject, current_user: UserRead) -> None:
    lz = get_localizer_by_user(current_user)
    if not command.args:
        await message.answer(lz.get("leaderboard.watch_usage"))
        return

    ref = command.args.strip()
    try:
        event = await EventService().resolve_event(ref)
        await message.answer(lz.get("leaderboard.watching", title=html.escape(event.title), ref=html.escape(ref)))
        # the current snapshot is delivered by the channel right after joining
        await leaderboard_broadcaster.subscribe(event.id, message.chat.id, lz.lang)
    except HackscoreError as exc:
        await message.answer(error_text(exc, lz))


@router.message(Command("unwatch"))
async def unwatch_leaderboard(message: Message, command: CommandObject, current_user: UserRead) -> None:
    lz = get_localizer_by_user(current_user)
    if not command.args:
        await message.answer(lz.get("leaderboard.unwatch_usage"))
        return

    try:
        event = await EventService().resolve_event(command.args)
    except HackscoreError as exc:
        await message.answer(error_text(exc, lz))
        return

    removed = await leaderboard_broadcaster.unsubscribe(event.id, message.chat.id)
    key = "leaderboard.unwatched" if removed else "leaderboard.not_watching"
    await message.answer(lz.get(key, title=html.escape(event.title)))
