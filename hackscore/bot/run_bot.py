import asyncio
import logging

from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.client.telegram import TelegramAPIServer
from aiogram import Bot, Dispatcher
from aiogram.enums import ParseMode
from aiogram.client.default import DefaultBotProperties

from hackscore.config import Settings
from hackscore.bot.middlewares.user import UserMiddleware
from hackscore.bot.routers.leaderboard import router as LeaderboardRouter
from hackscore.bot.routers.judging import router as JudgingRouter
from hackscore.db.database import DataBase
from hackscore.bot.services.leaderboard_broadcast import leaderboard_broadcaster
from hackscore.bot.services.realtime import TelegramChannel

logging.basicConfig(
    level=Settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def setup_dispatcher(dp: Dispatcher) -> None:
    dp.update.outer_middleware(UserMiddleware())

def setup_routers(dp: Dispatcher) -> None:
    dp.include_router(LeaderboardRouter)
    dp.include_router(JudgingRouter)

def build_bot(settings: Settings) -> Bot:
    session = None
    if settings.telegram_api_url:
        session = AiohttpSession(api=TelegramAPIServer.from_base(settings.telegram_api_url, is_local=True))
    return Bot(
        settings.bot_token,
        session=session,
        default=DefaultBotProperties(
            parse_mode=ParseMode.HTML,
            link_preview_is_disabled=True,
        ),
    )

async def main() -> None:
    settings = Settings()

    if not settings.bot_token:
        raise RuntimeError("Bot token is not set.")

    bot = build_bot(settings)

    dp = Dispatcher()
    setup_dispatcher(dp)
    setup_routers(dp)

    leaderboard_broadcaster.bind_channel(TelegramChannel(bot=bot))

    await DataBase().create_all()

    await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
