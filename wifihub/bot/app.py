import asyncio
import contextlib
import logging

from aiogram import Bot, Dispatcher

from wifihub.bot.admin import router as admin_router
from wifihub.bot.feed import run_pending_payments_feed
from wifihub.bot.middlewares import CorrelationIdMiddleware, OperatorsOnlyMiddleware, RateLimitMiddleware
from wifihub.core.config import settings

log = logging.getLogger(__name__)


def build_dispatcher() -> Dispatcher:
    dp = Dispatcher()
    dp.message.middleware(CorrelationIdMiddleware())
    dp.callback_query.middleware(CorrelationIdMiddleware())
    dp.message.middleware(OperatorsOnlyMiddleware())
    dp.callback_query.middleware(OperatorsOnlyMiddleware())
    dp.callback_query.middleware(RateLimitMiddleware(min_interval_sec=0.4))

    dp.include_router(admin_router)
    return dp


async def run_bot() -> None:
    bot = Bot(token=settings.bot_token)
    dp = build_dispatcher()

    feed = asyncio.create_task(run_pending_payments_feed(bot))
    log.info("bot_start")
    try:
        await dp.start_polling(bot)
    finally:
        feed.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await feed
        await bot.session.close()
