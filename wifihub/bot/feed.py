from __future__ import annotations

import logging

from aiogram import Bot

from wifihub.bot.admin import payment_text
from wifihub.bot.auth import admin_chat_ids
from wifihub.bot.keyboards import kb_payment_actions
from wifihub.services.watch import watch_pending_payments

log = logging.getLogger(__name__)


async def run_pending_payments_feed(bot: Bot, *, interval: float | None = None) -> None:
    """Push each newly pending payment to the operators, with approve/reject buttons.

    Payments already pending at start-up are announced once as well. Runs until
    cancelled.
    """
    seen: set[int] = set()
    feed = watch_pending_payments(interval=interval)
    try:
        async for pending in feed:
            fresh = [p for p in pending if p.id not in seen]
            seen = {p.id for p in pending}
            for p in fresh:
                for chat_id in admin_chat_ids():
                    try:
                        await bot.send_message(
                            chat_id,
                            payment_text(p),
                            reply_markup=kb_payment_actions(p.id),
                            parse_mode="HTML",
                        )
                    except Exception:
                        log.exception("payment_feed_send_failed payment_id=%s chat_id=%s", p.id, chat_id)
    finally:
        await feed.aclose()
