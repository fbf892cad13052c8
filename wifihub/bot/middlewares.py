from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Update

from wifihub.bot.auth import is_owner

log = logging.getLogger(__name__)


class CorrelationIdMiddleware(BaseMiddleware):
    """Puts corr_id into handler data and logs each update with it."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        update: Update | None = data.get("event_update")
        from_user = getattr(event, "from_user", None)
        if update:
            data["corr_id"] = f"u{update.update_id}"
            log.debug(
                "bot_update",
                extra={"corr_id": data["corr_id"], "tg_id": getattr(from_user, "id", None)},
            )
        return await handler(event, data)


class OperatorsOnlyMiddleware(BaseMiddleware):
    """Drops updates from anyone who is not the owner or a listed admin."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = getattr(event, "from_user", None)
        if not from_user or not is_owner(from_user.id):
            log.info("bot_update_ignored tg_id=%s", getattr(from_user, "id", None))
            return None
        return await handler(event, data)


class RateLimitMiddleware(BaseMiddleware):
    """Ignores repeated taps on the same button within min_interval_sec."""

    def __init__(self, min_interval_sec: float = 0.4):
        self.min_interval_sec = min_interval_sec
        self._last: dict[tuple[int, str], float] = {}

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        cb = getattr(event, "data", None)
        from_user = getattr(event, "from_user", None)
        if cb and from_user:
            key = (from_user.id, cb)
            now = time.monotonic()
            last = self._last.get(key)
            if last and (now - last) < self.min_interval_sec:
                return None
            self._last[key] = now
        return await handler(event, data)
