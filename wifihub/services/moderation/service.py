from __future__ import annotations

import logging
import re

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.core.errors import InvalidInput
from wifihub.core.roles import Actor
from wifihub.db.models import CensoredWord
from wifihub.db.session import run_atomic
from wifihub.repo import get_penalty_minutes
from wifihub.services.ledger.service import REASON_MODERATION_PENALTY, ledger_service
from wifihub.services.notifications import service as notifications
from wifihub.services.notifications.service import notification_service

log = logging.getLogger(__name__)

# leetspeak folding applied before matching
_LEET = str.maketrans({"1": "i", "3": "e", "4": "a", "5": "s", "0": "o", "@": "a", "$": "s"})
_SEPARATORS_RE = re.compile(r"[\s\-_,.]+")


def normalize_text(text: str | None) -> str:
    """'M-4-L 0' -> 'malo'."""
    return _SEPARATORS_RE.sub("", (text or "").lower()).translate(_LEET)


class ModerationService:
    async def list_words(self, session: AsyncSession) -> list[str]:
        return list((await session.scalars(select(CensoredWord.word).order_by(CensoredWord.word))).all())

    async def add_word(self, session: AsyncSession, word: str, *, actor: Actor) -> str:
        actor.require_admin()
        normalized = normalize_text(word)
        if not normalized:
            raise InvalidInput("censored_word_required")
        if not await session.get(CensoredWord, normalized):
            session.add(CensoredWord(word=normalized))
            await session.flush()
            log.info("censored_word_added word=%s by=%s", normalized, actor.user_id)
        return normalized

    async def remove_word(self, session: AsyncSession, word: str, *, actor: Actor) -> bool:
        actor.require_admin()
        res = await session.execute(delete(CensoredWord).where(CensoredWord.word == normalize_text(word)))
        return res.rowcount == 1

    async def find_violation(self, session: AsyncSession, text: str) -> str | None:
        normalized = normalize_text(text)
        if not normalized:
            return None
        for word in await self.list_words(session):
            if word and word in normalized:
                return word
        return None

    async def check_post(self, user_id: str, text: str, *, post_id: str | int | None = None) -> int:
        """Penalize a bulletin post containing a censored word.

        Returns the minutes actually deducted (the balance floors at zero), 0
        when the post is clean or the penalty is disabled.
        """

        async def work(session: AsyncSession) -> tuple[str | None, int]:
            word = await self.find_violation(session, text)
            if word is None:
                return None, 0
            penalty = await get_penalty_minutes(session)
            if penalty <= 0:
                return word, 0
            taken = await ledger_service.deduct_clamped(
                session, user_id, penalty, reason=REASON_MODERATION_PENALTY, ref_id=post_id
            )
            return word, taken

        word, taken = await run_atomic(work)
        if word is None:
            return 0

        log.info("moderation_hit user_id=%s word=%s deducted=%s", user_id, word, taken)
        if taken:
            await notification_service.notify(
                user_id,
                None,
                notifications.TYPE_MODERATION_PENALTY,
                {"post_id": str(post_id) if post_id is not None else None, "minutes": taken},
                title="Penalización",
                message=f"Se descontaron {taken} minutos por lenguaje inapropiado.",
            )
        return taken


moderation_service = ModerationService()
