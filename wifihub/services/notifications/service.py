from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.db.models import Notification, User
from wifihub.db.session import session_scope

log = logging.getLogger(__name__)

TYPE_PAYMENT_SUBMITTED = "payment_submitted"
TYPE_PAYMENT_APPROVED = "payment_approved"
TYPE_PAYMENT_REJECTED = "payment_rejected"
TYPE_REFERRAL_SUCCESSFUL = "referral_successful"
TYPE_STRIKES_FORGIVEN = "strikes_forgiven"
TYPE_MENTION = "mention"
TYPE_MODERATION_PENALTY = "moderation_penalty"

_MENTION_RE = re.compile(r"@([A-Za-z0-9_]+)")


class NotificationService:
    """Best-effort, at-most-once notification documents.

    Each write runs in its own short transaction after the triggering operation
    committed; failures are logged and never propagate.
    """

    async def notify(
        self,
        to_user_id: str | None,
        from_user_id: str | None,
        type: str,
        payload: dict[str, Any] | None = None,
        *,
        title: str | None = None,
        message: str | None = None,
        is_admin: bool = False,
    ) -> int | None:
        try:
            async with session_scope() as session:
                n = Notification(
                    to_user_id=to_user_id,
                    from_user_id=from_user_id,
                    type=type,
                    title=title,
                    message=message,
                    payload=payload or None,
                    is_admin_notification=is_admin,
                )
                session.add(n)
                await session.commit()
                return n.id
        except Exception:
            log.exception("notification_failed type=%s to=%s", type, to_user_id)
            return None

    async def notify_admins(self, type: str, payload: dict[str, Any] | None = None, *, title: str, message: str) -> int | None:
        return await self.notify(None, None, type, payload, title=title, message=message, is_admin=True)

    async def notify_mentions(
        self,
        *,
        author_id: str,
        author_username: str,
        text: str,
        topic_name: str,
        post_id: str | int | None = None,
    ) -> int:
        """One notification per unique @username in a bulletin post. Returns how many were written."""
        usernames = list(dict.fromkeys(_MENTION_RE.findall(text or "")))
        if not usernames:
            return 0

        try:
            async with session_scope() as session:
                rows = (
                    await session.execute(select(User.id, User.username).where(User.username.in_(usernames)))
                ).all()
        except Exception:
            log.exception("mention_lookup_failed author_id=%s", author_id)
            return 0

        sent = 0
        for user_id, username in rows:
            if user_id == author_id:
                continue
            nid = await self.notify(
                user_id,
                author_id,
                TYPE_MENTION,
                {"post_id": str(post_id) if post_id is not None else None, "topic": topic_name},
                message=f"{author_username} te mencionó en #{topic_name}",
            )
            if nid is not None:
                sent += 1
        return sent

    async def unread(self, session: AsyncSession, user_id: str, *, limit: int = 50) -> list[Notification]:
        q = (
            select(Notification)
            .where(Notification.to_user_id == user_id, Notification.is_read == False)  # noqa: E712
            .order_by(Notification.id.desc())
            .limit(limit)
        )
        return list((await session.scalars(q)).all())

    async def mark_read(self, session: AsyncSession, notification_id: int, *, user_id: str) -> bool:
        res = await session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.to_user_id == user_id)
            .values(is_read=True)
        )
        return res.rowcount == 1


notification_service = NotificationService()
