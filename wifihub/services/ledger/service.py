from __future__ import annotations

import logging

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.core.errors import InsufficientCredits, InvalidAmount, NotFound
from wifihub.db.models import CreditEntry, User

log = logging.getLogger(__name__)

REASON_PAYMENT_APPROVED = "payment_approved"
REASON_TOKEN_ISSUED = "token_issued"
REASON_REFERRAL_REWARD = "referral_reward"
REASON_MODERATION_PENALTY = "moderation_penalty"
REASON_ADMIN_ADJUSTMENT = "admin_adjustment"


def _check_amount(value: int) -> int:
    # bool is an int subclass; True minutes makes no sense
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"invalid_amount value={value!r}")
    return value


class LedgerService:
    """The only writer of users.credits_minutes.

    Every mutation is a single UPDATE evaluated by the store (never
    read-then-write) plus an audit CreditEntry, both inside the caller's
    transaction.
    """

    async def balance(self, session: AsyncSession, user_id: str) -> int:
        value = await session.scalar(select(User.credits_minutes).where(User.id == user_id))
        if value is None:
            raise NotFound(f"user_not_found user_id={user_id}")
        return int(value)

    async def require_sufficient_balance(self, session: AsyncSession, user_id: str, amount: int) -> int:
        """Locked read of the balance; the row stays locked until the transaction ends."""
        amount = _check_amount(amount)
        q = select(User.credits_minutes).where(User.id == user_id).with_for_update()
        value = await session.scalar(q)
        if value is None:
            raise NotFound(f"user_not_found user_id={user_id}")
        if amount > int(value):
            raise InsufficientCredits(requested=amount, balance=int(value))
        return int(value)

    async def increment(
        self,
        session: AsyncSession,
        user_id: str,
        delta: int,
        *,
        reason: str,
        ref_id: str | int | None = None,
    ) -> None:
        """Atomic increment. A negative delta only applies when the balance covers it."""
        delta = _check_amount(delta)
        if delta == 0:
            raise InvalidAmount("zero_delta")

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(credits_minutes=User.credits_minutes + delta)
            .execution_options(synchronize_session=False)
        )
        if delta < 0:
            stmt = stmt.where(User.credits_minutes >= -delta)

        res = await session.execute(stmt)
        if res.rowcount != 1:
            # tell "no such user" apart from "not enough credits"
            current = await session.scalar(select(User.credits_minutes).where(User.id == user_id))
            if current is None:
                raise NotFound(f"user_not_found user_id={user_id}")
            raise InsufficientCredits(requested=-delta, balance=int(current))

        await self._record(session, user_id, delta, reason=reason, ref_id=ref_id)
        log.info("ledger_increment user_id=%s delta=%s reason=%s ref=%s", user_id, delta, reason, ref_id)

    async def spend(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int,
        *,
        reason: str,
        ref_id: str | int | None = None,
    ) -> None:
        amount = _check_amount(amount)
        if amount <= 0:
            raise InvalidAmount(f"invalid_amount value={amount}")
        await self.increment(session, user_id, -amount, reason=reason, ref_id=ref_id)

    async def deduct_clamped(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int,
        *,
        reason: str,
        ref_id: str | int | None = None,
    ) -> int:
        """Atomic deduction that floors the balance at zero. Returns minutes actually taken."""
        amount = _check_amount(amount)
        if amount <= 0:
            return 0

        before = await self.require_sufficient_balance(session, user_id, 0)
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(
                credits_minutes=case(
                    (User.credits_minutes >= amount, User.credits_minutes - amount),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        taken = min(amount, before)
        if taken:
            await self._record(session, user_id, -taken, reason=reason, ref_id=ref_id)
        log.info("ledger_deduct user_id=%s requested=%s taken=%s reason=%s", user_id, amount, taken, reason)
        return taken

    async def history(self, session: AsyncSession, user_id: str, *, limit: int = 50) -> list[CreditEntry]:
        q = (
            select(CreditEntry)
            .where(CreditEntry.user_id == user_id)
            .order_by(CreditEntry.id.desc())
            .limit(limit)
        )
        return list((await session.scalars(q)).all())

    async def _record(
        self,
        session: AsyncSession,
        user_id: str,
        delta: int,
        *,
        reason: str,
        ref_id: str | int | None,
    ) -> None:
        session.add(
            CreditEntry(
                user_id=user_id,
                delta=int(delta),
                reason=reason,
                ref_id=str(ref_id) if ref_id is not None else None,
            )
        )
        await session.flush()


ledger_service = LedgerService()
