from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.core.config import settings
from wifihub.core.errors import (AlreadyProcessed, CooldownActive, InvalidAmount, InvalidInput,
                                 NotFound, Punished, TransientStoreError)
from wifihub.core.roles import Actor
from wifihub.core.time import ensure_tz, utcnow
from wifihub.db.models import Referral, User
from wifihub.db.models.referral import REFERRAL_EXPIRED, REFERRAL_PENDING, REFERRAL_SUCCESSFUL
from wifihub.db.session import run_atomic
from wifihub.repo import get_referral_reward_minutes, get_user
from wifihub.services.codes import generate_referral_code
from wifihub.services.ledger.service import REASON_REFERRAL_REWARD, ledger_service
from wifihub.services.notifications import service as notifications
from wifihub.services.notifications.service import notification_service

log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_EMAIL_MAX = Referral.__table__.c.referred_email.type.length
_NAME_MAX = Referral.__table__.c.referred_name.type.length
_RELATIONSHIP_MAX = Referral.__table__.c.relationship.type.length
_NOTES_MAX = 1000

REASON_PUNISHED = "punished"
REASON_COOLDOWN = "cooldown"


@dataclass(frozen=True)
class ReferralGate:
    allowed: bool
    reason: str | None = None
    time_remaining: timedelta | None = None
    strike_count: int = 0


@dataclass(frozen=True)
class ReferralStats:
    pending: int = 0
    successful: int = 0
    expired: int = 0
    credits_earned: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.successful + self.expired


def _cooldown() -> timedelta:
    return timedelta(days=settings.referral_cooldown_days)


def _punishment() -> timedelta:
    return timedelta(days=settings.referral_punishment_days)


class ReferralService:
    """Referral submissions guarded by a cooldown and a strike counter.

    Clear (0 strikes) -> Warned (1..max-1) -> Punished (max, for the punishment
    window) -> Clear. Strikes are only counted for attempts made during an
    active cooldown.
    """

    async def ensure_referral_code(self, session: AsyncSession, user_id: str) -> str:
        user = await get_user(session, user_id)
        if user.referral_code:
            return user.referral_code

        for _ in range(8):
            code = generate_referral_code(user_id)
            exists = await session.scalar(select(User.id).where(User.referral_code == code).limit(1))
            if not exists:
                user.referral_code = code
                await session.flush()
                return code

        raise TransientStoreError("referral_code_space_exhausted")

    async def _latest_active_referral_at(self, session: AsyncSession, user_id: str) -> datetime | None:
        q = (
            select(Referral.created_at)
            .where(
                Referral.referrer_id == user_id,
                Referral.status.in_((REFERRAL_PENDING, REFERRAL_SUCCESSFUL)),
            )
            .order_by(Referral.created_at.desc())
            .limit(1)
        )
        return ensure_tz(await session.scalar(q))

    async def _gate(self, session: AsyncSession, user: User, now: datetime) -> ReferralGate:
        if int(user.strike_count or 0) >= settings.referral_max_strikes:
            started = ensure_tz(user.last_strike_reset)
            # a maxed-out counter without a start time counts as already served
            if started is not None and now < started + _punishment():
                return ReferralGate(
                    allowed=False,
                    reason=REASON_PUNISHED,
                    time_remaining=started + _punishment() - now,
                    strike_count=int(user.strike_count),
                )
            user.strike_count = 0
            user.last_strike_reset = None
            user.updated_at = now
            await session.flush()
            log.info("referral_punishment_expired user_id=%s", user.id)

        latest = await self._latest_active_referral_at(session, user.id)
        if latest is not None and now < latest + _cooldown():
            return ReferralGate(
                allowed=False,
                reason=REASON_COOLDOWN,
                time_remaining=latest + _cooldown() - now,
                strike_count=int(user.strike_count or 0),
            )
        return ReferralGate(allowed=True, strike_count=int(user.strike_count or 0))

    async def can_submit_referral(self, user_id: str, *, now: datetime | None = None) -> ReferralGate:
        now = ensure_tz(now) or utcnow()

        async def work(session: AsyncSession) -> ReferralGate:
            user = await get_user(session, user_id, for_update=True)
            return await self._gate(session, user, now)

        return await run_atomic(work)

    async def submit_in_session(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        referred_email: str,
        referred_name: str,
        relationship: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Referral:
        now = ensure_tz(now) or utcnow()
        email = (referred_email or "").strip().lower()
        name = (referred_name or "").strip()
        if not _EMAIL_RE.match(email):
            raise InvalidInput("invalid_referred_email")
        if not name:
            raise InvalidInput("referred_name_required")
        relationship = (relationship or "").strip() or None
        notes = (notes or "").strip() or None
        if len(email) > _EMAIL_MAX:
            raise InvalidInput("referred_email_too_long")
        if len(name) > _NAME_MAX:
            raise InvalidInput("referred_name_too_long")
        if relationship and len(relationship) > _RELATIONSHIP_MAX:
            raise InvalidInput("relationship_too_long")
        if notes and len(notes) > _NOTES_MAX:
            raise InvalidInput("notes_too_long")

        # row lock: the check and the strike write must not interleave
        user = await get_user(session, user_id, for_update=True)
        if user.email and user.email.lower() == email:
            raise InvalidInput("self_referral")

        gate = await self._gate(session, user, now)
        if gate.reason == REASON_PUNISHED:
            raise Punished(strike_count=gate.strike_count, time_remaining=gate.time_remaining)

        if gate.reason == REASON_COOLDOWN:
            user.strike_count = min(int(user.strike_count or 0) + 1, settings.referral_max_strikes)
            user.updated_at = now
            if user.strike_count >= settings.referral_max_strikes:
                user.last_strike_reset = now
                await session.flush()
                log.warning("referral_punished user_id=%s strikes=%s", user_id, user.strike_count)
                raise Punished(strike_count=user.strike_count, time_remaining=_punishment())
            await session.flush()
            log.info("referral_strike user_id=%s strikes=%s", user_id, user.strike_count)
            raise CooldownActive(strike_count=user.strike_count, time_remaining=gate.time_remaining)

        referral = Referral(
            referrer_id=user_id,
            referred_email=email,
            referred_name=name,
            relationship=relationship,
            notes=notes,
            referral_code=await self.ensure_referral_code(session, user_id),
            status=REFERRAL_PENDING,
            credit_reward=0,
            created_at=now,
            updated_at=now,
        )
        session.add(referral)

        # a compliant submission wipes the slate
        user.strike_count = 0
        user.last_strike_reset = None
        user.updated_at = now
        await session.flush()
        log.info("referral_submitted user_id=%s referral_id=%s", user_id, referral.id)
        return referral

    async def submit_referral(
        self,
        user_id: str,
        referred_email: str,
        referred_name: str,
        relationship: str | None = None,
        notes: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Referral:
        """Rejections still commit the strike they earned (see ReferralRejected.keeps_writes)."""

        async def work(session: AsyncSession) -> Referral:
            return await self.submit_in_session(
                session,
                user_id,
                referred_email=referred_email,
                referred_name=referred_name,
                relationship=relationship,
                notes=notes,
                now=now,
            )

        return await run_atomic(work)

    async def _get(self, session: AsyncSession, referral_id: int) -> Referral:
        referral = await session.get(Referral, referral_id)
        if not referral:
            raise NotFound(f"referral_not_found referral_id={referral_id}")
        return referral

    async def _transition(self, session: AsyncSession, referral_id: int, **values) -> Referral:
        referral = await self._get(session, referral_id)
        if referral.status != REFERRAL_PENDING:
            raise AlreadyProcessed(f"referral_already_{referral.status} referral_id={referral_id}")
        res = await session.execute(
            update(Referral)
            .where(Referral.id == referral_id, Referral.status == REFERRAL_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise AlreadyProcessed(f"referral_already_processed referral_id={referral_id}")
        await session.refresh(referral)
        return referral

    async def mark_successful_in_session(
        self,
        session: AsyncSession,
        referral_id: int,
        *,
        actor: Actor,
        credit_reward: int | None = None,
    ) -> Referral:
        actor.require_admin()
        reward = credit_reward if credit_reward is not None else await get_referral_reward_minutes(session)
        if isinstance(reward, bool) or not isinstance(reward, int) or reward <= 0:
            raise InvalidAmount(f"invalid_reward value={reward!r}")

        now = utcnow()
        referral = await self._transition(
            session,
            referral_id,
            status=REFERRAL_SUCCESSFUL,
            credit_reward=reward,
            credit_awarded_at=now,
            updated_at=now,
        )
        await ledger_service.increment(
            session, referral.referrer_id, reward, reason=REASON_REFERRAL_REWARD, ref_id=referral_id
        )
        return referral

    async def mark_successful(
        self,
        referral_id: int,
        *,
        actor: Actor,
        credit_reward: int | None = None,
    ) -> Referral:
        async def work(session: AsyncSession) -> Referral:
            return await self.mark_successful_in_session(
                session, referral_id, actor=actor, credit_reward=credit_reward
            )

        referral = await run_atomic(work)
        log.info(
            "referral_successful referral_id=%s referrer_id=%s reward=%s by=%s",
            referral.id,
            referral.referrer_id,
            referral.credit_reward,
            actor.user_id,
        )
        await notification_service.notify(
            referral.referrer_id,
            actor.user_id,
            notifications.TYPE_REFERRAL_SUCCESSFUL,
            {"referral_id": referral.id, "minutes": referral.credit_reward},
            title="¡Referido exitoso!",
            message=(
                f"Tu referido {referral.referred_name} fue marcado como exitoso. "
                f"Ganaste {referral.credit_reward} minutos."
            ),
        )
        return referral

    async def expire(self, referral_id: int, *, actor: Actor) -> Referral:
        async def work(session: AsyncSession) -> Referral:
            actor.require_admin()
            return await self._transition(session, referral_id, status=REFERRAL_EXPIRED, updated_at=utcnow())

        referral = await run_atomic(work)
        log.info("referral_expired referral_id=%s by=%s", referral.id, actor.user_id)
        return referral

    async def expire_stale(self, session: AsyncSession, *, now: datetime | None = None) -> int:
        """Expire pending referrals older than REFERRAL_EXPIRE_DAYS. Scheduler job."""
        now = ensure_tz(now) or utcnow()
        cutoff = now - timedelta(days=settings.referral_expire_days)
        res = await session.execute(
            update(Referral)
            .where(Referral.status == REFERRAL_PENDING, Referral.created_at < cutoff)
            .values(status=REFERRAL_EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return int(res.rowcount or 0)

    async def forgive_strikes(self, user_id: str, *, actor: Actor) -> User:
        async def work(session: AsyncSession) -> User:
            actor.require_admin()
            user = await get_user(session, user_id, for_update=True)
            now = utcnow()
            user.strike_count = 0
            user.last_strike_reset = None
            user.strikes_forgiven_at = now
            user.updated_at = now
            await session.flush()
            return user

        user = await run_atomic(work)
        log.info("referral_strikes_forgiven user_id=%s by=%s", user_id, actor.user_id)
        await notification_service.notify(
            user_id,
            actor.user_id,
            notifications.TYPE_STRIKES_FORGIVEN,
            {},
            title="Strikes perdonados",
            message="Un administrador perdonó tus strikes. Ya puedes volver a referir.",
        )
        return user

    async def stats(self, session: AsyncSession, user_id: str) -> ReferralStats:
        rows = (
            await session.execute(
                select(Referral.status, func.count(Referral.id), func.coalesce(func.sum(Referral.credit_reward), 0))
                .where(Referral.referrer_id == user_id)
                .group_by(Referral.status)
            )
        ).all()
        counts = {status: (int(cnt), int(earned)) for status, cnt, earned in rows}
        return ReferralStats(
            pending=counts.get(REFERRAL_PENDING, (0, 0))[0],
            successful=counts.get(REFERRAL_SUCCESSFUL, (0, 0))[0],
            expired=counts.get(REFERRAL_EXPIRED, (0, 0))[0],
            credits_earned=counts.get(REFERRAL_SUCCESSFUL, (0, 0))[1],
        )

    async def list_pending(self, session: AsyncSession, *, limit: int = 50) -> list[Referral]:
        q = (
            select(Referral)
            .where(Referral.status == REFERRAL_PENDING)
            .order_by(Referral.created_at.asc(), Referral.id.asc())
            .limit(limit)
        )
        return list((await session.scalars(q)).all())

    async def list_users_with_strikes(self, session: AsyncSession, *, limit: int = 50) -> list[User]:
        q = (
            select(User)
            .where(User.strike_count > 0)
            .order_by(User.strike_count.desc(), User.id.asc())
            .limit(limit)
        )
        return list((await session.scalars(q)).all())


referral_service = ReferralService()
