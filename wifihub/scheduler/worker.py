from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from wifihub.core.config import settings
from wifihub.core.time import utcnow
from wifihub.db.locks import advisory_unlock, try_advisory_lock
from wifihub.db.session import session_scope
from wifihub.services.referrals.service import referral_service

log = logging.getLogger(__name__)


async def job_expire_stale_referrals(now: datetime | None = None) -> int:
    async with session_scope() as session:
        expired = await referral_service.expire_stale(session, now=now or utcnow())
        if expired:
            await session.commit()
            log.info("scheduler_referrals_expired count=%s", expired)
        return expired


async def run_scheduler_once() -> bool:
    """One pass over all jobs. Returns False when another replica holds the lock."""
    async with session_scope() as session:
        locked = await try_advisory_lock(session)
        if not locked:
            return False
        try:
            await job_expire_stale_referrals()
        finally:
            await advisory_unlock(session)
    return True


async def run_scheduler() -> None:
    """Scheduler jobs loop (single replica) protected by advisory lock.

    Jobs:
    - Expire pending referrals older than REFERRAL_EXPIRE_DAYS.
    """
    log.info("scheduler_start period=%s", settings.scheduler_period_seconds)

    while True:
        try:
            await run_scheduler_once()
        except Exception:
            log.exception("scheduler_loop_error")

        await asyncio.sleep(settings.scheduler_period_seconds)
