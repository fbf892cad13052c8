from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from wifihub.core.config import settings
from wifihub.db.models import Payment
from wifihub.db.models.payment import PAYMENT_PENDING
from wifihub.db.session import session_scope
from wifihub.services.payments.service import payment_service

log = logging.getLogger(__name__)


async def watch_payment(payment_id: int, *, interval: float | None = None) -> AsyncIterator[Payment]:
    """Yield the payment on first read and again every time its status changes.

    Finishes after yielding a terminal (approved/rejected) state. Raises
    NotFound if the payment does not exist.
    """
    interval = interval if interval is not None else settings.watch_interval_seconds
    last_status: str | None = None
    while True:
        async with session_scope() as session:
            payment = await payment_service.get_payment(session, payment_id)
        if payment.status != last_status:
            last_status = payment.status
            yield payment
            if payment.status != PAYMENT_PENDING:
                return
        await asyncio.sleep(interval)


async def watch_pending_payments(
    *,
    interval: float | None = None,
    limit: int = 50,
) -> AsyncIterator[list[Payment]]:
    """Yield the pending list on first read and whenever its membership changes.

    Never finishes on its own; close the generator or cancel the consuming task.
    Read errors are logged and the next poll tries again.
    """
    interval = interval if interval is not None else settings.watch_interval_seconds
    last_ids: tuple[int, ...] | None = None
    while True:
        try:
            async with session_scope() as session:
                pending = await payment_service.list_pending(session, limit=limit)
        except Exception:
            log.exception("watch_pending_payments_read_failed")
        else:
            ids = tuple(p.id for p in pending)
            if ids != last_ids:
                last_ids = ids
                yield pending
        await asyncio.sleep(interval)
