from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.core.errors import AlreadyProcessed, InvalidInput, NotFound
from wifihub.core.roles import Actor
from wifihub.core.time import utcnow
from wifihub.db.models import Payment
from wifihub.db.models.payment import PAYMENT_APPROVED, PAYMENT_PENDING, PAYMENT_REJECTED
from wifihub.db.session import run_atomic, session_scope
from wifihub.repo import get_user
from wifihub.services.ledger.service import REASON_PAYMENT_APPROVED, ledger_service
from wifihub.services.notifications import service as notifications
from wifihub.services.notifications.service import notification_service
from wifihub.services.packages.service import package_service, parse_duration_minutes
from wifihub.services.storage.blob import BlobStore, build_blob_store, safe_filename
from wifihub.services.tokens.service import mint_unique_token_string

log = logging.getLogger(__name__)

_SINPE_ID_MAX = Payment.__table__.c.sinpe_id.type.length


@dataclass(frozen=True)
class PaymentSubmission:
    payment_id: int
    status: str
    receipt_image_url: str


class PaymentService:
    """pending -> approved | rejected, exactly once.

    Approval grants credit in the same transaction that flips the status, so
    the pair either lands together or not at all.
    """

    def __init__(self, blob_store: BlobStore | None = None) -> None:
        self._blob_store = blob_store

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = build_blob_store()
        return self._blob_store

    async def submit_payment(
        self,
        user_id: str,
        package_id: int,
        sinpe_id: str,
        receipt: bytes,
        *,
        receipt_filename: str | None = None,
    ) -> PaymentSubmission:
        sinpe_id = (sinpe_id or "").strip()
        if not sinpe_id:
            raise InvalidInput("sinpe_id_required")
        if len(sinpe_id) > _SINPE_ID_MAX:
            raise InvalidInput("sinpe_id_too_long")
        if not receipt:
            raise InvalidInput("receipt_required")

        # validate before uploading so a bad request leaves no orphaned blob
        async with session_scope() as session:
            await get_user(session, user_id)
            pkg = await package_service.get(session, package_id)
            package_name, price = pkg.name, int(pkg.price)
            duration_minutes = parse_duration_minutes(pkg.duration_minutes)

        path = f"receipts/{user_id}/{int(time.time() * 1000)}_{safe_filename(receipt_filename)}"
        # UploadFailed propagates: no record is written
        receipt_url = await self.blob_store.upload(path, receipt)

        async def work(session: AsyncSession) -> Payment:
            payment = Payment(
                user_id=user_id,
                status=PAYMENT_PENDING,
                package_id=package_id,
                package_name=package_name,
                price=price,
                duration_minutes=duration_minutes,
                sinpe_id=sinpe_id,
                receipt_image_url=receipt_url,
            )
            session.add(payment)
            await session.flush()
            return payment

        payment = await run_atomic(work)
        log.info("payment_submitted payment_id=%s user_id=%s", payment.id, user_id)

        await notification_service.notify_admins(
            notifications.TYPE_PAYMENT_SUBMITTED,
            {"payment_id": payment.id, "user_id": user_id},
            title="Nuevo pago pendiente",
            message=f"{package_name}: ₡{price} (SINPE {sinpe_id})",
        )
        return PaymentSubmission(payment_id=payment.id, status=payment.status, receipt_image_url=receipt_url)

    async def _load_pending(self, session: AsyncSession, payment_id: int) -> Payment:
        payment = await session.get(Payment, payment_id)
        if not payment:
            raise NotFound(f"payment_not_found payment_id={payment_id}")
        if payment.status != PAYMENT_PENDING:
            raise AlreadyProcessed(f"payment_already_{payment.status} payment_id={payment_id}")
        return payment

    async def _transition(self, session: AsyncSession, payment_id: int, **values) -> None:
        # compare-and-set: only a row that is still pending may move
        res = await session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise AlreadyProcessed(f"payment_already_processed payment_id={payment_id}")

    async def approve_in_session(self, session: AsyncSession, payment_id: int, *, actor: Actor) -> Payment:
        actor.require_admin()
        payment = await self._load_pending(session, payment_id)

        token = await mint_unique_token_string(session)
        await self._transition(
            session,
            payment_id,
            status=PAYMENT_APPROVED,
            token=token,
            approved_at=utcnow(),
            processed_by=actor.user_id,
        )
        await ledger_service.increment(
            session,
            payment.user_id,
            parse_duration_minutes(payment.duration_minutes),
            reason=REASON_PAYMENT_APPROVED,
            ref_id=payment_id,
        )
        await session.refresh(payment)
        return payment

    async def reject_in_session(self, session: AsyncSession, payment_id: int, *, actor: Actor) -> Payment:
        actor.require_admin()
        payment = await self._load_pending(session, payment_id)
        await self._transition(
            session,
            payment_id,
            status=PAYMENT_REJECTED,
            rejected_at=utcnow(),
            processed_by=actor.user_id,
        )
        await session.refresh(payment)
        return payment

    async def approve_payment(self, payment_id: int, *, actor: Actor) -> Payment:
        async def work(session: AsyncSession) -> Payment:
            return await self.approve_in_session(session, payment_id, actor=actor)

        payment = await run_atomic(work)
        log.info(
            "payment_approved payment_id=%s user_id=%s minutes=%s by=%s",
            payment.id,
            payment.user_id,
            payment.duration_minutes,
            actor.user_id,
        )
        await notification_service.notify(
            payment.user_id,
            actor.user_id,
            notifications.TYPE_PAYMENT_APPROVED,
            {"payment_id": payment.id, "token": payment.token, "minutes": payment.duration_minutes},
            title="¡Tu pago ha sido aprobado!",
            message=f"Tu pago para el paquete \"{payment.package_name}\" ha sido aprobado.",
        )
        return payment

    async def reject_payment(self, payment_id: int, *, actor: Actor) -> Payment:
        async def work(session: AsyncSession) -> Payment:
            return await self.reject_in_session(session, payment_id, actor=actor)

        payment = await run_atomic(work)
        log.info("payment_rejected payment_id=%s user_id=%s by=%s", payment.id, payment.user_id, actor.user_id)
        await notification_service.notify(
            payment.user_id,
            actor.user_id,
            notifications.TYPE_PAYMENT_REJECTED,
            {"payment_id": payment.id},
            title="Pago rechazado",
            message=f"Tu pago para el paquete \"{payment.package_name}\" fue rechazado.",
        )
        return payment

    async def get_payment(self, session: AsyncSession, payment_id: int) -> Payment:
        payment = await session.get(Payment, payment_id)
        if not payment:
            raise NotFound(f"payment_not_found payment_id={payment_id}")
        return payment

    async def list_pending(self, session: AsyncSession, *, limit: int = 50) -> list[Payment]:
        q = (
            select(Payment)
            .where(Payment.status == PAYMENT_PENDING)
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .limit(limit)
        )
        return list((await session.scalars(q)).all())

    async def history(self, session: AsyncSession, user_id: str, *, limit: int = 50) -> list[Payment]:
        q = select(Payment).where(Payment.user_id == user_id).order_by(Payment.id.desc()).limit(limit)
        return list((await session.scalars(q)).all())


payment_service = PaymentService()
