from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.core.errors import InvalidAmount, InvalidInput, TransientStoreError
from wifihub.db.models import Payment, Token
from wifihub.db.session import run_atomic
from wifihub.services.codes import generate_token_string
from wifihub.services.ledger.service import REASON_TOKEN_ISSUED, ledger_service

log = logging.getLogger(__name__)


async def mint_unique_token_string(session: AsyncSession, *, tries: int = 8) -> str:
    """Generate a token string not yet used by any token or approved payment.

    The unique constraints remain the final guard: a concurrent collision
    surfaces as IntegrityError at flush and the transaction is retried.
    """
    for _ in range(tries):
        code = generate_token_string()
        in_tokens = await session.scalar(select(Token.id).where(Token.token_string == code).limit(1))
        in_payments = await session.scalar(select(Payment.id).where(Payment.token == code).limit(1))
        if not in_tokens and not in_payments:
            return code
    raise TransientStoreError("token_space_exhausted")


class TokenService:
    async def issue_token_in_session(
        self,
        session: AsyncSession,
        user_id: str,
        minutes: int,
        *,
        idempotency_key: str | None = None,
    ) -> Token:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise InvalidAmount(f"invalid_amount value={minutes!r}")
        if idempotency_key is not None:
            idempotency_key = idempotency_key.strip()
            if not idempotency_key or len(idempotency_key) > 64:
                raise InvalidInput("invalid_idempotency_key")

        # Locks the user row: concurrent spends on the same account serialize here.
        await ledger_service.require_sufficient_balance(session, user_id, 0)

        if idempotency_key:
            existing = await session.scalar(
                select(Token).where(Token.user_id == user_id, Token.idempotency_key == idempotency_key).limit(1)
            )
            if existing:
                if existing.duration_minutes != minutes:
                    raise InvalidInput(
                        f"idempotency_key_reused key={idempotency_key} minutes={existing.duration_minutes}"
                    )
                log.info("token_issue_replayed user_id=%s token_id=%s", user_id, existing.id)
                return existing

        await ledger_service.require_sufficient_balance(session, user_id, minutes)

        token = Token(
            user_id=user_id,
            token_string=await mint_unique_token_string(session),
            duration_minutes=minutes,
            status="active",
            idempotency_key=idempotency_key,
        )
        session.add(token)
        await session.flush()

        # conditional decrement: still refuses if the balance moved underneath us
        await ledger_service.spend(session, user_id, minutes, reason=REASON_TOKEN_ISSUED, ref_id=token.id)
        log.info("token_issued user_id=%s token_id=%s minutes=%s", user_id, token.id, minutes)
        return token

    async def issue_token(self, user_id: str, minutes: int, *, idempotency_key: str | None = None) -> Token:
        """Spend `minutes` of credit and mint a token, as one atomic unit."""

        async def work(session: AsyncSession) -> Token:
            return await self.issue_token_in_session(
                session, user_id, minutes, idempotency_key=idempotency_key
            )

        return await run_atomic(work)

    async def list_for_user(self, session: AsyncSession, user_id: str, *, limit: int = 20) -> list[Token]:
        q = select(Token).where(Token.user_id == user_id).order_by(Token.id.desc()).limit(limit)
        return list((await session.scalars(q)).all())


token_service = TokenService()
