from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from wifihub.core.time import utcnow
from wifihub.db.base import Base


class Token(Base):
    """Access code minted by spending credit minutes.

    Redeemed on the captive portal; consumption/expiry happens outside this service.
    """

    __tablename__ = "tokens"
    __table_args__ = (UniqueConstraint("user_id", "idempotency_key", name="uq_tokens_user_idempotency"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    token_string: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), server_default="active", default="active", nullable=False)

    # client-supplied key so a retried request never debits twice
    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), default=utcnow, nullable=False
    )
