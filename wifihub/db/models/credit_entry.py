from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from wifihub.core.time import utcnow
from wifihub.db.base import Base


class CreditEntry(Base):
    """Append-only audit line for every balance mutation."""

    __tablename__ = "credit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    # payment_approved | token_issued | referral_reward | moderation_penalty | admin_adjustment
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    # id of the payment/token/referral that caused it
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), default=utcnow, nullable=False
    )
