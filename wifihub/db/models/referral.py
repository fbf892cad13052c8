from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from wifihub.core.time import utcnow
from wifihub.db.base import Base

REFERRAL_PENDING = "pending"
REFERRAL_SUCCESSFUL = "successful"
REFERRAL_EXPIRED = "expired"


class Referral(Base):
    """Invitation of a friend by e-mail.

    pending -> successful (credit_reward granted to the referrer) | expired
    """

    __tablename__ = "referrals"
    __table_args__ = (Index("ix_referrals_referrer_created", "referrer_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    referrer_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    referred_email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    referred_name: Mapped[str] = mapped_column(String(128), nullable=False)
    relationship: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    referral_code: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), server_default=REFERRAL_PENDING, default=REFERRAL_PENDING, nullable=False
    )
    credit_reward: Mapped[int] = mapped_column(Integer, server_default="0", default=0, nullable=False)
    credit_awarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
