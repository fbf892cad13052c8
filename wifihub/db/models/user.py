from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from wifihub.core.time import utcnow
from wifihub.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits_minutes >= 0", name="ck_users_credits_non_negative"),
    )

    # identity-provider subject
    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    email: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), unique=True, index=True, nullable=True)
    role: Mapped[str] = mapped_column(String(16), server_default="user", default="user", nullable=False)

    # ==========================
    # Ledger
    # ==========================
    # Authoritative balance. Only ever changed through LedgerService (atomic UPDATE).
    credits_minutes: Mapped[int] = mapped_column(Integer, server_default="0", default=0, nullable=False)

    # ==========================
    # Referrals
    # ==========================
    referral_code: Mapped[str | None] = mapped_column(String(32), unique=True, index=True, nullable=True)
    strike_count: Mapped[int] = mapped_column(Integer, server_default="0", default=0, nullable=False)
    # set when strike_count reaches the maximum (start of the punishment window)
    last_strike_reset: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    strikes_forgiven_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
