from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from wifihub.core.time import utcnow
from wifihub.db.base import Base

PAYMENT_PENDING = "pending"
PAYMENT_APPROVED = "approved"
PAYMENT_REJECTED = "rejected"


class Payment(Base):
    """Manual SINPE payment claim awaiting admin verification.

    pending -> approved | rejected. Never deleted (audit trail).
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(16), server_default=PAYMENT_PENDING, default=PAYMENT_PENDING, nullable=False, index=True
    )

    # package snapshot at submission time
    package_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    package_name: Mapped[str] = mapped_column(String(128), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    # always integer minutes; free-text durations are parsed before insert
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    sinpe_id: Mapped[str] = mapped_column(String(64), nullable=False)
    receipt_image_url: Mapped[str] = mapped_column(Text, nullable=False)

    # set only on approval
    token: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), default=utcnow, nullable=False
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
