from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from wifihub.db.base import Base


class CensoredWord(Base):
    __tablename__ = "censored_words"

    # normalized (see services.moderation.normalize_text)
    word: Mapped[str] = mapped_column(String(64), primary_key=True)
