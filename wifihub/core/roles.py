from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from wifihub.core.errors import Unauthorized


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    REPORTER = "reporter"

    @classmethod
    def parse(cls, raw: str | None) -> "Role":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.USER


@dataclass(frozen=True)
class Actor:
    """Who is calling a service operation. Resolved once per session."""

    user_id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def require_admin(self) -> None:
        if not self.is_admin:
            raise Unauthorized(f"admin_required user_id={self.user_id}")
