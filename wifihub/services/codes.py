from __future__ import annotations

import re
import secrets
import time

from wifihub.core.config import settings

BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

TOKEN_RE = re.compile(r"^[A-Z]+-\d{4}-[0-9A-Z]{4}$")
REFERRAL_CODE_RE = re.compile(r"^REF-[0-9A-Z_\-]{1,8}-[0-9A-Z]{4}$")


def _suffix(n: int = 4) -> str:
    return "".join(secrets.choice(BASE36) for _ in range(n))


def generate_token_string(*, now_ms: int | None = None) -> str:
    """WIFI-<last 4 digits of epoch millis>-<4 uppercase base36>.

    Not unique by construction; callers check and rely on the unique constraint.
    """
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{settings.token_prefix}-{str(ms)[-4:].zfill(4)}-{_suffix()}"


def generate_referral_code(user_id: str) -> str:
    return f"REF-{user_id[:8].upper()}-{_suffix()}"
