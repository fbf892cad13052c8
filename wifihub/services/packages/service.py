from __future__ import annotations

import logging
import re
import unicodedata

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.core.errors import InvalidAmount, InvalidInput, NotFound
from wifihub.core.roles import Actor
from wifihub.db.models import Package

log = logging.getLogger(__name__)

_UNIT_MINUTES = {
    "m": 1,
    "min": 1,
    "mins": 1,
    "minuto": 1,
    "minutos": 1,
    "minute": 1,
    "minutes": 1,
    "h": 60,
    "hr": 60,
    "hrs": 60,
    "hora": 60,
    "horas": 60,
    "hour": 60,
    "hours": 60,
    "d": 1440,
    "dia": 1440,
    "dias": 1440,
    "day": 1440,
    "days": 1440,
    "semana": 10080,
    "semanas": 10080,
    "week": 10080,
    "weeks": 10080,
}

_DURATION_RE = re.compile(r"^(\d+)\s*([a-z]+)$")

DEFAULT_PACKAGES = (
    ("Pase Diario", 3000, 1440),
    ("Pase Semanal", 15000, 10080),
    ("Pase Mensual", 30000, 43200),
)


def _strip_accents(s: str) -> str:
    return "".join(c for c in unicodedata.normalize("NFKD", s) if not unicodedata.combining(c))


def parse_duration_minutes(value: int | str | None) -> int:
    """Normalize a package duration to integer minutes.

    Accepts ints, digit strings (minutes) and "<n> <unit>" such as "2 horas",
    "90 minutos", "1 día", "1 semana". Anything else is rejected rather than
    guessed.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"invalid_duration value={value!r}")
    if isinstance(value, int):
        minutes = value
    elif isinstance(value, str):
        s = _strip_accents(value).strip().lower()
        if s.isdigit():
            minutes = int(s)
        else:
            m = _DURATION_RE.match(s)
            if not m or m.group(2) not in _UNIT_MINUTES:
                raise InvalidAmount(f"invalid_duration value={value!r}")
            minutes = int(m.group(1)) * _UNIT_MINUTES[m.group(2)]
    else:
        raise InvalidAmount(f"invalid_duration value={value!r}")

    if minutes <= 0:
        raise InvalidAmount(f"invalid_duration value={value!r}")
    return minutes


class PackageService:
    async def get(self, session: AsyncSession, package_id: int, *, active_only: bool = True) -> Package:
        pkg = await session.get(Package, package_id)
        if not pkg or (active_only and pkg.status != "active"):
            raise NotFound(f"package_not_found package_id={package_id}")
        return pkg

    async def list_active(self, session: AsyncSession) -> list[Package]:
        q = select(Package).where(Package.status == "active").order_by(Package.price.asc(), Package.id.asc())
        return list((await session.scalars(q)).all())

    async def create_package(
        self,
        session: AsyncSession,
        *,
        name: str,
        price: int,
        duration: int | str,
        actor: Actor,
    ) -> Package:
        actor.require_admin()
        name = (name or "").strip()
        if not name:
            raise InvalidInput("package_name_required")
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise InvalidAmount(f"invalid_price value={price!r}")

        pkg = Package(name=name, price=price, duration_minutes=parse_duration_minutes(duration))
        session.add(pkg)
        await session.flush()
        log.info("package_created package_id=%s minutes=%s", pkg.id, pkg.duration_minutes)
        return pkg

    async def set_status(self, session: AsyncSession, package_id: int, *, active: bool, actor: Actor) -> Package:
        actor.require_admin()
        pkg = await self.get(session, package_id, active_only=False)
        pkg.status = "active" if active else "inactive"
        await session.flush()
        return pkg

    async def ensure_default_packages(self, session: AsyncSession) -> int:
        """Seed the stock daily/weekly/monthly passes when the catalogue is empty."""
        exists = await session.scalar(select(Package.id).limit(1))
        if exists:
            return 0
        for name, price, minutes in DEFAULT_PACKAGES:
            session.add(Package(name=name, price=price, duration_minutes=minutes))
        await session.flush()
        return len(DEFAULT_PACKAGES)


package_service = PackageService()
