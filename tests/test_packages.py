from __future__ import annotations

import pytest

from wifihub.core.errors import InvalidAmount, InvalidInput, Unauthorized
from wifihub.core.roles import Actor
from wifihub.db.session import session_scope
from wifihub.services.packages.service import package_service, parse_duration_minutes


@pytest.mark.parametrize(
    "value, minutes",
    [
        (120, 120),
        ("90", 90),
        ("2 horas", 120),
        ("2horas", 120),
        ("1 hora", 60),
        ("90 minutos", 90),
        ("45 min", 45),
        ("1 Día", 1440),
        ("3 dias", 4320),
        ("1 semana", 10080),
        ("2 weeks", 20160),
        ("  4 H ", 240),
    ],
)
def test_parse_duration_minutes(value, minutes):
    assert parse_duration_minutes(value) == minutes


@pytest.mark.parametrize("value", [0, -10, "0 horas", "dos horas", "2 lunas", "", None, True, 1.5, "1.5 horas"])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(InvalidAmount):
        parse_duration_minutes(value)


async def test_create_package_normalizes_duration(admin):
    async with session_scope() as session:
        pkg = await package_service.create_package(session, name=" Pase 2h ", price=1500, duration="2 horas", actor=admin)
        await session.commit()

    assert pkg.name == "Pase 2h"
    assert pkg.duration_minutes == 120
    assert pkg.status == "active"


async def test_create_package_validation(admin):
    async with session_scope() as session:
        with pytest.raises(InvalidInput):
            await package_service.create_package(session, name="  ", price=100, duration=60, actor=admin)
        with pytest.raises(InvalidAmount):
            await package_service.create_package(session, name="X", price=0, duration=60, actor=admin)
        with pytest.raises(Unauthorized):
            await package_service.create_package(session, name="X", price=100, duration=60, actor=Actor(user_id="u"))


async def test_default_packages_seeded_once():
    async with session_scope() as session:
        assert await package_service.ensure_default_packages(session) == 3
        await session.commit()
        assert await package_service.ensure_default_packages(session) == 0
        packages = await package_service.list_active(session)

    assert [(p.name, p.price, p.duration_minutes) for p in packages] == [
        ("Pase Diario", 3000, 1440),
        ("Pase Semanal", 15000, 10080),
        ("Pase Mensual", 30000, 43200),
    ]


async def test_inactive_packages_are_hidden(admin, make_package):
    pkg = await make_package("Promo")
    async with session_scope() as session:
        await package_service.set_status(session, pkg.id, active=False, actor=admin)
        await session.commit()
        assert await package_service.list_active(session) == []
