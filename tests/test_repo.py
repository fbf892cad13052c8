from __future__ import annotations

import dataclasses

import pytest

import wifihub.repo as repo
from wifihub.core.errors import InvalidInput, NotFound, Unauthorized, UsernameTaken
from wifihub.core.roles import Actor, Role
from wifihub.db.session import session_scope
from wifihub.services.codes import REFERRAL_CODE_RE


async def test_ensure_user_creates_once_with_referral_code():
    async with session_scope() as session:
        user = await repo.ensure_user(session, "uid-123456789", email=" Ana@Example.com ", username="ana")
        await session.commit()
    assert user.email == "ana@example.com"
    assert user.role == "user"
    assert user.credits_minutes == 0
    assert REFERRAL_CODE_RE.match(user.referral_code)
    assert user.referral_code.startswith("REF-UID-1234-")

    async with session_scope() as session:
        again = await repo.ensure_user(session, "uid-123456789", username="otro")
        await session.commit()
    # username is set once
    assert again.username == "ana"
    assert again.referral_code == user.referral_code


async def test_username_must_be_unique():
    async with session_scope() as session:
        await repo.ensure_user(session, "u1", username="ana")
        await session.commit()
        with pytest.raises(UsernameTaken):
            await repo.ensure_user(session, "u2", username="ana")


async def test_blank_user_id_rejected():
    async with session_scope() as session:
        with pytest.raises(InvalidInput):
            await repo.ensure_user(session, "  ")


async def test_admin_emails_resolve_to_admin_role(monkeypatch):
    monkeypatch.setattr(repo, "settings", dataclasses.replace(repo.settings, admin_emails=("jefe@example.com",)))
    async with session_scope() as session:
        await repo.ensure_user(session, "boss", email="JEFE@example.com", username="jefe")
        await session.commit()
        actor = await repo.resolve_actor(session, "boss")
    assert actor == Actor(user_id="boss", role=Role.ADMIN)


async def test_set_user_role_requires_admin(admin, make_user):
    await make_user("user-1")
    async with session_scope() as session:
        with pytest.raises(Unauthorized):
            await repo.set_user_role(session, "user-1", Role.REPORTER, actor=Actor(user_id="user-1"))
        user = await repo.set_user_role(session, "user-1", Role.REPORTER, actor=admin)
        await session.commit()
    assert user.role == "reporter"


async def test_get_user_missing():
    async with session_scope() as session:
        with pytest.raises(NotFound):
            await repo.get_user(session, "ghost")


def test_role_parse_falls_back_to_user():
    assert Role.parse("ADMIN") is Role.ADMIN
    assert Role.parse("superuser") is Role.USER
    assert Role.parse(None) is Role.USER
