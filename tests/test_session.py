from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import DataError, OperationalError

from wifihub.core.errors import CooldownActive, InvalidAmount, InvalidInput, TransientStoreError
from wifihub.db.models import User
from wifihub.db.session import run_atomic, session_scope


def _operational() -> OperationalError:
    return OperationalError("UPDATE users", {}, Exception("database is locked"))


async def test_commits_work_result(make_user):
    await make_user("user-1")

    async def work(session):
        user = await session.get(User, "user-1")
        user.strike_count = 2
        return "ok"

    assert await run_atomic(work) == "ok"
    async with session_scope() as session:
        assert (await session.get(User, "user-1")).strike_count == 2


async def test_transient_error_before_commit_is_retried(make_user):
    await make_user("user-1")
    calls = []

    async def work(session):
        calls.append(1)
        if len(calls) == 1:
            raise _operational()
        user = await session.get(User, "user-1")
        user.strike_count = 1
        return len(calls)

    assert await run_atomic(work, attempts=3) == 2
    async with session_scope() as session:
        assert (await session.get(User, "user-1")).strike_count == 1


async def test_gives_up_after_last_attempt():
    calls = []

    async def work(session):
        calls.append(1)
        raise _operational()

    with pytest.raises(TransientStoreError) as exc:
        await run_atomic(work, attempts=2)
    assert len(calls) == 2
    assert exc.value.ack_unknown is False


async def test_commit_failure_is_ack_unknown_and_not_retried(make_user):
    await make_user("user-1")
    calls = []

    async def work(session):
        calls.append(1)
        return None

    async def broken_commit(self):
        raise _operational()

    with patch("sqlalchemy.ext.asyncio.AsyncSession.commit", broken_commit):
        with pytest.raises(TransientStoreError) as exc:
            await run_atomic(work, attempts=3)

    assert exc.value.ack_unknown is True
    assert len(calls) == 1


async def test_timeout_surfaces_as_transient_error():
    async def work(session):
        await asyncio.sleep(1)

    with pytest.raises(TransientStoreError) as exc:
        await run_atomic(work, attempts=1, timeout=0.01)
    assert "store_timeout" in str(exc.value)


async def test_validation_errors_roll_back_and_are_not_retried(make_user):
    await make_user("user-1")
    calls = []

    async def work(session):
        calls.append(1)
        user = await session.get(User, "user-1")
        user.strike_count = 4
        raise InvalidAmount("nope")

    with pytest.raises(InvalidAmount):
        await run_atomic(work, attempts=3)
    assert len(calls) == 1
    async with session_scope() as session:
        assert (await session.get(User, "user-1")).strike_count == 0


async def test_rejections_that_keep_writes_are_committed(make_user):
    await make_user("user-1")

    async def work(session):
        user = await session.get(User, "user-1")
        user.strike_count = 3
        raise CooldownActive(strike_count=3, time_remaining=None)

    with pytest.raises(CooldownActive):
        await run_atomic(work)
    async with session_scope() as session:
        assert (await session.get(User, "user-1")).strike_count == 3


async def test_value_refused_by_store_is_invalid_input_and_not_retried():
    calls = []

    async def work(session):
        calls.append(1)
        raise DataError("INSERT INTO payments", {}, Exception("value too long for type character varying(64)"))

    with pytest.raises(InvalidInput) as exc:
        await run_atomic(work, attempts=3)
    assert len(calls) == 1
    assert "value too long" in str(exc.value)
