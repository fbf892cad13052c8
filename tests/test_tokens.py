from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from wifihub.core.errors import InsufficientCredits, InvalidAmount, InvalidInput, NotFound
from wifihub.db.models import CreditEntry, Token
from wifihub.db.session import session_scope
from wifihub.services.codes import TOKEN_RE
from wifihub.services.tokens.service import token_service


async def _token_count() -> int:
    async with session_scope() as session:
        return int(await session.scalar(select(func.count(Token.id))))


async def test_issue_spends_credit_and_mints_token(make_user, balance_of):
    await make_user("user-1", credits=120)

    token = await token_service.issue_token("user-1", 90)

    assert TOKEN_RE.match(token.token_string)
    assert token.duration_minutes == 90
    assert token.status == "active"
    assert await balance_of("user-1") == 30

    async with session_scope() as session:
        entry = (await session.scalars(select(CreditEntry))).one()
    assert (entry.delta, entry.reason, entry.ref_id) == (-90, "token_issued", str(token.id))


async def test_scenario_c_insufficient_credits_changes_nothing(make_user, balance_of):
    await make_user("user-1", credits=30)

    with pytest.raises(InsufficientCredits) as exc:
        await token_service.issue_token("user-1", 50)

    assert exc.value.requested == 50
    assert exc.value.balance == 30
    assert await balance_of("user-1") == 30
    assert await _token_count() == 0


async def test_whole_balance_can_be_spent_but_not_more(make_user, balance_of):
    await make_user("user-1", credits=60)

    await token_service.issue_token("user-1", 60)
    assert await balance_of("user-1") == 0

    with pytest.raises(InsufficientCredits):
        await token_service.issue_token("user-1", 1)
    assert await balance_of("user-1") == 0


@pytest.mark.parametrize("minutes", [0, -5, 1.5, "30", True, None])
async def test_invalid_minutes(make_user, balance_of, minutes):
    await make_user("user-1", credits=100)

    with pytest.raises(InvalidAmount):
        await token_service.issue_token("user-1", minutes)
    assert await balance_of("user-1") == 100


async def test_unknown_user(make_user):
    with pytest.raises(NotFound):
        await token_service.issue_token("ghost", 10)


async def test_idempotency_key_replays_without_second_debit(make_user, balance_of):
    await make_user("user-1", credits=100)

    first = await token_service.issue_token("user-1", 40, idempotency_key="req-1")
    again = await token_service.issue_token("user-1", 40, idempotency_key="req-1")

    assert again.id == first.id
    assert again.token_string == first.token_string
    assert await balance_of("user-1") == 60
    assert await _token_count() == 1

    other = await token_service.issue_token("user-1", 40, idempotency_key="req-2")
    assert other.id != first.id
    assert await balance_of("user-1") == 20


async def test_idempotency_key_is_scoped_per_user(make_user, balance_of):
    await make_user("user-1", credits=50)
    await make_user("user-2", credits=50)

    a = await token_service.issue_token("user-1", 10, idempotency_key="same")
    b = await token_service.issue_token("user-2", 10, idempotency_key="same")

    assert a.id != b.id
    assert await balance_of("user-1") == 40
    assert await balance_of("user-2") == 40


async def test_blank_idempotency_key_rejected(make_user):
    await make_user("user-1", credits=50)
    with pytest.raises(InvalidInput):
        await token_service.issue_token("user-1", 10, idempotency_key="   ")


async def test_token_strings_are_unique(make_user):
    await make_user("user-1", credits=100)
    tokens = [await token_service.issue_token("user-1", 5) for _ in range(10)]
    assert len({t.token_string for t in tokens}) == 10


async def test_idempotency_key_reused_with_other_minutes_is_refused(make_user, balance_of):
    await make_user("user-1", credits=100)
    await token_service.issue_token("user-1", 40, idempotency_key="req-1")

    with pytest.raises(InvalidInput):
        await token_service.issue_token("user-1", 50, idempotency_key="req-1")
    assert await balance_of("user-1") == 60
    assert await _token_count() == 1


async def test_overlapping_issues_never_overdraw(file_db, make_user, balance_of):
    await make_user("user-1", credits=100)

    results = await asyncio.gather(
        token_service.issue_token("user-1", 60),
        token_service.issue_token("user-1", 60),
        return_exceptions=True,
    )

    issued = [r for r in results if isinstance(r, Token)]
    refused = [r for r in results if isinstance(r, InsufficientCredits)]
    assert len(issued) == 1 and len(refused) == 1
    assert await balance_of("user-1") == 40
    assert await _token_count() == 1
    async with session_scope() as session:
        spent = (await session.scalars(select(CreditEntry.delta).where(CreditEntry.user_id == "user-1"))).all()
    assert spent == [-60]
