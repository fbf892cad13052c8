from __future__ import annotations

import asyncio
import dataclasses
from unittest.mock import AsyncMock, MagicMock

import pytest

import wifihub.bot.auth as auth
from wifihub.bot import admin as handlers
from wifihub.bot.feed import run_pending_payments_feed
from wifihub.bot.middlewares import OperatorsOnlyMiddleware
from wifihub.core.roles import Role
from wifihub.db.models import Payment, User
from wifihub.db.session import session_scope
from wifihub.services.referrals.service import referral_service

OWNER = 777


@pytest.fixture(autouse=True)
def owner(monkeypatch):
    monkeypatch.setattr(auth, "settings", dataclasses.replace(auth.settings, owner_tg_id=OWNER, admin_tg_ids=(888,)))


def _cb(data: str, *, tg_id: int = OWNER) -> MagicMock:
    cb = MagicMock()
    cb.data = data
    cb.from_user.id = tg_id
    cb.answer = AsyncMock()
    cb.message.answer = AsyncMock()
    cb.message.edit_text = AsyncMock()
    return cb


def test_actor_for_operator_and_stranger():
    assert auth.actor_for(OWNER).role is Role.ADMIN
    assert auth.actor_for(OWNER).user_id == f"tg:{OWNER}"
    assert auth.actor_for(888).is_admin
    assert auth.actor_for(5).role is Role.USER
    assert auth.admin_chat_ids() == [OWNER, 888]


async def test_approve_button_grants_credit(payments, make_user, make_package, balance_of):
    await make_user("user-1")
    pkg = await make_package(minutes=120)
    res = await payments.submit_payment("user-1", pkg.id, "123", b"x")

    cb = _cb(f"pay:approve:{res.payment_id}")
    await handlers.admin_pay_approve(cb)

    cb.answer.assert_awaited_once_with("Aprobado ✅")
    assert "aprobado" in cb.message.edit_text.await_args.args[0]
    assert await balance_of("user-1") == 120
    async with session_scope() as session:
        p = await session.get(Payment, res.payment_id)
    assert p.processed_by == f"tg:{OWNER}"


async def test_double_tap_approve_shows_alert(payments, make_user, make_package, balance_of):
    await make_user("user-1")
    pkg = await make_package(minutes=120)
    res = await payments.submit_payment("user-1", pkg.id, "123", b"x")

    await handlers.admin_pay_approve(_cb(f"pay:approve:{res.payment_id}"))
    cb = _cb(f"pay:approve:{res.payment_id}")
    await handlers.admin_pay_approve(cb)

    cb.answer.assert_awaited_once_with("Ya fue procesado por otro admin.", show_alert=True)
    cb.message.edit_text.assert_not_awaited()
    assert await balance_of("user-1") == 120


async def test_reject_button(payments, make_user, make_package, balance_of):
    await make_user("user-1")
    pkg = await make_package()
    res = await payments.submit_payment("user-1", pkg.id, "123", b"x")

    await handlers.admin_pay_reject(_cb(f"pay:reject:{res.payment_id}"))

    async with session_scope() as session:
        assert (await session.get(Payment, res.payment_id)).status == "rejected"
    assert await balance_of("user-1") == 0


async def test_strangers_cannot_approve(payments, make_user, make_package, balance_of):
    await make_user("user-1")
    pkg = await make_package()
    res = await payments.submit_payment("user-1", pkg.id, "123", b"x")

    cb = _cb(f"pay:approve:{res.payment_id}", tg_id=5)
    await handlers.admin_pay_approve(cb)

    cb.message.edit_text.assert_not_awaited()
    assert await balance_of("user-1") == 0


async def test_bad_callback_id():
    cb = _cb("pay:approve:abc")
    await handlers.admin_pay_approve(cb)
    cb.answer.assert_awaited_once_with("ID inválido", show_alert=True)


async def test_pending_list_sends_one_card_per_payment(payments, make_user, make_package):
    await make_user("user-1")
    pkg = await make_package()
    await payments.submit_payment("user-1", pkg.id, "1", b"x")
    await payments.submit_payment("user-1", pkg.id, "2", b"x")

    cb = _cb("admin:pay:list")
    await handlers.admin_pay_list(cb)

    assert cb.message.answer.await_count == 2
    markup = cb.message.answer.await_args.kwargs["reply_markup"]
    assert markup.inline_keyboard[0][0].callback_data.startswith("pay:approve:")


async def test_forgive_button(make_user):
    await make_user("user-1")
    async with session_scope() as session:
        user = await session.get(User, "user-1")
        user.strike_count = 3
        await session.commit()

    cb = _cb("ref:forgive:user-1")
    await handlers.admin_ref_forgive(cb)

    cb.answer.assert_awaited_once_with("Strikes perdonados 🧽")
    async with session_scope() as session:
        assert (await session.get(User, "user-1")).strike_count == 0


async def test_operators_only_middleware_drops_strangers():
    mw = OperatorsOnlyMiddleware()
    handler = AsyncMock(return_value="handled")

    stranger = MagicMock()
    stranger.from_user.id = 5
    assert await mw(handler, stranger, {}) is None
    handler.assert_not_awaited()

    operator = MagicMock()
    operator.from_user.id = OWNER
    assert await mw(handler, operator, {}) == "handled"


async def test_feed_pushes_new_pending_payments(payments, make_user, make_package):
    await make_user("user-1")
    pkg = await make_package()
    res = await payments.submit_payment("user-1", pkg.id, "123", b"x")

    bot = MagicMock()
    sent = []

    async def send_message(chat_id, text, **kwargs):
        sent.append((chat_id, text))
        if chat_id == 888:
            raise RuntimeError("bot was blocked by the user")

    bot.send_message = send_message

    task = asyncio.create_task(run_pending_payments_feed(bot, interval=0.01))
    for _ in range(100):
        if len(sent) >= 2:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    # a failing chat does not stop the feed, and nothing is sent twice
    assert [chat for chat, _ in sent] == [OWNER, 888]
    assert f"Pago #{res.payment_id}" in sent[0][1]


async def test_user_text_is_escaped_in_review_cards(payments, make_user, make_package):
    await make_user("user-1")
    await referral_service.submit_referral("user-1", "ana@example.com", "Ana <3", "amiga & vecina", "trae <b>cafe")
    pkg = await make_package("Pase <VIP>")
    await payments.submit_payment("user-1", pkg.id, "<123>", b"x")

    cb = _cb("admin:ref:list")
    await handlers.admin_ref_list(cb)
    text = cb.message.answer.await_args.args[0]
    assert "Nombre: Ana &lt;3" in text
    assert "amiga &amp; vecina" in text
    assert "trae &lt;b&gt;cafe" in text
    assert "<b>cafe" not in text

    cb = _cb("admin:pay:list")
    await handlers.admin_pay_list(cb)
    text = cb.message.answer.await_args.args[0]
    assert "Pase &lt;VIP&gt;" in text
    assert "<code>&lt;123&gt;</code>" in text


async def test_pending_list_keeps_going_after_a_failed_card(payments, make_user, make_package):
    await make_user("user-1")
    pkg = await make_package()
    await payments.submit_payment("user-1", pkg.id, "1", b"x")
    await payments.submit_payment("user-1", pkg.id, "2", b"x")

    cb = _cb("admin:pay:list")
    cb.message.answer = AsyncMock(side_effect=[RuntimeError("can't parse entities"), None])
    await handlers.admin_pay_list(cb)

    assert cb.message.answer.await_count == 2
