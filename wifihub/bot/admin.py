from __future__ import annotations

import logging
from datetime import timedelta

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message
from aiogram.utils.text_decorations import html_decoration as hd

from wifihub.bot.auth import actor_for, is_owner
from wifihub.bot.keyboards import (kb_admin_menu, kb_back_admin, kb_forgive, kb_payment_actions,
                                   kb_referral_actions)
from wifihub.core.config import settings
from wifihub.core.errors import TransientStoreError, WifiHubError
from wifihub.core.time import ensure_tz, fmt_dt_cr, fmt_minutes, fmt_remaining, utcnow
from wifihub.db.models import Payment, Referral
from wifihub.db.session import session_scope
from wifihub.repo import get_penalty_minutes, set_app_setting_int
from wifihub.services.moderation.service import moderation_service
from wifihub.services.packages.service import package_service
from wifihub.services.payments.service import payment_service
from wifihub.services.referrals.service import referral_service

log = logging.getLogger(__name__)

router = Router()

_ERROR_TEXT = {
    "not_found": "No existe.",
    "already_processed": "Ya fue procesado por otro admin.",
    "unauthorized": "Sin permisos.",
    "insufficient_credits": "Créditos insuficientes.",
    "invalid_amount": "Monto inválido.",
    "invalid_input": "Dato inválido.",
}


def _error_text(e: WifiHubError) -> str:
    if isinstance(e, TransientStoreError):
        if e.ack_unknown:
            return "⚠️ No se pudo confirmar el resultado. Revisa la lista antes de reintentar."
        return "⚠️ Base de datos no disponible, intenta de nuevo."
    return _ERROR_TEXT.get(e.code, e.code)


def payment_text(p: Payment) -> str:
    return (
        f"💳 <b>Pago #{p.id}</b>\n"
        f"Usuario: <code>{hd.quote(p.user_id)}</code>\n"
        f"Paquete: {hd.quote(p.package_name)} ({fmt_minutes(p.duration_minutes)})\n"
        f"Precio: ₡{p.price}\n"
        f"SINPE: <code>{hd.quote(p.sinpe_id)}</code>\n"
        f"Comprobante: {hd.quote(p.receipt_image_url or '')}\n"
        f"Enviado: {fmt_dt_cr(p.created_at)}"
    )


def _referral_text(r: Referral) -> str:
    # every user-supplied field is escaped: messages go out with parse_mode=HTML
    lines = [
        f"🤝 <b>Referido #{r.id}</b>",
        f"Referente: <code>{hd.quote(r.referrer_id)}</code>",
        f"Nombre: {hd.quote(r.referred_name)}",
        f"Email: {hd.quote(r.referred_email)}",
    ]
    if r.relationship:
        lines.append(f"Relación: {hd.quote(r.relationship)}")
    if r.notes:
        lines.append(f"Notas: {hd.quote(r.notes)}")
    lines.append(f"Enviado: {fmt_dt_cr(r.created_at)}")
    return "\n".join(lines)


def _tail_id(data: str | None) -> str:
    return (data or "").rsplit(":", 1)[-1]


def _tail_int(data: str | None) -> int | None:
    raw = _tail_id(data)
    return int(raw) if raw.isdigit() else None


async def _safe_edit(cb: CallbackQuery, text: str) -> None:
    try:
        await cb.message.edit_text(text, parse_mode="HTML")
    except Exception:
        # message too old or unchanged; the answer alert already told the admin
        log.debug("admin_edit_failed data=%s", cb.data)


# ==========================
# MENU
# ==========================

@router.message(Command("admin"))
async def admin_cmd(message: Message) -> None:
    if not is_owner(message.from_user.id):
        return
    await message.answer("🛠 <b>Panel de administración</b>", reply_markup=kb_admin_menu(), parse_mode="HTML")


@router.callback_query(F.data == "admin:menu")
async def admin_menu(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_owner(cb.from_user.id):
        return
    await cb.message.edit_text("🛠 <b>Panel de administración</b>", reply_markup=kb_admin_menu(), parse_mode="HTML")


# ==========================
# PAYMENTS
# ==========================

@router.callback_query(F.data == "admin:pay:list")
async def admin_pay_list(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_owner(cb.from_user.id):
        return

    async with session_scope() as session:
        pending = await payment_service.list_pending(session, limit=20)

    if not pending:
        await cb.message.answer("No hay pagos pendientes ✅", reply_markup=kb_back_admin())
        return
    for p in pending:
        try:
            await cb.message.answer(payment_text(p), reply_markup=kb_payment_actions(p.id), parse_mode="HTML")
        except Exception:
            # one unsendable card must not hide the rest of the queue
            log.exception("admin_pay_card_failed payment_id=%s", p.id)


@router.callback_query(F.data.startswith("pay:approve:"))
async def admin_pay_approve(cb: CallbackQuery) -> None:
    if not is_owner(cb.from_user.id):
        await cb.answer()
        return
    payment_id = _tail_int(cb.data)
    if payment_id is None:
        await cb.answer("ID inválido", show_alert=True)
        return

    try:
        payment = await payment_service.approve_payment(payment_id, actor=actor_for(cb.from_user.id))
    except WifiHubError as e:
        log.info("admin_pay_approve_refused payment_id=%s code=%s", payment_id, e.code)
        await cb.answer(_error_text(e), show_alert=True)
        return

    await cb.answer("Aprobado ✅")
    await _safe_edit(
        cb,
        f"✅ Pago #{payment.id} aprobado\n"
        f"Token: <code>{payment.token}</code>\n"
        f"Acreditado: {fmt_minutes(payment.duration_minutes)}",
    )


@router.callback_query(F.data.startswith("pay:reject:"))
async def admin_pay_reject(cb: CallbackQuery) -> None:
    if not is_owner(cb.from_user.id):
        await cb.answer()
        return
    payment_id = _tail_int(cb.data)
    if payment_id is None:
        await cb.answer("ID inválido", show_alert=True)
        return

    try:
        payment = await payment_service.reject_payment(payment_id, actor=actor_for(cb.from_user.id))
    except WifiHubError as e:
        log.info("admin_pay_reject_refused payment_id=%s code=%s", payment_id, e.code)
        await cb.answer(_error_text(e), show_alert=True)
        return

    await cb.answer("Rechazado")
    await _safe_edit(cb, f"❌ Pago #{payment.id} rechazado")


# ==========================
# REFERRALS
# ==========================

@router.callback_query(F.data == "admin:ref:list")
async def admin_ref_list(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_owner(cb.from_user.id):
        return

    async with session_scope() as session:
        pending = await referral_service.list_pending(session, limit=20)

    if not pending:
        await cb.message.answer("No hay referidos pendientes ✅", reply_markup=kb_back_admin())
        return
    for r in pending:
        try:
            await cb.message.answer(_referral_text(r), reply_markup=kb_referral_actions(r.id), parse_mode="HTML")
        except Exception:
            log.exception("admin_ref_card_failed referral_id=%s", r.id)


@router.callback_query(F.data.startswith("ref:ok:"))
async def admin_ref_successful(cb: CallbackQuery) -> None:
    if not is_owner(cb.from_user.id):
        await cb.answer()
        return
    referral_id = _tail_int(cb.data)
    if referral_id is None:
        await cb.answer("ID inválido", show_alert=True)
        return

    try:
        referral = await referral_service.mark_successful(referral_id, actor=actor_for(cb.from_user.id))
    except WifiHubError as e:
        await cb.answer(_error_text(e), show_alert=True)
        return

    await cb.answer("Marcado como exitoso 🎉")
    await _safe_edit(
        cb,
        f"🎉 Referido #{referral.id} exitoso\n"
        f"Recompensa: {fmt_minutes(referral.credit_reward)} para <code>{referral.referrer_id}</code>",
    )


@router.callback_query(F.data.startswith("ref:expire:"))
async def admin_ref_expire(cb: CallbackQuery) -> None:
    if not is_owner(cb.from_user.id):
        await cb.answer()
        return
    referral_id = _tail_int(cb.data)
    if referral_id is None:
        await cb.answer("ID inválido", show_alert=True)
        return

    try:
        referral = await referral_service.expire(referral_id, actor=actor_for(cb.from_user.id))
    except WifiHubError as e:
        await cb.answer(_error_text(e), show_alert=True)
        return

    await cb.answer("Expirado")
    await _safe_edit(cb, f"⌛ Referido #{referral.id} expirado")


@router.callback_query(F.data == "admin:strikes:list")
async def admin_strikes_list(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_owner(cb.from_user.id):
        return

    async with session_scope() as session:
        users = await referral_service.list_users_with_strikes(session, limit=20)

    if not users:
        await cb.message.answer("Nadie tiene strikes ✅", reply_markup=kb_back_admin())
        return
    for u in users:
        text = f"⚠️ <code>{hd.quote(u.id)}</code> ({hd.quote(u.username or 'sin usuario')}): {u.strike_count} strikes"
        if u.last_strike_reset:
            left = ensure_tz(u.last_strike_reset) + timedelta(days=settings.referral_punishment_days) - utcnow()
            text += f"\nCastigado desde {fmt_dt_cr(u.last_strike_reset)}, quedan {fmt_remaining(left)}"
        await cb.message.answer(text, reply_markup=kb_forgive(u.id), parse_mode="HTML")


@router.callback_query(F.data.startswith("ref:forgive:"))
async def admin_ref_forgive(cb: CallbackQuery) -> None:
    if not is_owner(cb.from_user.id):
        await cb.answer()
        return
    user_id = (cb.data or "")[len("ref:forgive:"):]

    try:
        await referral_service.forgive_strikes(user_id, actor=actor_for(cb.from_user.id))
    except WifiHubError as e:
        await cb.answer(_error_text(e), show_alert=True)
        return

    await cb.answer("Strikes perdonados 🧽")
    await _safe_edit(cb, f"🧽 Strikes de <code>{hd.quote(user_id)}</code> perdonados")


# ==========================
# PACKAGES / MODERATION
# ==========================

@router.callback_query(F.data == "admin:pkg:list")
async def admin_pkg_list(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_owner(cb.from_user.id):
        return

    async with session_scope() as session:
        packages = await package_service.list_active(session)
        penalty = await get_penalty_minutes(session)

    lines = ["📦 <b>Paquetes activos</b>"]
    lines.extend(f"#{p.id} {hd.quote(p.name)}: ₡{p.price} / {fmt_minutes(p.duration_minutes)}" for p in packages)
    lines.append("")
    lines.append(f"Penalización por lenguaje: {fmt_minutes(penalty)}")
    await cb.message.answer("\n".join(lines), reply_markup=kb_back_admin(), parse_mode="HTML")


@router.message(Command("penalty"))
async def admin_set_penalty(message: Message, command: CommandObject) -> None:
    """/penalty <minutes>"""
    if not is_owner(message.from_user.id):
        return
    raw = (command.args or "").strip()
    if not raw.isdigit():
        await message.answer("Uso: /penalty <minutos>")
        return

    async with session_scope() as session:
        await set_app_setting_int(session, "penalty_minutes", int(raw))
        await session.commit()
    log.info("admin_penalty_set minutes=%s by=%s", raw, message.from_user.id)
    await message.answer(f"✅ Penalización: {fmt_minutes(int(raw))}")


@router.message(Command("censor"))
async def admin_censor(message: Message, command: CommandObject) -> None:
    """/censor <word> adds, /censor -<word> removes."""
    if not is_owner(message.from_user.id):
        return
    raw = (command.args or "").strip()
    if not raw:
        await message.answer("Uso: /censor <palabra> o /censor -<palabra>")
        return

    actor = actor_for(message.from_user.id)
    try:
        async with session_scope() as session:
            if raw.startswith("-"):
                removed = await moderation_service.remove_word(session, raw[1:], actor=actor)
                reply = "🗑 Eliminada" if removed else "No estaba en la lista"
            else:
                word = await moderation_service.add_word(session, raw, actor=actor)
                reply = f"✅ Agregada: <code>{hd.quote(word)}</code>"
            await session.commit()
    except WifiHubError as e:
        await message.answer(_error_text(e))
        return
    await message.answer(reply, parse_mode="HTML")
