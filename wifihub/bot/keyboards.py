from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder


def kb_admin_menu() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="💳 Pagos pendientes", callback_data="admin:pay:list")
    b.button(text="🤝 Referidos pendientes", callback_data="admin:ref:list")
    b.button(text="⚠️ Usuarios con strikes", callback_data="admin:strikes:list")
    b.button(text="📦 Paquetes", callback_data="admin:pkg:list")
    b.adjust(1)
    return b.as_markup()


def kb_back_admin() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="⬅️ Volver", callback_data="admin:menu")
    b.adjust(1)
    return b.as_markup()


def kb_payment_actions(payment_id: int) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="✅ Aprobar", callback_data=f"pay:approve:{payment_id}")
    b.button(text="❌ Rechazar", callback_data=f"pay:reject:{payment_id}")
    b.adjust(2)
    return b.as_markup()


def kb_referral_actions(referral_id: int) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="🎉 Exitoso", callback_data=f"ref:ok:{referral_id}")
    b.button(text="⌛ Expirar", callback_data=f"ref:expire:{referral_id}")
    b.adjust(2)
    return b.as_markup()


def kb_forgive(user_id: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="🧽 Perdonar strikes", callback_data=f"ref:forgive:{user_id}")
    b.adjust(1)
    return b.as_markup()
