from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wifihub.core.config import settings
from wifihub.core.errors import InvalidInput, NotFound, UsernameTaken
from wifihub.core.roles import Actor, Role
from wifihub.core.time import utcnow
from wifihub.db.models import AppSetting, User

log = logging.getLogger(__name__)


# ---- Runtime settings (admin-tunable) ----------------------------------------
async def get_app_setting_int(session: AsyncSession, key: str, *, default: int) -> int:
    row = await session.get(AppSetting, key)
    if not row or row.int_value is None:
        return int(default)
    return int(row.int_value)


async def set_app_setting_int(session: AsyncSession, key: str, value: int) -> None:
    row = await session.get(AppSetting, key)
    if not row:
        row = AppSetting(key=key)
        session.add(row)
    row.int_value = int(value)
    row.touch()
    await session.flush()


async def get_penalty_minutes(session: AsyncSession) -> int:
    """Runtime-tunable moderation penalty. Falls back to static settings.penalty_minutes."""
    return await get_app_setting_int(session, "penalty_minutes", default=settings.penalty_minutes)


async def get_referral_reward_minutes(session: AsyncSession) -> int:
    return await get_app_setting_int(
        session, "referral_reward_minutes", default=settings.referral_reward_minutes
    )


# ---- Users --------------------------------------------------------------------
async def get_user(session: AsyncSession, user_id: str, *, for_update: bool = False) -> User:
    q = select(User).where(User.id == user_id)
    if for_update:
        q = q.with_for_update()
    user = (await session.execute(q)).scalar_one_or_none()
    if not user:
        raise NotFound(f"user_not_found user_id={user_id}")
    return user


async def ensure_user(
    session: AsyncSession,
    user_id: str,
    *,
    email: str | None = None,
    username: str | None = None,
) -> User:
    """
    Ensures the User row exists. Called once sign-in completes and a username
    was chosen. The username is set once and never overwritten.
    """
    user_id = (user_id or "").strip()
    if not user_id:
        raise InvalidInput("user_id_required")
    username = (username or "").strip() or None
    email = (email or "").strip().lower() or None

    user = await session.get(User, user_id)
    if username and (not user or not user.username):
        taken = await session.scalar(
            select(User.id).where(User.username == username, User.id != user_id).limit(1)
        )
        if taken:
            raise UsernameTaken(f"username_taken username={username}")

    if not user:
        role = Role.ADMIN if email and email in settings.admin_emails else Role.USER
        user = User(id=user_id, email=email, username=username, role=role.value)
        session.add(user)
        await session.flush()
        log.info("user_created user_id=%s role=%s", user_id, role.value)
    else:
        changed = False
        if username and not user.username:
            user.username = username
            changed = True
        if email and user.email != email:
            user.email = email
            changed = True
        if changed:
            user.updated_at = utcnow()
            await session.flush()

    # Ensure the user has a referral code
    from wifihub.services.referrals.service import referral_service

    await referral_service.ensure_referral_code(session, user_id)
    return user


async def resolve_actor(session: AsyncSession, user_id: str) -> Actor:
    user = await get_user(session, user_id)
    return Actor(user_id=user.id, role=Role.parse(user.role))


async def set_user_role(session: AsyncSession, user_id: str, role: Role, *, actor: Actor) -> User:
    actor.require_admin()
    user = await get_user(session, user_id)
    user.role = role.value
    user.updated_at = utcnow()
    await session.flush()
    log.info("user_role_changed user_id=%s role=%s by=%s", user_id, role.value, actor.user_id)
    return user
