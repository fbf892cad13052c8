from wifihub.core.config import settings
from wifihub.core.roles import Actor, Role


def is_owner(tg_id: int) -> bool:
    tid = int(tg_id)
    if settings.owner_tg_id and tid == int(settings.owner_tg_id):
        return True
    return tid in set(settings.admin_tg_ids)


def actor_for(tg_id: int) -> Actor:
    """Bot operators act as admins under a synthetic `tg:<id>` identity."""
    return Actor(user_id=f"tg:{int(tg_id)}", role=Role.ADMIN if is_owner(tg_id) else Role.USER)


def admin_chat_ids() -> list[int]:
    ids = [int(settings.owner_tg_id)] if settings.owner_tg_id else []
    ids.extend(int(i) for i in settings.admin_tg_ids if int(i) not in ids)
    return ids
