from __future__ import annotations

from unittest.mock import patch

from sqlalchemy import select

from wifihub.db.models import Notification
from wifihub.db.session import session_scope
from wifihub.services.notifications.service import notification_service


async def _all() -> list[Notification]:
    async with session_scope() as session:
        return list((await session.scalars(select(Notification).order_by(Notification.id))).all())


async def test_notify_writes_document():
    nid = await notification_service.notify(
        "user-1", "admin-1", "payment_approved", {"payment_id": 7}, title="Hola", message="Aprobado"
    )

    [n] = await _all()
    assert n.id == nid
    assert (n.to_user_id, n.from_user_id, n.type) == ("user-1", "admin-1", "payment_approved")
    assert n.payload == {"payment_id": 7}
    assert n.is_read is False
    assert n.is_admin_notification is False


async def test_notify_swallows_store_failures(caplog):
    with patch("wifihub.services.notifications.service.session_scope", side_effect=RuntimeError("down")):
        nid = await notification_service.notify("user-1", None, "mention")

    assert nid is None
    assert "notification_failed" in caplog.text


async def test_unread_and_mark_read():
    a = await notification_service.notify("user-1", None, "mention", message="a")
    b = await notification_service.notify("user-1", None, "mention", message="b")
    await notification_service.notify("user-2", None, "mention", message="c")

    async with session_scope() as session:
        assert [n.id for n in await notification_service.unread(session, "user-1")] == [b, a]
        assert await notification_service.mark_read(session, a, user_id="user-1") is True
        # cannot mark someone else's
        assert await notification_service.mark_read(session, b, user_id="user-2") is False
        await session.commit()
        assert [n.id for n in await notification_service.unread(session, "user-1")] == [b]


async def test_mentions_notify_each_user_once_and_skip_author(make_user):
    await make_user("author", username="maria")
    await make_user("u-2", username="jose")
    await make_user("u-3", username="ana")

    sent = await notification_service.notify_mentions(
        author_id="author",
        author_username="maria",
        text="@jose y @ana, @jose otra vez. Yo soy @maria y @fantasma no existe",
        topic_name="general",
        post_id=42,
    )

    assert sent == 2
    rows = await _all()
    assert sorted(n.to_user_id for n in rows) == ["u-2", "u-3"]
    assert all(n.message == "maria te mencionó en #general" for n in rows)
    assert all(n.payload == {"post_id": "42", "topic": "general"} for n in rows)


async def test_mentions_without_handles():
    assert await notification_service.notify_mentions(
        author_id="a", author_username="a", text="sin menciones", topic_name="general"
    ) == 0
    assert await _all() == []
