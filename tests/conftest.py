from __future__ import annotations

import dataclasses

import pytest
from sqlalchemy.pool import StaticPool

from wifihub.core.roles import Actor, Role
from wifihub.db.base import Base
from wifihub.db.models import Package, User
from wifihub.db.session import dispose_engine, get_engine, init_engine, session_scope
from wifihub.services.payments.service import PaymentService
from wifihub.services.storage.blob import MockBlobStore


@pytest.fixture(autouse=True)
async def db():
    init_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await dispose_engine()


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    import wifihub.db.session as session_mod

    monkeypatch.setattr(
        session_mod,
        "settings",
        dataclasses.replace(session_mod.settings, store_retry_backoff_seconds=0.0, store_timeout_seconds=5.0),
    )


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def blob_store() -> MockBlobStore:
    return MockBlobStore()


@pytest.fixture
def payments(blob_store) -> PaymentService:
    return PaymentService(blob_store=blob_store)


@pytest.fixture
def make_user():
    async def _make(user_id: str = "user-1", *, credits: int = 0, email: str | None = None, username: str | None = None) -> User:
        async with session_scope() as session:
            user = User(
                id=user_id,
                email=email or f"{user_id}@example.com",
                username=username or user_id.replace("-", "_"),
                credits_minutes=credits,
            )
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest.fixture
def make_package():
    async def _make(name: str = "Pase 2h", *, price: int = 1000, minutes: int = 120, status: str = "active") -> Package:
        async with session_scope() as session:
            pkg = Package(name=name, price=price, duration_minutes=minutes, status=status)
            session.add(pkg)
            await session.commit()
            return pkg

    return _make


@pytest.fixture
def balance_of():
    async def _balance(user_id: str) -> int:
        async with session_scope() as session:
            user = await session.get(User, user_id)
            return int(user.credits_minutes)

    return _balance


@pytest.fixture
async def file_db(db, tmp_path):
    """Swap the shared in-memory engine for a file database with one connection per session.

    Needed wherever two transactions must genuinely overlap.
    """
    await dispose_engine()
    init_engine(f"sqlite+aiosqlite:///{tmp_path / 'wifihub.db'}", connect_args={"timeout": 10})
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
