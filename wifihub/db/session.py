from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession, async_sessionmaker,
                                    create_async_engine)

from wifihub.core.config import make_async_db_url, settings
from wifihub.core.errors import InvalidInput, TransientStoreError, WifiHubError

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None

log = logging.getLogger(__name__)

T = TypeVar("T")

# Errors after which re-running the whole transaction is safe, as long as the
# commit itself was never attempted. IntegrityError covers token collisions.
_RETRYABLE = (OperationalError, InterfaceError, IntegrityError)


def init_engine(database_url: str, **engine_kwargs: Any) -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        return
    url = make_async_db_url(database_url)
    if url.startswith("postgresql"):
        engine_kwargs.setdefault("pool_pre_ping", True)
    _engine = create_async_engine(url, **engine_kwargs)
    _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
    log.info("db_engine_initialized")


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessionmaker = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("DB engine not initialized. Call init_engine() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        raise RuntimeError("DB engine not initialized. Call init_engine() first.")
    return _sessionmaker


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """AsyncSession context manager. Uncommitted work is rolled back on exit."""
    sm = get_sessionmaker()
    async with sm() as session:
        yield session


class _Attempt:
    __slots__ = ("committing",)

    def __init__(self) -> None:
        self.committing = False


async def _commit(session: AsyncSession, attempt: _Attempt) -> None:
    # flush first so constraint violations surface before the commit starts
    await session.flush()
    attempt.committing = True
    await session.commit()


async def _run_once(work: Callable[[AsyncSession], Awaitable[T]], attempt: _Attempt) -> T:
    async with session_scope() as session:
        try:
            result = await work(session)
        except WifiHubError as e:
            if e.keeps_writes:
                await _commit(session, attempt)
            raise
        await _commit(session, attempt)
        return result


async def run_atomic(
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: int | None = None,
    timeout: float | None = None,
) -> T:
    """Run `work(session)` as one all-or-nothing transaction.

    Bounded by `timeout` seconds. Transient store failures are retried with
    exponential backoff only while the commit has not been attempted; once the
    commit started its outcome is unknown and the error is raised with
    ack_unknown=True.
    """
    attempts = max(1, attempts or settings.store_retry_attempts)
    timeout = timeout or settings.store_timeout_seconds

    for n in range(1, attempts + 1):
        attempt = _Attempt()
        try:
            return await asyncio.wait_for(_run_once(work, attempt), timeout=timeout)
        except TransientStoreError as e:
            err = e
        except asyncio.TimeoutError as e:
            err = TransientStoreError("store_timeout", ack_unknown=attempt.committing)
            err.__cause__ = e
        except _RETRYABLE as e:
            err = TransientStoreError(f"store_unavailable: {e.__class__.__name__}", ack_unknown=attempt.committing)
            err.__cause__ = e
        except DataError as e:
            # value the store refuses (too long, out of range): terminal, never retried
            if attempt.committing:
                raise TransientStoreError("commit_failed", ack_unknown=True) from e
            raise InvalidInput(f"store_rejected_value: {e.orig}") from e
        except DBAPIError as e:
            if attempt.committing:
                raise TransientStoreError("commit_failed", ack_unknown=True) from e
            raise

        if err.ack_unknown or n >= attempts:
            raise err
        delay = settings.store_retry_backoff_seconds * (2 ** (n - 1))
        log.warning("store_transaction_retry attempt=%s delay=%.2f err=%s", n, delay, err)
        await asyncio.sleep(delay)

    raise RuntimeError("unreachable")
