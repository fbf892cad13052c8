import asyncio
import contextlib
import logging
import subprocess
import sys

from wifihub.core.config import settings
from wifihub.core.logging import setup_logging
from wifihub.db.session import dispose_engine, init_engine, session_scope
from wifihub.scheduler.worker import run_scheduler
from wifihub.services.packages.service import package_service

log = logging.getLogger(__name__)


def _run_alembic_upgrade_head_best_effort() -> None:
    """Apply migrations at boot (best-effort)."""
    try:
        subprocess.check_call([sys.executable, "-m", "alembic", "upgrade", "head"])
        log.info("alembic_upgrade_head_done")
    except Exception:
        log.exception("alembic_upgrade_head_failed")


async def _seed() -> None:
    async with session_scope() as session:
        created = await package_service.ensure_default_packages(session)
        await session.commit()
    if created:
        log.info("default_packages_seeded count=%s", created)


async def main() -> None:
    setup_logging()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is missing")

    _run_alembic_upgrade_head_best_effort()
    init_engine(settings.database_url)
    await _seed()

    scheduler = asyncio.create_task(run_scheduler()) if settings.scheduler_enabled else None
    try:
        if settings.bot_token:
            from wifihub.bot.app import run_bot

            await run_bot()
        elif scheduler is not None:
            log.warning("bot_disabled reason=BOT_TOKEN is missing")
            await scheduler
        else:
            log.warning("nothing_to_run bot and scheduler are both disabled")
    finally:
        if scheduler is not None:
            scheduler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
