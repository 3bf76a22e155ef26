import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from raffledesk.config import settings
from raffledesk.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async function from a sync celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@asynccontextmanager
async def worker_session():
    # Each task runs on a fresh event loop, so pooled connections cannot be reused
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    try:
        async with Session() as session:
            yield session
    finally:
        await engine.dispose()


@celery_app.task(name="raffle.close_registration")
def task_close_registration(raffle_id: str, expected_ends_at: str):
    """Registration-close timer: close an expired raffle and auto-draw if configured."""
    from raffledesk.services.timeout_supervisor import handle_registration_deadline

    async def _run():
        async with worker_session() as db:
            actions = await handle_registration_deadline(
                db, uuid.UUID(raffle_id), datetime.fromisoformat(expected_ends_at)
            )
        return [a.value for a in actions]

    return _run_async(_run())


@celery_app.task(name="raffle.expire_confirmation")
def task_expire_confirmation(raffle_id: str, draw_number: int):
    """Confirmation timer: redraw if the winner of ``draw_number`` is still pending."""
    from raffledesk.services.timeout_supervisor import expire_confirmation

    async def _run():
        async with worker_session() as db:
            actions = await expire_confirmation(db, uuid.UUID(raffle_id), int(draw_number))
        return [a.value for a in actions]

    return _run_async(_run())


@celery_app.task(name="raffle.sweep_timers")
def task_sweep_timers():
    from raffledesk.services.timeout_supervisor import sweep

    async def _run():
        async with worker_session() as db:
            return await sweep(db)

    applied = _run_async(_run())
    logger.debug("Timer sweep task applied %d action(s)", applied)
    return applied
