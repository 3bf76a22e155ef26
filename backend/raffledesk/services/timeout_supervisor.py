"""
Timeout supervisor: drives the time-based raffle transitions.

Two kinds of durable timers are owned by the service, not by polling clients:

* the registration-close timer, armed whenever a raffle gets an ``ends_at``;
  on fire it closes registration and, for auto-draw raffles, makes the first
  draw;
* the confirmation timer, armed after every draw of a raffle that requires
  confirmation; on fire it redraws if the same winner is still pending.

Timers are Celery ETA tasks. A periodic sweep (Celery beat, or
:class:`TimerSweeper` in-process when no broker is configured) re-derives the
due actions for every unfinished raffle, so a lost ETA task only delays an
action. Every action is idempotent against state, so any number of workers
may fire the same timer.
"""
import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from raffledesk.config import settings
from raffledesk.core.exceptions import (
    InvalidStateError,
    NoEligibleParticipantsError,
    NotFoundError,
)
from raffledesk.db.base import as_utc, utcnow
from raffledesk.models.draw_history import DrawHistoryEntry
from raffledesk.models.raffle import Raffle, RaffleStatus
from raffledesk.services.raffle_store import RaffleStore
from raffledesk.services.status_projector import registration_expired, seconds_until

logger = logging.getLogger(__name__)

CLOSE_REGISTRATION_TASK = "raffle.close_registration"
EXPIRE_CONFIRMATION_TASK = "raffle.expire_confirmation"


class TimerAction(str, enum.Enum):
    CLOSE_REGISTRATION = "close_registration"
    AUTO_DRAW = "auto_draw"
    REDRAW = "redraw"


@dataclass
class TimerSnapshot:
    registration_remaining_seconds: int | None = None
    confirmation_deadline: datetime | None = None
    confirmation_remaining_seconds: int | None = None


def confirmation_deadline(
    raffle: Raffle, latest_entry: DrawHistoryEntry | None
) -> datetime | None:
    """When the winner of ``latest_entry`` stops being able to block a redraw."""
    if (
        latest_entry is None
        or not raffle.require_confirmation
        or not raffle.confirmation_timeout_minutes
    ):
        return None
    return as_utc(latest_entry.created_at) + timedelta(minutes=raffle.confirmation_timeout_minutes)


def _winner_pending(raffle: Raffle, latest_entry: DrawHistoryEntry | None) -> bool:
    return (
        latest_entry is not None
        and raffle.status != RaffleStatus.DRAWN
        and raffle.winner_id is not None
        and raffle.winner_id == latest_entry.participant_id
        and not latest_entry.was_present
    )


def due_actions(
    raffle: Raffle,
    latest_entry: DrawHistoryEntry | None,
    participant_count: int,
    now: datetime,
) -> list[TimerAction]:
    """Actions whose deadline has passed, in the order they must be applied."""
    if raffle.status == RaffleStatus.DRAWN:
        return []

    actions: list[TimerAction] = []
    expired = registration_expired(raffle, now)
    if raffle.status == RaffleStatus.ACTIVE and expired:
        actions.append(TimerAction.CLOSE_REGISTRATION)

    # A raffle closed by hand before its end time is not auto-drawn
    closed_by_expiry = raffle.closed_at is None or (
        raffle.ends_at is not None and raffle.closed_at >= raffle.ends_at
    )
    if (
        raffle.auto_draw_on_end
        and expired
        and raffle.winner_id is None
        and latest_entry is None
        and participant_count > 0
        and closed_by_expiry
    ):
        actions.append(TimerAction.AUTO_DRAW)

    deadline = confirmation_deadline(raffle, latest_entry)
    if (
        deadline is not None
        and _winner_pending(raffle, latest_entry)
        and now >= deadline
        and participant_count - latest_entry.draw_number > 0
    ):
        actions.append(TimerAction.REDRAW)

    return actions


def timer_snapshot(
    raffle: Raffle, latest_entry: DrawHistoryEntry | None, now: datetime
) -> TimerSnapshot:
    snapshot = TimerSnapshot()
    if raffle.status == RaffleStatus.ACTIVE and raffle.ends_at is not None:
        snapshot.registration_remaining_seconds = seconds_until(raffle.ends_at, now)
    if _winner_pending(raffle, latest_entry):
        deadline = confirmation_deadline(raffle, latest_entry)
        snapshot.confirmation_deadline = deadline
        snapshot.confirmation_remaining_seconds = seconds_until(deadline, now)
    return snapshot


# ── Arming ─────────────────────────────────────────────────────

def _send_timer(task_name: str, args: list, eta: datetime) -> None:
    from raffledesk.workers.celery_app import celery_app

    try:
        celery_app.send_task(task_name, args=args, eta=eta)
    except Exception as e:
        # The periodic sweep still applies the action, only later
        logger.warning("Could not schedule %s for %s: %s", task_name, args[0], e)


def arm_registration_timer(raffle: Raffle) -> None:
    if raffle.status != RaffleStatus.ACTIVE or raffle.ends_at is None:
        return
    ends_at = as_utc(raffle.ends_at)
    _send_timer(CLOSE_REGISTRATION_TASK, [str(raffle.id), ends_at.isoformat()], ends_at)
    logger.debug("Raffle %s: registration timer armed for %s", raffle.id, ends_at.isoformat())


def arm_confirmation_timer(raffle: Raffle, latest_entry: DrawHistoryEntry) -> None:
    deadline = confirmation_deadline(raffle, latest_entry)
    if deadline is None:
        return
    _send_timer(EXPIRE_CONFIRMATION_TASK, [str(raffle.id), latest_entry.draw_number], deadline)
    logger.debug(
        "Raffle %s: confirmation timer for draw #%d armed for %s",
        raffle.id, latest_entry.draw_number, deadline.isoformat(),
    )


# ── Firing ─────────────────────────────────────────────────────

async def supervise_raffle(
    db: AsyncSession, raffle_id: uuid.UUID, *, now: datetime | None = None
) -> list[TimerAction]:
    """Apply every due action for one raffle and return the ones that took effect."""
    from raffledesk.services.draw_engine import draw
    from raffledesk.services.registration_service import close_if_expired

    now = as_utc(now) or utcnow()
    store = RaffleStore(db)
    raffle = await store.get_raffle(raffle_id, refresh=True)
    latest = await store.latest_draw(raffle_id)
    count = await store.participant_count(raffle_id)
    # End the read transaction; each action below runs in its own serialized one
    await db.commit()

    applied: list[TimerAction] = []
    for action in due_actions(raffle, latest, count, now):
        try:
            if action == TimerAction.CLOSE_REGISTRATION:
                if await close_if_expired(db, raffle_id, now=now):
                    applied.append(action)
            elif action == TimerAction.AUTO_DRAW:
                await draw(db, raffle_id, now=now, expected_draws=0)
                applied.append(action)
            elif action == TimerAction.REDRAW:
                logger.info(
                    "Raffle %s: winner of draw #%d did not confirm in time",
                    raffle_id, latest.draw_number,
                )
                await draw(db, raffle_id, now=now, expected_draws=latest.draw_number)
                applied.append(action)
        except (InvalidStateError, NoEligibleParticipantsError) as e:
            logger.info("Raffle %s: %s skipped (%s)", raffle_id, action.value, e.detail)
    return applied


async def handle_registration_deadline(
    db: AsyncSession,
    raffle_id: uuid.UUID,
    expected_ends_at: datetime,
    *,
    now: datetime | None = None,
) -> list[TimerAction]:
    """Registration-close timer callback."""
    store = RaffleStore(db)
    try:
        raffle = await store.get_raffle(raffle_id, refresh=True)
    except NotFoundError:
        logger.info("Raffle %s: registration timer fired for a deleted raffle", raffle_id)
        return []
    if raffle.ends_at is None or raffle.ends_at != as_utc(expected_ends_at):
        logger.info("Raffle %s: registration timer skipped, end time changed", raffle_id)
        return []
    return await supervise_raffle(db, raffle_id, now=now)


async def expire_confirmation(
    db: AsyncSession,
    raffle_id: uuid.UUID,
    draw_number: int,
    *,
    now: datetime | None = None,
) -> list[TimerAction]:
    """Confirmation timer callback for draw #``draw_number``."""
    store = RaffleStore(db)
    try:
        await store.get_raffle(raffle_id, refresh=True)
    except NotFoundError:
        logger.info("Raffle %s: confirmation timer fired for a deleted raffle", raffle_id)
        return []
    latest = await store.latest_draw(raffle_id)
    if latest is None or latest.draw_number != draw_number:
        logger.info(
            "Raffle %s: confirmation timer for draw #%d skipped, superseded",
            raffle_id, draw_number,
        )
        return []
    return await supervise_raffle(db, raffle_id, now=now)


async def sweep(db: AsyncSession, *, now: datetime | None = None) -> int:
    """Apply due actions across all unfinished raffles; returns how many took effect."""
    now = as_utc(now) or utcnow()
    raffle_ids = await RaffleStore(db).unfinished_raffle_ids()
    applied = 0
    for raffle_id in raffle_ids:
        try:
            applied += len(await supervise_raffle(db, raffle_id, now=now))
        except NotFoundError:
            continue
        except Exception as e:
            logger.error(f"Timer sweep failed for raffle {raffle_id}: {e}", exc_info=True)
            await db.rollback()
    if applied:
        logger.info("Timer sweep applied %d action(s)", applied)
    return applied


class TimerSweeper:
    """In-process sweep loop used when no Celery broker is configured."""

    def __init__(self, check_interval: int | None = None):
        self.check_interval = check_interval or settings.TIMER_SWEEP_INTERVAL_SECONDS
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        if self.running:
            logger.warning("Timer sweeper already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Timer sweeper started (every %ss)", self.check_interval)

    async def stop(self):
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Timer sweeper stopped")

    async def _run_loop(self):
        from raffledesk.db.engine import async_session_factory

        while self.running:
            try:
                async with async_session_factory() as db:
                    await sweep(db)
            except Exception as e:
                logger.error(f"Timer sweeper error: {e}", exc_info=True)

            await asyncio.sleep(self.check_interval)


# Global sweeper instance
_sweeper_instance: Optional[TimerSweeper] = None


def get_sweeper() -> TimerSweeper:
    """Get or create the global sweeper instance."""
    global _sweeper_instance
    if _sweeper_instance is None:
        _sweeper_instance = TimerSweeper()
    return _sweeper_instance


async def start_sweeper():
    await get_sweeper().start()


async def stop_sweeper():
    await get_sweeper().stop()
