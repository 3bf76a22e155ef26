"""Raffle store: reads/writes of raffles, participants and draw history.

Every state-machine mutation goes through :func:`run_serialized`, which makes
one raffle's operations behave as if they ran one at a time:

* the raffle row is locked with ``SELECT ... FOR UPDATE`` (Postgres);
* the ``raffles.version`` column turns a concurrent update into
  ``StaleDataError`` on stores without row locks (SQLite);
* the unique constraints on ``draw_history`` and ``participants`` reject a
  duplicate draw number, a participant drawn twice or a duplicate email.

The losing caller is rolled back and re-runs against fresh state.
"""
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from raffledesk.config import settings
from raffledesk.core.exceptions import ConcurrencyConflictError, NotFoundError
from raffledesk.models.draw_history import DrawHistoryEntry
from raffledesk.models.participant import Participant
from raffledesk.models.raffle import Raffle, RaffleStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_UNIQUE_VIOLATION = "23505"


def is_retryable(exc: BaseException) -> bool:
    """True when ``exc`` means another transaction touched the same raffle first.

    Of the integrity errors only a unique violation qualifies: it is how a
    concurrent duplicate draw or registration surfaces. Any other constraint
    failure is a bug and propagates as is.
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if isinstance(exc, IntegrityError):
            text = str(orig)
            return (
                sqlstate == _UNIQUE_VIOLATION
                or "UNIQUE constraint failed" in text
                or "duplicate key value" in text
            )
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        return "database is locked" in str(orig)
    return False


async def run_serialized(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    label: str = "raffle operation",
    attempts: int | None = None,
) -> T:
    """Run ``operation`` in its own transaction and commit it, retrying on conflicts.

    ``operation`` must (re)load everything it needs, starting with
    :meth:`RaffleStore.lock_raffle`, because a retry starts from a rolled-back
    session.
    """
    max_attempts = attempts or settings.SERIALIZATION_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except Exception as e:
            await db.rollback()
            if not is_retryable(e):
                raise
            logger.warning(
                "%s lost a concurrent update (attempt %d/%d): %s",
                label, attempt, max_attempts, e.__class__.__name__,
            )
    raise ConcurrencyConflictError()


class RaffleStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_raffle(self, raffle_id: uuid.UUID, *, refresh: bool = False) -> Raffle:
        stmt = select(Raffle).where(Raffle.id == raffle_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        raffle = result.scalar_one_or_none()
        if not raffle:
            raise NotFoundError("Raffle not found")
        return raffle

    async def lock_raffle(self, raffle_id: uuid.UUID) -> Raffle:
        """Load the raffle row for update, refreshing any stale identity-map copy."""
        result = await self.db.execute(
            select(Raffle)
            .where(Raffle.id == raffle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        raffle = result.scalar_one_or_none()
        if not raffle:
            raise NotFoundError("Raffle not found")
        return raffle

    async def list_raffles(self, skip: int = 0, limit: int = 50) -> list[Raffle]:
        result = await self.db.execute(
            select(Raffle).order_by(Raffle.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def unfinished_raffle_ids(self) -> list[uuid.UUID]:
        """Raffles a timer may still act on (anything not yet confirmed)."""
        result = await self.db.execute(
            select(Raffle.id).where(Raffle.status != RaffleStatus.DRAWN)
        )
        return list(result.scalars().all())

    async def participants(self, raffle_id: uuid.UUID) -> list[Participant]:
        result = await self.db.execute(
            select(Participant)
            .where(Participant.raffle_id == raffle_id)
            .order_by(Participant.created_at, Participant.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def participant(self, participant_id: uuid.UUID) -> Participant | None:
        result = await self.db.execute(
            select(Participant).where(Participant.id == participant_id)
        )
        return result.scalar_one_or_none()

    async def find_participant_by_email(
        self, raffle_id: uuid.UUID, email: str
    ) -> Participant | None:
        result = await self.db.execute(
            select(Participant).where(
                Participant.raffle_id == raffle_id, Participant.email == email
            )
        )
        return result.scalar_one_or_none()

    async def participant_count(self, raffle_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Participant).where(Participant.raffle_id == raffle_id)
        )
        return result.scalar() or 0

    async def participant_counts(self, raffle_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not raffle_ids:
            return {}
        result = await self.db.execute(
            select(Participant.raffle_id, func.count())
            .where(Participant.raffle_id.in_(raffle_ids))
            .group_by(Participant.raffle_id)
        )
        return {row[0]: row[1] for row in result.all()}

    async def draw_history(self, raffle_id: uuid.UUID) -> list[DrawHistoryEntry]:
        """Full draw timeline in draw order."""
        result = await self.db.execute(
            select(DrawHistoryEntry)
            .where(DrawHistoryEntry.raffle_id == raffle_id)
            .order_by(DrawHistoryEntry.draw_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def latest_draw(self, raffle_id: uuid.UUID) -> DrawHistoryEntry | None:
        result = await self.db.execute(
            select(DrawHistoryEntry)
            .where(DrawHistoryEntry.raffle_id == raffle_id)
            .order_by(DrawHistoryEntry.draw_number.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def participant_names(self, participant_ids: list[uuid.UUID]) -> dict[uuid.UUID, str]:
        if not participant_ids:
            return {}
        result = await self.db.execute(
            select(Participant.id, Participant.name).where(Participant.id.in_(participant_ids))
        )
        return {row[0]: row[1] for row in result.all()}

    async def clear_draw_history(self, raffle_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(DrawHistoryEntry).where(DrawHistoryEntry.raffle_id == raffle_id)
        )

    async def delete_raffle(self, raffle: Raffle) -> None:
        await self.clear_draw_history(raffle.id)
        await self.db.execute(delete(Participant).where(Participant.raffle_id == raffle.id))
        await self.db.delete(raffle)
