import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from raffledesk.core.exceptions import InvalidStateError, ValidationError
from raffledesk.db.base import as_utc, utcnow
from raffledesk.models.raffle import Raffle, RaffleStatus
from raffledesk.schemas.raffle import RaffleCreate
from raffledesk.services.raffle_store import RaffleStore, run_serialized
from raffledesk.services.timeout_supervisor import arm_registration_timer

logger = logging.getLogger(__name__)


def normalize_domain(domain: str | None) -> str | None:
    if domain is None:
        return None
    domain = domain.strip().lstrip("@").lower()
    return domain or None


async def create_raffle(db: AsyncSession, data: RaffleCreate, *, now: datetime | None = None) -> Raffle:
    now = as_utc(now) or utcnow()
    name = data.name.strip()
    prize = data.prize.strip()
    if not name:
        raise ValidationError("Raffle name is required")
    if not prize:
        raise ValidationError("Prize is required")

    starts_at = as_utc(data.starts_at)
    ends_at = as_utc(data.ends_at)
    if ends_at is None and data.timebox_minutes:
        ends_at = now + timedelta(minutes=data.timebox_minutes)
    if starts_at and ends_at and starts_at >= ends_at:
        raise ValidationError("Registration must start before it ends")

    raffle = Raffle(
        id=uuid.uuid4(),
        name=name,
        prize=prize,
        description=data.description,
        allowed_domain=normalize_domain(data.allowed_domain),
        starts_at=starts_at,
        ends_at=ends_at,
        timebox_minutes=data.timebox_minutes,
        require_confirmation=data.require_confirmation,
        confirmation_timeout_minutes=data.confirmation_timeout_minutes,
        auto_draw_on_end=data.auto_draw_on_end,
        status=RaffleStatus.ACTIVE,
        created_at=now,
        updated_at=now,
    )
    db.add(raffle)
    await db.commit()
    logger.info("Raffle %s created: %s", raffle.id, raffle.name)

    arm_registration_timer(raffle)
    return raffle


async def list_raffles(db: AsyncSession, skip: int = 0, limit: int = 50) -> list[Raffle]:
    return await RaffleStore(db).list_raffles(skip=skip, limit=limit)


async def get_raffle(db: AsyncSession, raffle_id: uuid.UUID) -> Raffle:
    return await RaffleStore(db).get_raffle(raffle_id, refresh=True)


async def patch_status(
    db: AsyncSession,
    raffle_id: uuid.UUID,
    status: RaffleStatus,
    *,
    now: datetime | None = None,
) -> Raffle:
    """Operator toggle between ``active`` and ``closed``.

    Reactivating drops the pending winner and the end time but keeps the draw
    history, so anyone drawn before stays excluded from later draws.
    """
    now = as_utc(now) or utcnow()
    status = RaffleStatus(status)
    if status == RaffleStatus.DRAWN:
        raise ValidationError("Status can only be set to active or closed")
    store = RaffleStore(db)

    async def _patch() -> Raffle:
        raffle = await store.lock_raffle(raffle_id)
        raffle.status = status
        if status == RaffleStatus.CLOSED:
            raffle.closed_at = now
        else:
            raffle.winner_id = None
            raffle.ends_at = None
            raffle.closed_at = None
        await db.flush()
        return raffle

    raffle = await run_serialized(db, _patch, label="patch status")
    logger.info("Raffle %s: status set to %s", raffle_id, status.value)
    arm_registration_timer(raffle)
    return raffle


async def reopen(
    db: AsyncSession, raffle_id: uuid.UUID, *, clear_schedule: bool = False
) -> Raffle:
    """Return a closed or drawn raffle to ``active`` with an empty draw history."""
    store = RaffleStore(db)

    async def _reopen() -> Raffle:
        raffle = await store.lock_raffle(raffle_id)
        if raffle.status == RaffleStatus.ACTIVE:
            raise InvalidStateError("Raffle is already open")
        await store.clear_draw_history(raffle_id)
        raffle.status = RaffleStatus.ACTIVE
        raffle.winner_id = None
        raffle.closed_at = None
        if clear_schedule:
            raffle.starts_at = None
            raffle.ends_at = None
        await db.flush()
        return raffle

    raffle = await run_serialized(db, _reopen, label="reopen")
    logger.info("Raffle %s reopened (schedule cleared: %s)", raffle_id, clear_schedule)
    arm_registration_timer(raffle)
    return raffle


async def delete_raffle(db: AsyncSession, raffle_id: uuid.UUID) -> None:
    store = RaffleStore(db)

    async def _delete() -> None:
        raffle = await store.lock_raffle(raffle_id)
        await store.delete_raffle(raffle)

    await run_serialized(db, _delete, label="delete raffle")
    logger.info("Raffle %s deleted", raffle_id)
