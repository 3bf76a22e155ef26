"""Registration gate: admits participants into an open raffle."""
import logging
import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from raffledesk.core.exceptions import ConflictError, InvalidStateError, ValidationError
from raffledesk.core.security import hash_confirmation_code, is_valid_confirmation_code
from raffledesk.db.base import as_utc, utcnow
from raffledesk.models.participant import Participant
from raffledesk.models.raffle import RaffleStatus
from raffledesk.services.raffle_store import RaffleStore, run_serialized
from raffledesk.services.status_projector import EffectiveStatus, effective_status, registration_expired

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def email_domain(email: str) -> str:
    _, _, domain = email.rpartition("@")
    return domain.lower()


async def close_if_expired(
    db: AsyncSession, raffle_id: uuid.UUID, *, now: datetime | None = None
) -> bool:
    """Persist ``closed`` for an active raffle whose registration window has ended.

    Returns True when this call performed the transition. Invoked by the timer
    supervisor on schedule and by :func:`register` before admitting anyone.
    """
    now = as_utc(now) or utcnow()
    store = RaffleStore(db)

    async def _close() -> bool:
        raffle = await store.lock_raffle(raffle_id)
        if raffle.status != RaffleStatus.ACTIVE or not registration_expired(raffle, now):
            return False
        raffle.status = RaffleStatus.CLOSED
        raffle.closed_at = now
        await db.flush()
        return True

    closed = await run_serialized(db, _close, label="close registration")
    if closed:
        logger.info("Raffle %s: registration closed (ended at %s)", raffle_id, now.isoformat())
    return closed


async def register(
    db: AsyncSession,
    raffle_id: uuid.UUID,
    *,
    name: str,
    email: str,
    code: str | None = None,
    now: datetime | None = None,
) -> Participant:
    """Register ``email`` for the raffle, storing a hash of ``code`` when confirmation is required."""
    now = as_utc(now) or utcnow()
    store = RaffleStore(db)

    if await close_if_expired(db, raffle_id, now=now):
        raise InvalidStateError("Registration period has ended")

    clean_name = name.strip()
    clean_email = normalize_email(email)

    async def _admit() -> Participant:
        raffle = await store.lock_raffle(raffle_id)

        if raffle.status != RaffleStatus.ACTIVE:
            raise InvalidStateError("This raffle is no longer accepting registrations")
        status = effective_status(raffle, now)
        if status == EffectiveStatus.UPCOMING:
            raise InvalidStateError("Registration has not opened yet")
        if status != EffectiveStatus.OPEN:
            raise InvalidStateError("This raffle is no longer accepting registrations")

        if not clean_name:
            raise ValidationError("Name is required")
        if raffle.allowed_domain and email_domain(clean_email) != raffle.allowed_domain.lower():
            raise ValidationError(f"Only @{raffle.allowed_domain} emails can join this raffle")

        code_hash = None
        if raffle.require_confirmation:
            if not code:
                raise ValidationError("A confirmation code is required")
            if not is_valid_confirmation_code(code):
                raise ValidationError("Confirmation code must be exactly 5 digits")
            code_hash = hash_confirmation_code(code)

        if await store.find_participant_by_email(raffle_id, clean_email):
            raise ConflictError("This email is already registered for this raffle")

        participant = Participant(
            id=uuid.uuid4(),
            raffle_id=raffle_id,
            name=clean_name,
            email=clean_email,
            secret_code_hash=code_hash,
            created_at=now,
        )
        db.add(participant)
        await db.flush()
        return participant

    participant = await run_serialized(db, _admit, label="register")
    logger.info("Raffle %s: registered participant %s", raffle_id, participant.id)
    return participant
