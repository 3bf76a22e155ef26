"""Confirmation gate: finalizes a raffle once the pending winner is confirmed present."""
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from raffledesk.core.exceptions import (
    InvalidCredentialError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from raffledesk.core.security import is_valid_confirmation_code, verify_confirmation_code
from raffledesk.models.participant import Participant
from raffledesk.models.raffle import Raffle, RaffleStatus
from raffledesk.services.raffle_store import RaffleStore, run_serialized

logger = logging.getLogger(__name__)


async def _pending_winner(store: RaffleStore, raffle: Raffle) -> Participant:
    if raffle.status == RaffleStatus.DRAWN:
        raise InvalidStateError("Winner already confirmed")
    if raffle.winner_id is None:
        raise InvalidStateError("No winner is awaiting confirmation")
    winner = await store.participant(raffle.winner_id)
    if winner is None:
        raise NotFoundError("Winner not found")
    return winner


async def _finalize(store: RaffleStore, raffle: Raffle) -> None:
    latest = await store.latest_draw(raffle.id)
    if latest is None or latest.participant_id != raffle.winner_id:
        raise InvalidStateError("No winner is awaiting confirmation")
    latest.was_present = True
    raffle.status = RaffleStatus.DRAWN
    await store.db.flush()


async def confirm_by_code(
    db: AsyncSession, raffle_id: uuid.UUID, code: str
) -> tuple[Raffle, Participant]:
    """Confirm the pending winner with the secret code they chose at registration.

    A wrong code raises InvalidCredentialError and leaves the raffle as it
    was. Confirmation is accepted for as long as the winner is still pending,
    even if the confirmation deadline has passed but no redraw happened yet.
    """
    if not is_valid_confirmation_code(code):
        raise ValidationError("Confirmation code must be exactly 5 digits")

    store = RaffleStore(db)

    async def _confirm() -> tuple[Raffle, Participant]:
        raffle = await store.lock_raffle(raffle_id)
        if not raffle.require_confirmation:
            raise InvalidStateError("This raffle does not use confirmation codes")
        winner = await _pending_winner(store, raffle)
        if not winner.secret_code_hash or not verify_confirmation_code(
            code, winner.secret_code_hash
        ):
            raise InvalidCredentialError()
        await _finalize(store, raffle)
        return raffle, winner

    try:
        raffle, winner = await run_serialized(db, _confirm, label="confirm by code")
    except InvalidCredentialError:
        logger.info("Raffle %s: rejected confirmation attempt", raffle_id)
        raise
    logger.info("Raffle %s: participant %s confirmed by code", raffle_id, winner.id)
    return raffle, winner


async def confirm_by_operator(
    db: AsyncSession, raffle_id: uuid.UUID
) -> tuple[Raffle, Participant]:
    """Operator override: mark the pending winner present without a code."""
    store = RaffleStore(db)

    async def _confirm() -> tuple[Raffle, Participant]:
        raffle = await store.lock_raffle(raffle_id)
        winner = await _pending_winner(store, raffle)
        await _finalize(store, raffle)
        return raffle, winner

    raffle, winner = await run_serialized(db, _confirm, label="confirm by operator")
    logger.info("Raffle %s: participant %s confirmed by operator", raffle_id, winner.id)
    return raffle, winner
