"""Draw engine: picks a winner uniformly at random among never-drawn participants.

Each call appends one immutable entry to the draw history and moves the
raffle's winner pointer. A manual redraw is just another call.
"""
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from raffledesk.core.exceptions import InvalidStateError, NoEligibleParticipantsError
from raffledesk.db.base import as_utc, utcnow
from raffledesk.models.draw_history import DrawHistoryEntry
from raffledesk.models.participant import Participant
from raffledesk.models.raffle import Raffle, RaffleStatus
from raffledesk.services.raffle_store import RaffleStore, run_serialized
from raffledesk.services.timeout_supervisor import arm_confirmation_timer

logger = logging.getLogger(__name__)

_system_random = random.SystemRandom()


@dataclass
class DrawResult:
    raffle: Raffle
    winner: Participant
    remaining_eligible: int
    history: list[DrawHistoryEntry]


async def draw(
    db: AsyncSession,
    raffle_id: uuid.UUID,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
    expected_draws: int | None = None,
) -> DrawResult:
    """Draw the next winner.

    ``expected_draws`` makes timer-driven draws idempotent: the draw only goes
    ahead when the history still holds exactly that many entries (and, past
    the first draw, a winner is still pending). Anything else means another
    actor already moved the raffle on, and InvalidStateError is raised.
    """
    now = as_utc(now) or utcnow()
    rng = rng or _system_random
    store = RaffleStore(db)

    async def _draw() -> DrawResult:
        raffle = await store.lock_raffle(raffle_id)
        if raffle.status == RaffleStatus.DRAWN:
            raise InvalidStateError("Winner already confirmed; reopen the raffle to draw again")

        history = await store.draw_history(raffle_id)
        if expected_draws is not None:
            superseded = len(history) != expected_draws or (
                expected_draws > 0 and raffle.winner_id is None
            )
            if superseded:
                raise InvalidStateError("Draw superseded by a newer change to this raffle")

        excluded = {entry.participant_id for entry in history}
        eligible = [p for p in await store.participants(raffle_id) if p.id not in excluded]
        if not eligible:
            raise NoEligibleParticipantsError()

        winner = eligible[rng.randrange(len(eligible))]
        entry = DrawHistoryEntry(
            id=uuid.uuid4(),
            raffle_id=raffle_id,
            participant_id=winner.id,
            draw_number=len(history) + 1,
            was_present=False,
            created_at=now,
        )
        db.add(entry)

        raffle.winner_id = winner.id
        raffle.closed_at = raffle.closed_at or now
        if raffle.status == RaffleStatus.ACTIVE:
            raffle.status = RaffleStatus.CLOSED
        await db.flush()

        return DrawResult(
            raffle=raffle,
            winner=winner,
            remaining_eligible=len(eligible) - 1,
            history=[*history, entry],
        )

    result = await run_serialized(db, _draw, label="draw")
    latest = result.history[-1]
    logger.info(
        "Raffle %s: draw #%d picked participant %s (%d still eligible)",
        raffle_id, latest.draw_number, result.winner.id, result.remaining_eligible,
    )

    arm_confirmation_timer(result.raffle, latest)
    return result
