"""Status projector: derives a raffle's effective status at read time.

Nothing here touches the database; the effective status is never persisted.
"""
import enum
from datetime import datetime

from raffledesk.models.raffle import Raffle, RaffleStatus


class EffectiveStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    OPEN = "open"
    CLOSED = "closed"
    WINNER_PENDING = "winner-pending"
    CONFIRMED = "confirmed"


def effective_status(raffle: Raffle, now: datetime) -> EffectiveStatus:
    """Map persisted status, registration window and pending winner to what callers see.

    Precedence: a finalized raffle is ``confirmed``; otherwise a pending winner
    wins over ``closed``; an ``active`` raffle is ``upcoming``, ``open`` or
    ``closed`` depending on where ``now`` falls in its window.
    """
    if raffle.status == RaffleStatus.DRAWN:
        return EffectiveStatus.CONFIRMED
    if raffle.winner_id is not None:
        return EffectiveStatus.WINNER_PENDING
    if raffle.status == RaffleStatus.CLOSED:
        return EffectiveStatus.CLOSED
    if raffle.starts_at is not None and now < raffle.starts_at:
        return EffectiveStatus.UPCOMING
    if registration_expired(raffle, now):
        return EffectiveStatus.CLOSED
    return EffectiveStatus.OPEN


def registration_expired(raffle: Raffle, now: datetime) -> bool:
    """True once ``ends_at`` has passed, regardless of persisted status."""
    return raffle.ends_at is not None and now > raffle.ends_at


def registration_is_open(raffle: Raffle, now: datetime) -> bool:
    return (
        raffle.status == RaffleStatus.ACTIVE
        and effective_status(raffle, now) == EffectiveStatus.OPEN
    )


def seconds_until(deadline: datetime | None, now: datetime) -> int | None:
    """Whole seconds left before ``deadline``, floored at zero."""
    if deadline is None:
        return None
    return max(0, int((deadline - now).total_seconds()))
