import random
import uuid

import pytest

from raffledesk.core.exceptions import (
    InvalidStateError,
    NoEligibleParticipantsError,
    NotFoundError,
)
from raffledesk.models.raffle import RaffleStatus
from raffledesk.services.confirmation_service import confirm_by_operator
from raffledesk.services.draw_engine import draw
from raffledesk.services.raffle_store import RaffleStore
from raffledesk.services.status_projector import EffectiveStatus, effective_status
from raffledesk.db.base import utcnow


class PickIndex(random.Random):
    """Deterministic stand-in for SystemRandom."""

    def __init__(self, index: int):
        super().__init__()
        self.index = index

    def randrange(self, *args, **kwargs):
        return self.index


@pytest.mark.asyncio
async def test_single_participant_is_always_drawn(db_session, make_raffle, add_participants):
    raffle = await make_raffle()
    (only,) = await add_participants(raffle, 1)

    result = await draw(db_session, raffle.id)

    assert result.winner.id == only.id
    assert result.remaining_eligible == 0
    assert [e.draw_number for e in result.history] == [1]
    assert result.raffle.winner_id == only.id


@pytest.mark.asyncio
async def test_first_draw_closes_registration(db_session, make_raffle, add_participants):
    raffle = await make_raffle()
    await add_participants(raffle, 2)

    result = await draw(db_session, raffle.id)

    assert result.raffle.status == RaffleStatus.CLOSED
    assert result.raffle.closed_at is not None
    assert effective_status(result.raffle, utcnow()) == EffectiveStatus.WINNER_PENDING


@pytest.mark.asyncio
async def test_repeated_draws_never_repeat_and_stay_gap_free(db_session, make_raffle, add_participants):
    raffle = await make_raffle()
    participants = await add_participants(raffle, 5)

    winners = []
    for expected_remaining in range(4, -1, -1):
        result = await draw(db_session, raffle.id)
        assert result.remaining_eligible == expected_remaining
        winners.append(result.winner.id)

    assert sorted(winners) == sorted(p.id for p in participants)
    history = await RaffleStore(db_session).draw_history(raffle.id)
    assert [e.draw_number for e in history] == [1, 2, 3, 4, 5]
    assert len({e.participant_id for e in history}) == 5
    assert not any(e.was_present for e in history)

    with pytest.raises(NoEligibleParticipantsError):
        await draw(db_session, raffle.id)


@pytest.mark.asyncio
async def test_draw_uses_injected_rng_over_eligible_only(db_session, make_raffle, add_participants):
    raffle = await make_raffle()
    p1, p2, p3 = await add_participants(raffle, 3)

    first = await draw(db_session, raffle.id, rng=PickIndex(0))
    assert first.winner.id == p1.id

    # p1 is excluded, so index 0 now points at p2
    second = await draw(db_session, raffle.id, rng=PickIndex(0))
    assert second.winner.id == p2.id
    assert second.remaining_eligible == 1


@pytest.mark.asyncio
async def test_redraw_with_single_drawn_participant_has_nobody_left(
    db_session, make_raffle, add_participants
):
    raffle = await make_raffle()
    raffle_id = raffle.id
    (only,) = await add_participants(raffle, 1)
    only_id = only.id
    await draw(db_session, raffle_id)

    with pytest.raises(NoEligibleParticipantsError):
        await draw(db_session, raffle_id)

    history = await RaffleStore(db_session).draw_history(raffle_id)
    assert [e.participant_id for e in history] == [only_id]
    stored = await RaffleStore(db_session).get_raffle(raffle_id, refresh=True)
    assert stored.winner_id == only_id


@pytest.mark.asyncio
async def test_draw_without_participants(db_session, make_raffle):
    raffle_id = (await make_raffle()).id
    with pytest.raises(NoEligibleParticipantsError):
        await draw(db_session, raffle_id)

    stored = await RaffleStore(db_session).get_raffle(raffle_id, refresh=True)
    assert stored.status == RaffleStatus.ACTIVE


@pytest.mark.asyncio
async def test_draw_after_confirmation_is_rejected(db_session, make_raffle, add_participants):
    raffle = await make_raffle()
    await add_participants(raffle, 2)
    await draw(db_session, raffle.id)
    await confirm_by_operator(db_session, raffle.id)

    with pytest.raises(InvalidStateError):
        await draw(db_session, raffle.id)


@pytest.mark.asyncio
async def test_expected_draws_guard(db_session, make_raffle, add_participants):
    raffle = await make_raffle()
    raffle_id = raffle.id
    await add_participants(raffle, 3)

    with pytest.raises(InvalidStateError):
        await draw(db_session, raffle_id, expected_draws=1)

    await draw(db_session, raffle_id, expected_draws=0)
    # A second timer for the same deadline finds the draw already made
    with pytest.raises(InvalidStateError):
        await draw(db_session, raffle_id, expected_draws=0)

    result = await draw(db_session, raffle_id, expected_draws=1)
    assert result.history[-1].draw_number == 2


@pytest.mark.asyncio
async def test_draw_unknown_raffle(db_session):
    with pytest.raises(NotFoundError):
        await draw(db_session, uuid.uuid4())
