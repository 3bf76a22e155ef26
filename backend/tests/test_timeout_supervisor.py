import random
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from raffledesk.db.base import utcnow
from raffledesk.models.draw_history import DrawHistoryEntry
from raffledesk.models.raffle import Raffle, RaffleStatus
from raffledesk.services.draw_engine import draw
from raffledesk.services.raffle_service import patch_status
from raffledesk.services.raffle_store import RaffleStore
from raffledesk.services.timeout_supervisor import (
    TimerAction,
    confirmation_deadline,
    due_actions,
    expire_confirmation,
    handle_registration_deadline,
    supervise_raffle,
    sweep,
    timer_snapshot,
)
from raffledesk.workers.celery_app import celery_app

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


class PickIndex(random.Random):
    def __init__(self, index: int):
        super().__init__()
        self.index = index

    def randrange(self, *args, **kwargs):
        return self.index


def _raffle(**fields) -> Raffle:
    data = {
        "name": "R",
        "prize": "P",
        "status": RaffleStatus.ACTIVE,
        "winner_id": None,
        "require_confirmation": False,
        "auto_draw_on_end": False,
    }
    data.update(fields)
    return Raffle(**data)


def _entry(participant_id, draw_number=1, created_at=NOW, was_present=False) -> DrawHistoryEntry:
    return DrawHistoryEntry(
        participant_id=participant_id,
        draw_number=draw_number,
        created_at=created_at,
        was_present=was_present,
    )


# ── Pure timer logic ───────────────────────────────────────────

def test_expired_active_raffle_is_due_for_close():
    raffle = _raffle(ends_at=NOW - timedelta(seconds=1))
    assert due_actions(raffle, None, 0, NOW) == [TimerAction.CLOSE_REGISTRATION]


def test_auto_draw_follows_close_when_there_are_participants():
    raffle = _raffle(ends_at=NOW - timedelta(seconds=1), auto_draw_on_end=True)
    assert due_actions(raffle, None, 3, NOW) == [
        TimerAction.CLOSE_REGISTRATION,
        TimerAction.AUTO_DRAW,
    ]
    assert due_actions(raffle, None, 0, NOW) == [TimerAction.CLOSE_REGISTRATION]


def test_no_auto_draw_for_raffle_closed_by_hand_before_end():
    raffle = _raffle(
        status=RaffleStatus.CLOSED,
        ends_at=NOW - timedelta(minutes=1),
        closed_at=NOW - timedelta(minutes=5),
        auto_draw_on_end=True,
    )
    assert due_actions(raffle, None, 3, NOW) == []


def test_redraw_due_only_after_deadline_with_eligible_left():
    winner = uuid.uuid4()
    raffle = _raffle(
        status=RaffleStatus.CLOSED,
        winner_id=winner,
        require_confirmation=True,
        confirmation_timeout_minutes=2,
    )
    entry = _entry(winner)

    assert confirmation_deadline(raffle, entry) == NOW + timedelta(minutes=2)
    assert due_actions(raffle, entry, 3, NOW + timedelta(minutes=1)) == []
    assert due_actions(raffle, entry, 3, NOW + timedelta(minutes=2)) == [TimerAction.REDRAW]
    # Everybody has been drawn already
    assert due_actions(raffle, entry, 1, NOW + timedelta(minutes=5)) == []


def test_no_redraw_without_confirmation_requirement():
    winner = uuid.uuid4()
    raffle = _raffle(status=RaffleStatus.CLOSED, winner_id=winner, confirmation_timeout_minutes=2)
    assert confirmation_deadline(raffle, _entry(winner)) is None
    assert due_actions(raffle, _entry(winner), 3, NOW + timedelta(hours=1)) == []


def test_confirmed_raffle_has_no_due_actions():
    winner = uuid.uuid4()
    raffle = _raffle(
        status=RaffleStatus.DRAWN,
        winner_id=winner,
        ends_at=NOW - timedelta(hours=1),
        require_confirmation=True,
        confirmation_timeout_minutes=1,
    )
    assert due_actions(raffle, _entry(winner, was_present=True), 3, NOW) == []


def test_timer_snapshot():
    winner = uuid.uuid4()
    open_raffle = _raffle(ends_at=NOW + timedelta(seconds=45))
    assert timer_snapshot(open_raffle, None, NOW).registration_remaining_seconds == 45

    pending = _raffle(
        status=RaffleStatus.CLOSED,
        winner_id=winner,
        require_confirmation=True,
        confirmation_timeout_minutes=1,
    )
    snapshot = timer_snapshot(pending, _entry(winner), NOW + timedelta(seconds=20))
    assert snapshot.registration_remaining_seconds is None
    assert snapshot.confirmation_deadline == NOW + timedelta(minutes=1)
    assert snapshot.confirmation_remaining_seconds == 40


# ── Timers against the store ───────────────────────────────────

@pytest.mark.asyncio
async def test_timeout_redraw_excludes_previous_winner(db_session, make_raffle, add_participants):
    now = utcnow()
    raffle = await make_raffle(require_confirmation=True, confirmation_timeout_minutes=2)
    p1, p2, p3 = await add_participants(raffle, 3, now=now)
    first = await draw(db_session, raffle.id, now=now, rng=PickIndex(0))
    assert first.winner.id == p1.id

    assert await supervise_raffle(db_session, raffle.id, now=now + timedelta(minutes=1)) == []

    applied = await expire_confirmation(
        db_session, raffle.id, 1, now=now + timedelta(minutes=2, seconds=1)
    )
    assert applied == [TimerAction.REDRAW]

    store = RaffleStore(db_session)
    history = await store.draw_history(raffle.id)
    assert [e.draw_number for e in history] == [1, 2]
    assert history[0].participant_id == p1.id
    assert history[0].was_present is False
    assert history[1].participant_id in {p2.id, p3.id}
    stored = await store.get_raffle(raffle.id, refresh=True)
    assert stored.winner_id == history[1].participant_id


@pytest.mark.asyncio
async def test_stale_confirmation_timer_is_ignored(db_session, make_raffle, add_participants):
    now = utcnow()
    raffle = await make_raffle(require_confirmation=True, confirmation_timeout_minutes=1)
    await add_participants(raffle, 3, now=now)
    await draw(db_session, raffle.id, now=now)
    await draw(db_session, raffle.id, now=now + timedelta(seconds=30))

    # The timer for draw #1 fires after draw #2 already happened
    applied = await expire_confirmation(db_session, raffle.id, 1, now=now + timedelta(minutes=1))
    assert applied == []
    assert len(await RaffleStore(db_session).draw_history(raffle.id)) == 2


@pytest.mark.asyncio
async def test_timeout_with_nobody_left_keeps_winner_pending(db_session, make_raffle, add_participants):
    now = utcnow()
    raffle = await make_raffle(require_confirmation=True, confirmation_timeout_minutes=1)
    (only,) = await add_participants(raffle, 1, now=now)
    await draw(db_session, raffle.id, now=now)

    applied = await expire_confirmation(db_session, raffle.id, 1, now=now + timedelta(minutes=5))

    assert applied == []
    stored = await RaffleStore(db_session).get_raffle(raffle.id, refresh=True)
    assert stored.winner_id == only.id


@pytest.mark.asyncio
async def test_registration_deadline_closes_and_auto_draws(db_session, make_raffle, add_participants):
    now = utcnow()
    raffle = await make_raffle(now=now, timebox_minutes=10, auto_draw_on_end=True)
    await add_participants(raffle, 2, now=now)

    applied = await handle_registration_deadline(
        db_session, raffle.id, raffle.ends_at, now=now + timedelta(minutes=11)
    )

    assert applied == [TimerAction.CLOSE_REGISTRATION, TimerAction.AUTO_DRAW]
    stored = await RaffleStore(db_session).get_raffle(raffle.id, refresh=True)
    assert stored.status == RaffleStatus.CLOSED
    assert stored.winner_id is not None
    assert len(await RaffleStore(db_session).draw_history(raffle.id)) == 1

    # Firing again is harmless
    again = await handle_registration_deadline(
        db_session, raffle.id, raffle.ends_at, now=now + timedelta(minutes=12)
    )
    assert again == []


@pytest.mark.asyncio
async def test_registration_timer_skipped_when_end_time_changed(db_session, make_raffle):
    now = utcnow()
    raffle = await make_raffle(now=now, timebox_minutes=10)
    original_end = raffle.ends_at
    # Reactivating clears the end time
    await patch_status(db_session, raffle.id, RaffleStatus.ACTIVE)

    applied = await handle_registration_deadline(
        db_session, raffle.id, original_end, now=now + timedelta(minutes=11)
    )
    assert applied == []
    stored = await RaffleStore(db_session).get_raffle(raffle.id, refresh=True)
    assert stored.status == RaffleStatus.ACTIVE


@pytest.mark.asyncio
async def test_timer_for_deleted_raffle(db_session):
    assert await handle_registration_deadline(db_session, uuid.uuid4(), NOW) == []
    assert await expire_confirmation(db_session, uuid.uuid4(), 1) == []


@pytest.mark.asyncio
async def test_sweep_applies_due_actions_across_raffles(db_session, make_raffle, add_participants):
    now = utcnow()
    expiring = await make_raffle(name="Expiring", now=now, timebox_minutes=5)
    pending = await make_raffle(name="Pending", require_confirmation=True, confirmation_timeout_minutes=1)
    await add_participants(pending, 2, now=now)
    await draw(db_session, pending.id, now=now)
    untouched = await make_raffle(name="Open", now=now, timebox_minutes=60)

    applied = await sweep(db_session, now=now + timedelta(minutes=6))

    assert applied == 2
    store = RaffleStore(db_session)
    assert (await store.get_raffle(expiring.id, refresh=True)).status == RaffleStatus.CLOSED
    assert len(await store.draw_history(pending.id)) == 2
    assert (await store.get_raffle(untouched.id, refresh=True)).status == RaffleStatus.ACTIVE


@pytest.mark.asyncio
async def test_timers_are_armed_with_celery(db_session, make_raffle, add_participants, monkeypatch):
    sent = []
    monkeypatch.setattr(
        celery_app, "send_task", lambda name, args=None, eta=None: sent.append((name, args, eta)),
    )
    now = utcnow()
    raffle = await make_raffle(
        now=now, timebox_minutes=10, require_confirmation=True, confirmation_timeout_minutes=3,
    )
    await add_participants(raffle, 2, now=now)
    await draw(db_session, raffle.id, now=now + timedelta(minutes=1))

    assert sent[0] == (
        "raffle.close_registration",
        [str(raffle.id), raffle.ends_at.isoformat()],
        raffle.ends_at,
    )
    assert sent[1] == (
        "raffle.expire_confirmation",
        [str(raffle.id), 1],
        now + timedelta(minutes=4),
    )
