"""Public raffle endpoints: registration page, confirmation and display polling."""
import uuid

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from raffledesk.api.v1.raffles import build_raffle_response
from raffledesk.config import settings
from raffledesk.core.dependencies import get_db
from raffledesk.db.base import utcnow
from raffledesk.schemas.raffle import (
    ConfirmationResponse,
    ConfirmCodeRequest,
    ParticipantResponse,
    RaffleInfoResponse,
    RaffleStatusResponse,
    RegisterRequest,
)
from raffledesk.services.confirmation_service import confirm_by_code
from raffledesk.services.raffle_store import RaffleStore
from raffledesk.services.registration_service import register
from raffledesk.services.status_projector import effective_status
from raffledesk.services.timeout_supervisor import timer_snapshot

router = APIRouter(prefix="/raffles", tags=["registration"])

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


@router.get("/{raffle_id}/info", response_model=RaffleInfoResponse)
async def info(raffle_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    store = RaffleStore(db)
    raffle = await store.get_raffle(raffle_id, refresh=True)
    return RaffleInfoResponse(
        id=raffle.id,
        name=raffle.name,
        prize=raffle.prize,
        description=raffle.description,
        allowed_domain=raffle.allowed_domain,
        status=raffle.status,
        effective_status=effective_status(raffle, utcnow()),
        starts_at=raffle.starts_at,
        ends_at=raffle.ends_at,
        require_confirmation=raffle.require_confirmation,
        participant_count=await store.participant_count(raffle_id),
    )


@router.get("/{raffle_id}/status", response_model=RaffleStatusResponse)
async def poll_status(raffle_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    now = utcnow()
    store = RaffleStore(db)
    raffle = await store.get_raffle(raffle_id, refresh=True)
    latest = await store.latest_draw(raffle_id)
    snapshot = timer_snapshot(raffle, latest, now)
    winner_name = None
    if raffle.winner_id is not None:
        winner_name = (await store.participant_names([raffle.winner_id])).get(raffle.winner_id)
    return RaffleStatusResponse(
        id=raffle.id,
        effective_status=effective_status(raffle, now),
        participant_count=await store.participant_count(raffle_id),
        draw_count=latest.draw_number if latest else 0,
        winner_name=winner_name,
        registration_remaining_seconds=snapshot.registration_remaining_seconds,
        confirmation_deadline=snapshot.confirmation_deadline,
        confirmation_remaining_seconds=snapshot.confirmation_remaining_seconds,
    )


@router.post("/{raffle_id}/register", response_model=ParticipantResponse, status_code=201)
@limiter.limit(settings.REGISTER_RATE_LIMIT)
async def register_participant(
    request: Request,
    raffle_id: uuid.UUID,
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    return await register(db, raffle_id, name=body.name, email=body.email, code=body.code)


@router.post("/{raffle_id}/confirm-code", response_model=ConfirmationResponse)
@limiter.limit(settings.CONFIRM_RATE_LIMIT)
async def confirm_with_code(
    request: Request,
    raffle_id: uuid.UUID,
    body: ConfirmCodeRequest,
    db: AsyncSession = Depends(get_db),
):
    raffle, winner = await confirm_by_code(db, raffle_id, body.code)
    return ConfirmationResponse(
        raffle=await build_raffle_response(db, raffle, winner_name=winner.name),
        confirmed_participant=ParticipantResponse.model_validate(winner),
    )
