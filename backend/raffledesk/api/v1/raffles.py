import logging
import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from raffledesk.core.dependencies import get_db, require_operator
from raffledesk.db.base import utcnow
from raffledesk.models.draw_history import DrawHistoryEntry
from raffledesk.models.raffle import Raffle, RaffleStatus
from raffledesk.schemas.raffle import (
    ConfirmationResponse,
    DrawHistoryResponse,
    DrawResponse,
    ParticipantResponse,
    RaffleCreate,
    RaffleDetailResponse,
    RaffleResponse,
    RaffleStatusUpdate,
    ReopenRequest,
)
from raffledesk.services import raffle_service
from raffledesk.services.confirmation_service import confirm_by_operator
from raffledesk.services.draw_engine import draw
from raffledesk.services.raffle_store import RaffleStore
from raffledesk.services.status_projector import effective_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/raffles", tags=["raffles"])


def _raffle_fields(raffle: Raffle) -> dict:
    return {
        name: getattr(raffle, name)
        for name in RaffleResponse.model_fields
        if hasattr(raffle, name)
    }


async def build_raffle_response(
    db: AsyncSession,
    raffle: Raffle,
    *,
    participant_count: int | None = None,
    winner_name: str | None = None,
) -> RaffleResponse:
    store = RaffleStore(db)
    if participant_count is None:
        participant_count = await store.participant_count(raffle.id)
    if winner_name is None and raffle.winner_id is not None:
        winner_name = (await store.participant_names([raffle.winner_id])).get(raffle.winner_id)
    return RaffleResponse(
        **_raffle_fields(raffle),
        effective_status=effective_status(raffle, utcnow()),
        winner_name=winner_name,
        participant_count=participant_count,
    )


def build_history(
    entries: list[DrawHistoryEntry], names: dict[uuid.UUID, str]
) -> list[DrawHistoryResponse]:
    return [
        DrawHistoryResponse(
            id=entry.id,
            draw_number=entry.draw_number,
            participant_id=entry.participant_id,
            participant_name=names.get(entry.participant_id),
            was_present=entry.was_present,
            created_at=entry.created_at,
        )
        for entry in entries
    ]


@router.post("", response_model=RaffleResponse, status_code=201)
async def create(
    body: RaffleCreate,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    raffle = await raffle_service.create_raffle(db, body)
    return await build_raffle_response(db, raffle, participant_count=0)


@router.get("", response_model=list[RaffleResponse])
async def list_all(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    raffles = await raffle_service.list_raffles(db, skip=skip, limit=limit)
    store = RaffleStore(db)
    counts = await store.participant_counts([r.id for r in raffles])
    names = await store.participant_names([r.winner_id for r in raffles if r.winner_id])
    return [
        await build_raffle_response(
            db,
            r,
            participant_count=counts.get(r.id, 0),
            winner_name=names.get(r.winner_id) if r.winner_id else None,
        )
        for r in raffles
    ]


@router.get("/{raffle_id}", response_model=RaffleDetailResponse)
async def detail(
    raffle_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    raffle = await raffle_service.get_raffle(db, raffle_id)
    store = RaffleStore(db)
    participants = await store.participants(raffle_id)
    history = await store.draw_history(raffle_id)
    names = {p.id: p.name for p in participants}
    summary = await build_raffle_response(
        db,
        raffle,
        participant_count=len(participants),
        winner_name=names.get(raffle.winner_id) if raffle.winner_id else None,
    )
    return RaffleDetailResponse(
        **summary.model_dump(),
        participants=[ParticipantResponse.model_validate(p) for p in participants],
        draw_history=build_history(history, names),
    )


@router.get("/{raffle_id}/participants", response_model=list[ParticipantResponse])
async def participants(
    raffle_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    await raffle_service.get_raffle(db, raffle_id)
    return await RaffleStore(db).participants(raffle_id)


@router.patch("/{raffle_id}", response_model=RaffleResponse)
async def update_status(
    raffle_id: uuid.UUID,
    body: RaffleStatusUpdate,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    raffle = await raffle_service.patch_status(db, raffle_id, RaffleStatus(body.status))
    return await build_raffle_response(db, raffle)


@router.delete("/{raffle_id}", status_code=204)
async def delete(
    raffle_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    await raffle_service.delete_raffle(db, raffle_id)
    return Response(status_code=204)


@router.post("/{raffle_id}/draw", response_model=DrawResponse)
async def draw_winner(
    raffle_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    result = await draw(db, raffle_id)
    names = await RaffleStore(db).participant_names([e.participant_id for e in result.history])
    return DrawResponse(
        raffle=await build_raffle_response(db, result.raffle, winner_name=result.winner.name),
        winner=ParticipantResponse.model_validate(result.winner),
        remaining_eligible=result.remaining_eligible,
        history=build_history(result.history, names),
    )


@router.post("/{raffle_id}/confirm", response_model=ConfirmationResponse)
async def confirm(
    raffle_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    raffle, winner = await confirm_by_operator(db, raffle_id)
    return ConfirmationResponse(
        raffle=await build_raffle_response(db, raffle, winner_name=winner.name),
        confirmed_participant=ParticipantResponse.model_validate(winner),
    )


@router.post("/{raffle_id}/reopen", response_model=RaffleResponse)
async def reopen(
    raffle_id: uuid.UUID,
    body: ReopenRequest | None = None,
    db: AsyncSession = Depends(get_db),
    _operator: str = Depends(require_operator),
):
    clear_schedule = body.clear_schedule if body else False
    raffle = await raffle_service.reopen(db, raffle_id, clear_schedule=clear_schedule)
    return await build_raffle_response(db, raffle)
