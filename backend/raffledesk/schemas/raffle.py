import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from raffledesk.models.raffle import RaffleStatus
from raffledesk.services.status_projector import EffectiveStatus


# ── Requests ───────────────────────────────────────────────────

class RaffleCreate(BaseModel):
    name: str
    prize: str
    description: str | None = None
    allowed_domain: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    timebox_minutes: int | None = Field(default=None, ge=1)
    require_confirmation: bool = False
    confirmation_timeout_minutes: int | None = Field(default=None, ge=1)
    auto_draw_on_end: bool = False


class RaffleStatusUpdate(BaseModel):
    status: Literal["active", "closed"]


class ReopenRequest(BaseModel):
    clear_schedule: bool = False


class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    # Format is checked by the registration service so a bad code is a 400
    code: str | None = None


class ConfirmCodeRequest(BaseModel):
    code: str


# ── Responses ──────────────────────────────────────────────────

class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: uuid.UUID
    raffle_id: uuid.UUID
    name: str
    email: str
    created_at: datetime | None = None


class DrawHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: uuid.UUID
    draw_number: int
    participant_id: uuid.UUID
    participant_name: str | None = None
    was_present: bool
    created_at: datetime


class RaffleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: uuid.UUID
    name: str
    prize: str
    description: str | None = None
    allowed_domain: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    timebox_minutes: int | None = None
    require_confirmation: bool
    confirmation_timeout_minutes: int | None = None
    auto_draw_on_end: bool
    status: RaffleStatus
    effective_status: EffectiveStatus
    winner_id: uuid.UUID | None = None
    winner_name: str | None = None
    participant_count: int = 0
    closed_at: datetime | None = None
    created_at: datetime | None = None


class RaffleDetailResponse(RaffleResponse):
    participants: list[ParticipantResponse] = []
    draw_history: list[DrawHistoryResponse] = []


class DrawResponse(BaseModel):
    raffle: RaffleResponse
    winner: ParticipantResponse
    remaining_eligible: int
    history: list[DrawHistoryResponse]


class ConfirmationResponse(BaseModel):
    raffle: RaffleResponse
    confirmed_participant: ParticipantResponse


class RaffleInfoResponse(BaseModel):
    """Public view used by the registration page."""

    id: uuid.UUID
    name: str
    prize: str
    description: str | None = None
    allowed_domain: str | None = None
    status: RaffleStatus
    effective_status: EffectiveStatus
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    require_confirmation: bool
    participant_count: int


class RaffleStatusResponse(BaseModel):
    """Snapshot polled by display screens."""

    id: uuid.UUID
    effective_status: EffectiveStatus
    participant_count: int
    draw_count: int
    winner_name: str | None = None
    registration_remaining_seconds: int | None = None
    confirmation_deadline: datetime | None = None
    confirmation_remaining_seconds: int | None = None
