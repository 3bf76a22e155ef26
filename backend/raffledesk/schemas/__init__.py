# Schemas package
from raffledesk.schemas.raffle import (
    ConfirmCodeRequest,
    ConfirmationResponse,
    DrawHistoryResponse,
    DrawResponse,
    ParticipantResponse,
    RaffleCreate,
    RaffleDetailResponse,
    RaffleInfoResponse,
    RaffleResponse,
    RaffleStatusResponse,
    RaffleStatusUpdate,
    RegisterRequest,
    ReopenRequest,
)

__all__ = [
    "ConfirmCodeRequest",
    "ConfirmationResponse",
    "DrawHistoryResponse",
    "DrawResponse",
    "ParticipantResponse",
    "RaffleCreate",
    "RaffleDetailResponse",
    "RaffleInfoResponse",
    "RaffleResponse",
    "RaffleStatusResponse",
    "RaffleStatusUpdate",
    "RegisterRequest",
    "ReopenRequest",
]
