from raffledesk.models.raffle import Raffle, RaffleStatus
from raffledesk.models.participant import Participant
from raffledesk.models.draw_history import DrawHistoryEntry

__all__ = [
    "Raffle", "RaffleStatus",
    "Participant",
    "DrawHistoryEntry",
]
