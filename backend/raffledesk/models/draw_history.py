import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from raffledesk.db.base import Base, UTCDateTime, UUIDPrimaryKeyMixin, utcnow


class DrawHistoryEntry(UUIDPrimaryKeyMixin, Base):
    """One draw (or redraw) of a raffle.

    Rows are append-only; the only mutation is ``was_present`` flipping to
    True when the winner of the latest entry confirms. A previous winner
    that was superseded by a redraw keeps ``was_present = False``.
    """

    __tablename__ = "draw_history"
    __table_args__ = (
        UniqueConstraint("raffle_id", "draw_number", name="uq_draw_history_raffle_number"),
        UniqueConstraint("raffle_id", "participant_id", name="uq_draw_history_raffle_participant"),
    )

    raffle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    participant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False,
    )
    draw_number: Mapped[int] = mapped_column(Integer, nullable=False)
    was_present: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
