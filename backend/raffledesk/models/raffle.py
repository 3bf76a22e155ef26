import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Enum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from raffledesk.db.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin


class RaffleStatus(str, enum.Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    DRAWN = "drawn"


class Raffle(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "raffles"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    prize: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    allowed_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Registration window
    starts_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    timebox_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    require_confirmation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confirmation_timeout_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_draw_on_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[RaffleStatus] = mapped_column(
        Enum(
            RaffleStatus,
            name="raffle_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=RaffleStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    # Currently proposed or confirmed winner; participants are owned by the
    # raffle, so no FK back to them (avoids a raffles <-> participants cycle).
    winner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
