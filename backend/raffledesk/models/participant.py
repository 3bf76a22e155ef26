import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from raffledesk.db.base import Base, UTCDateTime, UUIDPrimaryKeyMixin, utcnow


class Participant(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("raffle_id", "email", name="uq_participants_raffle_email"),
    )

    raffle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    secret_code_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
