"""Seed script to create a demo raffle with a few participants."""
import asyncio

from sqlalchemy import select

from raffledesk.db.engine import async_session_factory
from raffledesk.main import ensure_tables
from raffledesk.models.raffle import Raffle
from raffledesk.schemas.raffle import RaffleCreate
from raffledesk.services.raffle_service import create_raffle
from raffledesk.services.registration_service import register

DEMO_NAME = "Demo Raffle"
DEMO_PARTICIPANTS = [
    ("Ada Lovelace", "ada@example.com", "11111"),
    ("Grace Hopper", "grace@example.com", "22222"),
    ("Alan Turing", "alan@example.com", "33333"),
]


async def seed():
    print("Seeding database...")
    await ensure_tables()

    async with async_session_factory() as db:
        result = await db.execute(select(Raffle).where(Raffle.name == DEMO_NAME))
        if result.scalar_one_or_none():
            print("Seed data already exists, skipping.")
            return

        raffle = await create_raffle(
            db,
            RaffleCreate(
                name=DEMO_NAME,
                prize="Conference ticket",
                timebox_minutes=60,
                require_confirmation=True,
                confirmation_timeout_minutes=2,
            ),
        )
        for name, email, code in DEMO_PARTICIPANTS:
            await register(db, raffle.id, name=name, email=email, code=code)

        print("Seed data created:")
        print(f"  Raffle: {raffle.name} (id={raffle.id})")
        print(f"  Participants: {len(DEMO_PARTICIPANTS)}")


if __name__ == "__main__":
    asyncio.run(seed())
