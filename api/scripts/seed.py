"""Seed the database with VenueBook test data.

Run with: python -m scripts.seed
Creates the three full-venue courts with their tariffs, the public holidays,
an admin and a member with a starting points balance.
"""

import asyncio
from datetime import date

from sqlalchemy import select

from venuebook.core.auth import create_access_token
from venuebook.core.database import async_session_factory, engine
from venuebook.models import Base, Court, CourtType, Holiday, TransactionType, User, UserRole
from venuebook.services import ledger

# Points per hour. Early morning and evening are peak.
STANDARD_TARIFF = {
    "weekday": [
        {"start": "00:00", "end": "07:00", "price": 80, "name": "early"},
        {"start": "07:00", "end": "16:00", "price": 60, "name": "day"},
        {"start": "16:00", "end": "24:00", "price": 80, "name": "evening"},
    ],
    "weekend": [
        {"start": "00:00", "end": "24:00", "price": 90, "name": "weekend"},
    ],
}

COURTS = [
    {
        "name": "Solo Court",
        "number": 1,
        "court_type": CourtType.SOLO,
        "capacity": 2,
        "tariff": {"weekday": [{"start": "00:00", "end": "24:00", "price": 40, "name": "solo"}]},
        "peak_rate": 50,
        "off_peak_rate": 40,
        "sort_order": 1,
    },
    {
        "name": "Training Court",
        "number": 2,
        "court_type": CourtType.TRAINING,
        "capacity": 8,
        "tariff": STANDARD_TARIFF,
        "peak_rate": 80,
        "off_peak_rate": 60,
        "sort_order": 2,
    },
    {
        "name": "Competition Court",
        "number": 3,
        "court_type": CourtType.COMPETITION,
        "capacity": 8,
        "tariff": STANDARD_TARIFF,
        "peak_rate": 80,
        "off_peak_rate": 60,
        "sort_order": 3,
    },
]

HOLIDAYS = [
    (date(2026, 1, 1), "New Year's Day"),
    (date(2026, 10, 1), "National Day"),
    (date(2026, 12, 25), "Christmas Day"),
]

STARTING_BALANCE = 500


async def seed():
    # Create tables (in dev; production uses Alembic migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(Court).where(Court.number == 1))
        if result.scalar_one_or_none():
            print("Database already seeded - skipping.")
            return

        for court_data in COURTS:
            db.add(Court(**court_data))

        for holiday_date, name in HOLIDAYS:
            db.add(Holiday(holiday_date=holiday_date, name=name))

        admin = User(email="admin@venuebook.io", name="Test Admin", role=UserRole.ADMIN)
        member = User(email="member@example.com", name="Test Member", phone="+852 5555 0000")
        db.add_all([admin, member])
        await db.flush()

        await ledger.credit(
            db,
            member.id,
            STARTING_BALANCE,
            "Starting balance",
            ledger.grant_reference(),
            txn_type=TransactionType.GRANT,
        )

        await db.commit()

        print(f"Seeded: {len(COURTS)} courts, {len(HOLIDAYS)} holidays")
        print("  2 test users (bearer tokens below):")
        print(f"    admin@venuebook.io  {create_access_token(str(admin.id))}")
        print(f"    member@example.com  {create_access_token(str(member.id))} ({STARTING_BALANCE} points)")


if __name__ == "__main__":
    asyncio.run(seed())
