"""Shared test fixtures.

Every test gets its own SQLite database file (aiosqlite) in WAL mode.
Connections run with pysqlite's implicit transaction handling switched off and
an explicit BEGIN per transaction, so SAVEPOINTs and rollbacks behave as on
Postgres.
"""

from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from venuebook.core.config import Settings
from venuebook.models import Base, Court, CourtType, TransactionType, User, UserRole
from venuebook.services import ledger
from venuebook.services.leases import CourtLeases
from venuebook.services.reservations import ReservationManager

# Sunday 15 March 2026, 09:00 in Hong Kong
NOW = datetime(2026, 3, 15, 1, 0, tzinfo=UTC)

# 00:00-07:00 80, 07:00-16:00 60, 16:00-23:00 80 points per hour
SCENARIO_TARIFF = [
    {"start": "00:00", "end": "07:00", "price": 80, "name": "early"},
    {"start": "07:00", "end": "16:00", "price": 60, "name": "day"},
    {"start": "16:00", "end": "23:00", "price": 80, "name": "evening"},
]

MEMBER_BALANCE = 1000


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def config():
    return Settings(calendar_enabled=False, notifications_enabled=False)


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_connection(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        # Readers must not block the manager's commits while a request session is open
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def seed(session_factory):
    """Three full-venue courts and a member, a VIP and an admin. The member and VIP hold 1000 points."""
    async with session_factory() as db:
        courts = [
            Court(name="Solo Court", number=1, court_type=CourtType.SOLO, capacity=2, tariff=SCENARIO_TARIFF, sort_order=1),
            Court(
                name="Training Court",
                number=2,
                court_type=CourtType.TRAINING,
                capacity=8,
                tariff={"weekday": SCENARIO_TARIFF, "weekend": [{"start": "00:00", "end": "24:00", "price": 100}]},
                sort_order=2,
            ),
            Court(
                name="Competition Court",
                number=3,
                court_type=CourtType.COMPETITION,
                capacity=8,
                tariff=SCENARIO_TARIFF,
                sort_order=3,
            ),
        ]
        member = User(email="member@example.com", name="Member", phone="+852 5555 0001")
        vip = User(email="vip@example.com", name="Vip", role=UserRole.VIP)
        admin = User(email="admin@example.com", name="Admin", role=UserRole.ADMIN)
        db.add_all([*courts, member, vip, admin])
        await db.flush()

        for user in (member, vip):
            await ledger.credit(
                db, user.id, MEMBER_BALANCE, "Starting balance", ledger.grant_reference(), txn_type=TransactionType.GRANT
            )
        await db.commit()

    return SimpleNamespace(
        solo=courts[0],
        training=courts[1],
        competition=courts[2],
        member=member,
        vip=vip,
        admin=admin,
    )


@pytest.fixture
def manager(session_factory, config, clock):
    return ReservationManager(session_factory, CourtLeases(), config=config, clock=clock)


@pytest.fixture
def balance_of(session_factory):
    async def _balance(user_id: int) -> int:
        async with session_factory() as db:
            return await ledger.get_balance(db, user_id)

    return _balance
