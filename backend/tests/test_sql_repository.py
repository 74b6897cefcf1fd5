import asyncio
from datetime import date, datetime, time, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import event, insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.app.core.errors import SlotTaken, StorageError
from backend.app.db import schema
from backend.app.domain.audit import AuditKind, ReservationCreatedDetails
from backend.app.domain.models import NotificationKind, ReservationState, SeatState
from backend.app.repositories.sql import SqlAlchemyUnitOfWork, translate_db_error
from backend.app.services.automation import AutomationScheduler
from backend.app.services.events import EventSink
from backend.app.services.reservations import ReservationService


DAY = date(2026, 3, 10)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'studyhall.db'}")

    # take the write lock when the transaction starts, standing in for the seat row lock
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(schema.metadata.create_all)
        await conn.execute(
            insert(schema.app_user),
            [
                {"id": "u1", "display_name": "Giulia Conti", "role": "STUDENT"},
                {"id": "u2", "display_name": "Marco Ferri", "role": "STUDENT"},
            ],
        )
        await conn.execute(
            insert(schema.room).values(
                id="r1", name="Sala Studio A", floor=1, opening_time=time(8), closing_time=time(20), capacity=40
            )
        )
        await conn.execute(
            insert(schema.seat),
            [
                {"id": "s1", "room_id": "r1", "label": "A1", "state": "AVAILABLE"},
                {"id": "s2", "room_id": "r1", "label": "A2", "state": "AVAILABLE"},
            ],
        )
        await conn.execute(insert(schema.book).values(id="b1", title="Analisi Matematica 1"))
        await conn.execute(
            insert(schema.loan).values(
                id="l1",
                user_id="u1",
                book_id="b1",
                borrowed_on=DAY - timedelta(days=27),
                due_on=DAY + timedelta(days=3),
                state="ACTIVE",
            )
        )
    try:
        yield async_sessionmaker(bind=engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def sql_clock():
    class _Clock:
        now = datetime.combine(DAY, time(8))

        def __call__(self):
            return self.now

    return _Clock()


@pytest.fixture
def sql_service(session_factory, sql_clock):
    return ReservationService(
        lambda: SqlAlchemyUnitOfWork(session_factory), EventSink(clock=sql_clock), clock=sql_clock
    )


@pytest.mark.asyncio
async def test_reservation_lifecycle_round_trips(sql_service, session_factory, sql_clock):
    reservation = await sql_service.create("u1", "s1", DAY, time(9), time(11))

    with pytest.raises(SlotTaken):
        await sql_service.create("u2", "s1", DAY, time(10), time(12))

    sql_clock.now = datetime.combine(DAY, time(9, 5))
    checked_in = await sql_service.check_in(reservation.id)
    assert checked_in.state == ReservationState.CHECKED_IN

    stored = await sql_service.get(reservation.id)
    assert stored.state == ReservationState.CHECKED_IN
    assert stored.start_time == time(9)
    assert stored.check_in_at == sql_clock.now

    async with SqlAlchemyUnitOfWork(session_factory) as uow:
        seat = await uow.seats.get("s1")
        notifications = await uow.notifications.list_for_user("u1")
    assert seat.state == SeatState.OCCUPIED
    assert [n.kind for n in notifications] == [NotificationKind.BOOKING]

    history = await sql_service.history(reservation.id)
    assert [event.kind for event in history] == [AuditKind.RESERVATION_CREATED, AuditKind.CHECK_IN]
    assert isinstance(history[0].details, ReservationCreatedDetails)
    assert history[0].details.start_time == time(9)


@pytest.mark.asyncio
async def test_concurrent_creates_admit_exactly_one(sql_service, session_factory):
    results = await asyncio.gather(
        *(sql_service.create(user, "s1", DAY, time(10), time(12)) for user in ("u1", "u2", "u1", "u2")),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == 1
    assert all(isinstance(r, SlotTaken) for r in results if isinstance(r, Exception))
    async with SqlAlchemyUnitOfWork(session_factory) as uow:
        active = await uow.reservations.list_active("s1", DAY)
    assert [r.id for r in active] == [successes[0].id]


@pytest.mark.asyncio
async def test_uncommitted_work_is_rolled_back(session_factory):
    async with SqlAlchemyUnitOfWork(session_factory) as uow:
        await uow.seats.set_state("s1", SeatState.MAINTENANCE)

    async with SqlAlchemyUnitOfWork(session_factory) as uow:
        assert (await uow.seats.get("s1")).state == SeatState.AVAILABLE


@pytest.mark.asyncio
async def test_sweep_queries(sql_service, session_factory, sql_clock):
    await sql_service.create("u1", "s1", DAY, time(9), time(11))
    await sql_service.create("u2", "s2", DAY, time(9, 35), time(11))
    scheduler = AutomationScheduler(
        lambda: SqlAlchemyUnitOfWork(session_factory), EventSink(clock=sql_clock), sql_service, clock=sql_clock
    )
    sql_clock.now = datetime.combine(DAY, time(9, 16))

    summary = await scheduler.run_all()

    assert (summary.reminders_sent, summary.loan_alerts_sent, summary.no_shows_released) == (1, 1, 1)
    assert summary.errors == []
    assert (await scheduler.run_all()).no_shows_released == 0
    assert (await scheduler.send_loan_expiry_alerts()) == 0


def test_translate_db_error_maps_slot_guard_to_conflict():
    guard = IntegrityError(
        "INSERT INTO reservation", {}, Exception('conflicting key value violates exclusion constraint "reservation_no_overlap"')
    )
    other = IntegrityError("INSERT INTO reservation", {}, Exception("foreign key violation"))
    outage = OperationalError("SELECT 1", {}, Exception("connection refused"))

    assert isinstance(translate_db_error(guard), SlotTaken)
    assert isinstance(translate_db_error(other), StorageError)
    assert isinstance(translate_db_error(outage), StorageError)
