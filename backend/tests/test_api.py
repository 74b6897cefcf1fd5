from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from backend.app.core.clock import local_now
from backend.app.core.config import settings
from backend.app.core.logger_config import custom_logger
from backend.app.db.session import get_session
from backend.app.dependencies import get_uow_factory
from backend.app.domain.audit import AuditKind
from backend.app.main import app
from backend.app.repositories.memory import InMemoryUnitOfWork


pytestmark = pytest.mark.asyncio(loop_scope="module")

PREFIX = settings.API_PREFIX
STAFF = {"X-User-Role": "LIBRARIAN"}


@pytest.fixture(autouse=True)
def memory_backend(store):
    app.dependency_overrides[get_uow_factory] = lambda: (lambda: InMemoryUnitOfWork(store))
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def day():
    return (local_now().date() + timedelta(days=1)).isoformat()


@pytest.fixture
def log_records():
    records = []
    sink_id = custom_logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    custom_logger.remove(sink_id)


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _booking(day, seat_id="s1", start="09:00", end="13:00", user_id="u1"):
    return {"user_id": user_id, "seat_id": seat_id, "date": day, "start_time": start, "end_time": end}


async def test_health_endpoint():
    async with _client() as client:
        health = await client.get(f"{PREFIX}/healthz")

    assert health.status_code == 200
    assert health.json() == {"ok": True}


async def test_create_get_and_list(day):
    async with _client() as client:
        created = await client.post(f"{PREFIX}/reservations", json={**_booking(day), "notes": "quiet corner"})
        assert created.status_code == 201, created.text
        body = created.json()
        assert body["state"] == "CONFIRMED"
        assert body["start_time"] == "09:00:00"
        assert body["commuter_margin_minutes"] == 30

        fetched = await client.get(f"{PREFIX}/reservations/{body['id']}")
        listed = await client.get(f"{PREFIX}/reservations", params={"user_id": "u1"})
        missing = await client.get(f"{PREFIX}/reservations/does-not-exist")

    assert fetched.status_code == 200
    assert fetched.json()["notes"] == "quiet corner"
    assert [r["id"] for r in listed.json()] == [body["id"]]
    assert missing.status_code == 404


async def test_conflict_returns_alternatives(day):
    async with _client() as client:
        await client.post(f"{PREFIX}/reservations", json=_booking(day))
        conflict = await client.post(
            f"{PREFIX}/reservations", json=_booking(day, start="12:00", end="14:00", user_id="u2")
        )
        adjacent = await client.post(
            f"{PREFIX}/reservations", json=_booking(day, start="13:00", end="15:00", user_id="u2")
        )

    assert conflict.status_code == 409
    detail = conflict.json()["detail"]
    assert detail["alternatives"] == ["13:00", "13:15", "13:30", "13:45"]
    assert adjacent.status_code == 201


async def test_domain_errors_map_to_status_codes(day):
    async with _client() as client:
        inverted = await client.post(f"{PREFIX}/reservations", json=_booking(day, start="11:00", end="10:00"))
        closed = await client.post(f"{PREFIX}/reservations", json=_booking(day, start="19:00", end="21:00"))
        unknown = await client.post(f"{PREFIX}/reservations", json=_booking(day, seat_id="nowhere"))

    assert inverted.status_code == 422
    assert "must be before" in inverted.json()["detail"]
    assert closed.status_code == 400
    assert unknown.status_code == 404


async def test_lifecycle_endpoints(day, store):
    async with _client() as client:
        created = (await client.post(f"{PREFIX}/reservations", json=_booking(day, end="11:00"))).json()
        rid = created["id"]

        options = await client.get(f"{PREFIX}/reservations/{rid}/extension-options")
        extended = await client.post(f"{PREFIX}/reservations/{rid}/extend", json={"new_end": "12:00"})
        too_long = await client.post(f"{PREFIX}/reservations/{rid}/extend", json={"new_end": "18:00"})
        checked_in = await client.post(
            f"{PREFIX}/reservations/{rid}/check-in", json={"operator_override": True}, headers=STAFF
        )
        checked_out = await client.post(f"{PREFIX}/reservations/{rid}/check-out")
        cancelled = await client.post(f"{PREFIX}/reservations/{rid}/cancel")

    assert options.status_code == 200
    assert options.json()[0] == {"start": "11:00:00", "end": "13:00:00", "free": True, "total_hours": 4.0}
    assert extended.json()["end_time"] == "12:00:00"
    assert too_long.status_code == 400
    assert checked_in.json()["state"] == "CHECKED_IN"
    assert store.seats["s1"].state == "AVAILABLE"
    assert checked_out.json()["state"] == "COMPLETED"
    assert cancelled.status_code == 409


async def test_staff_cancel_is_recorded_as_operator(day, store):
    async with _client() as client:
        rid = (await client.post(f"{PREFIX}/reservations", json=_booking(day))).json()["id"]
        cancelled = await client.post(
            f"{PREFIX}/reservations/{rid}/cancel", json={"reason": "room closed"}, headers=STAFF
        )

    assert cancelled.json()["state"] == "CANCELLED"
    event = [e for e in store.audit if e.kind == AuditKind.RESERVATION_CANCELLED][0]
    assert event.details.by_operator is True
    assert event.details.reason == "room closed"


async def test_operator_only_endpoints(day):
    async with _client() as client:
        first = (await client.post(f"{PREFIX}/reservations", json=_booking(day))).json()["id"]
        second = (await client.post(f"{PREFIX}/reservations", json=_booking(day, seat_id="s2"))).json()["id"]

        forbidden = await client.patch(f"{PREFIX}/reservations/{first}", json={"seat_id": "s3"})
        moved = await client.patch(
            f"{PREFIX}/reservations/{first}", json={"seat_id": "s3", "end_time": "12:00"}, headers=STAFF
        )
        bulk = await client.post(
            f"{PREFIX}/reservations/cancel-bulk",
            json={"reservation_ids": [first, second, "missing"], "reason": "fire drill"},
            headers=STAFF,
        )

    assert forbidden.status_code == 403
    assert moved.status_code == 200
    assert (moved.json()["seat_id"], moved.json()["end_time"]) == ("s3", "12:00:00")
    outcomes = bulk.json()["outcomes"]
    assert outcomes[first] == "CANCELLED"
    assert outcomes[second] == "CANCELLED"
    assert outcomes["missing"].startswith("error:")


async def test_availability_check(day):
    async with _client() as client:
        await client.post(f"{PREFIX}/reservations", json=_booking(day))
        free = await client.post(
            f"{PREFIX}/availability/check",
            json={"seat_id": "s1", "date": day, "start_time": "13:00", "end_time": "15:00"},
        )
        taken = await client.post(
            f"{PREFIX}/availability/check",
            json={"seat_id": "s1", "date": day, "start_time": "12:00", "end_time": "14:00"},
        )

    assert free.json()["free"] is True
    assert taken.json()["free"] is False
    assert taken.json()["alternatives"][:2] == ["13:00:00", "13:15:00"]


async def test_seat_state_endpoints(day, store):
    async with _client() as client:
        forbidden = await client.patch(f"{PREFIX}/seats/s2/state", json={"state": "MAINTENANCE"})
        maintenance = await client.patch(
            f"{PREFIX}/seats/s2/state", json={"state": "MAINTENANCE", "reason": "broken lamp"}, headers=STAFF
        )
        occupied = await client.patch(f"{PREFIX}/seats/s1/state", json={"state": "OCCUPIED"}, headers=STAFF)
        booking = await client.post(f"{PREFIX}/reservations", json=_booking(day, seat_id="s2"))
        seats = await client.get(f"{PREFIX}/rooms/r1/seats")

    assert forbidden.status_code == 403
    assert maintenance.json()["state"] == "MAINTENANCE"
    assert occupied.status_code == 409
    assert booking.status_code == 409
    assert [(s["label"], s["state"]) for s in seats.json()] == [
        ("A1", "AVAILABLE"),
        ("A2", "MAINTENANCE"),
        ("A3", "AVAILABLE"),
    ]


async def test_automation_run_requires_cron_secret():
    async with _client() as client:
        anonymous = await client.post(f"{PREFIX}/automations/run")
        wrong = await client.get(f"{PREFIX}/automations/run", headers={"Authorization": "Bearer nope"})
        authorised = await client.get(
            f"{PREFIX}/automations/run", headers={"Authorization": f"Bearer {settings.CRON_SECRET}"}
        )

    assert anonymous.status_code == 401
    assert wrong.status_code == 401
    assert authorised.status_code == 200
    body = authorised.json()
    assert (body["remindersSent"], body["loanAlertsSent"], body["noShowsReleased"]) == (0, 0, 0)
    assert body["errors"] == []


async def test_seat_day_listing_includes_every_state(day):
    async with _client() as client:
        morning = (await client.post(f"{PREFIX}/reservations", json=_booking(day, end="11:00"))).json()["id"]
        await client.post(f"{PREFIX}/reservations/{morning}/cancel")
        await client.post(f"{PREFIX}/reservations", json=_booking(day, start="11:00", end="12:00", user_id="u2"))
        listed = await client.get(f"{PREFIX}/seats/s1/reservations", params={"date": day})

    assert [(r["start_time"], r["state"]) for r in listed.json()] == [
        ("09:00:00", "CANCELLED"),
        ("11:00:00", "CONFIRMED"),
    ]


async def test_check_in_override_is_staff_only(store):
    later = (local_now().date() + timedelta(days=5)).isoformat()
    async with _client() as client:
        rid = (await client.post(f"{PREFIX}/reservations", json=_booking(later))).json()["id"]
        refused = await client.post(f"{PREFIX}/reservations/{rid}/check-in", json={"operator_override": True})
        fetched = await client.get(f"{PREFIX}/reservations/{rid}")
        seat_after_refusal = store.seats["s1"].state
        allowed = await client.post(
            f"{PREFIX}/reservations/{rid}/check-in", json={"operator_override": True}, headers=STAFF
        )

    assert refused.status_code == 403
    assert fetched.json()["state"] == "CONFIRMED"
    assert fetched.json()["check_in_at"] is None
    assert seat_after_refusal == "AVAILABLE"
    assert allowed.json()["state"] == "CHECKED_IN"


async def test_business_rejections_are_not_logged_as_errors(day, log_records):
    async with _client() as client:
        await client.post(f"{PREFIX}/reservations", json=_booking(day))
        conflict = await client.post(
            f"{PREFIX}/reservations", json=_booking(day, start="12:00", end="14:00", user_id="u2")
        )
        closed = await client.post(f"{PREFIX}/reservations", json=_booking(day, start="19:00", end="21:00"))

    assert (conflict.status_code, closed.status_code) == (409, 400)
    handled = [r for r in log_records if r["message"].startswith(("SlotTaken:", "OutOfHours:"))]
    assert [r["level"].name for r in handled] == ["INFO", "INFO"]
    assert not [r for r in log_records if r["level"].no >= 40]


class _Session:
    def __init__(self, error: Exception | None = None):
        self.error = error

    async def execute(self, statement):
        if self.error is not None:
            raise self.error


async def test_readiness_reports_unreachable_dependencies():
    async def broken_session():
        yield _Session(ConnectionRefusedError("database down"))

    async def healthy_session():
        yield _Session()

    async with _client() as client:
        app.dependency_overrides[get_session] = broken_session
        database_down = await client.get(f"{PREFIX}/readiness")
        app.dependency_overrides[get_session] = healthy_session
        redis_down = await client.get(f"{PREFIX}/readiness")

    assert database_down.status_code == 503
    assert database_down.json()["detail"] == "Database unavailable"
    assert redis_down.status_code == 503
    assert redis_down.json()["detail"] == "Redis unavailable"
