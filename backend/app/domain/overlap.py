"""Half-open interval checks for seat slots."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING

from backend.app.core.errors import InvalidRange
from backend.app.domain.models import Reservation

if TYPE_CHECKING:
    from backend.app.repositories.base import AbstractUnitOfWork


@dataclass(frozen=True)
class Block:
    start: time
    end: time
    free: bool


def overlaps(start: time, end: time, other_start: time, other_end: time) -> bool:
    """Touching endpoints do not conflict."""
    return start < other_end and end > other_start


def validate_range(start: time, end: time) -> None:
    if start >= end:
        raise InvalidRange(f"Start {start:%H:%M} must be before end {end:%H:%M}")


def first_conflict(
    active: Iterable[Reservation],
    start: time,
    end: time,
    exclude_reservation_id: str | None = None,
) -> Reservation | None:
    for reservation in active:
        if reservation.id == exclude_reservation_id or not reservation.is_active:
            continue
        if overlaps(start, end, reservation.start_time, reservation.end_time):
            return reservation
    return None


async def is_slot_free(
    uow: AbstractUnitOfWork,
    seat_id: str,
    day: date,
    start: time,
    end: time,
    exclude_reservation_id: str | None = None,
) -> bool:
    validate_range(start, end)
    active = await uow.reservations.list_active(seat_id, day)
    return first_conflict(active, start, end, exclude_reservation_id) is None


def _shift(moment: time, delta: timedelta) -> time:
    return (datetime.combine(date.min, moment) + delta).time()


async def free_blocks(
    uow: AbstractUnitOfWork,
    seat_id: str,
    day: date,
    start_from: time,
    until: time,
    block: timedelta,
    exclude_reservation_id: str | None = None,
) -> list[Block]:
    """Step through ``[start_from, until)`` in ``block``-sized pieces, clipping the last one."""
    active = await uow.reservations.list_active(seat_id, day)
    blocks: list[Block] = []
    cursor = start_from
    while cursor < until:
        block_end = _shift(cursor, block)
        # a block that would wrap past midnight is clipped to the bound
        if block_end <= cursor or block_end > until:
            block_end = until
        conflict = first_conflict(active, cursor, block_end, exclude_reservation_id)
        blocks.append(Block(start=cursor, end=block_end, free=conflict is None))
        cursor = block_end
    return blocks


async def alternative_starts(
    uow: AbstractUnitOfWork,
    seat_id: str,
    day: date,
    start: time,
    end: time,
    closing: time,
    step: timedelta,
    max_results: int,
    max_probes: int,
) -> list[time]:
    """Later start times on the same seat that fit a slot of the same length."""
    active = await uow.reservations.list_active(seat_id, day)
    duration = datetime.combine(day, end) - datetime.combine(day, start)
    found: list[time] = []
    cursor = datetime.combine(day, start)
    probes = 0
    while len(found) < max_results and probes < max_probes:
        cursor += step
        probes += 1
        candidate_end = cursor + duration
        if candidate_end.date() != day or candidate_end.time() > closing:
            break
        if first_conflict(active, cursor.time(), candidate_end.time()) is None:
            found.append(cursor.time())
    return found
