from datetime import date

from fastapi import APIRouter, Depends, Query

from backend.app.dependencies import get_reservation_service, get_seat_service, require_operator
from backend.app.routers.schemas import ReservationOut, SeatOut, SeatStateIn
from backend.app.services.reservations import ReservationService
from backend.app.services.seats import SeatService


router = APIRouter(tags=["seats"])


@router.get("/rooms/{room_id}/seats", response_model=list[SeatOut])
async def list_room_seats(
    room_id: str,
    service: SeatService = Depends(get_seat_service),
) -> list[SeatOut]:
    return [SeatOut.model_validate(seat) for seat in await service.list_room(room_id)]


@router.get("/seats/{seat_id}/reservations", response_model=list[ReservationOut])
async def list_seat_reservations(
    seat_id: str,
    on_date: date = Query(..., alias="date"),
    service: ReservationService = Depends(get_reservation_service),
) -> list[ReservationOut]:
    """Every reservation of the seat on one day, in start order, whatever its state."""
    return [ReservationOut.model_validate(r) for r in await service.list_for_seat(seat_id, on_date)]


@router.patch("/seats/{seat_id}/state", response_model=SeatOut, dependencies=[Depends(require_operator)])
async def set_seat_state(
    seat_id: str,
    payload: SeatStateIn,
    service: SeatService = Depends(get_seat_service),
) -> SeatOut:
    return SeatOut.model_validate(await service.set_state(seat_id, payload.state, payload.reason))
