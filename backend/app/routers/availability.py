from fastapi import APIRouter, Depends

from backend.app.dependencies import get_reservation_service
from backend.app.routers.schemas import AvailabilityCheckIn, AvailabilityCheckOut
from backend.app.services.reservations import ReservationService


router = APIRouter()


@router.post("/availability/check", response_model=AvailabilityCheckOut)
async def check_availability(
    payload: AvailabilityCheckIn,
    service: ReservationService = Depends(get_reservation_service),
) -> AvailabilityCheckOut:
    """Report whether the slot is free; when it is not, suggest later starts on the same seat."""
    availability = await service.check_availability(
        payload.seat_id, payload.date, payload.start_time, payload.end_time
    )
    return AvailabilityCheckOut(
        seat_id=payload.seat_id,
        date=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        free=availability.free,
        alternatives=availability.alternatives,
    )
