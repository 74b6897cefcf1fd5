from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from backend.app.dependencies import get_reservation_service, is_operator, require_operator
from backend.app.routers.schemas import (
    BulkCancelIn,
    BulkCancelOut,
    CancelIn,
    CheckInIn,
    CreateReservationIn,
    ExtendIn,
    ExtensionOptionOut,
    ReservationOut,
    RescheduleIn,
)
from backend.app.services.reservations import BookingOptions, RescheduleChanges, ReservationService


router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: CreateReservationIn,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    reservation = await service.create(
        payload.user_id,
        payload.seat_id,
        payload.date,
        payload.start_time,
        payload.end_time,
        BookingOptions(
            commuter_margin=payload.commuter_margin,
            commuter_margin_minutes=payload.commuter_margin_minutes,
            notes=payload.notes,
        ),
    )
    return ReservationOut.model_validate(reservation)


@router.get("", response_model=list[ReservationOut])
async def list_reservations(
    user_id: str = Query(...),
    service: ReservationService = Depends(get_reservation_service),
) -> list[ReservationOut]:
    return [ReservationOut.model_validate(r) for r in await service.list_for_user(user_id)]


@router.post("/cancel-bulk", response_model=BulkCancelOut, dependencies=[Depends(require_operator)])
async def cancel_bulk(
    payload: BulkCancelIn,
    service: ReservationService = Depends(get_reservation_service),
) -> BulkCancelOut:
    return BulkCancelOut(outcomes=await service.cancel_many(payload.reservation_ids, payload.reason))


@router.get("/{reservation_id}", response_model=ReservationOut)
async def get_reservation(
    reservation_id: str,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    return ReservationOut.model_validate(await service.get(reservation_id))


@router.post("/{reservation_id}/check-in", response_model=ReservationOut)
async def check_in(
    reservation_id: str,
    payload: CheckInIn | None = None,
    x_user_role: str | None = Header(default=None),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    override = payload.operator_override if payload else False
    if override and not is_operator(x_user_role):
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Only staff can override the check-in window")
    return ReservationOut.model_validate(await service.check_in(reservation_id, operator_override=override))


@router.post("/{reservation_id}/check-out", response_model=ReservationOut)
async def check_out(
    reservation_id: str,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    return ReservationOut.model_validate(await service.check_out(reservation_id))


@router.post("/{reservation_id}/cancel", response_model=ReservationOut)
async def cancel(
    reservation_id: str,
    payload: CancelIn | None = None,
    x_user_role: str | None = Header(default=None),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    by_operator = is_operator(x_user_role)
    reason = payload.reason if payload else None
    return ReservationOut.model_validate(
        await service.cancel(reservation_id, by_operator=by_operator, reason=reason)
    )


@router.post("/{reservation_id}/extend", response_model=ReservationOut)
async def extend(
    reservation_id: str,
    payload: ExtendIn,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    return ReservationOut.model_validate(await service.extend(reservation_id, payload.new_end))


@router.get("/{reservation_id}/extension-options", response_model=list[ExtensionOptionOut])
async def extension_options(
    reservation_id: str,
    service: ReservationService = Depends(get_reservation_service),
) -> list[ExtensionOptionOut]:
    return [ExtensionOptionOut.model_validate(o) for o in await service.extension_options(reservation_id)]


@router.patch("/{reservation_id}", response_model=ReservationOut, dependencies=[Depends(require_operator)])
async def reschedule(
    reservation_id: str,
    payload: RescheduleIn,
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    changes = RescheduleChanges(
        seat_id=payload.seat_id,
        date=payload.on_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
    )
    return ReservationOut.model_validate(await service.reschedule(reservation_id, changes))
