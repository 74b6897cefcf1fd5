"""FastAPI dependency providers.

Services are built per request from the unit-of-work factory; tests swap the
factory through ``app.dependency_overrides[get_uow_factory]``.
"""

from fastapi import Depends, Header, HTTPException, status

from backend.app.core.config import settings
from backend.app.db.session import sql_unit_of_work
from backend.app.domain.models import UserRole
from backend.app.repositories.base import UnitOfWorkFactory
from backend.app.services.automation import AutomationScheduler
from backend.app.services.events import EventSink
from backend.app.services.reservations import ReservationService
from backend.app.services.seats import SeatService


def get_uow_factory() -> UnitOfWorkFactory:
    return sql_unit_of_work


def get_event_sink() -> EventSink:
    return EventSink()


def get_reservation_service(
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    sink: EventSink = Depends(get_event_sink),
) -> ReservationService:
    return ReservationService(uow_factory, sink)


def get_seat_service(
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    sink: EventSink = Depends(get_event_sink),
) -> SeatService:
    return SeatService(uow_factory, sink)


def get_scheduler(
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    sink: EventSink = Depends(get_event_sink),
    reservations: ReservationService = Depends(get_reservation_service),
) -> AutomationScheduler:
    return AutomationScheduler(uow_factory, sink, reservations)


def is_operator(role: str | None) -> bool:
    return role in (UserRole.LIBRARIAN.value, UserRole.ADMIN.value)


def require_operator(x_user_role: str | None = Header(default=None)) -> UserRole:
    """The identity provider forwards the caller's role; only staff may pass."""
    if not is_operator(x_user_role):
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Operator role required")
    return UserRole(x_user_role)


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    token = authorization.split(" ", 1)[1] if authorization and " " in authorization else None
    if token != settings.CRON_SECRET:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Not authorized")
