"""Append-only audit trail records.

Each audit kind carries its own details model; ``AuditDetails`` is the closed
union of them, discriminated on ``kind`` so the stored JSON always round-trips
to the right shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from backend.app.domain.models import SeatState, new_id


class AuditKind(StrEnum):
    RESERVATION_CREATED = "PRENOTAZIONE_CREATA"
    RESERVATION_CANCELLED = "PRENOTAZIONE_CANCELLATA"
    RESERVATION_EXTENDED = "PRENOTAZIONE_ESTESA"
    RESERVATION_MODIFIED = "PRENOTAZIONE_MODIFICATA"
    CHECK_IN = "CHECK_IN"
    CHECK_OUT = "CHECK_OUT"
    NO_SHOW = "NO_SHOW"
    AUTOMATION = "AUTOMATION"
    SEAT_STATE = "STATO_POSTO"


class ReservationCreatedDetails(BaseModel):
    kind: Literal["PRENOTAZIONE_CREATA"] = "PRENOTAZIONE_CREATA"
    seat_id: str
    on_date: date
    start_time: time
    end_time: time
    commuter_margin: bool = False


class ReservationCancelledDetails(BaseModel):
    kind: Literal["PRENOTAZIONE_CANCELLATA"] = "PRENOTAZIONE_CANCELLATA"
    seat_id: str
    previous_state: str
    by_operator: bool = False
    reason: str | None = None


class ReservationExtendedDetails(BaseModel):
    kind: Literal["PRENOTAZIONE_ESTESA"] = "PRENOTAZIONE_ESTESA"
    seat_id: str
    previous_end: time
    new_end: time


class ReservationModifiedDetails(BaseModel):
    kind: Literal["PRENOTAZIONE_MODIFICATA"] = "PRENOTAZIONE_MODIFICATA"
    previous_seat_id: str
    seat_id: str
    previous_date: date
    on_date: date
    start_time: time
    end_time: time


class CheckInDetails(BaseModel):
    kind: Literal["CHECK_IN"] = "CHECK_IN"
    seat_id: str
    operator_override: bool = False


class CheckOutDetails(BaseModel):
    kind: Literal["CHECK_OUT"] = "CHECK_OUT"
    seat_id: str


class NoShowDetails(BaseModel):
    kind: Literal["NO_SHOW"] = "NO_SHOW"
    seat_id: str
    start_time: time
    released_at: datetime
    automatic: bool = True


class CheckInReminderDetails(BaseModel):
    kind: Literal["AUTOMATION"] = "AUTOMATION"
    action: Literal["check_in_reminder"] = "check_in_reminder"
    reservation_id: str
    start_time: time


class LoanExpiryAlertDetails(BaseModel):
    kind: Literal["AUTOMATION"] = "AUTOMATION"
    action: Literal["loan_expiry_alert"] = "loan_expiry_alert"
    loan_id: str
    book_id: str
    due_on: date
    days_left: int


class SeatStateDetails(BaseModel):
    kind: Literal["STATO_POSTO"] = "STATO_POSTO"
    seat_id: str
    previous_state: SeatState
    new_state: SeatState
    reason: str | None = None


AutomationDetails = Annotated[
    Union[CheckInReminderDetails, LoanExpiryAlertDetails],
    Field(discriminator="action"),
]

AuditDetails = Annotated[
    Union[
        ReservationCreatedDetails,
        ReservationCancelledDetails,
        ReservationExtendedDetails,
        ReservationModifiedDetails,
        CheckInDetails,
        CheckOutDetails,
        NoShowDetails,
        AutomationDetails,
        SeatStateDetails,
    ],
    Field(discriminator="kind"),
]

audit_details_adapter: TypeAdapter[AuditDetails] = TypeAdapter(AuditDetails)


@dataclass(frozen=True)
class AuditEvent:
    kind: AuditKind
    description: str
    details: AuditDetails
    user_id: str | None = None
    reservation_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime | None = None

    def details_json(self) -> dict:
        return self.details.model_dump(mode="json")

    @classmethod
    def details_from_json(cls, payload: dict) -> AuditDetails:
        return audit_details_adapter.validate_python(payload)
