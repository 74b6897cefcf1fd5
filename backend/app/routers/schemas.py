from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field

from backend.app.domain.models import ReservationState, SeatState


class CreateReservationIn(BaseModel):
    user_id: str
    seat_id: str
    date: date
    # local wall time, e.g. "09:00"
    start_time: time
    end_time: time
    commuter_margin: bool = False
    commuter_margin_minutes: int | None = Field(default=None, ge=0, le=240)
    notes: str | None = Field(default=None, max_length=1024)


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    seat_id: str
    date: date
    start_time: time
    end_time: time
    state: ReservationState
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None
    commuter_margin: bool
    commuter_margin_minutes: int
    notes: str | None = None


class CheckInIn(BaseModel):
    operator_override: bool = False


class CancelIn(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class BulkCancelIn(BaseModel):
    reservation_ids: list[str] = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=500)


class BulkCancelOut(BaseModel):
    outcomes: dict[str, str]


class ExtendIn(BaseModel):
    new_end: time


class ExtensionOptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: time
    end: time
    free: bool
    total_hours: float


class RescheduleIn(BaseModel):
    seat_id: str | None = None
    on_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None


class AvailabilityCheckIn(BaseModel):
    seat_id: str
    date: date
    start_time: time
    end_time: time


class AvailabilityCheckOut(BaseModel):
    seat_id: str
    date: date
    start_time: time
    end_time: time
    free: bool
    alternatives: list[time]


class SeatStateIn(BaseModel):
    state: SeatState
    reason: str | None = Field(default=None, max_length=500)


class SeatOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    room_id: str
    label: str
    state: SeatState
    has_power_outlet: bool
    is_window: bool
    is_accessible: bool


class AutomationSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timestamp: datetime
    reminders_sent: int = Field(serialization_alias="remindersSent")
    loan_alerts_sent: int = Field(serialization_alias="loanAlertsSent")
    no_shows_released: int = Field(serialization_alias="noShowsReleased")
    errors: list[str]
