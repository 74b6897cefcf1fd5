"""Reservation lifecycle transitions.

The table below is the only source of legal moves. ``apply`` validates a
requested move and returns the updated reservation together with the seat
state the move implies; callers persist both in the same unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum

from backend.app.core.errors import InvalidTransition
from backend.app.domain.models import Reservation, ReservationState, SeatState


class Trigger(StrEnum):
    CHECK_IN = "check_in"
    CANCEL = "cancel"
    OPERATOR_CANCEL = "operator_cancel"
    CHECK_OUT = "check_out"
    NO_SHOW = "no_show"


@dataclass(frozen=True)
class Transition:
    source: ReservationState
    target: ReservationState
    triggers: frozenset[Trigger]
    # None leaves the seat untouched.
    seat_state: SeatState | None


TRANSITIONS: tuple[Transition, ...] = (
    Transition(
        ReservationState.CONFIRMED,
        ReservationState.CHECKED_IN,
        frozenset({Trigger.CHECK_IN}),
        SeatState.OCCUPIED,
    ),
    Transition(
        ReservationState.CONFIRMED,
        ReservationState.CANCELLED,
        frozenset({Trigger.CANCEL, Trigger.OPERATOR_CANCEL}),
        None,
    ),
    Transition(
        ReservationState.CHECKED_IN,
        ReservationState.COMPLETED,
        frozenset({Trigger.CHECK_OUT}),
        SeatState.AVAILABLE,
    ),
    Transition(
        ReservationState.CHECKED_IN,
        ReservationState.CANCELLED,
        frozenset({Trigger.CANCEL, Trigger.OPERATOR_CANCEL}),
        SeatState.AVAILABLE,
    ),
    Transition(
        ReservationState.CONFIRMED,
        ReservationState.NO_SHOW,
        frozenset({Trigger.NO_SHOW}),
        SeatState.AVAILABLE,
    ),
)


@dataclass(frozen=True)
class TransitionResult:
    reservation: Reservation
    previous_state: ReservationState
    seat_state: SeatState | None


class ReservationStateMachine:
    def __init__(self, check_in_window: timedelta, no_show_grace: timedelta):
        self.check_in_window = check_in_window
        self.no_show_grace = no_show_grace

    def find(self, source: ReservationState, trigger: Trigger) -> Transition:
        for transition in TRANSITIONS:
            if transition.source == source and trigger in transition.triggers:
                return transition
        raise InvalidTransition(f"Cannot {trigger.value.replace('_', ' ')} a reservation in state {source.value}")

    def can_apply(self, reservation: Reservation, trigger: Trigger) -> bool:
        return any(t.source == reservation.state and trigger in t.triggers for t in TRANSITIONS)

    def check_in_window_for(self, reservation: Reservation) -> tuple[datetime, datetime]:
        starts_at = reservation.starts_at
        return starts_at - self.check_in_window, starts_at + self.check_in_window

    def no_show_due(self, reservation: Reservation, now: datetime) -> bool:
        return (
            reservation.state == ReservationState.CONFIRMED
            and reservation.check_in_at is None
            and now > reservation.starts_at + self.no_show_grace
        )

    def _guard(self, reservation: Reservation, trigger: Trigger, now: datetime, operator_override: bool) -> None:
        if trigger == Trigger.CHECK_IN and not operator_override:
            opens, closes = self.check_in_window_for(reservation)
            if now < opens:
                raise InvalidTransition("Check-in window not open yet")
            if now > closes:
                raise InvalidTransition("Check-in window has closed")
        elif trigger == Trigger.NO_SHOW and not self.no_show_due(reservation, now):
            raise InvalidTransition("Reservation is still within its check-in grace period")

    def apply(
        self,
        reservation: Reservation,
        trigger: Trigger,
        now: datetime,
        *,
        operator_override: bool = False,
    ) -> TransitionResult:
        transition = self.find(reservation.state, trigger)
        self._guard(reservation, trigger, now, operator_override)

        changes: dict = {"state": transition.target}
        if trigger == Trigger.CHECK_IN:
            changes["check_in_at"] = now
        elif trigger == Trigger.CHECK_OUT:
            changes["check_out_at"] = now

        return TransitionResult(
            reservation=replace(reservation, **changes),
            previous_state=reservation.state,
            seat_state=transition.seat_state,
        )
