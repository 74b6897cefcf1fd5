from datetime import date, datetime, time, timedelta

import pytest

from backend.app.core.errors import InvalidTransition
from backend.app.domain.models import Reservation, ReservationState, SeatState
from backend.app.domain.state_machine import TRANSITIONS, ReservationStateMachine, Trigger


DAY = date(2026, 3, 10)
TERMINAL = (
    ReservationState.COMPLETED,
    ReservationState.CANCELLED,
    ReservationState.NO_SHOW,
    ReservationState.EXPIRED,
)


@pytest.fixture
def machine():
    return ReservationStateMachine(check_in_window=timedelta(minutes=15), no_show_grace=timedelta(minutes=15))


def _reservation(state=ReservationState.CONFIRMED, start=time(9), end=time(11)):
    return Reservation(id="r", user_id="u1", seat_id="s1", date=DAY, start_time=start, end_time=end, state=state)


def _at(hour, minute=0, second=0):
    return datetime.combine(DAY, time(hour, minute, second))


def test_no_transition_leaves_a_terminal_state():
    for transition in TRANSITIONS:
        assert transition.source not in TERMINAL


@pytest.mark.parametrize("state", TERMINAL)
@pytest.mark.parametrize("trigger", list(Trigger))
def test_terminal_states_reject_every_trigger(machine, state, trigger):
    assert not machine.can_apply(_reservation(state), trigger)
    with pytest.raises(InvalidTransition):
        machine.apply(_reservation(state), trigger, _at(9), operator_override=True)


def test_check_in_window_is_inclusive(machine):
    reservation = _reservation()

    opened = machine.apply(reservation, Trigger.CHECK_IN, _at(8, 45))
    closed = machine.apply(reservation, Trigger.CHECK_IN, _at(9, 15))

    assert opened.reservation.state == ReservationState.CHECKED_IN
    assert opened.reservation.check_in_at == _at(8, 45)
    assert opened.seat_state == SeatState.OCCUPIED
    assert closed.reservation.check_in_at == _at(9, 15)


def test_check_in_outside_window_is_rejected(machine):
    with pytest.raises(InvalidTransition, match="not open yet"):
        machine.apply(_reservation(), Trigger.CHECK_IN, _at(8, 44, 59))
    with pytest.raises(InvalidTransition, match="closed"):
        machine.apply(_reservation(), Trigger.CHECK_IN, _at(9, 15, 1))


def test_operator_override_skips_window(machine):
    result = machine.apply(_reservation(), Trigger.CHECK_IN, _at(7), operator_override=True)
    assert result.reservation.state == ReservationState.CHECKED_IN


def test_cancel_confirmed_leaves_seat_alone(machine):
    result = machine.apply(_reservation(), Trigger.CANCEL, _at(8))
    assert result.reservation.state == ReservationState.CANCELLED
    assert result.previous_state == ReservationState.CONFIRMED
    assert result.seat_state is None


@pytest.mark.parametrize("trigger", [Trigger.CANCEL, Trigger.OPERATOR_CANCEL])
def test_cancel_checked_in_frees_seat(machine, trigger):
    result = machine.apply(_reservation(ReservationState.CHECKED_IN), trigger, _at(10))
    assert result.reservation.state == ReservationState.CANCELLED
    assert result.seat_state == SeatState.AVAILABLE


def test_check_out_records_time_and_frees_seat(machine):
    result = machine.apply(_reservation(ReservationState.CHECKED_IN), Trigger.CHECK_OUT, _at(10, 30))
    assert result.reservation.state == ReservationState.COMPLETED
    assert result.reservation.check_out_at == _at(10, 30)
    assert result.seat_state == SeatState.AVAILABLE


def test_check_out_requires_check_in(machine):
    with pytest.raises(InvalidTransition):
        machine.apply(_reservation(), Trigger.CHECK_OUT, _at(10))


def test_no_show_only_after_grace(machine):
    reservation = _reservation()

    assert not machine.no_show_due(reservation, _at(9, 15))
    assert machine.no_show_due(reservation, _at(9, 16))
    with pytest.raises(InvalidTransition):
        machine.apply(reservation, Trigger.NO_SHOW, _at(9, 15))

    result = machine.apply(reservation, Trigger.NO_SHOW, _at(9, 16))
    assert result.reservation.state == ReservationState.NO_SHOW
    assert result.seat_state == SeatState.AVAILABLE


def test_no_show_never_applies_to_checked_in(machine):
    assert not machine.no_show_due(_reservation(ReservationState.CHECKED_IN), _at(12))
