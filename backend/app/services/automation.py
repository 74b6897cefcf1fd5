"""Periodic automation sweeps.

``AutomationScheduler.run_all`` is invoked by an external timer. The three
sweeps are independent: each one is idempotent on its own (duplicates are
ruled out by looking at the notification log or the reservation state, never
by scheduler memory) and a failure in one is reported, not propagated.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from backend.app.core.clock import Clock, local_now, start_of_day
from backend.app.core.config import Settings, settings
from backend.app.core.errors import ReservationError
from backend.app.core.logger_config import custom_logger
from backend.app.domain import audit
from backend.app.domain.models import Loan, NotificationKind, Reservation
from backend.app.repositories.base import AbstractUnitOfWork, UnitOfWorkFactory
from backend.app.services.events import EventSink
from backend.app.services.reservations import ReservationService


@dataclass
class AutomationSummary:
    timestamp: datetime
    reminders_sent: int = 0
    loan_alerts_sent: int = 0
    no_shows_released: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _LoanTier:
    days_left: int
    title: str
    template: str


class AutomationScheduler:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        sink: EventSink,
        reservations: ReservationService,
        clock: Clock = local_now,
        config: Settings = settings,
    ):
        self.uow_factory = uow_factory
        self.sink = sink
        self.reservations = reservations
        self.clock = clock
        self.config = config
        self.loan_tiers = (
            _LoanTier(
                days_left=config.LOAN_EARLY_WARNING_DAYS,
                title="Loan due soon",
                template=(
                    'The book "{title}" is due in {days} days ({due:%d/%m/%Y}). '
                    "Remember to return or renew it."
                ),
            ),
            _LoanTier(
                days_left=config.LOAN_URGENT_WARNING_DAYS,
                title="Loan due tomorrow!",
                template=(
                    'URGENT: the book "{title}" is due tomorrow ({due:%d/%m/%Y}). '
                    "Return it today or renew it to avoid penalties."
                ),
            ),
        )

    async def run_all(self) -> AutomationSummary:
        now = self.clock()
        custom_logger.info(f"Automation run started at {now.isoformat()}")
        summary = AutomationSummary(timestamp=now)

        sweeps: tuple[tuple[str, Callable[[AutomationSummary], Awaitable[int]], str], ...] = (
            ("Reminders", self._run_reminders, "reminders_sent"),
            ("Loan alerts", self._run_loan_alerts, "loan_alerts_sent"),
            ("No-shows", self._run_no_shows, "no_shows_released"),
        )
        for label, sweep, counter in sweeps:
            try:
                setattr(summary, counter, await sweep(summary))
                custom_logger.info(f"{label}: {getattr(summary, counter)}")
            except Exception as exc:
                custom_logger.exception(f"{label} sweep failed")
                summary.errors.append(f"{label}: {exc}")

        custom_logger.info(
            f"Automation run finished: reminders={summary.reminders_sent} "
            f"loan_alerts={summary.loan_alerts_sent} no_shows={summary.no_shows_released} "
            f"errors={len(summary.errors)}"
        )
        return summary

    async def _run_reminders(self, summary: AutomationSummary) -> int:
        return await self.send_check_in_reminders()

    async def _run_loan_alerts(self, summary: AutomationSummary) -> int:
        return await self.send_loan_expiry_alerts()

    async def _run_no_shows(self, summary: AutomationSummary) -> int:
        released, errors = await self.release_no_shows()
        summary.errors.extend(errors)
        return released

    # ------------------------------------------------------------ check-in reminders

    async def send_check_in_reminders(self) -> int:
        now = self.clock()
        earliest = now + timedelta(minutes=self.config.REMINDER_LEAD_MIN_MINUTES)
        latest = now + timedelta(minutes=self.config.REMINDER_LEAD_MAX_MINUTES)
        if earliest.date() != now.date():
            return 0
        if latest.date() != now.date():
            latest = datetime.combine(now.date(), datetime.max.time())
        today = start_of_day(now)

        sent = 0
        async with self.uow_factory() as uow:
            candidates = await uow.reservations.list_confirmed_starting_between(
                now.date(), earliest.time(), latest.time()
            )
            for reservation in candidates:
                if await uow.notifications.exists_since(
                    reservation.user_id, NotificationKind.CHECK_IN_REMINDER, today
                ):
                    continue
                await self._remind(uow, reservation)
                sent += 1
            await uow.commit()
        return sent

    async def _remind(self, uow: AbstractUnitOfWork, reservation: Reservation) -> None:
        seat = await uow.seats.get(reservation.seat_id)
        room = await uow.rooms.get(seat.room_id) if seat else None
        where = f"seat {seat.label} in {room.name}" if seat and room else "your seat"
        await self.sink.notify(
            uow,
            user_id=reservation.user_id,
            kind=NotificationKind.CHECK_IN_REMINDER,
            title=f"Check-in in {self.config.REMINDER_LEAD_MIN_MINUTES} minutes",
            message=(
                f"Don't forget to check in for {where}. "
                f"Your reservation starts at {reservation.start_time:%H:%M}."
            ),
            action_ref=f"/reservations/{reservation.id}",
        )
        await self.sink.audit(
            uow,
            kind=audit.AuditKind.AUTOMATION,
            description=f"Check-in reminder sent for reservation {reservation.id}",
            details=audit.CheckInReminderDetails(reservation_id=reservation.id, start_time=reservation.start_time),
            user_id=reservation.user_id,
            reservation_id=reservation.id,
        )

    # ---------------------------------------------------------------- loan alerts

    async def send_loan_expiry_alerts(self) -> int:
        now = self.clock()
        today = start_of_day(now)

        sent = 0
        async with self.uow_factory() as uow:
            for tier in self.loan_tiers:
                due_on = now.date() + timedelta(days=tier.days_left)
                for loan in await uow.loans.list_due_on(due_on):
                    action_ref = f"/loans/{loan.id}"
                    if await uow.notifications.exists_since(
                        loan.user_id, NotificationKind.LOAN_EXPIRY, today, action_ref=action_ref
                    ):
                        continue
                    await self._alert_loan(uow, loan, tier, action_ref)
                    sent += 1
            await uow.commit()
        return sent

    async def _alert_loan(self, uow: AbstractUnitOfWork, loan: Loan, tier: _LoanTier, action_ref: str) -> None:
        await self.sink.notify(
            uow,
            user_id=loan.user_id,
            kind=NotificationKind.LOAN_EXPIRY,
            title=tier.title,
            message=tier.template.format(title=loan.book_title, days=tier.days_left, due=loan.due_on),
            action_ref=action_ref,
        )
        await self.sink.audit(
            uow,
            kind=audit.AuditKind.AUTOMATION,
            description=f"{tier.days_left}-day expiry alert sent for loan {loan.id}",
            details=audit.LoanExpiryAlertDetails(
                loan_id=loan.id, book_id=loan.book_id, due_on=loan.due_on, days_left=tier.days_left
            ),
            user_id=loan.user_id,
        )

    # ------------------------------------------------------------------- no-shows

    async def release_no_shows(self) -> tuple[int, list[str]]:
        """Release every overdue CONFIRMED reservation, each in its own transaction."""
        cutoff = self.clock() - timedelta(minutes=self.config.NO_SHOW_GRACE_MINUTES)
        async with self.uow_factory() as uow:
            candidates = await uow.reservations.list_confirmed_started_before(cutoff)

        released = 0
        errors: list[str] = []
        for reservation in candidates:
            try:
                if await self.reservations.release_no_show(reservation.id) is not None:
                    released += 1
                    custom_logger.info(f"Reservation {reservation.id} released as no-show")
            except ReservationError as exc:
                custom_logger.error(f"No-show release failed for {reservation.id}: {exc.message}")
                errors.append(f"No-shows: reservation {reservation.id}: {exc.message}")
        return released, errors
