"""Event sink: notifications and audit rows go into the current transaction,
seat broadcasts go out on Redis once it has committed."""

from __future__ import annotations

import json

from backend.app.core import redis_client as redis_module
from backend.app.core.clock import Clock, local_now
from backend.app.core.logger_config import custom_logger
from backend.app.domain.audit import AuditDetails, AuditEvent, AuditKind
from backend.app.domain.models import Notification, NotificationKind, SeatUpdate
from backend.app.repositories.base import AbstractUnitOfWork


def room_channel(room_id: str) -> str:
    return f"room:{room_id}:seats"


class SeatBroadcaster:
    """Publishes seat-state changes on the room's pub/sub channel."""

    async def publish(self, update: SeatUpdate, timestamp: str) -> None:
        client = redis_module.redis_client
        if client is None:
            custom_logger.debug(f"Redis not initialised, skipping broadcast for seat {update.seat_id}")
            return

        payload = {
            "seatId": update.seat_id,
            "newState": update.new_state.value,
            "seatLabel": update.seat_label,
            "timestamp": timestamp,
        }
        try:
            await client.publish(room_channel(update.room_id), json.dumps(payload))
        except Exception as exc:
            custom_logger.warning(f"Seat broadcast failed for {update.seat_id}: {exc}")


class EventSink:
    def __init__(self, broadcaster: SeatBroadcaster | None = None, clock: Clock = local_now):
        self.broadcaster = broadcaster or SeatBroadcaster()
        self.clock = clock

    async def notify(
        self,
        uow: AbstractUnitOfWork,
        *,
        user_id: str,
        kind: NotificationKind,
        title: str,
        message: str,
        action_ref: str | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            kind=kind,
            title=title,
            message=message,
            action_ref=action_ref,
            created_at=self.clock(),
        )
        await uow.notifications.add(notification)
        return notification

    async def audit(
        self,
        uow: AbstractUnitOfWork,
        *,
        kind: AuditKind,
        description: str,
        details: AuditDetails,
        user_id: str | None = None,
        reservation_id: str | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            kind=kind,
            description=description,
            details=details,
            user_id=user_id,
            reservation_id=reservation_id,
            created_at=self.clock(),
        )
        await uow.audit.add(event)
        return event

    def seat_changed(self, uow: AbstractUnitOfWork, update: SeatUpdate) -> None:
        timestamp = self.clock().isoformat()

        async def _publish() -> None:
            await self.broadcaster.publish(update, timestamp)

        uow.after_commit(_publish)
