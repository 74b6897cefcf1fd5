"""Domain errors raised by the reservation engine.

Every error here is an expected, caller-recoverable outcome except
``StorageError``, which wraps a failure of the underlying store.
"""


class ReservationError(Exception):
    """Base domain error carrying the HTTP status it maps to."""

    status_code: int = 400

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotFound(ReservationError):
    status_code = 404


class OutOfHours(ReservationError):
    status_code = 400


class SlotTaken(ReservationError):
    status_code = 409

    def __init__(self, message: str = "Slot already booked", alternatives: list[str] | None = None):
        super().__init__(message)
        self.alternatives = alternatives or []


class InvalidRange(ReservationError):
    status_code = 422


class InvalidTransition(ReservationError):
    status_code = 409


class DurationExceeded(ReservationError):
    status_code = 400


class SeatUnavailable(ReservationError):
    status_code = 409


class StorageError(ReservationError):
    """The store failed (connectivity, serialization conflict). Re-submit the request."""

    status_code = 503

    def __init__(self, message: str = "Storage unavailable"):
        super().__init__(message)
