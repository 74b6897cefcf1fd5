from collections.abc import Callable
from datetime import datetime, time
from zoneinfo import ZoneInfo

from backend.app.core.config import settings


Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Naive wall-clock time in the facility's timezone.

    Reservation dates and times are stored as local calendar values, so every
    comparison against "now" happens in the same naive local frame.
    """
    return datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)
