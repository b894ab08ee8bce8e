from dataclasses import dataclass
from datetime import date
import logging
import threading
import weakref

from lounge_booking.config import Settings
from .calendar_service import EventAlreadyExists, event_id_for_key
from .error_utils import CapacityExceededError
from .period import periods_from_events, count_overlapping
from .slots import BookingRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingResult:
    event_id: str | None
    overlapping: int
    replayed: bool = False


class IntervalLocks:
    """
    One lock per civil date, so the check-then-insert of two bookings for the same day can't interleave inside
    this process. Other processes writing to the same calendar are not covered.

    Entries are weak, a date's lock goes away once no booking holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[date, threading.Lock] = weakref.WeakValueDictionary()

    def for_date(self, day: date) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(day)
            if lock is None:
                lock = self._locks[day] = threading.Lock()
            return lock


def create_booking(calendar, booking: BookingRequest, settings: Settings, locks: IntervalLocks) -> BookingResult:
    """
    Admit a booking if fewer than settings.capacity events overlap [start, end), then insert its event.

    The calendar is re-queried for the exact requested interval, not the slot that was displayed, so the
    decision uses fresh data. Raises CapacityExceededError when the interval is full; nothing is inserted then.
    """
    tz = settings.tz
    day = booking.start.astimezone(tz).date()
    event_id = event_id_for_key(booking.idempotency_key) if booking.idempotency_key else None

    with locks.for_date(day):
        events = calendar.list_events(booking.start, booking.end)
        overlapping = count_overlapping(booking.period, periods_from_events(events, tz))
        if event_id and any(event.get("id") == event_id for event in events):
            logger.info("Booking with idempotency key already stored as event %s", event_id)
            return BookingResult(event_id=event_id, overlapping=overlapping, replayed=True)

        if overlapping >= settings.capacity:
            logger.info("Rejecting booking %s - %s: %d overlapping, capacity %d",
                        booking.start_raw, booking.end_raw, overlapping, settings.capacity)
            raise CapacityExceededError(settings.capacity, overlapping)

        try:
            created = calendar.insert_event(
                summary=f"Reservation: {booking.name}",
                description=f"Email: {booking.email}\nLounge booking",
                start=booking.start_raw,
                end=booking.end_raw,
                event_id=event_id,
                time_zone=settings.timezone if booking.naive else None,
            )
        except EventAlreadyExists:
            logger.info("Booking with idempotency key already stored as event %s", event_id)
            return BookingResult(event_id=event_id, overlapping=overlapping, replayed=True)

    logger.info("Booking accepted: %s - %s (%d already overlapping)", booking.start_raw, booking.end_raw, overlapping)
    return BookingResult(event_id=created.get("id"), overlapping=overlapping)
