"""
Slot occupancy for one day.

Fetches every event intersecting the day once and counts, for each fixed slot, how many events overlap it.
Nothing is cached: every call rebuilds the snapshot from a fresh calendar query.
"""
import logging

from lounge_booking.config import Settings
from .period import periods_from_events, count_overlapping
from .slots import generate_time_slots, parse_civil_date, slot_period, day_window

logger = logging.getLogger(__name__)


def time_slots(settings: Settings) -> list[str]:
    return generate_time_slots(settings.slot_opening, settings.slot_last_start, settings.slot_duration_minutes)


def get_availability(calendar_provider, raw_date: str | None, settings: Settings) -> dict:
    """
    Returns {"slots": [label, ...], "bookings": {label: count}}.

    calendar_provider is called (with no arguments) only when a date is given, so a missing date never needs
    calendar credentials. For a missing date the slot list comes back with an empty bookings map.
    """
    slots = time_slots(settings)
    if raw_date is None or not raw_date.strip():
        return {"slots": slots, "bookings": {}}

    day = parse_civil_date(raw_date)
    tz = settings.tz
    day_start, day_end = day_window(day, tz)

    events = calendar_provider().list_events(day_start, day_end)
    periods = periods_from_events(events, tz)

    bookings = {}
    for label in slots:
        bookings[label] = count_overlapping(slot_period(day, label, settings.slot_duration_minutes, tz), periods)

    logger.info("Availability for %s computed from %d events", day.isoformat(), len(periods))
    return {"slots": slots, "bookings": bookings}
