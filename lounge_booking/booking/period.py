# Custom time period class used for slot occupancy and booking checks
from datetime import datetime, date, time
from zoneinfo import ZoneInfo
import logging

logger = logging.getLogger(__name__)


"""
Defined as a pair of timezone aware datetime objects, half-open: [begin_period, end_period).
"""
class Period:

    def __init__(self, begin_period: datetime, end_period: datetime):
        self._begin_period = begin_period
        self._end_period = end_period

    @property
    def begin_period(self):
        return self._begin_period

    @property
    def end_period(self):
        return self._end_period

    def overlaps(self, other: "Period") -> bool:
        # An event ending exactly at begin_period, or starting exactly at end_period, does not overlap
        return self.begin_period < other.end_period and other.begin_period < self.end_period

    def __eq__(self, other):
        if not isinstance(other, Period):
            return NotImplemented
        return self.begin_period == other.begin_period and self.end_period == other.end_period

    def __hash__(self):
        return hash((self.begin_period, self.end_period))

    def __repr__(self):
        return f"Period({self.begin_period.isoformat()}, {self.end_period.isoformat()})"

    @classmethod
    def from_event(cls, event: dict, tz: ZoneInfo) -> "Period":
        """
        Build a Period from a Google Calendar event resource.

        Event start/end are either {"dateTime": "..."} for timed events or {"date": "YYYY-MM-DD"} for all-day events.
        All-day dates are taken as midnight in *tz*.

        Raises ValueError (or KeyError) if the event boundaries can't be read.
        """
        begin = parse_event_boundary(event["start"], tz)
        end = parse_event_boundary(event["end"], tz)
        return cls(begin, end)


def parse_event_boundary(boundary: dict, tz: ZoneInfo) -> datetime:
    raw_datetime = boundary.get("dateTime")
    if raw_datetime:
        value = datetime.fromisoformat(raw_datetime.replace("Z", "+00:00"))
        # Calendar may return a separate timeZone field instead of an offset
        if value.tzinfo is None:
            value = value.replace(tzinfo=ZoneInfo(boundary.get("timeZone") or tz.key))
        return value
    raw_date = boundary.get("date")
    if raw_date:
        return datetime.combine(date.fromisoformat(raw_date), time(0, 0), tzinfo=tz)
    raise ValueError(f"Event boundary has neither dateTime nor date: {boundary}")


def periods_from_events(events: list[dict], tz: ZoneInfo) -> list[Period]:
    """
    Convert calendar event resources to Periods, skipping (and logging) the ones with unreadable boundaries.
    """
    periods = []
    for event in events:
        try:
            periods.append(Period.from_event(event, tz))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Skipping calendar event %s with unreadable start/end: %s", event.get("id"), e)
    return periods


def count_overlapping(target: Period, periods: list[Period]) -> int:
    return sum(1 for period in periods if target.overlaps(period))
