# Utility functions for slot generation and booking request validation
from dataclasses import dataclass
from datetime import datetime, date, time, timedelta
from zoneinfo import ZoneInfo
import re

from email_validator import validate_email, EmailNotValidError

from .error_utils import BookingValidationError
from .period import Period

MAX_NAME_LENGTH = 100
# 254 characters is the common maximum for email addresses by RFC 5321 / 5322 standards
MAX_EMAIL_LENGTH = 254

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")


def generate_time_slots(opening: time, last_start: time, step_minutes: int) -> list[str]:
    """
    Labels for every slot start between *opening* and *last_start* inclusive, *step_minutes* apart.

    Example: 10:00 to 18:30 by 30 minutes gives ["10:00", "10:30", ..., "18:30"] (18 slots).
    """
    slots = []
    # Work on minutes since midnight so the generation never spills past midnight
    current = opening.hour * 60 + opening.minute
    last = last_start.hour * 60 + last_start.minute
    while current <= last:
        slots.append(f"{current // 60:02d}:{current % 60:02d}")
        current += step_minutes
    return slots


def parse_civil_date(raw: str) -> date:
    """
    Parse a YYYY-MM-DD query value. Raises BookingValidationError otherwise.
    """
    raw = raw.strip()
    if not DATE_PATTERN.match(raw):
        raise BookingValidationError(f"Invalid date '{raw}'. Expected YYYY-MM-DD.")
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise BookingValidationError(f"Invalid date '{raw}'.")


def slot_period(day: date, label: str, duration_minutes: int, tz: ZoneInfo) -> Period:
    """
    The half-open interval a slot label covers on *day* in *tz*.
    """
    slot_start = datetime.combine(day, time.fromisoformat(label), tzinfo=tz)
    return Period(slot_start, slot_start + timedelta(minutes=duration_minutes))


def day_window(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """
    Query window for a whole civil day: 00:00:00 to 23:59:59 in *tz*.
    """
    day_start = datetime.combine(day, time(0, 0, 0), tzinfo=tz)
    day_end = datetime.combine(day, time(23, 59, 59), tzinfo=tz)
    return day_start, day_end


def parse_instant(raw: str, tz: ZoneInfo, field: str) -> datetime:
    """
    Parse an ISO-8601 instant. A trailing 'Z' is accepted, naive values are taken as local time in *tz*.
    """
    try:
        value = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        raise BookingValidationError(f"'{field}' must be an ISO-8601 date and time.")
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value


def is_naive_instant(raw: str) -> bool:
    # Only call on a value parse_instant already accepted
    return datetime.fromisoformat(raw.strip().replace("Z", "+00:00")).tzinfo is None


def sanitize_email(email: str) -> str:
    email = email.strip()
    if len(email) > MAX_EMAIL_LENGTH:
        raise BookingValidationError("Email input is too long.")
    try:
        # No DNS lookups while handling a request
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise BookingValidationError(f"Invalid email format: {e}")
    return valid.normalized


def sanitize_name(name: str) -> str:
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise BookingValidationError(f"Name is too long. Max {MAX_NAME_LENGTH} characters.")
    # Reject control characters, they end up in the calendar event summary
    if any(ord(ch) < 32 for ch in name):
        raise BookingValidationError("Name contains disallowed characters.")
    return name


@dataclass(frozen=True)
class BookingRequest:
    """
    A validated booking request.

    start_raw / end_raw are the strings written to the calendar event, exactly as supplied
    (or built from date + time + duration for the date/time form).
    naive is set when start or end carried no UTC offset, the calendar then needs the booking timezone.
    """
    name: str
    email: str
    start: datetime
    end: datetime
    start_raw: str
    end_raw: str
    idempotency_key: str | None = None
    naive: bool = False

    @property
    def period(self) -> Period:
        return Period(self.start, self.end)


def _present(payload: dict, field: str):
    value = payload.get(field)
    if isinstance(value, str):
        value = value.strip()
    return value if value not in (None, "") else None


def validate_booking_request(payload: dict, tz: ZoneInfo, default_duration_minutes: int,
                             idempotency_key: str | None = None) -> BookingRequest:
    """
    Validate a booking payload, either {name, email, start, end} or {name, email, date, time[, duration]}.

    Returns a BookingRequest. Raises BookingValidationError with a user facing message on the first problem found.
    """
    if not isinstance(payload, dict):
        raise BookingValidationError("Request body must be a JSON object.")

    name = _present(payload, "name")
    email = _present(payload, "email")
    if not isinstance(name, str) or not isinstance(email, str):
        raise BookingValidationError("Name and email are required.")

    start_raw = _present(payload, "start")
    end_raw = _present(payload, "end")
    if start_raw is None and end_raw is None and _present(payload, "date") and _present(payload, "time"):
        start_raw, end_raw = _interval_from_date_time(payload, tz, default_duration_minutes)
    if not isinstance(start_raw, str) or not isinstance(end_raw, str):
        raise BookingValidationError("Start and end are required.")

    start = parse_instant(start_raw, tz, "start")
    end = parse_instant(end_raw, tz, "end")
    if start >= end:
        raise BookingValidationError("Start must be before end.")

    key = idempotency_key or _present(payload, "idempotency_key")
    return BookingRequest(name=sanitize_name(name), email=sanitize_email(email), start=start, end=end,
                          start_raw=start_raw, end_raw=end_raw,
                          naive=is_naive_instant(start_raw) or is_naive_instant(end_raw),
                          idempotency_key=str(key) if key is not None else None)


def _interval_from_date_time(payload: dict, tz: ZoneInfo, default_duration_minutes: int) -> tuple[str, str]:
    day = parse_civil_date(str(payload["date"]))
    label = str(payload["time"]).strip()
    if not TIME_PATTERN.match(label):
        raise BookingValidationError(f"Invalid time '{label}'. Expected HH:MM.")
    duration = payload.get("duration", default_duration_minutes)
    try:
        duration = int(duration)
    except (TypeError, ValueError):
        raise BookingValidationError("Duration must be a whole number of minutes.")
    if duration <= 0:
        raise BookingValidationError("Duration must be positive.")
    try:
        period = slot_period(day, label, duration, tz)
    except ValueError:
        raise BookingValidationError(f"Invalid time '{label}'.")
    return period.begin_period.isoformat(), period.end_period.isoformat()
