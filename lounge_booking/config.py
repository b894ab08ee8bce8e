# Process wide settings. Loaded once from the environment when the app is created.
from dataclasses import dataclass
from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging
import os

from lounge_booking.booking.error_utils import ConfigurationError

logger = logging.getLogger(__name__)

# Defaults match the lounge opening hours: 10:00 to 19:00, last 30 minute slot starting at 18:30
DEFAULT_CAPACITY = 6
DEFAULT_SLOT_DURATION_MINUTES = 30
DEFAULT_SLOT_OPENING = "10:00"
DEFAULT_SLOT_LAST_START = "18:30"
DEFAULT_TIMEZONE = "Asia/Tokyo"
DEFAULT_CALENDAR_TIMEOUT_SECONDS = 10

# Service account only needs to read and append events
SCOPES = ["https://www.googleapis.com/auth/calendar.events"]


@dataclass(frozen=True)
class Settings:
    client_email: str | None = None
    private_key: str | None = None
    calendar_id: str | None = None
    capacity: int = DEFAULT_CAPACITY
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES
    slot_opening: time = time(10, 0)
    slot_last_start: time = time(18, 30)
    timezone: str = DEFAULT_TIMEZONE
    calendar_timeout_seconds: float = DEFAULT_CALENDAR_TIMEOUT_SECONDS
    production: bool = False

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def missing_credentials(self) -> list[str]:
        """
        Names of the environment variables still needed before the calendar can be called.
        """
        missing = []
        if not self.client_email:
            missing.append("GOOGLE_CLIENT_EMAIL")
        if not self.private_key:
            missing.append("GOOGLE_PRIVATE_KEY")
        if not self.calendar_id:
            missing.append("GOOGLE_CALENDAR_ID")
        return missing

    def require_credentials(self):
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing environment variables: {', '.join(missing)}")

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """
        Read settings from environment variables (os.environ by default).

        Missing credentials are allowed here, they only fail the requests that need the calendar.
        Malformed numbers, times or timezone raise ConfigurationError right away.
        """
        env = os.environ if environ is None else environ

        private_key = env.get("GOOGLE_PRIVATE_KEY")
        if private_key:
            # Keys pasted into env files usually carry literal \n sequences
            private_key = private_key.replace("\\n", "\n")

        settings = cls(
            client_email=env.get("GOOGLE_CLIENT_EMAIL") or None,
            private_key=private_key or None,
            calendar_id=env.get("GOOGLE_CALENDAR_ID") or None,
            capacity=_positive_int(env, "MAX_CAPACITY", DEFAULT_CAPACITY),
            slot_duration_minutes=_positive_int(env, "SLOT_DURATION_MINUTES", DEFAULT_SLOT_DURATION_MINUTES),
            slot_opening=_time_of_day(env, "SLOT_OPENING", DEFAULT_SLOT_OPENING),
            slot_last_start=_time_of_day(env, "SLOT_LAST_START", DEFAULT_SLOT_LAST_START),
            timezone=env.get("BOOKING_TIMEZONE") or DEFAULT_TIMEZONE,
            calendar_timeout_seconds=_positive_float(env, "CALENDAR_TIMEOUT_SECONDS", DEFAULT_CALENDAR_TIMEOUT_SECONDS),
            production=env.get("FLASK_ENV") == "production",
        )

        try:
            settings.tz
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone: {settings.timezone}")
        if settings.slot_last_start < settings.slot_opening:
            raise ConfigurationError("SLOT_LAST_START must not be before SLOT_OPENING")

        if settings.missing_credentials():
            logger.warning("Calendar credentials incomplete, missing: %s", ", ".join(settings.missing_credentials()))
        return settings


def _positive_int(env, name, default) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _positive_float(env, name, default) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _time_of_day(env, name, default) -> time:
    raw = env.get(name) or default
    try:
        return time.fromisoformat(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be HH:MM, got {raw!r}")
