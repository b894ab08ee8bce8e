from google.auth.exceptions import RefreshError, TransportError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest
from google_auth_httplib2 import AuthorizedHttp
from contextlib import contextmanager
from datetime import datetime
import hashlib
import logging
import httplib2

from lounge_booking.config import Settings, SCOPES
from .error_utils import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

# Network level failures surfaced by httplib2 and google-auth. Socket timeouts are OSErrors.
TRANSPORT_ERRORS = (httplib2.HttpLib2Error, TransportError, OSError)


class EventAlreadyExists(Exception):
    """
    Raised by insert_event when an event with the requested id is already in the calendar.
    """
    def __init__(self, event_id: str):
        super().__init__(event_id)
        self.event_id = event_id


class CalendarService:
    """
    The Google Calendar the lounge bookings live in. Reads events and appends new ones, restoring a cancelled
    event when a booking reuses its id.

    Built once per process from the service account settings, see create_calendar_service().
    googleapiclient and transport failures are re-raised as UpstreamError, a rejected service account
    token as ConfigurationError.
    """

    def __init__(self, service, calendar_id: str):
        self.service = service
        self.calendar_id = calendar_id

    @contextmanager
    def _calendar_call(self, action: str):
        try:
            yield
        except RefreshError as e:
            logger.error("Service account token refresh failed while %s: %s", action, e)
            raise ConfigurationError(f"Service account rejected: {e}")
        except (HttpError, *TRANSPORT_ERRORS) as e:
            logger.error("Calendar call failed while %s: %s", action, e)
            raise UpstreamError(e)

    def list_events(self, time_min: datetime, time_max: datetime) -> list[dict]:
        """
        All events intersecting [time_min, time_max), recurring events expanded into single instances.
        Follows nextPageToken until every page is read.
        """
        events = []
        page_token = None
        with self._calendar_call(f"listing events {time_min.isoformat()} - {time_max.isoformat()}"):
            while True:
                response = self.service.events().list(
                    calendarId=self.calendar_id,
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    singleEvents=True,
                    pageToken=page_token,
                ).execute()
                events.extend(response.get("items", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        logger.info("Retrieved %d events between %s and %s", len(events), time_min, time_max)
        return events

    def insert_event(self, summary: str, description: str, start: str, end: str, event_id: str | None = None,
                     time_zone: str | None = None) -> dict:
        """
        Append one timed event. start and end are passed through untouched as the event's dateTime values,
        time_zone is added to both when they carry no UTC offset.

        If event_id is given and the calendar already holds a live event with that id, EventAlreadyExists is raised.
        A cancelled event under that id keeps the id reserved, it is restored with the new details instead.
        """
        event = {"summary": summary,
                 "description": description,
                 "start": {"dateTime": start},
                 "end": {"dateTime": end},
                 }
        if time_zone:
            event["start"]["timeZone"] = time_zone
            event["end"]["timeZone"] = time_zone
        if event_id:
            event["id"] = event_id
        with self._calendar_call(f"inserting event {summary!r}"):
            try:
                created = self.service.events().insert(calendarId=self.calendar_id, body=event).execute()
            except HttpError as e:
                if not (event_id and e.resp.status == 409):
                    raise
                existing = self.service.events().get(calendarId=self.calendar_id, eventId=event_id).execute()
                if existing.get("status") != "cancelled":
                    raise EventAlreadyExists(event_id)
                logger.info("Event %s was cancelled, restoring it for the new booking", event_id)
                created = self.service.events().update(calendarId=self.calendar_id, eventId=event_id,
                                                       body=dict(event, status="confirmed")).execute()
        logger.info("Inserted event %s from %s to %s", created.get("id"), start, end)
        return created


def event_id_for_key(idempotency_key: str) -> str:
    # Calendar event ids must use base32hex characters (a-v, 0-9), lowercase hex qualifies
    return hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()


def create_calendar_service(settings: Settings) -> CalendarService:
    """
    Authorize the service account and build the Calendar v3 client.

    Raises ConfigurationError if credentials are missing or the private key can't be loaded.
    """
    settings.require_credentials()
    info = {
        "type": "service_account",
        "client_email": settings.client_email,
        "private_key": settings.private_key,
        "token_uri": "https://oauth2.googleapis.com/token",
    }
    try:
        creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    except (ValueError, KeyError) as e:
        raise ConfigurationError(f"Service account credentials could not be loaded: {e}")

    http = AuthorizedHttp(creds, http=httplib2.Http(timeout=settings.calendar_timeout_seconds))
    service = build("calendar", "v3", http=http, requestBuilder=LoggingHttpRequest, cache_discovery=False)
    logger.info("Calendar service built for %s", settings.calendar_id)
    return CalendarService(service, settings.calendar_id)


class LoggingHttpRequest(HttpRequest):
    "Custom request class to log HTTP response details because API client only returns serialized JSON response."

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.add_response_callback(self._log_response)

    def _log_response(self, resp):
        logger.info(f"Calendar API {self.method} HTTP Response code: {resp.status}")
