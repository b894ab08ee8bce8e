# Custom exceptions to be used throughout the project.
# Each carries the HTTP status the Flask error handlers respond with.

class BookingError(Exception):
    """
    Base class for every error the booking handlers raise on purpose.

    `message` is what the caller sees. For configuration and upstream failures this is a generic
    message, the detail only goes to the log.
    """
    status_code = 500
    message = "An error occurred. Please try again."

    def __init__(self, message=None, *args):
        if message is not None:
            self.message = message
        super().__init__(self.message, *args)


class BookingValidationError(BookingError):
    """
    To be raised when a client request can't be processed as submitted.
    May be raised under the following circumstances:
        1. A required field (name, email, start, end) is missing
        2. The email address is not valid
        3. start or end is not an ISO-8601 instant, or date/time don't parse
        4. start is not before end
    """
    status_code = 400


class ConfigurationError(BookingError):
    """
    Server side configuration is missing or invalid (service account credentials, calendar id,
    numeric settings). Not the client's fault so the caller only gets the generic message.
    """
    status_code = 500
    message = "Server configuration error."

    def __init__(self, detail=None):
        super().__init__(None)
        self.detail = detail


class UpstreamError(BookingError):
    """
    The Google Calendar call failed or timed out. Wraps the original exception as `cause`.
    """
    status_code = 500
    message = "An error occurred while contacting the calendar. Please try again."

    def __init__(self, cause=None):
        super().__init__(None)
        self.cause = cause


class CapacityExceededError(BookingError):
    """
    Business rule rejection: the requested interval already has `capacity` overlapping bookings.
    """
    status_code = 409

    def __init__(self, capacity: int, current: int):
        self.capacity = capacity
        self.current = current
        super().__init__(f"Sorry, that time is fully booked (capacity of {capacity} reached).")
