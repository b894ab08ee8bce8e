import logging
import os
import secrets
import threading
from flask import Flask, request, jsonify, current_app
from flask_debugtoolbar import DebugToolbarExtension
from googleapiclient.errors import HttpError
from werkzeug.exceptions import HTTPException
from lounge_booking.config import Settings
from lounge_booking.booking import availability, booking_writer, calendar_service, error_utils
from lounge_booking.booking import slots as util

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, calendar=None):
    """
    Application factory.

    settings default to Settings.from_env(). calendar may be any object with list_events / insert_event;
    when omitted the Google Calendar client is built on first use and reused for the life of the process.
    """
    app = Flask(__name__)
    app.secret_key = secrets.token_hex(32) #256 bit
    app.config['SECRET_KEY'] = app.secret_key
    settings = settings or Settings.from_env()
    app.config['SETTINGS'] = settings
    if not settings.production:
        app.config["DEBUG_TB_INTERCEPT_REDIRECTS"] = False  # Prevents redirect issues

    app.extensions['calendar_service'] = calendar
    app.extensions['calendar_service_lock'] = threading.Lock()
    app.extensions['booking_locks'] = booking_writer.IntervalLocks()

    register_routes(app)
    register_error_handlers(app)
    return app


def get_calendar():
    """
    Calendar client for the current app, built once from the settings loaded at startup.
    Raises ConfigurationError when the service account settings are incomplete.
    """
    app = current_app
    with app.extensions['calendar_service_lock']:
        if app.extensions['calendar_service'] is None:
            app.extensions['calendar_service'] = calendar_service.create_calendar_service(app.config['SETTINGS'])
        return app.extensions['calendar_service']


def register_routes(app: Flask):

    @app.route("/healthz", methods=["GET"])
    def health():
        return jsonify({"status": "ok"}), 200

    # Slot metadata for the booking form
    @app.route("/api/slots", methods=["GET"])
    def get_slots():
        settings = current_app.config['SETTINGS']
        return jsonify({"slots": availability.time_slots(settings),
                        "duration_minutes": settings.slot_duration_minutes,
                        "timezone": settings.timezone,
                        "capacity": settings.capacity}), 200

    # Occupancy per slot for ?date=YYYY-MM-DD. Without a date only the slot list is returned.
    @app.route("/api/book/availability", methods=["GET"])
    def availability_for_date():
        settings = current_app.config['SETTINGS']
        snapshot = availability.get_availability(get_calendar, request.args.get('date'), settings)
        return jsonify(snapshot), 200

    @app.route("/api/book", methods=["POST"])
    def book_lounge():
        settings = current_app.config['SETTINGS']
        payload = request.get_json(silent=True)
        if payload is None:
            raise error_utils.BookingValidationError("Request body must be JSON.")
        booking = util.validate_booking_request(payload, settings.tz, settings.slot_duration_minutes,
                                                idempotency_key=request.headers.get('Idempotency-Key'))
        result = booking_writer.create_booking(get_calendar(), booking, settings,
                                               current_app.extensions['booking_locks'])
        return jsonify({"message": "Booking confirmed",
                        "event_id": result.event_id,
                        "replayed": result.replayed}), 200


def register_error_handlers(app: Flask):

    # Client input and capacity errors carry a user facing message
    @app.errorhandler(error_utils.BookingValidationError)
    @app.errorhandler(error_utils.CapacityExceededError)
    def handle_client_facing_error(error):
        logger.info(f"Request rejected ({error.status_code}): {error.message}")
        return jsonify({"message": error.message}), error.status_code

    # Configuration problems are logged in detail, the caller gets the generic message
    @app.errorhandler(error_utils.ConfigurationError)
    def handle_configuration_error(error):
        logger.error(f"Server configuration error: {error.detail}")
        return jsonify({"message": error.message}), error.status_code

    @app.errorhandler(error_utils.UpstreamError)
    def handle_upstream_error(error):
        logger.error(f"Calendar upstream failure: {error.cause!r}")
        return jsonify({"message": error.message}), error.status_code

    # Handle in invalid googleapiclient response which raises a custom HttpError
    @app.errorhandler(HttpError)
    def handle_bad_api_call(error):
        logger.error(f"Unhandled calendar API error: {error}")
        return jsonify({"message": error_utils.UpstreamError.message}), 500

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({"message": error.description}), error.code


if __name__ == '__main__':
    app = create_app()
    # production
    if os.environ.get('FLASK_ENV') == 'production':
       app.run(debug=False)
    else:
       app.debug = True
       toolbar = DebugToolbarExtension(app)
       app.run(debug=True, port=5003)
