"""AWS Lambda handler for Booking Calendar Sync."""
import json
import logging
import os
import time
from typing import Any, Dict, Optional

from gcal.auth import CalendarAuthError, TokenProvider
from gcal.calendar_client import GoogleCalendarClient
from gcal.links import generate_calendar_links
from storage.booking_store import BookingStore
from sync.reconciler import CalendarReconciler

# Attributes every LogRecord has; anything else came in through `extra`
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including fields passed via `extra`."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _get_account_id(event: Dict[str, Any]) -> Optional[str]:
    # Direct invocation carries it at the top level, EventBridge under detail
    account_id = event.get('account_id')
    if not account_id:
        account_id = (event.get('detail') or {}).get('account_id')
    return account_id


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Booking Calendar Sync.

    Args:
        event: EventBridge schedule or direct invocation payload with the
            account_id, and optionally an action: 'connect' (with an OAuth
            code), 'authorize', 'disconnect', 'status' or 'links' (with a
            booking_id)
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    # Read configuration from environment variables
    bookings_table = os.environ.get('BOOKINGS_TABLE', 'bookings')
    accounts_table = os.environ.get('ACCOUNTS_TABLE', 'accounts')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    time_zone = os.environ.get('CALENDAR_TIMEZONE', 'Europe/Rome')
    client_id = os.environ.get('GOOGLE_CLIENT_ID')
    client_secret = os.environ.get('GOOGLE_CLIENT_SECRET')
    redirect_uri = os.environ.get('GOOGLE_REDIRECT_URI')
    delete_untagged = os.environ.get('DELETE_UNTAGGED_EVENTS', 'true').lower() == 'true'

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    event = event or {}
    account_id = _get_account_id(event)
    action = event.get('action', 'sync')

    if not account_id:
        logger.error("Invocation payload has no account_id")
        return _response(400, {'message': 'Missing account_id'})

    logger.info(
        "Lambda execution started",
        extra={
            'account_id': account_id,
            'action': action,
            'bookings_table': bookings_table,
            'timeout_seconds': timeout_seconds
        }
    )

    try:
        booking_store = BookingStore(
            bookings_table=bookings_table,
            accounts_table=accounts_table
        )
        token_provider = TokenProvider(
            booking_store,
            client_id=client_id,
            client_secret=client_secret,
            timeout=timeout_seconds
        )

        if action == 'connect':
            code = event.get('code')
            callback_uri = event.get('redirect_uri') or redirect_uri
            if not code or not callback_uri:
                return _response(400, {'message': 'Missing code or redirect_uri'})
            token_provider.exchange_code(account_id, code, callback_uri)
            return _response(200, {'message': 'Google Calendar connected'})

        if action == 'authorize':
            callback_uri = event.get('redirect_uri') or redirect_uri
            if not callback_uri:
                return _response(400, {'message': 'Missing redirect_uri'})
            return _response(200, {
                'authorization_url': token_provider.authorization_url(
                    callback_uri, state=account_id
                )
            })

        if action == 'disconnect':
            booking_store.clear_token(account_id)
            return _response(200, {'message': 'Google Calendar disconnected'})

        if action == 'status':
            token = booking_store.get_token(account_id)
            return _response(200, {
                'connected': bool(token and token.get('access_token'))
            })

        if action == 'links':
            booking_id = event.get('booking_id')
            if not booking_id:
                return _response(400, {'message': 'Missing booking_id'})
            booking = booking_store.get_booking(booking_id)
            if booking is None:
                return _response(404, {'message': f"Booking {booking_id} not found"})
            return _response(200, generate_calendar_links(
                booking.summary,
                booking.start_date_time,
                booking.end_date_time,
                description=booking.description
            ))

        calendar_client = GoogleCalendarClient(
            token_provider,
            time_zone=time_zone,
            timeout=timeout_seconds
        )
        reconciler = CalendarReconciler(
            booking_store,
            calendar_client,
            delete_untagged=delete_untagged
        )

        logger.info("Synchronizing bookings with Google Calendar")
        sync_result = reconciler.sync_all(account_id)

    except CalendarAuthError as e:
        duration = time.time() - start_time
        logger.error(
            f"Calendar authorization failed: {str(e)}",
            extra={'error_type': type(e).__name__}
        )
        return _response(401, {
            'message': 'Calendar not connected',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    duration = time.time() - start_time

    logger.info(
        "Lambda execution completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'events_added': len(sync_result.added),
            'events_updated': len(sync_result.updated),
            'events_deleted': len(sync_result.deleted),
            'errors': sync_result.errors
        }
    )

    return _response(200, {
        'message': 'Sync completed successfully',
        'statistics': {
            'bookings_total': sync_result.total,
            'events_added': len(sync_result.added),
            'events_updated': len(sync_result.updated),
            'events_deleted': len(sync_result.deleted),
            'duration_seconds': round(duration, 2)
        },
        'added': [booking.id for booking in sync_result.added],
        'updated': [booking.id for booking in sync_result.updated],
        'deleted': [booking.id for booking in sync_result.deleted],
        'errors': sync_result.errors
    })
