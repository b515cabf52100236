"""Google Calendar REST client for booking events."""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

import requests

from sync.models import Booking

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = ('rateLimitExceeded', 'userRateLimitExceeded')
EVENT_SOURCE = 'booking_app'


class CalendarAPIError(Exception):
    """Non-2xx response from the calendar API."""

    def __init__(self, operation: str, status_code: int, body: Any):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"Error during {operation} (HTTP {status_code}): {json.dumps(body)}"
        )

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_rate_limited(self) -> bool:
        if self.status_code != 403 or not isinstance(self.body, dict):
            return False
        error = self.body.get('error') or {}
        if not isinstance(error, dict):
            return False
        reasons = [
            item.get('reason') for item in error.get('errors') or []
            if isinstance(item, dict)
        ]
        return any(reason in RATE_LIMIT_REASONS for reason in reasons)


class GoogleCalendarClient:
    """Reader and writer for the events of an account's primary calendar."""

    EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
    MAX_RESULTS = 2500
    MAX_DELETE_ATTEMPTS = 5

    def __init__(self, token_provider, time_zone: str = 'Europe/Rome', timeout: int = 30):
        """
        Initialize the calendar client.

        Args:
            token_provider: Object exposing get_access_token(account_id)
            time_zone: Time zone sent with event start and end
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.token_provider = token_provider
        self.time_zone = time_zone
        self.timeout = timeout

    def list_events(self, account_id: str) -> List[Dict[str, Any]]:
        """
        Fetch the future events of the account's primary calendar.

        Past events are not listed and recurring events are expanded into
        single instances.

        Args:
            account_id: Account whose calendar is read

        Returns:
            List of raw event dictionaries

        Raises:
            CalendarAPIError: If the provider answers with a non-2xx status
        """
        headers = self._headers(account_id)
        params = {
            'timeMin': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'maxResults': self.MAX_RESULTS,
            'singleEvents': 'true'
        }

        response = requests.get(
            self.EVENTS_URL,
            headers=headers,
            params=params,
            timeout=self.timeout
        )
        self._raise_for_status(response, 'event listing')

        items = response.json().get('items', [])
        events = [event for event in items if event.get('eventType') != 'birthday']

        logger.info(
            f"Fetched {len(events)} calendar events for account {account_id} "
            f"({len(items) - len(events)} birthday events skipped)"
        )
        return events

    def create_event(self, account_id: str, booking: Booking) -> Dict[str, Any]:
        """
        Create a calendar event for a booking.

        Returns:
            The created event, including its provider-assigned id
        """
        response = requests.post(
            self.EVENTS_URL,
            headers=self._headers(account_id),
            json=self.build_event_body(booking),
            timeout=self.timeout
        )
        self._raise_for_status(response, 'event creation')
        return response.json()

    def update_event(
        self,
        account_id: str,
        event_id: str,
        booking: Booking
    ) -> Dict[str, Any]:
        """Replace an existing calendar event with the booking's current data."""
        response = requests.put(
            f"{self.EVENTS_URL}/{event_id}",
            headers=self._headers(account_id),
            json=self.build_event_body(booking),
            timeout=self.timeout
        )
        self._raise_for_status(response, 'event update')
        return response.json()

    def delete_event(self, account_id: str, event_id: str) -> None:
        response = requests.delete(
            f"{self.EVENTS_URL}/{event_id}",
            headers=self._headers(account_id),
            timeout=self.timeout
        )
        self._raise_for_status(response, 'event deletion')

    def delete_event_with_backoff(self, account_id: str, event_id: str) -> None:
        """
        Delete an event, retrying with exponential backoff when rate limited.

        Waits 1, 2, 4, 8 seconds between attempts, for at most
        MAX_DELETE_ATTEMPTS attempts.

        Raises:
            CalendarAPIError: On any non rate-limit error, or when every
                attempt was rate limited
        """
        for attempt in range(1, self.MAX_DELETE_ATTEMPTS + 1):
            try:
                self.delete_event(account_id, event_id)
                return
            except CalendarAPIError as e:
                if not e.is_rate_limited or attempt >= self.MAX_DELETE_ATTEMPTS:
                    raise
                delay = 2 ** (attempt - 1)
                logger.warning(
                    f"Rate limit exceeded deleting event {event_id} "
                    f"(attempt {attempt}/{self.MAX_DELETE_ATTEMPTS}). "
                    f"Retrying in {delay} seconds..."
                )
                time.sleep(delay)

    def build_event_body(self, booking: Booking) -> Dict[str, Any]:
        """Event payload sent on create and update."""
        return {
            'summary': booking.summary,
            'description': booking.description,
            'start': {
                'dateTime': booking.start_date_time,
                'timeZone': self.time_zone
            },
            'end': {
                'dateTime': booking.end_date_time,
                'timeZone': self.time_zone
            },
            'extendedProperties': {
                'private': {
                    'source': EVENT_SOURCE,
                    'bookingId': booking.id
                }
            }
        }

    def _headers(self, account_id: str) -> Dict[str, str]:
        access_token = self.token_provider.get_access_token(account_id)
        return {'Authorization': f"Bearer {access_token}"}

    def _raise_for_status(self, response: requests.Response, operation: str) -> None:
        if response.ok:
            return
        try:
            body = response.json()
        except ValueError:
            body = response.text
        # 404s are expected for stale links and handled by the caller
        level = logging.DEBUG if response.status_code == 404 else logging.ERROR
        logger.log(level, f"Google Calendar API error during {operation}: {body}")
        raise CalendarAPIError(operation, response.status_code, body)
