"""Add-to-calendar links for bookings."""
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import quote

import icalendar

GOOGLE_EVENT_EDIT_URL = "https://calendar.google.com/calendar/r/eventedit"


def _parse_instant(value: str) -> datetime:
    if not value:
        raise ValueError("Date value is missing")
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_calendar_date(value: str) -> str:
    """
    Format an ISO instant as a UTC calendar timestamp (YYYYMMDDTHHMMSSZ).

    Naive values are taken as UTC; fractional seconds are dropped.

    Raises:
        ValueError: If the value is empty or not an ISO 8601 instant
    """
    return _parse_instant(value).strftime('%Y%m%dT%H%M%SZ')


def generate_calendar_links(
    summary: str,
    start_date_time: str,
    end_date_time: str,
    description: Optional[str] = None,
    location: Optional[str] = None
) -> Dict[str, str]:
    """
    Build links that let a customer add a booking to their own calendar.

    Args:
        summary: Event title
        start_date_time: ISO start instant
        end_date_time: ISO end instant
        description: Optional event details
        location: Optional event location

    Returns:
        Dict with a Google Calendar 'google' URL and an 'ical' document

    Raises:
        ValueError: If start or end is missing
    """
    if not start_date_time or not end_date_time:
        raise ValueError("start_date_time and end_date_time are required")

    start = format_calendar_date(start_date_time)
    end = format_calendar_date(end_date_time)

    google_link = (
        f"{GOOGLE_EVENT_EDIT_URL}?text={quote(summary or '', safe='')}"
        f"&dates={start}/{end}"
        f"&details={quote(description or '', safe='')}"
    )
    if location:
        google_link += f"&location={quote(location, safe='')}"

    return {
        'google': google_link,
        'ical': _build_ical(summary, start_date_time, end_date_time, description, location)
    }


def _build_ical(summary, start_date_time, end_date_time, description, location) -> str:
    cal = icalendar.Calendar()
    cal.add('prodid', '-//Booking Calendar Sync//EN')
    cal.add('version', '2.0')

    event = icalendar.Event()
    event.add('summary', summary)
    event.add('dtstart', _parse_instant(start_date_time))
    event.add('dtend', _parse_instant(end_date_time))
    event.add('dtstamp', datetime.now(timezone.utc))
    if description:
        event.add('description', description)
    if location:
        event.add('location', location)

    cal.add_component(event)
    return cal.to_ical().decode()
