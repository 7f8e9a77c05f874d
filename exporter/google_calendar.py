"""Google Calendar deep links for calendar event records."""
from urllib.parse import quote

from exporter.ical_export import DEFAULT_EVENT_TITLE, DEFAULT_SITE_NAME, format_utc
from processor.models import EventRecord

GOOGLE_CALENDAR_URL = "https://calendar.google.com/calendar/render?action=TEMPLATE"

# Same set of unescaped characters as a browser's encodeURIComponent
_SAFE_CHARS = "-_.!~*'()"


def build_google_calendar_url(record: EventRecord, default_location: str = DEFAULT_SITE_NAME) -> str:
    """
    Build a Google Calendar "add event" link for a record.

    Args:
        record: Event to link
        default_location: Location used when the record has none

    Returns:
        Deep link URL with text, dates, details and location parameters

    Raises:
        ValueError: If the record has no usable start date
    """
    if record.date is None:
        raise ValueError(f"Event '{record.title}' has no start date")

    text = quote(record.title or DEFAULT_EVENT_TITLE, safe=_SAFE_CHARS)
    dates = f"{format_utc(record.date)}/{format_utc(record.end_date)}"
    details = quote(record.description, safe=_SAFE_CHARS)
    location = quote(record.location or default_location, safe=_SAFE_CHARS)

    return f"{GOOGLE_CALENDAR_URL}&text={text}&dates={dates}&details={details}&location={location}"
