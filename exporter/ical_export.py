"""iCalendar export of calendar event records."""
import itertools
import logging
import re
import time
import uuid
from datetime import datetime
from typing import Optional, Sequence

import pytz
from icalendar import Calendar, Event, vText

from processor.models import EventRecord

logger = logging.getLogger(__name__)

DEFAULT_SITE_NAME = "Union Beach Memorial Library"
DEFAULT_UID_DOMAIN = "unionbeachlibrary.org"
DEFAULT_EXPORT_FILENAME = "union-beach-library-events.ics"
DEFAULT_EVENT_TITLE = "Library Event"
CONTENT_TYPE = "text/calendar; charset=utf-8"


def export_filename(title: str) -> str:
    """Derive a download filename from an event title.

    Every character outside ``[a-z0-9]`` (case-insensitive) becomes a dash
    and the result is lowercased, e.g. ``"Story Time!"`` -> ``story-time-.ics``.
    """
    return re.sub(r'[^a-z0-9]', '-', title, flags=re.IGNORECASE).lower() + '.ics'


def format_utc(value: datetime) -> str:
    """Format an aware datetime as ``YYYYMMDDThhmmssZ``."""
    return value.astimezone(pytz.utc).strftime('%Y%m%dT%H%M%SZ')


class ICalExporter:
    """Serializes event records into VCALENDAR documents."""

    def __init__(
        self,
        site_name: str = DEFAULT_SITE_NAME,
        uid_domain: str = DEFAULT_UID_DOMAIN,
        bulk_filename: str = DEFAULT_EXPORT_FILENAME
    ):
        """
        Initialize the exporter.

        Args:
            site_name: Owner used in PRODID and as the fallback location
            uid_domain: Domain suffix for generated UIDs
            bulk_filename: Filename offered for multi-event downloads
        """
        self.site_name = site_name
        self.uid_domain = uid_domain
        self.bulk_filename = bulk_filename
        self.prodid = f"-//{site_name}//Calendar//EN"
        self._uid_sequence = itertools.count(1)

    def export_event(self, record: EventRecord, now: Optional[datetime] = None) -> str:
        """
        Build a calendar document holding a single event.

        Args:
            record: Event to export
            now: Creation timestamp (defaults to the current UTC time)

        Returns:
            iCalendar text with CRLF line endings

        Raises:
            ValueError: If the record has no usable start date
        """
        if record.date is None:
            raise ValueError(f"Event '{record.title}' has no start date")

        cal = self._create_calendar()
        cal.add_component(self._create_event(record, now))
        return self._format_output(cal)

    def export_events(
        self,
        records: Sequence[EventRecord],
        now: Optional[datetime] = None
    ) -> tuple[str, int]:
        """
        Build one calendar document holding every dated record.

        Records without a start date are skipped.

        Args:
            records: Events to export, in output order
            now: Creation timestamp (defaults to the current UTC time)

        Returns:
            Tuple of (iCalendar text, number of exported events)

        Raises:
            ValueError: If no record could be exported
        """
        cal = self._create_calendar()
        exported = 0

        for record in records:
            if record.date is None:
                logger.warning(
                    f"Skipping event '{record.title}' in export: no start date"
                )
                continue
            cal.add_component(self._create_event(record, now))
            exported += 1

        if not exported:
            raise ValueError("No exportable events")

        logger.info(f"Exported {exported} of {len(records)} events to iCalendar")
        return self._format_output(cal), exported

    def filename_for(self, record: EventRecord) -> str:
        return export_filename(record.title or DEFAULT_EVENT_TITLE)

    def generate_uid(self) -> str:
        """Unique per export: epoch milliseconds, a sequence number and a random part."""
        millis = int(time.time() * 1000)
        return f"{millis}-{next(self._uid_sequence)}-{uuid.uuid4().hex[:8]}@{self.uid_domain}"

    def _create_calendar(self) -> Calendar:
        cal = Calendar()
        cal.add('VERSION', '2.0')
        cal.add('PRODID', self.prodid)
        cal.add('CALSCALE', 'GREGORIAN')
        return cal

    def _create_event(self, record: EventRecord, now: Optional[datetime]) -> Event:
        stamp = now or datetime.now(pytz.utc)

        ve = Event()
        ve.add('UID', self.generate_uid())
        ve.add('DTSTAMP', stamp.astimezone(pytz.utc))
        ve.add('DTSTART', record.date.astimezone(pytz.utc))
        ve.add('DTEND', record.end_date.astimezone(pytz.utc))
        ve.add('SUMMARY', vText(record.title or DEFAULT_EVENT_TITLE))
        # vText escapes newlines as a literal \n
        ve.add('DESCRIPTION', vText(record.description))
        ve.add('LOCATION', vText(record.location or self.site_name))
        ve.add('STATUS', 'CONFIRMED')
        return ve

    def _format_output(self, cal: Calendar) -> str:
        raw_ical = cal.to_ical().decode('utf-8', errors='replace')
        return raw_ical.replace('\r\n', '\n').replace('\n', '\r\n')
