"""Event list controller for filtering, sorting and exporting calendar events."""
import logging
import unicodedata
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

import pytz
from dateutil import parser
from dateutil.relativedelta import relativedelta

from exporter.google_calendar import build_google_calendar_url
from exporter.ical_export import DEFAULT_EVENT_TITLE, ICalExporter
from processor.models import (
    DEFAULT_DATE_FILTER,
    DEFAULT_SORT_KEY,
    DEFAULT_TYPE_FILTER,
    EXPORT_EVENT,
    EXPORT_GOOGLE,
    EXPORT_ICAL,
    TYPE_ALL,
    Action,
    ClearFilters,
    EventElement,
    EventRecord,
    ExportRequested,
    ExportResult,
    FilterChanged,
    ListState,
    SortChanged,
    StatusMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'America/New_York'
STATUS_TTL = timedelta(seconds=3)
ANNOUNCEMENT_TTL = timedelta(seconds=1)

NO_EVENTS_TO_EXPORT = 'No events to export. Please adjust filters.'
UNABLE_TO_EXPORT = 'Unable to export event'


def pluralize_events(count: int) -> str:
    return f"{count} event{'' if count == 1 else 's'}"


class EventRecordBuilder:
    """Builds typed event records from raw page elements."""

    def __init__(self, timezone: str = DEFAULT_TIMEZONE):
        """
        Initialize the builder.

        Args:
            timezone: Site timezone applied to timestamps without an offset
        """
        self.tz = pytz.timezone(timezone)

    def build_records(self, elements: Iterable[EventElement]) -> List[EventRecord]:
        """
        Build records in markup order.

        Malformed elements are kept with empty defaults rather than dropped.

        Args:
            elements: Raw event elements from the page scraper

        Returns:
            List of EventRecord objects with unique ids
        """
        records = []
        seen_ids = set()

        for position, element in enumerate(elements):
            record = self._build_single_record(element, position, seen_ids)
            seen_ids.add(record.id)
            records.append(record)

        undated = sum(1 for record in records if record.date is None)
        logger.info(
            f"Built {len(records)} event records ({undated} without a usable date)"
        )
        return records

    def _build_single_record(
        self,
        element: EventElement,
        position: int,
        seen_ids: set
    ) -> EventRecord:
        title = (element.title or '').strip()
        if not title:
            logger.warning(f"Event at position {position} has no title")

        event_type = (element.type or '').strip()
        if event_type == TYPE_ALL:
            # "all" is the filter wildcard, never a category
            logger.warning(f"Event '{title}' uses reserved type '{TYPE_ALL}'")
            event_type = ''

        location = (element.location or '').strip()
        if location.lower().startswith('location:'):
            location = location[len('location:'):].strip()

        return EventRecord(
            id=self._unique_id(element.event_id, position, seen_ids),
            title=title,
            type=event_type,
            date=self.parse_date(element.date, title),
            description=(element.description or '').strip(),
            location=location,
            position=position
        )

    def _unique_id(self, candidate: Optional[str], position: int, seen_ids: set) -> str:
        candidate = (candidate or '').strip()
        if candidate and candidate not in seen_ids:
            return candidate

        if candidate:
            logger.warning(f"Duplicate event id '{candidate}', assigning a fallback id")

        fallback = f"event-{position + 1}"
        suffix = 1
        while fallback in seen_ids:
            fallback = f"event-{position + 1}-{suffix}"
            suffix += 1
        return fallback

    def parse_date(self, value: Optional[str], title: str = '') -> Optional[datetime]:
        """
        Parse an ISO-8601 timestamp into an aware datetime.

        Args:
            value: Timestamp string from the markup
            title: Event title, for log messages

        Returns:
            Aware datetime, or None when the value is missing or unparseable
        """
        if not value or not value.strip():
            logger.warning(f"Event '{title}' has no date")
            return None

        try:
            parsed = parser.isoparse(value.strip())
        except (ValueError, OverflowError) as e:
            logger.warning(f"Unparseable date for event '{title}': {value!r} ({e})")
            return None

        if parsed.tzinfo is None:
            return self.tz.localize(parsed)
        return parsed


def local_midnight(tz, day: date) -> datetime:
    return tz.localize(datetime.combine(day, time()))


def matches_type(record: EventRecord, type_filter: str) -> bool:
    return type_filter == TYPE_ALL or record.type == type_filter


def matches_date(record: EventRecord, date_filter: str, today: date, tz) -> bool:
    """
    Check a record against a date bucket relative to today's local midnight.

    Records without a date only pass the "all" bucket.
    """
    if date_filter == 'all':
        return True
    if record.date is None:
        return False

    start_of_today = local_midnight(tz, today)
    event_date = record.date.astimezone(tz)

    if date_filter == 'upcoming':
        return event_date >= start_of_today
    if date_filter == 'this-week':
        week_from_now = local_midnight(tz, today + timedelta(days=7))
        return start_of_today <= event_date <= week_from_now
    if date_filter == 'this-month':
        return (
            event_date.year == today.year
            and event_date.month == today.month
            and event_date >= start_of_today
        )
    if date_filter == 'next-month':
        next_month = today + relativedelta(months=1)
        return event_date.year == next_month.year and event_date.month == next_month.month

    raise ValueError(f"Unknown date filter: {date_filter}")


def _collation_key(value: str) -> str:
    decomposed = unicodedata.normalize('NFKD', value)
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def sort_records(records: Sequence[EventRecord], sort_key: str) -> List[EventRecord]:
    """
    Stable sort of records, starting from markup order.

    Undated records go after every dated record for both date keys.
    """
    ordered = sorted(records, key=lambda record: record.position)

    if sort_key in ('date-asc', 'date-desc'):
        dated = [record for record in ordered if record.date is not None]
        undated = [record for record in ordered if record.date is None]
        dated.sort(key=lambda record: record.date, reverse=(sort_key == 'date-desc'))
        return dated + undated
    if sort_key == 'title':
        return sorted(ordered, key=lambda record: _collation_key(record.title))
    if sort_key == 'type':
        return sorted(ordered, key=lambda record: _collation_key(record.type))

    raise ValueError(f"Unknown sort key: {sort_key}")


class EventListController:
    """Owns the loaded event records and the current list state."""

    def __init__(
        self,
        records: Sequence[EventRecord],
        timezone: str = DEFAULT_TIMEZONE,
        exporter: Optional[ICalExporter] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the controller with an immutable record set.

        Args:
            records: Event records in markup order
            timezone: Site timezone used to determine "today"
            exporter: iCalendar exporter (default settings when omitted)
            clock: Callable returning the current aware datetime
        """
        self.records = tuple(records)
        self.tz = pytz.timezone(timezone)
        self.exporter = exporter or ICalExporter()
        self.clock = clock or (lambda: datetime.now(pytz.utc))
        self._by_id = {record.id: record for record in self.records}
        self.state = self.initial_state()

    @classmethod
    def from_elements(
        cls,
        elements: Iterable[EventElement],
        timezone: str = DEFAULT_TIMEZONE,
        **kwargs
    ) -> 'EventListController':
        records = EventRecordBuilder(timezone=timezone).build_records(elements)
        return cls(records, timezone=timezone, **kwargs)

    def initial_state(self) -> ListState:
        """Markup order, every record visible."""
        now = self.clock()
        return ListState(
            type_filter=TYPE_ALL,
            date_filter='all',
            sort_key=None,
            order=tuple(record.id for record in self.records),
            visible=frozenset(self._by_id),
            announcement=self._announcement(
                f"Calendar loaded with {len(self.records)} events", now
            )
        )

    def dispatch(self, action: Action) -> ListState:
        self.state = self.reduce(self.state, action)
        return self.state

    def reduce(self, state: ListState, action: Action) -> ListState:
        """
        Compute the state that follows an action.

        Args:
            state: Current list state
            action: FilterChanged, SortChanged, ClearFilters or ExportRequested

        Returns:
            New ListState; the input state is left untouched
        """
        now = self.clock()

        if isinstance(action, FilterChanged):
            visible = self._visible_ids(action.type_filter, action.date_filter, now)
            return replace(
                state,
                type_filter=action.type_filter,
                date_filter=action.date_filter,
                visible=visible,
                status=self._status(f"Showing {pluralize_events(len(visible))}", now),
                announcement=self._announcement('Filters applied', now),
                last_export=None
            )

        if isinstance(action, SortChanged):
            return replace(
                state,
                sort_key=action.sort_key,
                order=self._sorted_ids(action.sort_key),
                announcement=self._announcement(f"Events sorted by {action.sort_key}", now),
                last_export=None
            )

        if isinstance(action, ClearFilters):
            visible = self._visible_ids(DEFAULT_TYPE_FILTER, DEFAULT_DATE_FILTER, now)
            return replace(
                state,
                type_filter=DEFAULT_TYPE_FILTER,
                date_filter=DEFAULT_DATE_FILTER,
                sort_key=DEFAULT_SORT_KEY,
                order=self._sorted_ids(DEFAULT_SORT_KEY),
                visible=visible,
                status=self._status(f"Showing {pluralize_events(len(visible))}", now),
                announcement=self._announcement('Filters cleared', now),
                last_export=None
            )

        if isinstance(action, ExportRequested):
            return self._export(state, action, now)

        raise TypeError(f"Unsupported action: {action!r}")

    def _export(self, state: ListState, action: ExportRequested, now: datetime) -> ListState:
        targets = self.visible_records(state)
        if action.kind == EXPORT_GOOGLE:
            # A deep link needs a start date
            targets = [record for record in targets if record.date is not None]
        if action.event_id is None and not targets:
            logger.info("Export refused: no visible events")
            return replace(
                state,
                status=self._status(NO_EVENTS_TO_EXPORT, now),
                last_export=None
            )

        try:
            if action.kind == EXPORT_GOOGLE:
                record = self._by_id[action.event_id] if action.event_id else targets[0]
                result = ExportResult(
                    kind=action.kind,
                    url=build_google_calendar_url(record, self.exporter.site_name),
                    event_count=1
                )
                status = 'Opening Google Calendar...'
                announcement = 'Exporting to Google Calendar'
            elif action.kind == EXPORT_EVENT:
                record = self._by_id[action.event_id]
                result = ExportResult(
                    kind=action.kind,
                    filename=self.exporter.filename_for(record),
                    content=self.exporter.export_event(record, now),
                    event_count=1
                )
                title = record.title or DEFAULT_EVENT_TITLE
                status = f"Exported {title} to calendar"
                announcement = status
            else:
                content, count = self.exporter.export_events(targets, now)
                result = ExportResult(
                    kind=action.kind,
                    filename=self.exporter.bulk_filename,
                    content=content,
                    event_count=count
                )
                status = f"Exported {pluralize_events(count)} to iCal"
                announcement = 'Downloading iCal file'
        except Exception as e:
            logger.error(
                f"Failed to export event (kind={action.kind}, id={action.event_id}): {e}",
                exc_info=True
            )
            return replace(
                state,
                status=self._status(UNABLE_TO_EXPORT, now),
                last_export=None
            )

        logger.info(f"Exported {result.event_count} event(s) as {action.kind}")
        return replace(
            state,
            status=self._status(status, now),
            announcement=self._announcement(announcement, now),
            last_export=result
        )

    def _visible_ids(self, type_filter: str, date_filter: str, now: datetime) -> frozenset:
        today = now.astimezone(self.tz).date()
        return frozenset(
            record.id
            for record in self.records
            if matches_type(record, type_filter)
            and matches_date(record, date_filter, today, self.tz)
        )

    def _sorted_ids(self, sort_key: str) -> tuple:
        return tuple(record.id for record in sort_records(self.records, sort_key))

    def _status(self, text: str, now: datetime) -> StatusMessage:
        return StatusMessage(text, now + STATUS_TTL)

    def _announcement(self, text: str, now: datetime) -> StatusMessage:
        return StatusMessage(text, now + ANNOUNCEMENT_TTL)

    def visible_records(self, state: Optional[ListState] = None) -> List[EventRecord]:
        """Visible records in presentation order."""
        state = state or self.state
        return [self._by_id[event_id] for event_id in state.order if event_id in state.visible]

    def ordered_records(self) -> List[EventRecord]:
        return [self._by_id[event_id] for event_id in self.state.order]

    def apply_filters(self, type_filter: str = DEFAULT_TYPE_FILTER, date_filter: str = DEFAULT_DATE_FILTER) -> ListState:
        return self.dispatch(FilterChanged(type_filter=type_filter, date_filter=date_filter))

    def apply_sorting(self, sort_key: str = DEFAULT_SORT_KEY) -> ListState:
        return self.dispatch(SortChanged(sort_key=sort_key))

    def clear_filters(self) -> ListState:
        return self.dispatch(ClearFilters())

    def export_ical(self) -> Optional[ExportResult]:
        return self.dispatch(ExportRequested(kind=EXPORT_ICAL)).last_export

    def export_event(self, event_id: str) -> Optional[ExportResult]:
        return self.dispatch(ExportRequested(kind=EXPORT_EVENT, event_id=event_id)).last_export

    def export_google(self, event_id: Optional[str] = None) -> Optional[ExportResult]:
        return self.dispatch(ExportRequested(kind=EXPORT_GOOGLE, event_id=event_id)).last_export

    def status_text(self) -> str:
        return self.state.status.current(self.clock())

    def announcement_text(self) -> str:
        return self.state.announcement.current(self.clock())
