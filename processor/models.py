"""Data models for the calendar event list."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import FrozenSet, Optional, Tuple, Union

TYPE_ALL = 'all'

DATE_FILTERS = ('all', 'upcoming', 'this-week', 'this-month', 'next-month')
SORT_KEYS = ('date-asc', 'date-desc', 'title', 'type')

DEFAULT_TYPE_FILTER = 'all'
DEFAULT_DATE_FILTER = 'upcoming'
DEFAULT_SORT_KEY = 'date-asc'

EVENT_DURATION = timedelta(hours=1)


@dataclass
class EventElement:
    """Raw event card read from the Calendar page markup."""
    type: str
    date: str
    title: str
    description: str
    location: str
    event_id: Optional[str]


@dataclass(frozen=True)
class EventRecord:
    """Typed, read-only event built once from an EventElement."""
    id: str
    title: str
    type: str
    date: Optional[datetime]
    description: str
    location: str
    position: int

    @property
    def end_date(self) -> Optional[datetime]:
        """Start plus the fixed one hour duration."""
        if self.date is None:
            return None
        return self.date + EVENT_DURATION


@dataclass(frozen=True)
class StatusMessage:
    """Transient live-region message."""
    text: str
    expires_at: Optional[datetime] = None

    def current(self, now: datetime) -> str:
        """Return the text, or an empty string once the message has expired."""
        if self.expires_at is not None and now >= self.expires_at:
            return ''
        return self.text


@dataclass(frozen=True)
class ExportResult:
    """Outcome of an export action."""
    kind: str
    filename: Optional[str] = None
    content: Optional[str] = None
    url: Optional[str] = None
    event_count: int = 0


@dataclass(frozen=True)
class ListState:
    """Filter/sort selection plus everything derived from it."""
    type_filter: str
    date_filter: str
    sort_key: Optional[str]
    order: Tuple[str, ...]
    visible: FrozenSet[str]
    status: StatusMessage = field(default_factory=lambda: StatusMessage(''))
    announcement: StatusMessage = field(default_factory=lambda: StatusMessage(''))
    last_export: Optional[ExportResult] = None

    @property
    def visible_count(self) -> int:
        return len(self.visible)

    @property
    def no_events(self) -> bool:
        """Empty-state indicator."""
        return not self.visible


@dataclass(frozen=True)
class FilterChanged:
    type_filter: str = DEFAULT_TYPE_FILTER
    date_filter: str = DEFAULT_DATE_FILTER

    def __post_init__(self):
        if not self.type_filter:
            raise ValueError("Type filter must not be empty")
        if self.date_filter not in DATE_FILTERS:
            raise ValueError(f"Unknown date filter: {self.date_filter}")


@dataclass(frozen=True)
class SortChanged:
    sort_key: str = DEFAULT_SORT_KEY

    def __post_init__(self):
        if self.sort_key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {self.sort_key}")


@dataclass(frozen=True)
class ClearFilters:
    pass


EXPORT_ICAL = 'ical'
EXPORT_EVENT = 'event'
EXPORT_GOOGLE = 'google'
EXPORT_KINDS = (EXPORT_ICAL, EXPORT_EVENT, EXPORT_GOOGLE)


@dataclass(frozen=True)
class ExportRequested:
    """Export visible records, or one record when event_id is given."""
    kind: str = EXPORT_ICAL
    event_id: Optional[str] = None

    def __post_init__(self):
        if self.kind not in EXPORT_KINDS:
            raise ValueError(f"Unknown export kind: {self.kind}")
        if self.kind == EXPORT_EVENT and not self.event_id:
            raise ValueError("Single event export requires an event_id")
        if self.kind == EXPORT_ICAL and self.event_id is not None:
            raise ValueError("Bulk iCal export exports the visible events; use kind='event' for one event")


Action = Union[FilterChanged, SortChanged, ClearFilters, ExportRequested]
