"""Unit tests for the event list controller."""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
import pytz

from processor.event_list import (
    EventListController,
    EventRecordBuilder,
    matches_date,
    sort_records,
)
from processor.models import (
    ClearFilters,
    EventElement,
    ExportRequested,
    FilterChanged,
    SortChanged,
)

EASTERN = pytz.timezone('America/New_York')
# Wednesday 2025-05-28, noon in New York
FIXED_NOW = pytz.utc.localize(datetime(2025, 5, 28, 16, 0))


def make_element(event_id, title, event_type, date, description='', location=''):
    return EventElement(
        type=event_type,
        date=date,
        title=title,
        description=description,
        location=location,
        event_id=event_id
    )


@pytest.fixture
def sample_elements():
    """Event cards as they appear on the sample Calendar page."""
    return [
        make_element('story-time', 'Story Time', 'children', '2025-06-01T10:00:00',
                     'Songs and stories', 'Location: Main Hall'),
        make_element('knitting', 'Knitting Circle', 'adult', '2025-05-30T18:00:00'),
        make_element('past-workshop', 'Résumé Workshop', 'workshop', '2025-05-20T14:00:00'),
        make_element('robotics', 'Robotics Lab', 'workshop', '2025-06-20T15:00:00'),
        make_element('book-club', 'Book Club', 'adult', '2025-07-10T19:00:00'),
        make_element(None, 'Summer Reading Kickoff', 'children', 'TBD'),
        make_element('lego', 'LEGO Builders', 'children', '2025-06-01T10:00:00'),
    ]


@pytest.fixture
def clock():
    """Mutable clock: tests advance it by replacing clock.now."""
    class Clock:
        now = FIXED_NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def controller(sample_elements, clock):
    return EventListController.from_elements(sample_elements, clock=clock)


def visible_ids(controller):
    return [record.id for record in controller.visible_records()]


class TestEventRecordBuilder:
    """Test cases for EventRecordBuilder."""

    def test_build_records_preserves_markup_order(self, sample_elements):
        records = EventRecordBuilder().build_records(sample_elements)

        assert [record.position for record in records] == list(range(7))
        assert records[0].title == 'Story Time'
        assert records[0].location == 'Main Hall'
        assert records[0].date == EASTERN.localize(datetime(2025, 6, 1, 10, 0))
        assert records[0].end_date == EASTERN.localize(datetime(2025, 6, 1, 11, 0))

    def test_unparseable_date_is_kept_without_date(self, sample_elements):
        records = EventRecordBuilder().build_records(sample_elements)

        kickoff = records[5]
        assert kickoff.title == 'Summer Reading Kickoff'
        assert kickoff.date is None
        assert kickoff.end_date is None

    def test_missing_fields_default_to_empty(self):
        records = EventRecordBuilder().build_records([
            EventElement(type=None, date=None, title=None, description=None,
                         location=None, event_id=None)
        ])

        assert len(records) == 1
        record = records[0]
        assert record.title == ''
        assert record.type == ''
        assert record.description == ''
        assert record.location == ''
        assert record.date is None
        assert record.id == 'event-1'

    def test_ids_are_unique(self):
        records = EventRecordBuilder().build_records([
            make_element('event-2', 'A', 'adult', '2025-06-01'),
            make_element(None, 'B', 'adult', '2025-06-01'),
            make_element('event-2', 'C', 'adult', '2025-06-01'),
        ])

        ids = [record.id for record in records]
        assert ids[0] == 'event-2'
        assert len(set(ids)) == 3

    def test_reserved_type_is_not_a_category(self):
        records = EventRecordBuilder().build_records([
            make_element('x', 'Open House', 'all', '2025-06-01')
        ])

        assert records[0].type == ''

    def test_offset_timestamps_keep_their_offset(self):
        builder = EventRecordBuilder()

        parsed = builder.parse_date('2025-06-01T10:00:00+00:00')

        assert parsed == pytz.utc.localize(datetime(2025, 6, 1, 10, 0))

    def test_date_only_value_is_local_midnight(self):
        builder = EventRecordBuilder(timezone='America/Chicago')

        parsed = builder.parse_date('2025-06-01')

        assert parsed == pytz.timezone('America/Chicago').localize(datetime(2025, 6, 1))


class TestFiltering:
    """Test cases for date and type filtering."""

    def test_initial_state_shows_everything_in_markup_order(self, controller):
        assert controller.state.visible_count == 7
        assert controller.state.sort_key is None
        assert controller.announcement_text() == 'Calendar loaded with 7 events'

    @pytest.mark.parametrize('date_filter,expected', [
        ('all', {'story-time', 'knitting', 'past-workshop', 'robotics',
                 'book-club', 'event-6', 'lego'}),
        ('upcoming', {'story-time', 'knitting', 'robotics', 'book-club', 'lego'}),
        ('this-week', {'story-time', 'knitting', 'lego'}),
        ('this-month', {'knitting'}),
        ('next-month', {'story-time', 'robotics', 'lego'}),
    ])
    def test_date_filters(self, controller, date_filter, expected):
        state = controller.apply_filters('all', date_filter)

        assert state.visible == frozenset(expected)

    def test_type_and_date_filters_combine(self, controller):
        state = controller.apply_filters('workshop', 'upcoming')

        assert state.visible == frozenset({'robotics'})
        assert controller.status_text() == 'Showing 1 event'

    def test_empty_result_sets_no_events_flag(self, controller):
        state = controller.apply_filters('workshop', 'this-week')

        assert state.visible_count == 0
        assert state.no_events is True
        assert controller.status_text() == 'Showing 0 events'

    def test_filtering_is_independent_of_history(self, sample_elements, clock):
        fresh = EventListController.from_elements(sample_elements, clock=clock)
        used = EventListController.from_elements(sample_elements, clock=clock)
        used.apply_filters('adult', 'this-month')
        used.apply_sorting('title')
        used.clear_filters()
        used.apply_filters('children', 'all')

        assert used.apply_filters('all', 'this-week').visible == \
            fresh.apply_filters('all', 'this-week').visible

    def test_filtering_does_not_reorder(self, controller):
        controller.apply_sorting('title')
        order = controller.state.order

        controller.apply_filters('adult', 'all')

        assert controller.state.order == order
        assert visible_ids(controller) == ['book-club', 'knitting']

    def test_week_window_includes_the_seventh_day_midnight(self, clock):
        controller = EventListController.from_elements([
            make_element('edge', 'Edge', 'adult', '2025-06-04T00:00:00'),
            make_element('after', 'After', 'adult', '2025-06-04T00:00:01'),
        ], clock=clock)

        assert controller.apply_filters('all', 'this-week').visible == frozenset({'edge'})

    def test_next_month_on_month_end(self):
        today = datetime(2025, 1, 31).date()
        record = EventRecordBuilder().build_records([
            make_element('feb', 'February', 'adult', '2025-02-15T10:00:00')
        ])[0]

        assert matches_date(record, 'next-month', today, EASTERN) is True

    def test_today_is_taken_in_site_timezone(self, sample_elements):
        # 02:00 UTC on May 29 is still May 28 in New York
        late_evening = pytz.utc.localize(datetime(2025, 5, 29, 2, 0))
        controller = EventListController.from_elements(
            [make_element('tonight', 'Tonight', 'adult', '2025-05-28T20:00:00')],
            clock=lambda: late_evening
        )

        assert controller.apply_filters('all', 'upcoming').visible == frozenset({'tonight'})

    def test_invalid_filter_values_are_rejected(self):
        with pytest.raises(ValueError):
            FilterChanged(type_filter='all', date_filter='someday')
        with pytest.raises(ValueError):
            FilterChanged(type_filter='', date_filter='all')


class TestSorting:
    """Test cases for presentation order."""

    def test_date_ascending_is_stable_and_puts_undated_last(self, controller):
        controller.apply_sorting('date-asc')

        assert list(controller.state.order) == [
            'past-workshop', 'knitting', 'story-time', 'lego',
            'robotics', 'book-club', 'event-6'
        ]

    def test_date_descending(self, controller):
        controller.apply_sorting('date-desc')

        assert list(controller.state.order) == [
            'book-club', 'robotics', 'story-time', 'lego',
            'knitting', 'past-workshop', 'event-6'
        ]

    def test_descending_reverses_distinct_dates(self, controller):
        distinct = {'past-workshop', 'knitting', 'robotics', 'book-club'}

        ascending = [i for i in controller.apply_sorting('date-asc').order if i in distinct]
        descending = [i for i in controller.apply_sorting('date-desc').order if i in distinct]

        assert descending == list(reversed(ascending))

    def test_title_sort_folds_case_and_accents(self, controller):
        controller.apply_sorting('title')

        titles = [record.title for record in controller.ordered_records()]
        assert titles == [
            'Book Club', 'Knitting Circle', 'LEGO Builders', 'Résumé Workshop',
            'Robotics Lab', 'Story Time', 'Summer Reading Kickoff'
        ]

    def test_type_sort_keeps_markup_order_within_category(self, controller):
        controller.apply_sorting('type')

        assert list(controller.state.order) == [
            'knitting', 'book-club', 'story-time', 'event-6', 'lego',
            'past-workshop', 'robotics'
        ]

    def test_sorting_does_not_change_visibility(self, controller):
        visible = controller.apply_filters('children', 'upcoming').visible

        state = controller.apply_sorting('date-desc')

        assert state.visible == visible
        assert controller.announcement_text() == 'Events sorted by date-desc'

    def test_sort_starts_from_markup_order(self, sample_elements):
        records = EventRecordBuilder().build_records(sample_elements)
        shuffled = list(reversed(records))

        assert sort_records(shuffled, 'date-asc') == sort_records(records, 'date-asc')

    def test_unknown_sort_key_is_rejected(self):
        with pytest.raises(ValueError):
            SortChanged(sort_key='popularity')


class TestClearFilters:
    """Test cases for resetting the list."""

    def test_clear_restores_upcoming_not_total(self, controller):
        controller.apply_filters('workshop', 'all')

        state = controller.clear_filters()

        assert state.type_filter == 'all'
        assert state.date_filter == 'upcoming'
        assert state.sort_key == 'date-asc'
        assert state.visible_count == 5
        assert len(controller.records) == 7
        assert visible_ids(controller) == [
            'knitting', 'story-time', 'lego', 'robotics', 'book-club'
        ]
        assert controller.status_text() == 'Showing 5 events'
        assert controller.announcement_text() == 'Filters cleared'

    def test_reduce_does_not_mutate_input_state(self, controller):
        before = controller.state

        after = controller.reduce(before, ClearFilters())

        assert before.visible_count == 7
        assert after.visible_count == 5
        assert controller.state is before


class TestFeedback:
    """Test cases for transient status messages."""

    def test_status_clears_after_a_few_seconds(self, controller, clock):
        controller.apply_filters('adult', 'all')
        assert controller.status_text() == 'Showing 2 events'

        clock.now = FIXED_NOW + timedelta(seconds=4)

        assert controller.status_text() == ''

    def test_announcement_is_shorter_lived(self, controller, clock):
        controller.apply_filters('adult', 'all')
        clock.now = FIXED_NOW + timedelta(seconds=2)

        assert controller.announcement_text() == ''
        assert controller.status_text() == 'Showing 2 events'


class TestExport:
    """Test cases for export actions."""

    def test_export_with_nothing_visible_is_refused(self, controller):
        controller.apply_filters('workshop', 'this-week')

        result = controller.export_ical()

        assert result is None
        assert 'No events to export.' in controller.status_text()

    def test_google_export_with_nothing_visible_is_refused(self, controller):
        controller.apply_filters('workshop', 'this-week')

        assert controller.export_google() is None
        assert controller.status_text() == 'No events to export. Please adjust filters.'

    def test_export_visible_events(self, controller):
        controller.apply_filters('adult', 'upcoming')
        controller.apply_sorting('date-asc')

        result = controller.export_ical()

        assert result.event_count == 2
        assert result.filename == 'union-beach-library-events.ics'
        assert result.content.count('BEGIN:VEVENT') == 2
        assert result.content.index('Knitting Circle') < result.content.index('Book Club')
        assert controller.status_text() == 'Exported 2 events to iCal'

    def test_export_skips_undated_visible_events(self, controller):
        controller.apply_filters('children', 'all')

        result = controller.export_ical()

        assert result.event_count == 2
        assert 'Summer Reading Kickoff' not in result.content

    def test_export_single_event(self, controller):
        result = controller.export_event('story-time')

        assert result.filename == 'story-time.ics'
        assert 'SUMMARY:Story Time' in result.content
        assert 'DTSTART:20250601T140000Z' in result.content
        assert controller.announcement_text() == 'Exported Story Time to calendar'

    def test_export_unknown_event_reports_failure(self, controller):
        result = controller.export_event('no-such-event')

        assert result is None
        assert controller.status_text() == 'Unable to export event'

    def test_export_undated_event_reports_failure(self, controller):
        assert controller.export_event('event-6') is None
        assert controller.status_text() == 'Unable to export event'

    def test_unexpected_exporter_failure_is_contained(self, controller):
        with patch.object(controller.exporter, 'export_events', side_effect=RuntimeError("boom")):
            result = controller.export_ical()

        assert result is None
        assert controller.status_text() == 'Unable to export event'

    def test_google_export_uses_first_visible_event(self, controller):
        controller.apply_filters('all', 'upcoming')
        controller.apply_sorting('date-asc')

        result = controller.export_google()

        assert result.url.startswith('https://calendar.google.com/calendar/render?action=TEMPLATE')
        assert 'text=Knitting%20Circle' in result.url
        assert controller.status_text() == 'Opening Google Calendar...'

    def test_google_export_for_one_event(self, controller):
        result = controller.export_google('robotics')

        assert 'text=Robotics%20Lab' in result.url
        assert 'dates=20250620T190000Z/20250620T200000Z' in result.url

    def test_export_does_not_change_visibility(self, controller):
        before = controller.apply_filters('adult', 'all')

        after = controller.dispatch(ExportRequested(kind='ical'))

        assert after.visible == before.visible
        assert after.order == before.order

    def test_single_export_requires_an_id(self):
        with pytest.raises(ValueError):
            ExportRequested(kind='event')

    def test_bulk_ical_export_rejects_an_event_id(self):
        with pytest.raises(ValueError):
            ExportRequested(kind='ical', event_id='story-time')

    def test_google_export_skips_undated_first_record(self, clock):
        controller = EventListController.from_elements([
            make_element('alpha', 'Alpha', 'adult', 'not-a-date'),
            make_element('beta', 'Beta', 'adult', '2025-06-01T10:00:00'),
        ], clock=clock)
        controller.apply_sorting('title')

        result = controller.export_google()

        assert result is not None
        assert 'text=Beta' in result.url
        assert controller.status_text() == 'Opening Google Calendar...'

    def test_google_export_with_only_undated_visible_is_refused(self, clock):
        controller = EventListController.from_elements([
            make_element('alpha', 'Alpha', 'adult', 'not-a-date'),
        ], clock=clock)

        assert controller.export_google() is None
        assert controller.status_text() == 'No events to export. Please adjust filters.'
