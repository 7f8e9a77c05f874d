"""Request handler for the library Calendar and Contact pages."""
import json
import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from exporter.ical_export import (
    CONTENT_TYPE,
    DEFAULT_EXPORT_FILENAME,
    DEFAULT_SITE_NAME,
    ICalExporter,
)
from processor.contact_form import validate_contact_submission
from processor.event_list import DEFAULT_TIMEZONE, EventListController
from processor.models import (
    DEFAULT_DATE_FILTER,
    DEFAULT_SORT_KEY,
    DEFAULT_TYPE_FILTER,
    EventRecord,
    ExportResult,
)
from scraper.calendar_page import CalendarPageScraper

EXPORT_ACTIONS = {
    'export-ical': 'export_ical',
    'export-event': 'export_event',
    'export-google': 'export_google',
}
LIST_ACTIONS = ('list', 'clear')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _json_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def _error_response(status_code: int, message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    return _json_response(status_code, {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
        'duration_seconds': round(time.time() - start_time, 2)
    })


def serialize_record(record: EventRecord) -> Dict[str, Any]:
    return {
        'id': record.id,
        'title': record.title,
        'type': record.type,
        'date': record.date.isoformat() if record.date else None,
        'end_date': record.end_date.isoformat() if record.end_date else None,
        'description': record.description,
        'location': record.location
    }


def _request_params(event: Dict[str, Any]) -> Dict[str, Any]:
    """Merge API Gateway query parameters into the request payload."""
    params = dict(event.get('queryStringParameters') or {})
    params.update({key: value for key, value in event.items() if key != 'queryStringParameters'})
    return params


def _export_response(controller: EventListController, result: Optional[ExportResult]) -> Dict[str, Any]:
    if result is None:
        return _json_response(422, {'message': controller.status_text()})

    if result.url:
        return {
            'statusCode': 302,
            'headers': {'Location': result.url},
            'body': ''
        }

    return {
        'statusCode': 200,
        'headers': {
            'Content-Type': CONTENT_TYPE,
            'Content-Disposition': f'attachment; filename="{result.filename}"'
        },
        'body': result.content
    }


def _contact_response(form: Dict[str, Any]) -> Dict[str, Any]:
    result = validate_contact_submission(form)

    if result.is_spam:
        # Silent rejection: answer like a success
        return _json_response(200, {'message': 'Your message has been sent successfully!'})

    if not result.is_valid:
        return _json_response(422, {
            'message': f"Form validation failed. {len(result.errors)} fields need attention.",
            'errors': result.errors
        })

    logging.getLogger(__name__).info(
        "Contact submission accepted",
        extra={'fields': sorted(result.data)}
    )
    return _json_response(200, {'message': 'Your message has been sent successfully!'})


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Handle one Calendar or Contact page request.

    Args:
        event: Request payload (action, type, date, sort, event_id, source, form),
            optionally wrapped as API Gateway ``queryStringParameters``
        context: Lambda context object

    Returns:
        Response dict with statusCode, headers and body
    """
    source = os.environ.get('CALENDAR_SOURCE', 'calendar.html')
    timezone = os.environ.get('CALENDAR_TIMEZONE', DEFAULT_TIMEZONE)
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    export_filename = os.environ.get('EXPORT_FILENAME', DEFAULT_EXPORT_FILENAME)
    site_name = os.environ.get('SITE_NAME', DEFAULT_SITE_NAME)

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    params = _request_params(event or {})
    action = params.get('action') or 'list'

    logger.info(
        f"Handling calendar request: {action}",
        extra={'source': params.get('source') or source, 'timezone': timezone}
    )

    if not isinstance(action, str) or (
        action != 'contact' and action not in LIST_ACTIONS and action not in EXPORT_ACTIONS
    ):
        return _json_response(400, {'message': f"Unknown action: {action}"})

    try:
        if action == 'contact':
            try:
                return _contact_response(params.get('form') or {})
            except ValueError as e:
                logger.warning(f"Invalid contact submission: {e}")
                return _error_response(400, 'Invalid contact submission', e, start_time)

        scraper = CalendarPageScraper(timeout=timeout_seconds)

        try:
            elements = scraper.fetch_events(params.get('source') or source)
        except requests.RequestException as e:
            logger.error(
                f"Failed to fetch calendar page after retries: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _error_response(502, 'Failed to fetch calendar page', e, start_time)

        controller = EventListController.from_elements(
            elements,
            timezone=timezone,
            exporter=ICalExporter(site_name=site_name, bulk_filename=export_filename)
        )

        try:
            if action == 'clear':
                controller.clear_filters()
            else:
                controller.apply_filters(
                    params.get('type') or DEFAULT_TYPE_FILTER,
                    params.get('date') or DEFAULT_DATE_FILTER
                )
                controller.apply_sorting(params.get('sort') or DEFAULT_SORT_KEY)

            if action in EXPORT_ACTIONS:
                export = getattr(controller, EXPORT_ACTIONS[action])
                if action == 'export-event':
                    if not params.get('event_id'):
                        raise ValueError("export-event requires an event_id")
                    result = export(params['event_id'])
                elif action == 'export-google':
                    result = export(params.get('event_id'))
                else:
                    result = export()
                return _export_response(controller, result)
        except ValueError as e:
            logger.warning(f"Invalid calendar request: {e}")
            return _error_response(400, 'Invalid calendar request', e, start_time)

        state = controller.state
        duration = time.time() - start_time
        logger.info(
            "Calendar request completed",
            extra={
                'duration_seconds': round(duration, 2),
                'visible_count': state.visible_count,
                'total_count': len(controller.records)
            }
        )

        return _json_response(200, {
            'status': controller.status_text(),
            'filters': {
                'type': state.type_filter,
                'date': state.date_filter,
                'sort': state.sort_key
            },
            'visible_count': state.visible_count,
            'total_count': len(controller.records),
            'no_events': state.no_events,
            'events': [serialize_record(record) for record in controller.visible_records()]
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Calendar request failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error_response(500, 'Calendar request failed', e, start_time)
