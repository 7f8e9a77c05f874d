"""Scraper for the event cards embedded in the library Calendar page."""
import logging
import time
from pathlib import Path
from typing import List, Optional

import requests
from bs4 import BeautifulSoup

from processor.models import EventElement

logger = logging.getLogger(__name__)


class CalendarPageScraper:
    """Reads ``[data-event]`` cards from the Calendar page markup."""

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, timeout: int = 30):
        """
        Initialize the page scraper.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def fetch_events(self, source: str) -> List[EventElement]:
        """
        Fetch event elements from the Calendar page.

        Args:
            source: Local file path or http(s) URL of the page

        Returns:
            List of EventElement objects in markup order
        """
        logger.info(f"Loading calendar page from {source}")

        html_content = self._fetch_page_html(source)
        events = self.parse_events(html_content)

        logger.info(f"Found {len(events)} events on the calendar page")
        return events

    def _fetch_page_html(self, source: str) -> str:
        if source.startswith(('http://', 'https://')):
            return self._fetch_remote_html(source)
        return Path(source).read_text(encoding='utf-8')

    def _fetch_remote_html(self, url: str) -> str:
        """
        Fetch page HTML with retry logic.

        Args:
            url: Page URL

        Returns:
            HTML content as string

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Fetching calendar HTML (attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise

    def parse_events(self, html_content: str) -> List[EventElement]:
        """
        Parse event cards from page HTML.

        Args:
            html_content: HTML content of the Calendar page

        Returns:
            List of EventElement objects
        """
        soup = BeautifulSoup(html_content, 'html.parser')
        events = []

        for element in soup.find_all(attrs={'data-event': True}):
            try:
                events.append(self._parse_event_element(element))
            except Exception as e:
                logger.warning(f"Failed to parse event element: {e}")
                continue

        return events

    def _parse_event_element(self, element) -> EventElement:
        """
        Parse a single event card.

        Missing children become empty strings; the record builder decides
        how to treat them.

        Args:
            element: BeautifulSoup element carrying ``data-event``

        Returns:
            EventElement object
        """
        title_elem = element.find(attrs={'data-event-title': True})
        description_elem = element.find(attrs={'data-event-description': True})
        location_elem = element.find(attrs={'data-event-location': True})

        return EventElement(
            type=element.get('data-event-type', ''),
            date=self._start_timestamp(element),
            title=title_elem.get_text(' ', strip=True) if title_elem else '',
            description=self._block_text(description_elem) if description_elem else '',
            location=location_elem.get_text(' ', strip=True) if location_elem else '',
            event_id=self._event_id(element)
        )

    def _start_timestamp(self, element) -> str:
        # Prefer the time-of-day element, then the card attribute, then any <time>
        time_elem = element.select_one('.event-time time[datetime]')
        if time_elem:
            return time_elem['datetime']

        if element.get('data-event-date'):
            return element['data-event-date']

        date_elem = element.select_one('time[datetime]')
        return date_elem['datetime'] if date_elem else ''

    def _event_id(self, element) -> Optional[str]:
        export_elem = element.find(attrs={'data-event-export': True})
        if export_elem and export_elem.get('data-event-id'):
            return export_elem['data-event-id']
        return element.get('data-event-id') or element.get('id')

    def _block_text(self, element) -> str:
        lines = (line.strip() for line in element.get_text().splitlines())
        return '\n'.join(line for line in lines if line)
