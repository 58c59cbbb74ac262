"""Google Calendar access for querying and creating events."""
import logging
from datetime import date, datetime
from typing import List, Optional

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from processor.models import EventRecord, ExistingEvent

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/calendar']


class GoogleCalendarStore:
    """Target calendar the imported events are created in."""

    PAGE_SIZE = 2500

    def __init__(self, calendar_id: str, service):
        """
        Initialize the store.

        Args:
            calendar_id: Google Calendar ID
            service: Calendar v3 API service resource
        """
        self.calendar_id = calendar_id
        self.service = service

    @classmethod
    def from_service_account_file(cls, calendar_id: str, credentials_file: str) -> 'GoogleCalendarStore':
        """Build a store authenticated with a service account key file."""
        credentials = Credentials.from_service_account_file(credentials_file, scopes=SCOPES)
        service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        logger.info(f"Initialized Google Calendar service for: {calendar_id}")
        return cls(calendar_id, service)

    def get_calendar_name(self) -> str:
        calendar = self.service.calendars().get(calendarId=self.calendar_id).execute()
        return calendar.get('summary', '')

    def get_events(self, start: datetime, end: datetime) -> List[ExistingEvent]:
        """
        List calendar events between start and end.

        Args:
            start: Window start
            end: Window end

        Returns:
            ExistingEvent objects; all-day entries carry a date start
        """
        events = []
        page_token = None

        while True:
            response = self.service.events().list(
                calendarId=self.calendar_id,
                timeMin=start.isoformat(),
                timeMax=end.isoformat(),
                singleEvents=True,
                showDeleted=False,
                maxResults=self.PAGE_SIZE,
                pageToken=page_token
            ).execute()

            for item in response.get('items', []):
                event = self._item_to_existing_event(item)
                if event:
                    events.append(event)

            page_token = response.get('nextPageToken')
            if not page_token:
                break

        logger.info(f"Retrieved {len(events)} existing events from calendar")
        return events

    def create_event(self, event: EventRecord) -> dict:
        """
        Create an event, applying the default duration when it has no end.

        Args:
            event: Event to create

        Returns:
            Created event resource

        Raises:
            googleapiclient.errors.HttpError: If the API rejects the request
        """
        body = {
            'summary': event.title,
            'description': event.description or '',
            'location': event.location or ''
        }
        end = event.effective_end()

        if event.is_all_day:
            body['start'] = {'date': event.start.date().isoformat()}
            body['end'] = {'date': end.date().isoformat()}
        else:
            body['start'] = {'dateTime': event.start.isoformat()}
            body['end'] = {'dateTime': end.isoformat()}

        return self.service.events().insert(
            calendarId=self.calendar_id,
            body=body
        ).execute()

    def _item_to_existing_event(self, item: dict) -> Optional[ExistingEvent]:
        start = item.get('start', {})
        title = item.get('summary', '')
        try:
            if 'date' in start:
                return ExistingEvent(
                    title=title,
                    start=date.fromisoformat(start['date']),
                    is_all_day=True
                )
            if 'dateTime' in start:
                return ExistingEvent(
                    title=title,
                    start=datetime.fromisoformat(start['dateTime']),
                    is_all_day=False
                )
        except ValueError as e:
            logger.warning(f"Failed to parse start of calendar event '{title}': {e}")
        return None
