"""Event processor for deduplication, reconciliation and retry merging."""
import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional, Sequence, Set, Union

from processor.models import DateWindow, EventRecord, ExistingEvent

logger = logging.getLogger(__name__)

LEDGER_COLUMN_COUNT = 7


def format_date_key(value: Union[date, datetime]) -> str:
    """Format a date or datetime as YYYY-MM-DD."""
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def generate_event_key(title: str, day: Union[date, datetime]) -> str:
    """
    Build the reconciliation key for an event.

    Args:
        title: Event title
        day: Local date or datetime of the event start

    Returns:
        Key in the form "YYYY-MM-DD|lowercased title"
    """
    return f"{format_date_key(day)}|{title.lower().strip()}"


class EventProcessor:
    """Processor for deduplicating and reconciling parsed events."""

    def __init__(self, tz: tzinfo):
        """
        Initialize the processor.

        Args:
            tz: Local timezone that calendar days are computed in
        """
        self.tz = tz

    def _to_local(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def event_key(self, event: EventRecord) -> str:
        """Return the reconciliation key of an EventRecord."""
        return generate_event_key(event.title, self._to_local(event.start))

    def existing_event_key(self, event: ExistingEvent) -> str:
        """Return the reconciliation key of an event already in the calendar."""
        start = event.start
        if isinstance(start, datetime):
            start = self._to_local(start)
        return generate_event_key(event.title, start)

    def remove_duplicate_events(self, events: Iterable[EventRecord]) -> List[EventRecord]:
        """
        Keep only the first event for each (day, title) key.

        Args:
            events: Events in file order

        Returns:
            First occurrences in their original relative order
        """
        unique_events = []
        seen_keys = set()

        for event in events:
            key = self.event_key(event)
            if key not in seen_keys:
                seen_keys.add(key)
                unique_events.append(event)

        return unique_events

    def get_event_date_range(self, events: Sequence[EventRecord]) -> Optional[DateWindow]:
        """
        Compute the calendar query window covering all events.

        The window runs from the start of the day before the earliest
        event to the end of the day after the latest one.

        Args:
            events: Events to cover

        Returns:
            DateWindow, or None when there are no events
        """
        if not events:
            return None

        starts = [self._to_local(event.start) for event in events]
        min_date = min(starts)
        max_date = max(starts)

        start = (min_date - timedelta(days=1)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        end = (max_date + timedelta(days=1)).replace(
            hour=23, minute=59, second=59, microsecond=999000
        )
        return DateWindow(start=start, end=end)

    def build_existing_keys(self, existing_events: Iterable[ExistingEvent]) -> Set[str]:
        """Map calendar entries to the set of their reconciliation keys."""
        return {self.existing_event_key(event) for event in existing_events}

    def get_existing_event_keys(self, calendar_store, events: Sequence[EventRecord]) -> Set[str]:
        """
        Query the calendar for the events' date window and key the results.

        Args:
            calendar_store: Object providing get_events(start, end)
            events: Unique events whose window is queried

        Returns:
            Set of existing reconciliation keys (empty when events is empty)
        """
        date_range = self.get_event_date_range(events)
        if date_range is None:
            return set()

        logger.info(
            f"Fetching existing events: {format_date_key(date_range.start)} - "
            f"{format_date_key(date_range.end)}"
        )
        existing_events = calendar_store.get_events(date_range.start, date_range.end)
        return self.build_existing_keys(existing_events)

    def filter_events_to_create(
        self,
        events: Iterable[EventRecord],
        existing_keys: Set[str]
    ) -> List[EventRecord]:
        """Return the events whose key is not already in the calendar, in order."""
        return [
            event for event in events
            if self.event_key(event) not in existing_keys
        ]

    def record_from_ledger_row(self, row: Sequence, row_index: int) -> Optional[EventRecord]:
        """
        Rebuild an EventRecord from an error ledger row.

        Args:
            row: Ledger columns (title, start, end, all-day, description,
                location, error message)
            row_index: Ledger row number, header being row 1

        Returns:
            EventRecord, or None if the row has no title or start

        Raises:
            ValueError: If a date column cannot be parsed
        """
        row = list(row) + [''] * (LEDGER_COLUMN_COUNT - len(row))
        title, start, end, all_day, description, location = row[:6]
        if not title or not start:
            return None

        return EventRecord(
            title=str(title),
            start=self._parse_ledger_datetime(start),
            end=self._parse_ledger_datetime(end) if end else None,
            is_all_day=all_day == 'TRUE',
            description=description or '',
            location=location or '',
            row_index=row_index
        )

    def _parse_ledger_datetime(self, value) -> datetime:
        if isinstance(value, datetime):
            return self._to_local(value)
        return self._to_local(datetime.fromisoformat(str(value)))

    def get_error_events(self, ledger) -> List[EventRecord]:
        """
        Read previously failed events back from the error ledger.

        Rows that cannot be rebuilt are logged and skipped.

        Args:
            ledger: Object providing read_rows()

        Returns:
            EventRecords tagged with their ledger row_index
        """
        try:
            rows = ledger.read_rows()
        except Exception as e:
            logger.error(f"Failed to read error ledger: {e}", exc_info=True)
            return []

        error_events = []
        for i, row in enumerate(rows):
            row_index = i + 2
            try:
                event = self.record_from_ledger_row(row, row_index)
            except Exception as e:
                logger.warning(f"Failed to parse error ledger row {row_index}: {e}")
                continue
            if event:
                error_events.append(event)

        logger.info(f"Loaded {len(error_events)} events to retry from error ledger")
        return error_events

    def merge_retry_events(
        self,
        events_to_create: List[EventRecord],
        ledger
    ) -> List[EventRecord]:
        """
        Append previously failed events after the newly eligible ones.

        Ledger events are not deduplicated or filtered against the calendar.

        Args:
            events_to_create: Events that passed reconciliation
            ledger: Error ledger to read retries from

        Returns:
            Combined list, fresh events first
        """
        return list(events_to_create) + self.get_error_events(ledger)
