"""Import workflow: fetch, reconcile and create events in the target calendar."""
import logging
import math
import time
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from processor.config import ImportConfig
from processor.event_processor import EventProcessor, format_date_key
from processor.ics_parser import IcsParser
from processor.models import EventRecord, ImportResult, ParseResult

logger = logging.getLogger(__name__)


class IcsImporter:
    """Coordinates the fetcher, processor, calendar store and error ledger."""

    def __init__(
        self,
        config: ImportConfig,
        fetcher,
        calendar_store,
        ledger,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the importer.

        Args:
            config: Import settings
            fetcher: Object providing fetch_content(file_id)
            calendar_store: Object providing get_events(start, end) and
                create_event(event)
            ledger: Error ledger providing read_rows(), append(), clear()
            sleep: Function used to pause between batches
        """
        self.config = config
        self.fetcher = fetcher
        self.calendar_store = calendar_store
        self.ledger = ledger
        self.sleep = sleep
        self.parser = IcsParser(config.tz)
        self.processor = EventProcessor(config.tz)

    def load_and_parse(self) -> ParseResult:
        """Fetch the configured ICS file and parse its events."""
        content = self.fetcher.fetch_content(self.config.ics_file_id)
        return self.parser.parse(content)

    def run(self) -> ImportResult:
        """
        Run a full import.

        Returns:
            ImportResult with creation counts and pipeline statistics
        """
        logger.info("ICS import started")

        parse_result = self.load_and_parse()
        events = parse_result.events
        logger.info(f"Parsed {len(events)} events from ICS file")

        unique_events = self.processor.remove_duplicate_events(events)
        logger.info(f"{len(unique_events)} unique events after duplicate removal")

        existing_keys = self.processor.get_existing_event_keys(
            self.calendar_store, unique_events
        )
        logger.info(f"Found {len(existing_keys)} existing calendar events")

        events_to_create = self.processor.filter_events_to_create(
            unique_events, existing_keys
        )
        logger.info(f"{len(events_to_create)} events to create")

        all_events = self.processor.merge_retry_events(events_to_create, self.ledger)
        logger.info(f"{len(all_events)} events to process including retries")

        result = self.process_events_in_batches(all_events)
        result.parsed = len(events)
        result.unique = len(unique_events)
        result.to_create = len(events_to_create)
        result.retried = len(all_events) - len(events_to_create)

        self.log_final_results(result)
        return result

    def process_events_in_batches(
        self,
        events: List[EventRecord],
        batch_size: Optional[int] = None
    ) -> ImportResult:
        """
        Create events in batches, recording failures in the error ledger.

        The ledger is cleared first so that only failures from this run
        remain in it afterwards.

        Args:
            events: Events to create
            batch_size: Events per batch (default: config.batch_size)

        Returns:
            ImportResult with created and error counts
        """
        if batch_size is None:
            batch_size = self.config.batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        result = ImportResult()

        self.ledger.clear()

        for i in range(0, len(events), batch_size):
            batch = events[i:i + batch_size]
            logger.info(
                f"Processing batch: {i + 1} - {min(i + batch_size, len(events))} "
                f"/ {len(events)}"
            )

            for event in batch:
                try:
                    self.calendar_store.create_event(event)
                    result.created += 1
                    logger.info(f"Created: {event.title} ({format_date_key(event.start)})")
                except Exception as e:
                    result.errors += 1
                    result.error_messages.append(f"{event.title}: {e}")
                    logger.warning(f"Failed to create '{event.title}': {e}")
                    self.record_error(event, str(e))

            if i + batch_size < len(events):
                self.sleep(self.config.sleep_interval)

        return result

    def record_error(self, event: EventRecord, error_message: str) -> None:
        """Append a failed event to the ledger, logging if that fails too."""
        try:
            self.ledger.append(event, error_message)
        except Exception as e:
            logger.error(f"Failed to record error for '{event.title}': {e}")

    def log_final_results(self, result: ImportResult) -> None:
        logger.info(
            f"Import complete: {result.created} created, {result.skipped} skipped, "
            f"{result.errors} errors"
        )
        if result.success_rate is not None:
            logger.info(f"Success rate: {result.success_rate}%")

        if result.errors > 0:
            logger.warning(
                f"Some events failed. Review the '{self.config.ledger_name}' error "
                f"ledger; the next run retries them."
            )

    def check_error_ledger(self) -> Dict[str, Any]:
        """List the entries currently in the error ledger."""
        header, *rows = self.ledger.export_rows()
        entries = [
            {'row': i + 1, 'title': row[0], 'start': row[1], 'error': row[6]}
            for i, row in enumerate(rows)
        ]

        if not entries:
            logger.info("Error ledger is empty")
        for entry in entries:
            logger.info(f"{entry['row']}. {entry['title']} ({entry['start']}) - {entry['error']}")
        logger.info(f"Total errors: {len(entries)}")

        return {'total': len(entries), 'entries': entries, 'table': [header] + rows}

    def clear_error_ledger(self) -> Dict[str, Any]:
        """Remove every entry from the error ledger."""
        cleared = self.ledger.clear()
        if cleared:
            logger.info(f"Cleared {cleared} entries from error ledger")
        else:
            logger.info("Error ledger is already empty")
        return {'cleared': cleared}

    def check_events_in_date_range(self, start: str, end: str) -> Dict[str, Any]:
        """
        Group the calendar's events between two ISO dates by day.

        Args:
            start: ISO date or date-time of the range start
            end: ISO date or date-time of the range end

        Returns:
            Dict with the total and, per day key, the events' titles and type
        """
        tz = self.config.tz
        start_dt = datetime.fromisoformat(start)
        end_dt = datetime.fromisoformat(end)
        if start_dt.tzinfo is None:
            start_dt = start_dt.replace(tzinfo=tz)
        if end_dt.tzinfo is None:
            end_dt = end_dt.replace(tzinfo=tz)

        existing_events = self.calendar_store.get_events(start_dt, end_dt)
        by_date = defaultdict(list)
        for event in existing_events:
            day_key = self.processor.existing_event_key(event).split('|', 1)[0]
            by_date[day_key].append({'title': event.title, 'all_day': event.is_all_day})

        logger.info(f"Events {start} - {end}: {len(existing_events)} total")
        for day_key in sorted(by_date):
            for event in by_date[day_key]:
                kind = 'all-day' if event['all_day'] else 'timed'
                logger.info(f"{day_key} [{kind}] {event['title']}")

        return {
            'total': len(existing_events),
            'events_by_date': {day_key: by_date[day_key] for day_key in sorted(by_date)}
        }

    def check_ics_file_content(self) -> Dict[str, Any]:
        """Summarize the parsed ICS file by day and count in-file duplicates."""
        parse_result = self.load_and_parse()
        events = parse_result.events

        by_date = defaultdict(list)
        for event in events:
            by_date[format_date_key(event.start)].append(
                {'title': event.title, 'all_day': event.is_all_day}
            )

        logger.info(f"ICS file contains {len(events)} events")
        for day_key in sorted(by_date):
            logger.info(f"{day_key} ({len(by_date[day_key])} events)")
            for event in by_date[day_key]:
                kind = 'all-day' if event['all_day'] else 'timed'
                logger.info(f"  [{kind}] {event['title']}")

        duplicate_count = len(events) - len(self.processor.remove_duplicate_events(events))
        if duplicate_count > 0:
            logger.warning(f"ICS file contains {duplicate_count} duplicate events")

        return {
            'total': len(events),
            'duplicates': duplicate_count,
            'dropped': parse_result.dropped,
            'nested_begins': parse_result.nested_begins,
            'decode_errors': parse_result.decode_errors,
            'events_by_date': {day_key: by_date[day_key] for day_key in sorted(by_date)}
        }

    def check_configuration(self) -> Dict[str, Any]:
        """Log the settings and check access to the ICS file and calendar."""
        config = self.config
        logger.info(
            f"ICS file: {config.ics_file_id}, calendar: {config.calendar_id}, "
            f"ledger: {config.ledger_name}, batch size: {config.batch_size}, "
            f"sleep interval: {config.sleep_interval}s, timezone: {config.timezone}"
        )
        report = {
            'ics_file_id': config.ics_file_id,
            'calendar_id': config.calendar_id,
            'ledger_name': config.ledger_name,
            'batch_size': config.batch_size,
            'sleep_interval': config.sleep_interval,
            'timezone': config.timezone
        }

        try:
            content = self.fetcher.fetch_content(config.ics_file_id)
            report['ics_file'] = f"ok ({len(content)} characters)"
        except Exception as e:
            logger.error(f"Cannot access ICS file: {e}")
            report['ics_file'] = f"error: {e}"

        try:
            report['calendar'] = f"ok ({self.calendar_store.get_calendar_name()})"
        except Exception as e:
            logger.error(f"Cannot access calendar: {e}")
            report['calendar'] = f"error: {e}"

        return report

    def show_statistics(self) -> Dict[str, Any]:
        """Report what an import run would do without creating anything."""
        events = self.load_and_parse().events
        unique_events = self.processor.remove_duplicate_events(events)
        existing_keys = self.processor.get_existing_event_keys(
            self.calendar_store, unique_events
        )
        events_to_create = self.processor.filter_events_to_create(
            unique_events, existing_keys
        )
        error_events = self.processor.get_error_events(self.ledger)

        total = len(events_to_create) + len(error_events)
        estimated_seconds = math.ceil(
            total / self.config.batch_size * self.config.sleep_interval
        )
        stats = {
            'total_events': len(events),
            'unique_events': len(unique_events),
            'duplicates': len(events) - len(unique_events),
            'existing_events': len(existing_keys),
            'events_to_create': len(events_to_create),
            'pending_retries': len(error_events),
            'total_to_process': total,
            'estimated_seconds': estimated_seconds
        }
        logger.info(
            f"Import statistics: {stats['total_events']} events in file, "
            f"{stats['unique_events']} unique, {stats['duplicates']} duplicates, "
            f"{stats['existing_events']} already in calendar, "
            f"{stats['events_to_create']} to create, {stats['pending_retries']} pending retries"
        )
        logger.info(
            f"Estimated time for {total} events: {estimated_seconds} seconds"
        )
        return stats

    def test_import(self) -> ImportResult:
        """
        Import only the first few events of the file with a small batch size.

        Previously failed events are not retried.
        """
        logger.info("Test import started")
        events = self.load_and_parse().events[:self.config.test_event_limit]
        logger.info(f"Test import of {len(events)} events")

        unique_events = self.processor.remove_duplicate_events(events)
        existing_keys = self.processor.get_existing_event_keys(
            self.calendar_store, unique_events
        )
        events_to_create = self.processor.filter_events_to_create(
            unique_events, existing_keys
        )
        logger.info(f"{len(events_to_create)} test events to create")

        if not events_to_create:
            logger.info("No test events to create")
            result = ImportResult()
        else:
            result = self.process_events_in_batches(
                events_to_create, batch_size=self.config.test_batch_size
            )
            self.log_final_results(result)

        result.parsed = len(events)
        result.unique = len(unique_events)
        result.to_create = len(events_to_create)
        logger.info("Test import finished")
        return result
