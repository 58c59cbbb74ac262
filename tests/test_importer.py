"""Unit tests for IcsImporter."""
import logging
from datetime import date, datetime
from unittest.mock import Mock
from zoneinfo import ZoneInfo

import pytest

from processor.config import ImportConfig
from processor.importer import IcsImporter
from processor.models import EventRecord, ExistingEvent, ImportResult
from storage.error_ledger import LEDGER_HEADER

TOKYO = ZoneInfo('Asia/Tokyo')


def _vevent(title: str, dtstart: str) -> str:
    return f"BEGIN:VEVENT\r\nSUMMARY:{title}\r\n{dtstart}\r\nEND:VEVENT\r\n"


SAMPLE_ICS = (
    "BEGIN:VCALENDAR\r\n"
    + _vevent("Standup", "DTSTART;VALUE=DATE:20240105")
    + _vevent("Standup", "DTSTART;VALUE=DATE:20240105")
    + _vevent("Review", "DTSTART:20240106T010000Z")
    + _vevent("Planning", "DTSTART:20240107T090000")
    + "END:VCALENDAR\r\n"
)


@pytest.fixture
def config():
    """Create an import configuration for testing."""
    return ImportConfig(
        ics_file_id='s3://calendar-exports/export.ics',
        calendar_id='team@example.com',
        batch_size=2,
        sleep_interval=0.5,
        timezone='Asia/Tokyo'
    )


@pytest.fixture
def fetcher():
    """Create a mock fetcher returning the sample ICS file."""
    mock_fetcher = Mock()
    mock_fetcher.fetch_content.return_value = SAMPLE_ICS
    return mock_fetcher


@pytest.fixture
def calendar_store():
    """Create a mock calendar store holding the Standup event."""
    store = Mock()
    store.get_events.return_value = [
        ExistingEvent(title='standup', start=date(2024, 1, 5), is_all_day=True)
    ]
    store.get_calendar_name.return_value = 'Team Calendar'
    return store


@pytest.fixture
def ledger():
    """Create a mock error ledger with no previous failures."""
    mock_ledger = Mock()
    mock_ledger.read_rows.return_value = []
    mock_ledger.export_rows.side_effect = lambda: [list(LEDGER_HEADER)] + mock_ledger.read_rows()
    mock_ledger.clear.return_value = 0
    return mock_ledger


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def importer(config, fetcher, calendar_store, ledger, sleep):
    """Create an IcsImporter with mock collaborators."""
    return IcsImporter(config, fetcher, calendar_store, ledger, sleep=sleep)


class TestRun:
    """Test cases for the full import run."""

    def test_run_creates_only_new_events(self, importer, fetcher, calendar_store, ledger):
        """Test duplicates and existing events are not created."""
        result = importer.run()

        fetcher.fetch_content.assert_called_once_with('s3://calendar-exports/export.ics')
        created_titles = [call.args[0].title for call in calendar_store.create_event.call_args_list]
        assert created_titles == ['Review', 'Planning']
        assert result.parsed == 4
        assert result.unique == 3
        assert result.to_create == 2
        assert result.retried == 0
        assert result.created == 2
        assert result.errors == 0
        assert result.success_rate == 100.0
        ledger.clear.assert_called_once()
        ledger.append.assert_not_called()

    def test_run_appends_ledger_retries(self, importer, calendar_store, ledger):
        """Test previously failed events are retried after fresh ones."""
        ledger.read_rows.return_value = [
            ["Sync", "2024-02-01T10:00:00", "", "FALSE", "", "", "API error"]
        ]

        result = importer.run()

        created_titles = [call.args[0].title for call in calendar_store.create_event.call_args_list]
        assert created_titles == ['Review', 'Planning', 'Sync']
        assert result.retried == 1
        assert result.created == 3

    def test_run_clears_ledger_before_creating(self, importer, calendar_store, ledger):
        """Test the ledger is read, then cleared, before any creation."""
        manager = Mock()
        manager.attach_mock(ledger.read_rows, 'read_rows')
        manager.attach_mock(ledger.clear, 'clear')
        manager.attach_mock(calendar_store.create_event, 'create_event')

        importer.run()

        call_names = [call[0] for call in manager.mock_calls]
        assert call_names.index('read_rows') < call_names.index('clear')
        assert call_names.index('clear') < call_names.index('create_event')

    def test_run_records_failures(self, importer, calendar_store, ledger):
        """Test failed creations are counted and written to the ledger."""
        calendar_store.create_event.side_effect = [None, Exception('API error')]

        result = importer.run()

        assert result.created == 1
        assert result.errors == 1
        assert result.success_rate == 50.0
        assert result.error_messages == ['Planning: API error']
        failed_event, message = ledger.append.call_args.args
        assert failed_event.title == 'Planning'
        assert message == 'API error'

    def test_run_with_empty_file_skips_calendar_query(self, importer, fetcher, calendar_store):
        """Test an empty file queries nothing and creates nothing."""
        fetcher.fetch_content.return_value = "BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n"

        result = importer.run()

        calendar_store.get_events.assert_not_called()
        calendar_store.create_event.assert_not_called()
        assert result.total == 0
        assert result.success_rate is None

    def test_run_propagates_fetch_errors(self, importer, fetcher):
        """Test fetch failures are not swallowed."""
        fetcher.fetch_content.side_effect = Exception('Network error')

        with pytest.raises(Exception, match='Network error'):
            importer.run()


class TestProcessEventsInBatches:
    """Test cases for batched creation."""

    def _events(self, count):
        return [
            EventRecord(title=f'Event {i}', start=datetime(2024, 1, 1, 9, tzinfo=TOKYO))
            for i in range(count)
        ]

    def test_sleeps_between_batches_only(self, importer, sleep):
        """Test sleep runs between batches but not after the last."""
        result = importer.process_events_in_batches(self._events(5))

        assert result.created == 5
        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)

    def test_explicit_batch_size(self, importer, sleep):
        """Test an explicit batch size overrides the configured one."""
        importer.process_events_in_batches(self._events(5), batch_size=3)

        assert sleep.call_count == 1
        assert importer.config.batch_size == 2

    def test_invalid_batch_size_leaves_ledger_untouched(self, importer, ledger, calendar_store):
        """Test a batch size below 1 is rejected before the ledger is cleared."""
        with pytest.raises(ValueError, match="batch_size"):
            importer.process_events_in_batches(self._events(2), batch_size=0)

        ledger.clear.assert_not_called()
        calendar_store.create_event.assert_not_called()

    def test_ledger_write_failure_is_logged(self, importer, calendar_store, ledger, caplog):
        """Test a failing ledger write does not abort the batch."""
        calendar_store.create_event.side_effect = Exception('API error')
        ledger.append.side_effect = Exception('ledger down')

        with caplog.at_level(logging.ERROR):
            result = importer.process_events_in_batches(self._events(2))

        assert result.errors == 2
        assert any('Failed to record error' in record.message for record in caplog.records)


class TestDiagnostics:
    """Test cases for the diagnostic operations."""

    def test_check_error_ledger(self, importer, ledger):
        """Test ledger entries are listed."""
        ledger.read_rows.return_value = [
            ["Sync", "2024-02-01T10:00:00", "", "FALSE", "", "", "API error"]
        ]

        report = importer.check_error_ledger()

        assert report == {
            'total': 1,
            'entries': [
                {'row': 1, 'title': 'Sync', 'start': '2024-02-01T10:00:00', 'error': 'API error'}
            ],
            'table': [
                LEDGER_HEADER,
                ["Sync", "2024-02-01T10:00:00", "", "FALSE", "", "", "API error"]
            ]
        }

    def test_clear_error_ledger(self, importer, ledger):
        """Test clearing reports the removed count."""
        ledger.clear.return_value = 3

        assert importer.clear_error_ledger() == {'cleared': 3}

    def test_check_events_in_date_range(self, importer, calendar_store):
        """Test calendar events are grouped by local day."""
        calendar_store.get_events.return_value = [
            ExistingEvent(title='Review', start=datetime(2024, 1, 6, 10, tzinfo=TOKYO)),
            ExistingEvent(title='Standup', start=date(2024, 1, 5), is_all_day=True),
        ]

        report = importer.check_events_in_date_range('2024-01-05', '2024-01-07')

        assert report['total'] == 2
        assert list(report['events_by_date']) == ['2024-01-05', '2024-01-06']
        assert report['events_by_date']['2024-01-05'] == [{'title': 'Standup', 'all_day': True}]
        start, end = calendar_store.get_events.call_args.args
        assert start == datetime(2024, 1, 5, tzinfo=TOKYO)
        assert end == datetime(2024, 1, 7, tzinfo=TOKYO)

    def test_check_ics_file_content(self, importer):
        """Test the file summary groups events and counts duplicates."""
        report = importer.check_ics_file_content()

        assert report['total'] == 4
        assert report['duplicates'] == 1
        assert list(report['events_by_date']) == ['2024-01-05', '2024-01-06', '2024-01-07']
        assert report['events_by_date']['2024-01-05'] == [
            {'title': 'Standup', 'all_day': True},
            {'title': 'Standup', 'all_day': True},
        ]

    def test_check_configuration_reports_access(self, importer, fetcher):
        """Test configuration check reports file and calendar access."""
        fetcher.fetch_content.side_effect = Exception('Access denied')

        report = importer.check_configuration()

        assert report['calendar_id'] == 'team@example.com'
        assert report['batch_size'] == 2
        assert report['ics_file'] == 'error: Access denied'
        assert report['calendar'] == 'ok (Team Calendar)'

    def test_show_statistics(self, importer, ledger, calendar_store):
        """Test statistics report without creating events."""
        ledger.read_rows.return_value = [
            ["Sync", "2024-02-01T10:00:00", "", "FALSE", "", "", "API error"]
        ]

        stats = importer.show_statistics()

        assert stats == {
            'total_events': 4,
            'unique_events': 3,
            'duplicates': 1,
            'existing_events': 1,
            'events_to_create': 2,
            'pending_retries': 1,
            'total_to_process': 3,
            'estimated_seconds': 1
        }
        calendar_store.create_event.assert_not_called()
        ledger.clear.assert_not_called()

    def test_show_statistics_logs_counts(self, importer, caplog):
        """Test the statistics are written into the log message."""
        with caplog.at_level(logging.INFO, logger='processor.importer'):
            importer.show_statistics()

        messages = [record.message for record in caplog.records]
        assert any(
            '4 events in file, 3 unique, 1 duplicates' in msg and '2 to create' in msg
            for msg in messages
        )
        assert any('Estimated time for 2 events: 1 seconds' in msg for msg in messages)

    def test_test_import_limits_events(self, importer, fetcher, calendar_store, ledger, config):
        """Test the trial import uses only the first events and no retries."""
        many = "".join(
            _vevent(f"Event {i}", f"DTSTART;VALUE=DATE:202403{i + 10:02d}") for i in range(8)
        )
        fetcher.fetch_content.return_value = many
        calendar_store.get_events.return_value = []

        result = importer.test_import()

        assert result.parsed == 5
        assert result.created == 5
        ledger.read_rows.assert_not_called()
        assert importer.sleep.call_count == 1
        assert config.batch_size == 2

    def test_test_import_nothing_to_create(self, importer, fetcher):
        """Test the trial import with only existing events."""
        fetcher.fetch_content.return_value = _vevent("Standup", "DTSTART;VALUE=DATE:20240105")

        result = importer.test_import()

        assert isinstance(result, ImportResult)
        assert result.created == 0
        assert result.to_create == 0
