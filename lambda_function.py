"""AWS Lambda handler for ICS Calendar Import."""
import json
import logging
import time
from typing import Dict, Any

from fetcher.ics_fetcher import IcsFetcher
from processor.config import ImportConfig
from processor.importer import IcsImporter
from storage.error_ledger import ErrorLedger
from storage.google_calendar import GoogleCalendarStore


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

        return json.dumps(log_data, ensure_ascii=False)


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


def _import_summary(result) -> Dict[str, Any]:
    return {
        'events_parsed': result.parsed,
        'unique_events': result.unique,
        'events_to_create': result.to_create,
        'retried_events': result.retried,
        'events_created': result.created,
        'events_skipped': result.skipped,
        'events_failed': result.errors,
        'success_rate': result.success_rate
    }


def _run_action(importer: IcsImporter, action: str, event: Dict[str, Any]) -> Dict[str, Any]:
    if action == 'import':
        result = importer.run()
        return {'statistics': _import_summary(result), 'errors': result.error_messages}
    if action == 'test_import':
        result = importer.test_import()
        return {'statistics': _import_summary(result), 'errors': result.error_messages}
    if action == 'check_error_ledger':
        return importer.check_error_ledger()
    if action == 'clear_error_ledger':
        return importer.clear_error_ledger()
    if action == 'check_events_in_date_range':
        return importer.check_events_in_date_range(event['start'], event['end'])
    if action == 'check_ics_file_content':
        return importer.check_ics_file_content()
    if action == 'check_configuration':
        return importer.check_configuration()
    if action == 'show_statistics':
        return importer.show_statistics()
    raise ValueError(f"Unknown action: {action}")


SUPPORTED_ACTIONS = (
    'import', 'test_import', 'check_error_ledger', 'clear_error_ledger',
    'check_events_in_date_range', 'check_ics_file_content',
    'check_configuration', 'show_statistics'
)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for ICS Calendar Import.

    Args:
        event: Invocation payload; "action" selects the operation
            (default: "import")
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    config = ImportConfig.from_env()
    action = (event or {}).get('action', 'import')

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        f"Lambda execution started: {action}",
        extra={
            'action': action,
            'ics_file_id': config.ics_file_id,
            'calendar_id': config.calendar_id
        }
    )

    if action not in SUPPORTED_ACTIONS:
        logger.error(f"Unknown action requested: {action}")
        return {
            'statusCode': 400,
            'body': json.dumps({
                'message': f"Unknown action: {action}",
                'supported_actions': list(SUPPORTED_ACTIONS)
            })
        }

    try:
        fetcher = IcsFetcher(timeout=config.timeout_seconds)
        calendar_store = GoogleCalendarStore.from_service_account_file(
            config.calendar_id, config.credentials_file
        )
        ledger = ErrorLedger(
            table_name=config.ledger_table_name,
            ledger_name=config.ledger_name
        )
        ledger.ensure_table()
        importer = IcsImporter(config, fetcher, calendar_store, ledger)

        try:
            data = _run_action(importer, action, event or {})
        except KeyError as e:
            logger.error(f"Missing parameter for {action}: {e}")
            return {
                'statusCode': 400,
                'body': json.dumps({
                    'message': f"Missing parameter for {action}",
                    'error': str(e)
                })
            }

        duration = time.time() - start_time
        logger.info(
            f"Lambda execution completed successfully",
            extra={'action': action, 'duration_seconds': round(duration, 2)}
        )

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': f"{action} completed successfully",
                'result': data,
                'duration_seconds': round(duration, 2)
            }, ensure_ascii=False)
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': f"{action} failed",
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }
