"""Import configuration loaded from environment variables."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class ImportConfig:
    """Settings for a single import run."""
    ics_file_id: str
    calendar_id: str
    ledger_table_name: str = 'ics-import-errors'
    ledger_name: str = 'ICS_Import_Errors'
    batch_size: int = 10
    sleep_interval: float = 1.0
    timezone: str = 'UTC'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    credentials_file: str = 'credentials.json'
    test_event_limit: int = 5
    test_batch_size: int = 3

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.test_batch_size < 1:
            raise ValueError(f"test_batch_size must be at least 1, got {self.test_batch_size}")
        if self.sleep_interval < 0:
            raise ValueError(f"sleep_interval must not be negative, got {self.sleep_interval}")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ImportConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            ImportConfig instance

        Raises:
            ValueError: If a numeric setting is not an integer or is out of range
        """
        env = os.environ if environ is None else environ
        return cls(
            ics_file_id=env.get('ICS_FILE_ID', ''),
            calendar_id=env.get('CALENDAR_ID', 'primary'),
            ledger_table_name=env.get('LEDGER_TABLE_NAME', 'ics-import-errors'),
            ledger_name=env.get('ERROR_LEDGER_NAME', 'ICS_Import_Errors'),
            batch_size=int(env.get('BATCH_SIZE', '10')),
            sleep_interval=int(env.get('SLEEP_INTERVAL_MS', '1000')) / 1000,
            timezone=env.get('TIMEZONE', 'UTC'),
            log_level=env.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
            credentials_file=env.get('GOOGLE_CREDENTIALS_FILE', 'credentials.json')
        )
