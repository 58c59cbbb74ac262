"""Data models for ICS import processing."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Union

ALL_DAY_DURATION = timedelta(hours=24)
TIMED_DURATION = timedelta(hours=1)


@dataclass(frozen=True)
class EventRecord:
    """Well-formed event extracted from an ICS file or the error ledger."""
    title: str
    start: datetime
    end: Optional[datetime] = None
    is_all_day: bool = False
    description: str = ''
    location: str = ''
    row_index: Optional[int] = None

    def effective_end(self) -> datetime:
        """Return the end, defaulting to 24h (all-day) or 1h (timed) after start."""
        if self.end is not None:
            return self.end
        if self.is_all_day:
            return self.start + ALL_DAY_DURATION
        return self.start + TIMED_DURATION


@dataclass
class EventDraft:
    """Partial event accumulated between BEGIN:VEVENT and END:VEVENT."""
    title: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    is_all_day: bool = False
    description: str = ''
    location: str = ''
    invalid: bool = False

    def is_complete(self) -> bool:
        return bool(self.title) and self.start is not None and not self.invalid

    def build(self) -> EventRecord:
        return EventRecord(
            title=self.title,
            start=self.start,
            end=self.end,
            is_all_day=self.is_all_day,
            description=self.description,
            location=self.location
        )


@dataclass
class ParseResult:
    """Events parsed from ICS content plus parse diagnostics."""
    events: List[EventRecord]
    dropped: int = 0
    nested_begins: int = 0
    decode_errors: int = 0


@dataclass(frozen=True)
class DateWindow:
    """Inclusive query window handed to the calendar store."""
    start: datetime
    end: datetime


@dataclass(frozen=True)
class ExistingEvent:
    """Event already present in the target calendar."""
    title: str
    start: Union[date, datetime]
    is_all_day: bool = False


@dataclass
class ImportResult:
    """Result of an import run."""
    created: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    parsed: int = 0
    unique: int = 0
    to_create: int = 0
    retried: int = 0

    @property
    def total(self) -> int:
        return self.created + self.skipped + self.errors

    @property
    def success_rate(self) -> Optional[float]:
        """Percentage of created events, rounded to one decimal."""
        if self.total == 0:
            return None
        return round(self.created / self.total * 100, 1)
