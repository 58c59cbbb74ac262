"""ICS content parser: line unfolding, date decoding and VEVENT extraction."""
import logging
import re
from datetime import datetime, timezone, tzinfo
from typing import Iterator, List

from processor.models import EventDraft, EventRecord, ParseResult

logger = logging.getLogger(__name__)

BEGIN_EVENT = 'BEGIN:VEVENT'
END_EVENT = 'END:VEVENT'

_LINE_BREAK = re.compile(r'\r?\n')
_CONTINUATION_CHARS = (' ', '\t')


class DecodeError(ValueError):
    """Raised when an ICS date or date-time token cannot be decoded."""


def unfold_lines(content: str) -> Iterator[str]:
    """
    Yield logical lines from raw ICS content.

    Lines starting with a space or tab continue the previous line; the
    leading whitespace character is dropped and the rest is appended.

    Args:
        content: Raw ICS text

    Yields:
        Complete logical lines in their original order
    """
    lines = iter(_LINE_BREAK.split(content))
    current = next(lines, None)
    if current is None:
        return

    for line in lines:
        if line.startswith(_CONTINUATION_CHARS):
            current += line[1:]
        else:
            yield current
            current = line

    yield current


def _numeric_field(token: str, start: int, end: int) -> int:
    value = token[start:end]
    if len(value) != end - start or not value.isdigit():
        raise DecodeError(f"Invalid numeric field {value!r} in {token!r}")
    return int(value)


def decode_date(token: str, tz: tzinfo) -> datetime:
    """
    Decode a YYYYMMDD token into local midnight of that day.

    Args:
        token: Date token such as "20240105"
        tz: Local timezone

    Returns:
        Timezone-aware datetime at 00:00 local time

    Raises:
        DecodeError: If the token is not a valid date
    """
    token = token.strip()
    if len(token) != 8:
        raise DecodeError(f"Invalid date token: {token!r}")

    year = _numeric_field(token, 0, 4)
    month = _numeric_field(token, 4, 6)
    day = _numeric_field(token, 6, 8)

    try:
        return datetime(year, month, day, tzinfo=tz)
    except ValueError as e:
        raise DecodeError(f"Invalid date token {token!r}: {e}") from e


def decode_datetime(token: str, tz: tzinfo) -> datetime:
    """
    Decode a YYYYMMDDTHHMMSS[Z] token.

    A trailing "Z" marks the value as UTC; it is converted to the local
    timezone. Without it the fields are local wall-clock time.

    Args:
        token: Date-time token such as "20240105T093000Z"
        tz: Local timezone

    Returns:
        Timezone-aware datetime in the local timezone

    Raises:
        DecodeError: If the token is malformed or out of range
    """
    token = token.strip()
    is_utc = token.endswith('Z')
    date_part, separator, time_part = token.partition('T')
    if not separator:
        raise DecodeError(f"Missing 'T' separator in date-time token: {token!r}")

    if is_utc:
        time_part = time_part[:-1]
    if len(date_part) != 8 or len(time_part) != 6:
        raise DecodeError(f"Invalid date-time token: {token!r}")

    fields = (
        _numeric_field(date_part, 0, 4),
        _numeric_field(date_part, 4, 6),
        _numeric_field(date_part, 6, 8),
        _numeric_field(time_part, 0, 2),
        _numeric_field(time_part, 2, 4),
        _numeric_field(time_part, 4, 6),
    )

    try:
        if is_utc:
            return datetime(*fields, tzinfo=timezone.utc).astimezone(tz)
        return datetime(*fields, tzinfo=tz)
    except ValueError as e:
        raise DecodeError(f"Invalid date-time token {token!r}: {e}") from e


class IcsParser:
    """Parser turning ICS content into EventRecord objects."""

    def __init__(self, tz: tzinfo):
        """
        Initialize the parser.

        Args:
            tz: Timezone used for local (non-UTC) date and date-time values
        """
        self.tz = tz

    def parse(self, content: str) -> ParseResult:
        """
        Parse VEVENT blocks from ICS content.

        Blocks without a title or start are dropped. A BEGIN:VEVENT inside
        an open block discards the partial event and starts a new one.

        Args:
            content: Raw ICS text

        Returns:
            ParseResult with events in file order and drop counters
        """
        result = ParseResult(events=[])
        draft = None

        for line in unfold_lines(content):
            marker = line.strip()

            if marker == BEGIN_EVENT:
                if draft is not None:
                    result.nested_begins += 1
                draft = EventDraft()
            elif marker == END_EVENT:
                if draft is None:
                    continue
                if draft.is_complete():
                    result.events.append(draft.build())
                else:
                    result.dropped += 1
                draft = None
            elif draft is not None:
                try:
                    self._apply_property(line, draft)
                except DecodeError as e:
                    result.decode_errors += 1
                    if line.startswith('DTEND'):
                        logger.warning(f"Ignoring undecodable end of '{draft.title}': {e}")
                        draft.end = None
                    else:
                        logger.debug(f"Discarding event with undecodable date: {e}")
                        draft.invalid = True

        if result.dropped or result.nested_begins:
            logger.debug(
                f"Dropped {result.dropped} incomplete events, "
                f"{result.nested_begins} nested BEGIN:VEVENT lines"
            )
        return result

    def _apply_property(self, line: str, draft: EventDraft) -> None:
        if line.startswith('SUMMARY:'):
            draft.title = line[len('SUMMARY:'):].strip()
        elif line.startswith('DTSTART;VALUE=DATE:'):
            draft.start = decode_date(line[len('DTSTART;VALUE=DATE:'):], self.tz)
            draft.is_all_day = True
        elif line.startswith('DTSTART:'):
            draft.start = decode_datetime(line[len('DTSTART:'):], self.tz)
            draft.is_all_day = False
        elif line.startswith('DTEND;VALUE=DATE:'):
            draft.end = decode_date(line[len('DTEND;VALUE=DATE:'):], self.tz)
        elif line.startswith('DTEND:'):
            draft.end = decode_datetime(line[len('DTEND:'):], self.tz)
        elif line.startswith('DESCRIPTION:'):
            draft.description = line[len('DESCRIPTION:'):]
        elif line.startswith('LOCATION:'):
            draft.location = line[len('LOCATION:'):]


def parse_ics_content(content: str, tz: tzinfo) -> List[EventRecord]:
    """Parse ICS content and return only the well-formed events."""
    return IcsParser(tz).parse(content).events
