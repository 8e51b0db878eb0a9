"""Tokenizer for Canvas ICS calendar feeds."""
import logging
from typing import Iterator, List, Optional, Union

from icalendar.prop import vText

from processor.errors import ParseError
from processor.models import RawCalendarEvent

logger = logging.getLogger(__name__)


def unescape_text(value: str) -> str:
    """Undo ICS TEXT escaping (``\\n``, ``\\,``, ``\\;``, ``\\\\``)."""
    return str(vText.from_ical(value))


class IcsTokenizer:
    """Split an ICS document into raw VEVENT records.

    Only the properties the importer needs are kept. Property parameters are
    dropped entirely and the value is whatever follows the first colon, which
    makes Canvas' duplicated ``VALUE=DATE`` parameter harmless.
    """

    TEXT_PROPERTIES = {
        'SUMMARY': 'summary',
        'DESCRIPTION': 'description',
        'LOCATION': 'location'
    }
    RAW_PROPERTIES = {
        'UID': 'uid',
        'DTSTART': 'start',
        'DTEND': 'end'
    }

    def parse(self, text: Union[str, bytes]) -> List[RawCalendarEvent]:
        """
        Parse ICS text into RawCalendarEvent objects.

        Args:
            text: ICS document as str, or UTF-8 bytes

        Returns:
            Events in document order; empty when the feed has no VEVENT blocks

        Raises:
            ParseError: If the input cannot be read as ICS text
        """
        if isinstance(text, bytes):
            try:
                text = text.decode('utf-8-sig')
            except UnicodeDecodeError as e:
                raise ParseError(f"ICS data is not valid UTF-8: {e}") from e

        if not isinstance(text, str):
            raise ParseError(f"ICS data must be text, got {type(text).__name__}")

        try:
            events = self._parse_lines(self._unfold(text))
        except Exception as e:
            logger.error(f"Unexpected error tokenizing ICS data: {e}", exc_info=True)
            raise ParseError(f"ICS parsing failed: {e}") from e

        if not events:
            self._log_empty_feed(text)
        else:
            logger.info(f"Parsed {len(events)} events from ICS data")

        return events

    def _unfold(self, text: str) -> Iterator[str]:
        """Yield logical lines, joining folded continuation lines."""
        lines = text.replace('\r\n', '\n').replace('\r', '\n').split('\n')
        current = None

        for line in lines:
            if line[:1] in (' ', '\t') and current is not None:
                # Drop the single fold character, keep the rest verbatim
                current += line[1:]
                continue
            if current is not None:
                yield current
            current = line

        if current is not None:
            yield current

    def _parse_lines(self, lines: Iterator[str]) -> List[RawCalendarEvent]:
        events = []
        current: Optional[RawCalendarEvent] = None
        nested_depth = 0

        for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue

            upper = line.upper()
            if upper == 'BEGIN:VEVENT':
                if current is not None:
                    logger.warning("VEVENT opened before previous one closed; discarding the open event")
                current = RawCalendarEvent()
                nested_depth = 0
                continue

            if current is None:
                continue

            if upper == 'END:VEVENT':
                events.append(current)
                current = None
                continue

            # Sub-components such as VALARM carry their own DESCRIPTION etc.
            if upper.startswith('BEGIN:'):
                nested_depth += 1
                continue
            if upper.startswith('END:'):
                nested_depth = max(nested_depth - 1, 0)
                continue
            if nested_depth:
                continue

            self._apply_property(current, line)

        if current is not None:
            logger.warning("ICS data ended inside a VEVENT; dropping the unterminated event")

        return events

    def _apply_property(self, event: RawCalendarEvent, line: str) -> None:
        colon = line.find(':')
        if colon <= 0:
            return

        key_part = line[:colon]
        value = line[colon + 1:]
        name = key_part.split(';', 1)[0].strip().upper()

        if name in self.TEXT_PROPERTIES:
            setattr(event, self.TEXT_PROPERTIES[name], unescape_text(value))
        elif name in self.RAW_PROPERTIES:
            if ';' in key_part and key_part.upper().count('VALUE=') > 1:
                logger.debug(f"Ignoring malformed parameters on {name}: {key_part}")
            setattr(event, self.RAW_PROPERTIES[name], value.strip())

    def _log_empty_feed(self, text: str) -> None:
        """Log hints about why a feed produced no events."""
        logger.warning("No events found in ICS data")

        if 'BEGIN:VCALENDAR' not in text and 'BEGIN:VEVENT' not in text:
            logger.warning(f"Data does not look like an ICS file. Content start: {text[:200]!r}")

        vevent_count = text.count('BEGIN:VEVENT')
        if vevent_count:
            logger.warning(
                f"Found {vevent_count} VEVENT blocks but parsed 0 events - possible parsing issue"
            )
