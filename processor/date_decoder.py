"""Decoder for ICS DATE and DATE-TIME tokens."""
import logging
from datetime import datetime, timezone

from processor.models import CalendarInstant

logger = logging.getLogger(__name__)


class DateDecoder:
    """Decode ICS date tokens such as ``20250115`` or ``20250115T235900Z``.

    Decoding never raises. A malformed token is logged and decoded as the
    current local time with ``is_fallback`` set, so one corrupt event cannot
    abort a whole sync.
    """

    MIN_YEAR = 1900
    MAX_YEAR = 2100

    def decode(self, token: str) -> CalendarInstant:
        """
        Decode an ICS date or date-time token.

        Args:
            token: Raw DTSTART/DTEND value

        Returns:
            CalendarInstant; UTC-aware for tokens ending in ``Z``,
            naive local time otherwise
        """
        clean = (token or '').strip()

        try:
            if 'T' in clean:
                return self._decode_datetime(clean)
            return self._decode_date(clean)
        except ValueError as e:
            logger.warning(f"Invalid ICS date token '{clean}': {e}. Using current time")
            return CalendarInstant(moment=datetime.now(), is_fallback=True)

    def _decode_datetime(self, clean: str) -> CalendarInstant:
        # YYYYMMDDTHHMMSS with optional trailing Z
        if len(clean) < 15 or clean[8] != 'T':
            raise ValueError('date-time token has wrong length')

        year = self._number(clean[0:4])
        month = self._number(clean[4:6])
        day = self._number(clean[6:8])
        hour = self._number(clean[9:11])
        minute = self._number(clean[11:13])
        second = self._number(clean[13:15])
        self._check_year(year)

        if clean.endswith('Z'):
            moment = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
        else:
            moment = datetime(year, month, day, hour, minute, second)

        return CalendarInstant(moment=moment)

    def _decode_date(self, clean: str) -> CalendarInstant:
        if len(clean) != 8:
            raise ValueError('date token must be 8 digits')

        year = self._number(clean[0:4])
        month = self._number(clean[4:6])
        day = self._number(clean[6:8])
        self._check_year(year)

        return CalendarInstant(moment=datetime(year, month, day), is_date_only=True)

    @staticmethod
    def _number(text: str) -> int:
        if not text.isdigit():
            raise ValueError(f"non-numeric field '{text}'")
        return int(text)

    def _check_year(self, year: int) -> None:
        if not self.MIN_YEAR <= year <= self.MAX_YEAR:
            raise ValueError(f"year {year} out of range")
