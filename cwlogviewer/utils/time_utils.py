"""
Time utilities module for the CloudWatch log viewer.

CloudWatch Logs timestamps are milliseconds since the Unix epoch, always UTC.
This module converts between them, datetimes and the relative durations
accepted on the command line ("30s", "15m", "2h", "1d").
"""

import re
import time
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional


_DURATION_RE = re.compile(r'^\s*(\d+)\s*([smhdw])\s*$', re.IGNORECASE)
_UNIT_SECONDS = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400, 'w': 604800}
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TimeUtils:
    """
    Utility class for time operations.
    """

    logger = logging.getLogger(__name__)

    @staticmethod
    def now_ms() -> int:
        """Current time in epoch milliseconds."""
        return int(time.time() * 1000)

    @staticmethod
    def to_datetime(timestamp_ms: int) -> datetime:
        """Convert epoch milliseconds to an aware UTC datetime."""
        return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)

    @staticmethod
    def to_epoch_ms(dt: datetime) -> int:
        """
        Convert a datetime to epoch milliseconds.

        Naive datetimes are taken to be UTC.
        """
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return (dt - _EPOCH) // timedelta(milliseconds=1)

    @staticmethod
    def format_iso(timestamp_ms: int) -> str:
        """
        Format epoch milliseconds as ISO-8601 UTC with millisecond precision.

        Example:
            >>> TimeUtils.format_iso(0)
            '1970-01-01T00:00:00.000Z'
        """
        dt = TimeUtils.to_datetime(timestamp_ms)
        return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{timestamp_ms % 1000:03d}Z"

    @staticmethod
    def format_short(timestamp_ms: int) -> str:
        """Compact UTC form for table columns."""
        dt = TimeUtils.to_datetime(timestamp_ms)
        return dt.strftime('%Y-%m-%d %H:%M:%S.') + f"{timestamp_ms % 1000:03d}"

    @staticmethod
    def parse_duration(value: str) -> float:
        """
        Parse a relative duration such as "90s", "15m", "2h", "1d" or "1w".

        Returns:
            Duration in seconds

        Raises:
            ValueError: If the value is not a duration
        """
        match = _DURATION_RE.match(value)
        if not match:
            raise ValueError(f"Invalid duration: {value!r} (expected e.g. 30s, 15m, 2h, 1d)")
        amount, unit = match.groups()
        return int(amount) * _UNIT_SECONDS[unit.lower()]

    @staticmethod
    def parse_since(value: str, now_ms: Optional[int] = None) -> int:
        """
        Resolve a --since value to epoch milliseconds.

        Accepts a relative duration ("1h" means one hour ago) or an ISO-8601
        timestamp ("2024-05-01T12:00:00", "2024-05-01T12:00:00Z").

        Raises:
            ValueError: If the value is neither
        """
        now_ms = TimeUtils.now_ms() if now_ms is None else now_ms
        try:
            return now_ms - int(TimeUtils.parse_duration(value) * 1000)
        except ValueError:
            pass

        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return TimeUtils.to_epoch_ms(datetime.fromisoformat(text))
        except ValueError:
            TimeUtils.logger.debug(f"Could not parse time value: {value}")
            raise ValueError(f"Invalid time: {value!r} (use a duration like 1h or an ISO-8601 timestamp)")
