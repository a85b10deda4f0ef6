import re
from datetime import datetime, timedelta, timezone

from tallyman.errors import (
    IteratorExhaustedError,
    RangeTooShortError,
    WindowTooShortError,
)
from tallyman.models import TimeRange

HOUR = timedelta(hours=1)

# fractional seconds beyond microseconds are dropped before parsing
_FRACTION = re.compile(r"(\.\d{6})\d+")


def truncate_hour(t: "datetime") -> "datetime":
    """
    floors a timestamp to the start of its UTC hour.
    """
    return t.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def format_date_utc(t: "datetime") -> "str":
    return t.astimezone(timezone.utc).strftime("%Y-%m-%d")


def format_rfc3339(t: "datetime") -> "str":
    return t.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_rfc3339(value: "str") -> "datetime":
    t = datetime.fromisoformat(_FRACTION.sub(r"\1", value))
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


class WindowIterator:
    """
    WindowIterator splits a time range into consecutive,
    hour-aligned windows of a fixed size.

    The range endpoints and the window size are floored to the
    hour before iterating. The last window is clipped to the end
    of the range, so it may be shorter than the others.
    """

    def __init__(self, time_range: "TimeRange", window: "timedelta") -> "None":
        if window < HOUR:
            raise WindowTooShortError("window must be 1h or greater")

        start = truncate_hour(time_range.start)
        end = truncate_hour(time_range.end)
        if end - start < HOUR:
            raise RangeTooShortError("time range must be at least 1h")

        self._window: "timedelta" = HOUR * (window // HOUR)
        self._cursor: "datetime" = start
        self._end: "datetime" = end

    @property
    def window(self) -> "timedelta":
        return self._window

    def more(self) -> "bool":
        return self._cursor < self._end

    def next(self) -> "TimeRange":
        if not self.more():
            raise IteratorExhaustedError("iterator is done")

        start = self._cursor
        end = min(start + self._window, self._end)
        self._cursor = end
        return TimeRange(start=start, end=end)

    def __iter__(self) -> "WindowIterator":
        return self

    def __next__(self) -> "TimeRange":
        if not self.more():
            raise StopIteration
        return self.next()
