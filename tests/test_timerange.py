from datetime import datetime, timedelta, timezone

import pytest

from tallyman.errors import (
    ConfigurationError,
    InvalidTimeRangeError,
    IteratorExhaustedError,
    RangeTooShortError,
    WindowTooShortError,
)
from tallyman.models import TimeRange
from tallyman.timerange import (
    HOUR,
    WindowIterator,
    format_rfc3339,
    parse_rfc3339,
    truncate_hour,
)


def _utc(*args: "int") -> "datetime":
    return datetime(*args, tzinfo=timezone.utc)


class TestTimeRange:
    def test_rejects_empty_range(self) -> "None":
        with pytest.raises(InvalidTimeRangeError):
            TimeRange(start=_utc(2024, 1, 1), end=_utc(2024, 1, 1))

    def test_rejects_reversed_range(self) -> "None":
        with pytest.raises(InvalidTimeRangeError):
            TimeRange(start=_utc(2024, 1, 2), end=_utc(2024, 1, 1))

    def test_rejects_naive_timestamps(self) -> "None":
        with pytest.raises(InvalidTimeRangeError):
            TimeRange(start=datetime(2024, 1, 1), end=datetime(2024, 1, 2))

    def test_duration(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1), end=_utc(2024, 1, 2))
        assert tr.duration == timedelta(days=1)


class TestTruncateHour:
    def test_floors_to_hour(self) -> "None":
        assert truncate_hour(_utc(2024, 1, 1, 10, 59, 59)) == _utc(2024, 1, 1, 10)

    def test_converts_to_utc(self) -> "None":
        plus_two = timezone(timedelta(hours=2))
        t = datetime(2024, 1, 1, 1, 30, tzinfo=plus_two)
        assert truncate_hour(t) == _utc(2023, 12, 31, 23)


class TestRFC3339:
    def test_format_uses_z_suffix(self) -> "None":
        assert format_rfc3339(_utc(2024, 1, 1, 10)) == "2024-01-01T10:00:00Z"

    def test_parse_z_suffix(self) -> "None":
        assert parse_rfc3339("2024-01-01T10:00:00Z") == _utc(2024, 1, 1, 10)

    def test_parse_offset(self) -> "None":
        assert parse_rfc3339("2024-01-01T12:00:00+02:00") == _utc(2024, 1, 1, 10)

    def test_parse_nanoseconds(self) -> "None":
        t = parse_rfc3339("2024-01-01T10:00:00.123456789Z")
        assert t == _utc(2024, 1, 1, 10, 0, 0, 123456)


class TestWindowIterator:
    def test_hour_windows_over_three_hours(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 13))
        windows = list(WindowIterator(tr, HOUR))

        assert windows == [
            TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 11)),
            TimeRange(start=_utc(2024, 1, 1, 11), end=_utc(2024, 1, 1, 12)),
            TimeRange(start=_utc(2024, 1, 1, 12), end=_utc(2024, 1, 1, 13)),
        ]

    def test_more_and_next(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 12))
        it = WindowIterator(tr, HOUR)

        assert it.more() is True
        assert it.next().start == _utc(2024, 1, 1, 10)
        assert it.more() is True
        assert it.next().end == _utc(2024, 1, 1, 12)
        assert it.more() is False

    def test_next_after_exhaustion_raises(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 11))
        it = WindowIterator(tr, HOUR)
        it.next()

        with pytest.raises(IteratorExhaustedError):
            it.next()

    def test_windows_are_contiguous_and_cover_range(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 0), end=_utc(2024, 1, 3, 5))
        windows = list(WindowIterator(tr, timedelta(hours=7)))

        assert windows[0].start == tr.start
        assert windows[-1].end == tr.end
        for prev, cur in zip(windows, windows[1:]):
            assert prev.end == cur.start
        for w in windows[:-1]:
            assert w.duration == timedelta(hours=7)

    def test_last_window_is_clipped(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 0), end=_utc(2024, 1, 1, 5))
        windows = list(WindowIterator(tr, timedelta(hours=2)))

        assert [w.duration for w in windows] == [
            timedelta(hours=2),
            timedelta(hours=2),
            timedelta(hours=1),
        ]

    def test_window_is_floored_to_hour(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 0), end=_utc(2024, 1, 1, 5))
        it = WindowIterator(tr, timedelta(hours=2, minutes=45))
        assert it.window == timedelta(hours=2)

    def test_range_endpoints_are_truncated(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 10, 30), end=_utc(2024, 1, 1, 12, 15))
        windows = list(WindowIterator(tr, HOUR))

        assert windows[0].start == _utc(2024, 1, 1, 10)
        assert windows[-1].end == _utc(2024, 1, 1, 12)

    def test_window_shorter_than_an_hour(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 12))
        with pytest.raises(WindowTooShortError):
            WindowIterator(tr, timedelta(minutes=59))

    def test_range_shorter_than_an_hour(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 10, 59))
        with pytest.raises(RangeTooShortError):
            WindowIterator(tr, HOUR)

    def test_range_length_is_checked_after_truncation(self) -> "None":
        # twenty minutes straddling an hour boundary floor to a full hour
        tr = TimeRange(start=_utc(2024, 1, 1, 10, 50), end=_utc(2024, 1, 1, 11, 10))
        windows = list(WindowIterator(tr, HOUR))

        assert windows == [
            TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 11)),
        ]

    def test_construction_errors_are_configuration_errors(self) -> "None":
        tr = TimeRange(start=_utc(2024, 1, 1, 10), end=_utc(2024, 1, 1, 12))
        with pytest.raises(ConfigurationError):
            WindowIterator(tr, timedelta(seconds=1))
