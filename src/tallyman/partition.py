"""
Storage layout of raw usage events.

Every control plane writes its events under
``account=<account>/date=<YYYY-MM-DD>/hour=<HH>/``, with the date
and hour taken in UTC. The helpers here turn a window into the
keys covering it; the storage backends wrap them in their own
list parameters.
"""

from datetime import datetime

from tallyman.models import TimeRange
from tallyman.timerange import HOUR, format_date_utc, truncate_hour


def partition_prefix(account: "str", t: "datetime") -> "str":
    hour = truncate_hour(t)
    return f"account={account}/date={format_date_utc(hour)}/hour={hour.hour:02d}/"


def hourly_prefixes(account: "str", window: "TimeRange") -> "list[str]":
    """
    returns one prefix per hour crossed by the window, from the
    hour of window.start (inclusive) to the hour of window.end
    (exclusive).
    """
    prefixes: "list[str]" = []
    now = window.start
    while now < window.end:
        prefixes.append(partition_prefix(account, now))
        now += HOUR
    return prefixes


def offset_range(account: "str", window: "TimeRange") -> "tuple[str, str]":
    """
    returns the lexicographic (start, end) key offsets covering
    the window. The end offset is the first key of the hour at
    window.end, which is excluded.
    """
    return partition_prefix(account, window.start), partition_prefix(
        account, window.end
    )
