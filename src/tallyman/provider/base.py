from datetime import timedelta
from typing import Protocol, Sequence

from tallyman.models import TimeRange
from tallyman.reader import EventReader
from tallyman.timerange import WindowIterator


class ObjectSource(Protocol):
    """
    ObjectSource stands as a common protocol that all storage
    backends must satisfy.

    Sources know how to translate a window into the backend's own
    list parameters. They hand out unopened per-object readers so
    that the pipeline decides how many objects are open at once.
    """

    @property
    def name(self) -> "str": ...

    def list_objects(self, window: "TimeRange") -> "Sequence[EventReader]":
        """
        lists every object covering the window and returns one
        reader per object. Nothing is opened yet.
        """
        ...

    def reader(self, window: "TimeRange") -> "EventReader":
        """
        returns a single reader over every event of the window,
        listing lazily as it is consumed.
        """
        ...


class WindowReaderIterator:
    """
    WindowReaderIterator pairs every window of a time range with
    a reader over the events of that window.
    """

    def __init__(
        self,
        source: "ObjectSource",
        time_range: "TimeRange",
        window: "timedelta",
    ) -> "None":
        self._source = source
        self._windows = WindowIterator(time_range, window)

    def more(self) -> "bool":
        return self._windows.more()

    def next(self) -> "tuple[EventReader, TimeRange]":
        window = self._windows.next()
        return self._source.reader(window), window
