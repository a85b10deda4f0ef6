import asyncio
import dataclasses
import threading
import time
from contextlib import closing
from datetime import timedelta
from typing import Protocol, Sequence

import structlog

from tallyman.aggregate import MaxValueAggregator, countable
from tallyman.errors import PipelineStoppedError, ReportError, UsageError
from tallyman.metrics import PipelineMetrics
from tallyman.models import MCP, Scope, TimeRange, UsageEvent
from tallyman.provider.base import ObjectSource
from tallyman.reader import EOF, EventReader
from tallyman.timerange import HOUR, WindowIterator, format_rfc3339

logger = structlog.get_logger()

# number of objects read concurrently within a window
CONCURRENCY = 10


class EventWriter(Protocol):
    def write(self, event: "UsageEvent") -> "None": ...


class WindowReaders(Protocol):
    """
    a window iterator that hands out a reader for every window,
    such as provider.base.WindowReaderIterator.
    """

    def more(self) -> "bool": ...

    def next(self) -> "tuple[EventReader, TimeRange]": ...


def _sort_key(event: "UsageEvent") -> "tuple":
    return (
        event.name,
        event.tags.account,
        event.tags.scope_id,
        event.tags.resource_group,
        event.tags.resource_version,
        event.tags.resource_kind,
        event.value,
    )


def _stamp(events: "Sequence[UsageEvent]", window: "TimeRange") -> "list[UsageEvent]":
    """
    sorts summary events for a stable output and stamps them
    with the bounds of their window.
    """
    return [
        dataclasses.replace(e, timestamp=window.start, timestamp_end=window.end)
        for e in sorted(events, key=_sort_key)
    ]


def _write(writer: "EventWriter", event: "UsageEvent") -> "None":
    try:
        writer.write(event)
    except UsageError:
        raise
    except Exception as exc:
        raise ReportError(f"error writing events: {exc}") from exc


def aggregate_windows(
    windows: "WindowReaders",
    writer: "EventWriter",
    scope: "Scope" = MCP,
) -> "int":
    """
    reads every window one event at a time and writes its
    summary events. This is the backend-agnostic path behind the
    sequential export: it needs nothing but a reader per window,
    so at most one object is open at a time. Returns the number
    of summary events written.
    """
    written = 0
    while windows.more():
        reader, window = windows.next()

        aggregator = MaxValueAggregator(scope)
        with closing(reader):
            while (event := reader.read()) is not EOF:
                if countable(event):
                    aggregator.add(event)

        for event in _stamp(aggregator.summary_events(), window):
            _write(writer, event)
            written += 1

        logger.debug(
            "window_aggregated",
            window_start=format_rfc3339(window.start),
            window_end=format_rfc3339(window.end),
            keys=len(aggregator),
        )
    return written


class Pipeline:
    """
    Pipeline aggregates the usage events of a time range window
    by window and hands the summaries to a writer.

    For each window it lists the matching objects, reads them
    concurrently (at most `concurrency` open at once) while
    folding their events into a single aggregator, then writes one
    summary event per key. Windows are processed strictly in
    order. The first failure aborts the run.
    """

    def __init__(
        self,
        source: "ObjectSource",
        writer: "EventWriter",
        scope: "Scope" = MCP,
        concurrency: "int" = CONCURRENCY,
        metrics: "PipelineMetrics | None" = None,
    ) -> "None":
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._source = source
        self._writer = writer
        self._scope = scope
        self._concurrency = concurrency
        self._metrics = metrics
        self._stop_event: "threading.Event" = threading.Event()

    def stop(self) -> "None":
        """
        signals the pipeline to abort. In-flight objects stop at
        their next event and run() raises PipelineStoppedError.
        """
        self._stop_event.set()

    async def run(
        self,
        time_range: "TimeRange",
        window: "timedelta" = HOUR,
    ) -> "int":
        """
        processes every window of the time range. Returns the
        number of summary events written.
        """
        windows = WindowIterator(time_range, window)
        written = 0

        try:
            while windows.more():
                if self._stop_event.is_set():
                    raise PipelineStoppedError("pipeline stopped")
                written += await self._process_window(windows.next())
        except asyncio.CancelledError:
            self._stop_event.set()
            raise

        if self._metrics is not None:
            self._metrics.set_last_run_success(self._source.name, time.time())
        logger.info("pipeline_done", backend=self._source.name, events=written)
        return written

    async def _process_window(self, window: "TimeRange") -> "int":
        started = time.monotonic()
        log = logger.bind(
            backend=self._source.name,
            window_start=format_rfc3339(window.start),
            window_end=format_rfc3339(window.end),
        )

        readers = await asyncio.to_thread(self._source.list_objects, window)
        log.debug("window_listed", objects=len(readers))

        aggregator = MaxValueAggregator(self._scope)
        lock = threading.Lock()
        cancel = threading.Event()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def fetch(reader: "EventReader") -> "None":
            async with semaphore:
                await asyncio.to_thread(
                    self._read_object, reader, aggregator, lock, cancel
                )

        tasks = [asyncio.create_task(fetch(r)) for r in readers]
        try:
            await _wait_first_error(tasks)
        except BaseException:
            # workers stop at their next event; wait so every reader is closed
            cancel.set()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        summaries = _stamp(aggregator.summary_events(), window)
        for event in summaries:
            _write(self._writer, event)

        duration = time.monotonic() - started
        if self._metrics is not None:
            self._metrics.inc_summary_events(self._source.name, len(summaries))
            self._metrics.observe_window_duration(self._source.name, duration)

        log.info(
            "window_done",
            objects=len(readers),
            summaries=len(summaries),
            duration_seconds=round(duration, 3),
        )
        return len(summaries)

    def _read_object(
        self,
        reader: "EventReader",
        aggregator: "MaxValueAggregator",
        lock: "threading.Lock",
        cancel: "threading.Event",
    ) -> "None":
        """
        drains one object into the aggregator. Runs in a worker
        thread; the lock is held only while adding an event.
        """
        read = 0
        skipped = 0

        with closing(reader):
            while True:
                if cancel.is_set() or self._stop_event.is_set():
                    raise PipelineStoppedError("pipeline stopped")

                event = reader.read()
                if event is EOF:
                    break

                read += 1
                if not countable(event):
                    skipped += 1
                    continue

                with lock:
                    aggregator.add(event)

        if self._metrics is not None:
            backend = self._source.name
            self._metrics.inc_objects_read(backend)
            self._metrics.inc_events_read(backend, read)
            self._metrics.inc_events_skipped(backend, skipped)


async def _wait_first_error(tasks: "list[asyncio.Task]") -> "None":
    """
    waits for every task to finish, raising the error of the
    first failed one as soon as it fails.
    """
    if not tasks:
        return

    done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
