from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    write_to_textfile,
)


class PipelineMetrics:
    """
    records pipeline progress in Prometheus metrics. Every
    series is labeled by the storage backend it was read from.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._objects_read: "Counter" = Counter(
            "tallyman_objects_read_total",
            "Total storage objects fully read",
            ["backend"],
            registry=registry,
        )
        self._events_read: "Counter" = Counter(
            "tallyman_events_read_total",
            "Total raw usage events decoded",
            ["backend"],
            registry=registry,
        )
        self._events_skipped: "Counter" = Counter(
            "tallyman_events_skipped_total",
            "Total raw usage events dropped for a non-positive value",
            ["backend"],
            registry=registry,
        )
        self._summary_events: "Counter" = Counter(
            "tallyman_summary_events_written_total",
            "Total summary events written to the report",
            ["backend"],
            registry=registry,
        )
        self._window_duration: "Histogram" = Histogram(
            "tallyman_window_duration_seconds",
            "Duration of processing one aggregation window",
            ["backend"],
            registry=registry,
        )
        self._last_run_success: "Gauge" = Gauge(
            "tallyman_last_run_success_timestamp_seconds",
            "Unix timestamp of the last successful pipeline run",
            ["backend"],
            registry=registry,
        )

    def inc_objects_read(self, backend: "str") -> "None":
        self._objects_read.labels(backend=backend).inc()

    def inc_events_read(self, backend: "str", count: "int" = 1) -> "None":
        self._events_read.labels(backend=backend).inc(count)

    def inc_events_skipped(self, backend: "str", count: "int" = 1) -> "None":
        self._events_skipped.labels(backend=backend).inc(count)

    def inc_summary_events(self, backend: "str", count: "int" = 1) -> "None":
        self._summary_events.labels(backend=backend).inc(count)

    def observe_window_duration(
        self, backend: "str", duration_seconds: "float"
    ) -> "None":
        self._window_duration.labels(backend=backend).observe(duration_seconds)

    def set_last_run_success(self, backend: "str", timestamp: "float") -> "None":
        self._last_run_success.labels(backend=backend).set(timestamp)

    def write_textfile(self, path: "str") -> "None":
        """
        dumps the registry in the text exposition format, for
        node exporter's textfile collector.
        """
        write_to_textfile(path, self._registry)
