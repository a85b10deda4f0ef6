from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from tallyman.errors import InvalidTimeRangeError

# name of the raw per-resource events written by the control planes
RAW_EVENT_NAME = "kube_managedresource_uid"


@dataclass(frozen=True, slots=True)
class Scope:
    """
    Scope identifies the tenant-like entity usage is attributed
    to (a managed or a hosted control plane). It decides the
    wire name of the scope tag and the name of the summary
    metric, so one aggregator serves every scope.
    """

    abbrev: "str"

    @property
    def tag_field(self) -> "str":
        return f"{self.abbrev}_id"

    @property
    def summary_event_name(self) -> "str":
        return f"max_resource_count_per_gvk_per_{self.abbrev}"


MCP = Scope("mcp")
MXP = Scope("mxp")

SCOPES: "dict[str, Scope]" = {s.abbrev: s for s in (MCP, MXP)}


@dataclass(frozen=True, slots=True)
class TimeRange:
    """
    TimeRange is a half-open interval [start, end) of UTC
    timestamps.
    """

    start: "datetime"
    end: "datetime"

    def __post_init__(self) -> "None":
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidTimeRangeError("time range must be timezone-aware")
        if self.end <= self.start:
            raise InvalidTimeRangeError("time range must start before it ends")

    @property
    def duration(self) -> "timedelta":
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class EventTags:
    # opaque id of the control plane the event belongs to
    scope_id: "str" = ""
    resource_group: "str" = ""
    resource_version: "str" = ""
    resource_kind: "str" = ""
    account: "str" = ""


@dataclass(frozen=True, slots=True)
class UsageEvent:
    """
    UsageEvent is a single usage data point, either a raw
    event read from storage or a per-window summary.
    """

    name: "str"
    tags: "EventTags" = field(default_factory=EventTags)
    timestamp: "datetime | None" = None
    timestamp_end: "datetime | None" = None
    value: "float" = 0.0


@dataclass(frozen=True, slots=True)
class ReportMeta:
    account: "str"
    time_range: "TimeRange"
    collected_at: "datetime"


def utcnow() -> "datetime":
    return datetime.now(timezone.utc)
