from typing import NamedTuple

from tallyman.errors import ValidationError
from tallyman.models import MCP, RAW_EVENT_NAME, EventTags, Scope, UsageEvent


class AggregationKey(NamedTuple):
    scope_id: "str"
    resource_group: "str"
    resource_version: "str"
    resource_kind: "str"


def countable(event: "UsageEvent") -> "bool":
    """
    reports whether an event may be folded into an aggregate.
    Events with a zero or negative value are placeholders and
    are dropped before they reach an aggregator; this is the only
    place the pipeline applies that rule.
    """
    return event.value > 0


class MaxValueAggregator:
    """
    MaxValueAggregator keeps, for every (scope, group, version,
    kind) key, the largest value observed among the raw events
    added to it.

    One aggregator covers exactly one window. It is not
    thread-safe: concurrent callers must serialize add().
    """

    def __init__(self, scope: "Scope" = MCP) -> "None":
        self._scope = scope
        self._values: "dict[AggregationKey, float]" = {}

    def __len__(self) -> "int":
        return len(self._values)

    def add(self, event: "UsageEvent") -> "None":
        self._validate(event)

        key = AggregationKey(
            scope_id=event.tags.scope_id,
            resource_group=event.tags.resource_group,
            resource_version=event.tags.resource_version,
            resource_kind=event.tags.resource_kind,
        )
        current = self._values.get(key)
        if current is None or event.value > current:
            self._values[key] = event.value

    def summary_events(self) -> "list[UsageEvent]":
        """
        returns one summary event per key, in no particular order.
        Timestamps are left for the caller to stamp.
        """
        return [
            UsageEvent(
                name=self._scope.summary_event_name,
                tags=EventTags(
                    scope_id=key.scope_id,
                    resource_group=key.resource_group,
                    resource_version=key.resource_version,
                    resource_kind=key.resource_kind,
                ),
                value=value,
            )
            for key, value in self._values.items()
        ]

    def _validate(self, event: "UsageEvent") -> "None":
        if event.name != RAW_EVENT_NAME:
            raise ValidationError(
                f"expected event name {RAW_EVENT_NAME}, got {event.name}"
            )
        if not event.tags.scope_id:
            raise ValidationError(f"{self._scope.tag_field} tag is empty")
        if not event.tags.resource_group:
            raise ValidationError("group tag is empty")
        if not event.tags.resource_version:
            raise ValidationError("version tag is empty")
        if not event.tags.resource_kind:
            raise ValidationError("kind tag is empty")
