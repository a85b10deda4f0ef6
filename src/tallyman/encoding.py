"""
Streaming JSON codec for usage events.

Usage objects hold a single JSON array of events. The decoder
walks the array one element at a time with ijson so that large
objects are never materialized; the encoder writes the array
incrementally, one element per line.
"""

import json
from datetime import datetime, timezone
from typing import Any, BinaryIO, Iterator

import ijson

from tallyman.errors import DecodeError, ReportError
from tallyman.models import MCP, EventTags, Scope, UsageEvent
from tallyman.timerange import format_rfc3339, parse_rfc3339

# serialized form of a missing timestamp
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TOKEN_TEXT = {
    "start_map": "{",
    "end_map": "}",
    "start_array": "[",
    "end_array": "]",
}


def event_to_dict(event: "UsageEvent", scope: "Scope" = MCP) -> "dict[str, Any]":
    value: "float | int" = event.value
    if float(value).is_integer():
        value = int(value)

    return {
        "name": event.name,
        "tags": {
            scope.tag_field: event.tags.scope_id,
            "customresource_group": event.tags.resource_group,
            "customresource_version": event.tags.resource_version,
            "customresource_kind": event.tags.resource_kind,
            "upbound_account": event.tags.account,
        },
        "timestamp": format_rfc3339(event.timestamp or ZERO_TIME),
        "timestamp_end": format_rfc3339(event.timestamp_end or ZERO_TIME),
        "value": value,
    }


def event_from_dict(data: "Any", scope: "Scope" = MCP) -> "UsageEvent":
    if not isinstance(data, dict):
        raise DecodeError(f"expected JSON object, got {type(data).__name__}")

    tags = data.get("tags") or {}
    if not isinstance(tags, dict):
        raise DecodeError("event tags must be a JSON object")

    value = data.get("value", 0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"event value must be a number, got {value!r}")

    return UsageEvent(
        name=_string(data, "name"),
        tags=EventTags(
            scope_id=_string(tags, scope.tag_field),
            resource_group=_string(tags, "customresource_group"),
            resource_version=_string(tags, "customresource_version"),
            resource_kind=_string(tags, "customresource_kind"),
            account=_string(tags, "upbound_account"),
        ),
        timestamp=_timestamp(data, "timestamp"),
        timestamp_end=_timestamp(data, "timestamp_end"),
        value=float(value),
    )


def _string(data: "dict[str, Any]", key: "str") -> "str":
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"field {key} must be a string, got {value!r}")
    return value


def _timestamp(data: "dict[str, Any]", key: "str") -> "datetime | None":
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodeError(f"field {key} must be an RFC3339 string, got {value!r}")
    try:
        t = parse_rfc3339(value)
    except ValueError as exc:
        raise DecodeError(f"field {key} is not a valid timestamp: {exc}") from exc
    return None if t == ZERO_TIME else t


class EventDecoder:
    """
    EventDecoder reads usage events from a byte stream holding a
    JSON array, one element per decode() call.

    Construction fails with DecodeError unless the first token
    of the stream opens an array.
    """

    def __init__(self, stream: "BinaryIO", scope: "Scope" = MCP) -> "None":
        self._scope = scope
        self._tokens: "Iterator[tuple[str, Any]]" = ijson.basic_parse(
            stream, use_float=True
        )
        self._peeked: "tuple[str, Any] | None" = None

        try:
            kind, value = self._take()
        except DecodeError as exc:
            raise DecodeError(f"reader does not contain valid JSON: {exc}") from exc
        if kind != "start_array":
            raise DecodeError(
                "reader does not contain JSON array. "
                f"expected [, got {_TOKEN_TEXT.get(kind, value)}"
            )

    def _take(self) -> "tuple[str, Any]":
        if self._peeked is not None:
            token, self._peeked = self._peeked, None
            return token
        try:
            return next(self._tokens)
        except StopIteration:
            raise DecodeError("unexpected end of JSON input") from None
        except ijson.JSONError as exc:
            raise DecodeError(str(exc)) from exc

    def more(self) -> "bool":
        """
        reports whether another array element is available. A
        stream that fails to parse reports True so that the
        failure surfaces from decode().
        """
        if self._peeked is None:
            try:
                self._peeked = self._take()
            except DecodeError:
                return True
        return self._peeked[0] != "end_array"

    def decode(self) -> "UsageEvent":
        try:
            kind, value = self._take()
            if kind == "end_array":
                raise DecodeError("no more elements in JSON array")

            builder = ijson.ObjectBuilder()
            depth = 0
            while True:
                builder.event(kind, value)
                if kind in ("start_map", "start_array"):
                    depth += 1
                elif kind in ("end_map", "end_array"):
                    depth -= 1
                if depth == 0:
                    break
                kind, value = self._take()

            return event_from_dict(builder.value, self._scope)

        except DecodeError as exc:
            raise DecodeError(f"error decoding next event: {exc}") from exc


class EventEncoder:
    """
    EventEncoder writes usage events to a byte stream as a JSON
    array. The opening bracket is written on construction and
    the closing one by close(), which must be called exactly
    once.
    """

    def __init__(self, stream: "BinaryIO", scope: "Scope" = MCP) -> "None":
        self._stream = stream
        self._scope = scope
        self._wrote_first_item = False
        self._closed = False
        self._stream.write(b"[")

    def encode(self, event: "UsageEvent") -> "None":
        if self._closed:
            raise ReportError("encoder is closed")

        chunk = b",\n" if self._wrote_first_item else b"\n"
        chunk += json.dumps(
            event_to_dict(event, self._scope), separators=(",", ":")
        ).encode("utf-8")
        self._stream.write(chunk)
        self._wrote_first_item = True

    def close(self) -> "None":
        if self._closed:
            raise ReportError("encoder is already closed")
        self._stream.write(b"\n]\n")
        self._closed = True
