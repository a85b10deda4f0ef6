"""
Report archive packaging.

A report is a gzip-compressed tar archive holding exactly two
files, written in this order:

- ``report/meta.json``: the account, the billing period and the
  collection time.
- ``report/usage.json``: the JSON array of summary events.
"""

import dataclasses
import gzip
import io
import json
import tarfile
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from tallyman.encoding import EventDecoder, EventEncoder
from tallyman.errors import ReportError
from tallyman.models import MCP, ReportMeta, Scope, TimeRange, UsageEvent
from tallyman.timerange import format_rfc3339, parse_rfc3339

logger = structlog.get_logger()

META_FILENAME = "report/meta.json"
USAGE_FILENAME = "report/usage.json"
FILE_MODE = 0o644


def meta_to_dict(meta: "ReportMeta") -> "dict[str, Any]":
    return {
        "account": meta.account,
        "time_range": {
            "start": format_rfc3339(meta.time_range.start),
            "end": format_rfc3339(meta.time_range.end),
        },
        "collected_at": format_rfc3339(meta.collected_at),
    }


def meta_from_dict(data: "dict[str, Any]") -> "ReportMeta":
    return ReportMeta(
        account=data["account"],
        time_range=TimeRange(
            start=parse_rfc3339(data["time_range"]["start"]),
            end=parse_rfc3339(data["time_range"]["end"]),
        ),
        collected_at=parse_rfc3339(data["collected_at"]),
    )


class ReportWriter:
    """
    ReportWriter buffers summary events and, on close(), adds the
    metadata and usage files to a tar archive. Every event is
    tagged with the report's account.

    close() must be called exactly once; the archive itself is
    left open for the caller to finish.
    """

    def __init__(
        self,
        tar: "tarfile.TarFile",
        meta: "ReportMeta",
        scope: "Scope" = MCP,
    ) -> "None":
        self._tar = tar
        self._meta = meta
        self._buf = io.BytesIO()
        self._encoder = EventEncoder(self._buf, scope)
        self._closed = False
        self._count = 0

    @property
    def meta(self) -> "ReportMeta":
        return self._meta

    def write(self, event: "UsageEvent") -> "None":
        if self._closed:
            raise ReportError("report writer is closed")
        tags = dataclasses.replace(event.tags, account=self._meta.account)
        self._encoder.encode(dataclasses.replace(event, tags=tags))
        self._count += 1

    def close(self) -> "None":
        if self._closed:
            raise ReportError("report writer is already closed")
        self._closed = True

        self._encoder.close()
        meta = json.dumps(meta_to_dict(self._meta), indent=2).encode("utf-8")
        self._add(META_FILENAME, meta)
        self._add(USAGE_FILENAME, self._buf.getvalue())

        logger.debug("report_closed", account=self._meta.account, events=self._count)

    def _add(self, name: "str", data: "bytes") -> "None":
        info = tarfile.TarInfo(name)
        info.size = len(data)
        info.mode = FILE_MODE
        info.mtime = int(self._meta.collected_at.timestamp())
        self._tar.addfile(info, io.BytesIO(data))


@contextmanager
def open_report(
    path: "str",
    meta: "ReportMeta",
    scope: "Scope" = MCP,
) -> "Iterator[ReportWriter]":
    """
    creates a gzip-compressed report archive at path, failing if
    it already exists. The writer, the tar layer and the gzip layer
    are closed in that order when the block exits cleanly. On
    error the archive is left unfinished and the caller is
    expected to delete it.

    The gzip header carries collected_at rather than the current
    time, so equal inputs produce identical archives.
    """
    mtime = int(meta.collected_at.timestamp())
    with open(path, "xb") as raw, gzip.GzipFile(
        filename="", mode="wb", fileobj=raw, mtime=mtime
    ) as gz, tarfile.open(fileobj=gz, mode="w") as tar:
        writer = ReportWriter(tar, meta, scope)
        yield writer
        writer.close()


def load_report(
    path: "str",
    scope: "Scope" = MCP,
) -> "tuple[ReportMeta, list[UsageEvent]]":
    """
    reads a report archive back into its metadata and events.
    """
    with tarfile.open(path, mode="r:gz") as tar:
        names = tar.getnames()
        if names != [META_FILENAME, USAGE_FILENAME]:
            raise ReportError(f"unexpected report layout: {names}")

        meta_file = tar.extractfile(META_FILENAME)
        usage_file = tar.extractfile(USAGE_FILENAME)
        if meta_file is None or usage_file is None:
            raise ReportError("report entries must be regular files")

        meta = meta_from_dict(json.load(meta_file))
        decoder = EventDecoder(usage_file, scope)
        events: "list[UsageEvent]" = []
        while decoder.more():
            events.append(decoder.decode())
    return meta, events
