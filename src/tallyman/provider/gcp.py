from typing import Any, Iterator

import structlog
from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage

from tallyman.errors import BackendError
from tallyman.models import MCP, Scope, TimeRange
from tallyman.partition import offset_range
from tallyman.reader import EventReader, ListEventReader, StreamEventReader

logger = structlog.get_logger()


def new_bucket(bucket: "str", endpoint: "str" = "") -> "storage.Bucket":
    """
    returns a handle on a GCS bucket using application default
    credentials, optionally pointed at a custom endpoint.
    """
    options = {"api_endpoint": endpoint} if endpoint else None
    return storage.Client(client_options=options).bucket(bucket)


def list_query(account: "str", window: "TimeRange") -> "dict[str, str]":
    """
    builds the list_blobs arguments for a window. GCS lists by
    lexicographic offsets, so a single range covers the whole
    window whatever its length.
    """
    start, end = offset_range(account, window)
    return {"start_offset": start, "end_offset": end}


class GCSObjectEventReader(StreamEventReader):
    backend = "gcp"

    def __init__(self, blob: "storage.Blob", scope: "Scope" = MCP) -> "None":
        super().__init__(blob.name, scope)
        self._blob = blob

    def _open(self) -> "tuple[Any, str]":
        return self._blob.open("rb"), self._blob.content_type or ""


class GCSSource:
    """
    GCSSource reads usage events from a Google Cloud Storage
    bucket.
    """

    name = "gcp"

    def __init__(
        self,
        bucket: "storage.Bucket",
        account: "str",
        scope: "Scope" = MCP,
    ) -> "None":
        self._bucket = bucket
        self._account = account
        self._scope = scope

    def _objects(self, window: "TimeRange") -> "Iterator[GCSObjectEventReader]":
        for blob in self._bucket.list_blobs(**list_query(self._account, window)):
            yield GCSObjectEventReader(blob, self._scope)

    def list_objects(self, window: "TimeRange") -> "list[EventReader]":
        try:
            readers: "list[EventReader]" = list(self._objects(window))
        except GoogleAPIError as exc:
            raise BackendError(self.name, f"error listing objects: {exc}") from exc

        logger.debug(
            "objects_listed",
            backend=self.name,
            bucket=self._bucket.name,
            objects=len(readers),
        )
        return readers

    def reader(self, window: "TimeRange") -> "EventReader":
        return ListEventReader(self._objects(window), backend=self.name)
