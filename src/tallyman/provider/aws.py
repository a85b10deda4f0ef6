from typing import Any, Iterator

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from tallyman.errors import BackendError
from tallyman.models import MCP, Scope, TimeRange
from tallyman.partition import hourly_prefixes
from tallyman.reader import EventReader, ListEventReader, MultiReader, StreamEventReader

logger = structlog.get_logger()


def new_client(endpoint: "str" = "") -> "Any":
    """
    creates an S3 client from the default AWS credential chain,
    optionally pointed at a custom endpoint.
    """
    kwargs: "dict[str, Any]" = {}
    if endpoint:
        kwargs["endpoint_url"] = endpoint
    return boto3.client(
        "s3",
        config=BotoConfig(retries={"mode": "standard"}),
        **kwargs,
    )


def list_inputs(bucket: "str", account: "str", window: "TimeRange") -> "list[dict[str, str]]":
    """
    builds one ListObjectsV2 input per hour of the window. S3 can
    only list by prefix, so a window spanning several hours turns
    into several list requests.
    """
    return [
        {"Bucket": bucket, "Prefix": prefix}
        for prefix in hourly_prefixes(account, window)
    ]


class S3ObjectEventReader(StreamEventReader):
    backend = "aws"

    def __init__(
        self,
        client: "Any",
        bucket: "str",
        key: "str",
        scope: "Scope" = MCP,
    ) -> "None":
        super().__init__(key, scope)
        self._client = client
        self._bucket = bucket

    def _open(self) -> "tuple[Any, str]":
        resp = self._client.get_object(Bucket=self._bucket, Key=self.name)
        return resp["Body"], resp.get("ContentType") or ""


class S3Source:
    """
    S3Source reads usage events from an S3 bucket (or any store
    speaking the S3 API).
    """

    name = "aws"

    def __init__(
        self,
        client: "Any",
        bucket: "str",
        account: "str",
        scope: "Scope" = MCP,
    ) -> "None":
        self._client = client
        self._bucket = bucket
        self._account = account
        self._scope = scope

    def _objects(self, list_input: "dict[str, str]") -> "Iterator[S3ObjectEventReader]":
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(**list_input):
            for obj in page.get("Contents", []):
                yield S3ObjectEventReader(
                    self._client, self._bucket, obj["Key"], self._scope
                )

    def list_objects(self, window: "TimeRange") -> "list[EventReader]":
        readers: "list[EventReader]" = []
        for list_input in list_inputs(self._bucket, self._account, window):
            try:
                readers.extend(self._objects(list_input))
            except (BotoCoreError, ClientError) as exc:
                raise BackendError(
                    self.name,
                    f"error listing objects under {list_input['Prefix']}: {exc}",
                ) from exc

        logger.debug(
            "objects_listed",
            backend=self.name,
            bucket=self._bucket,
            objects=len(readers),
        )
        return readers

    def reader(self, window: "TimeRange") -> "EventReader":
        return MultiReader(
            [
                ListEventReader(self._objects(list_input), backend=self.name)
                for list_input in list_inputs(self._bucket, self._account, window)
            ]
        )
