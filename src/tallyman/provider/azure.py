import io
from typing import Any, Iterator

import structlog
from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobClient, ContainerClient

from tallyman.errors import BackendError
from tallyman.models import MCP, Scope, TimeRange
from tallyman.partition import hourly_prefixes
from tallyman.reader import EventReader, ListEventReader, MultiReader, StreamEventReader

logger = structlog.get_logger()


def new_container_client(storage_account: "str", container: "str") -> "ContainerClient":
    """
    creates a container client authenticated with the default
    Azure credential chain.
    """
    return ContainerClient(
        account_url=f"https://{storage_account}.blob.core.windows.net/",
        container_name=container,
        credential=DefaultAzureCredential(),
    )


def list_options(account: "str", window: "TimeRange") -> "list[dict[str, str]]":
    """
    builds one list_blobs option set per hour of the window.
    Like S3, Azure only lists by prefix.
    """
    return [{"name_starts_with": prefix} for prefix in hourly_prefixes(account, window)]


class _DownloadStream(io.RawIOBase):
    """
    file-like view over a blob download, which only offers
    read().
    """

    def __init__(self, downloader: "Any") -> "None":
        self._downloader = downloader

    def readable(self) -> "bool":
        return True

    def readinto(self, buffer: "Any") -> "int":
        data = self._downloader.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


class AzureBlobEventReader(StreamEventReader):
    backend = "azure"

    def __init__(
        self,
        client: "BlobClient",
        content_type: "str",
        scope: "Scope" = MCP,
    ) -> "None":
        super().__init__(client.blob_name, scope)
        self._client = client
        self._content_type = content_type

    def _open(self) -> "tuple[Any, str]":
        stream = io.BufferedReader(_DownloadStream(self._client.download_blob()))
        return stream, self._content_type


class AzureBlobSource:
    """
    AzureBlobSource reads usage events from an Azure Blob
    Storage container, walking the flat listing page by page.
    """

    name = "azure"

    def __init__(
        self,
        container: "ContainerClient",
        account: "str",
        scope: "Scope" = MCP,
    ) -> "None":
        self._container = container
        self._account = account
        self._scope = scope

    def _objects(self, options: "dict[str, str]") -> "Iterator[AzureBlobEventReader]":
        for page in self._container.list_blobs(**options).by_page():
            for blob in page:
                if not blob.name:
                    raise BackendError(self.name, "blob name is empty")

                content_type = ""
                if blob.content_settings is not None:
                    content_type = blob.content_settings.content_type or ""

                yield AzureBlobEventReader(
                    self._container.get_blob_client(blob.name),
                    content_type,
                    self._scope,
                )

    def list_objects(self, window: "TimeRange") -> "list[EventReader]":
        readers: "list[EventReader]" = []
        for options in list_options(self._account, window):
            try:
                readers.extend(self._objects(options))
            except AzureError as exc:
                raise BackendError(
                    self.name,
                    f"error listing blobs under {options['name_starts_with']}: {exc}",
                ) from exc

        logger.debug(
            "objects_listed",
            backend=self.name,
            container=self._container.container_name,
            objects=len(readers),
        )
        return readers

    def reader(self, window: "TimeRange") -> "EventReader":
        return MultiReader(
            [
                ListEventReader(self._objects(options), backend=self.name)
                for options in list_options(self._account, window)
            ]
        )
