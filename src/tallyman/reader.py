import enum
import gzip
from collections import deque
from typing import Any, BinaryIO, Iterable, Iterator, Literal, Protocol, Sequence

import structlog

from tallyman.encoding import EventDecoder
from tallyman.errors import BackendError, UsageError
from tallyman.models import MCP, Scope, UsageEvent

logger = structlog.get_logger()

GZIP_CONTENT_TYPES = frozenset({"application/gzip", "application/x-gzip"})


class _Sentinel(enum.Enum):
    EOF = "EOF"

    def __repr__(self) -> "str":
        return self.value


# returned, never raised, by read() once a reader is exhausted
EOF = _Sentinel.EOF


class EventReader(Protocol):
    """
    EventReader stands as the common protocol that every
    usage event source must satisfy, whatever storage backend
    sits behind it.

    read() returns the next event, or EOF once the reader is
    exhausted; any failure is raised. close() releases the
    underlying handles. It may be called early or after EOF, but
    never concurrently with read().
    """

    def read(self) -> "UsageEvent | Literal[_Sentinel.EOF]": ...

    def close(self) -> "None": ...


class ReaderMixin:
    """
    adds iteration and context management on top of read() and
    close().
    """

    def read(self) -> "UsageEvent | Literal[_Sentinel.EOF]":
        raise NotImplementedError

    def close(self) -> "None":
        raise NotImplementedError

    def __iter__(self) -> "Iterator[UsageEvent]":
        while True:
            event = self.read()
            if event is EOF:
                return
            yield event

    def __enter__(self) -> "ReaderMixin":
        return self

    def __exit__(self, *exc_info: "Any") -> "None":
        self.close()


class StreamEventReader(ReaderMixin):
    """
    StreamEventReader decodes the events of a single storage
    object. The object is opened on the first read(); payloads
    declared as gzip are decompressed on the fly.

    Subclasses implement _open() for their backend.
    """

    backend = "storage"

    def __init__(self, name: "str", scope: "Scope" = MCP) -> "None":
        self.name = name
        self._scope = scope
        self._decoder: "EventDecoder | None" = None
        self._closers: "list[Any]" = []

    def _open(self) -> "tuple[BinaryIO, str]":
        """
        opens the object and returns its byte stream along with
        its declared content type.
        """
        raise NotImplementedError

    def read(self) -> "UsageEvent | Literal[_Sentinel.EOF]":
        try:
            if self._decoder is None:
                self._decoder = self._open_decoder()
            if not self._decoder.more():
                return EOF
            return self._decoder.decode()

        except UsageError:
            raise
        except Exception as exc:
            raise BackendError(
                self.backend, f"error reading object {self.name}: {exc}"
            ) from exc

    def _open_decoder(self) -> "EventDecoder":
        stream, content_type = self._open()
        self._closers.append(stream)

        if content_type in GZIP_CONTENT_TYPES:
            stream = gzip.GzipFile(fileobj=stream, mode="rb")
            self._closers.append(stream)

        logger.debug(
            "object_opened",
            backend=self.backend,
            object=self.name,
            content_type=content_type,
        )
        return EventDecoder(stream, self._scope)

    def close(self) -> "None":
        # close in reverse so the gzip layer goes before the raw stream
        while self._closers:
            self._closers.pop().close()


class ListEventReader(ReaderMixin):
    """
    ListEventReader reads the objects of a listing one after
    the other. Per-object readers are pulled from the listing
    only when the previous one is exhausted, so at most one object
    is open at a time.
    """

    def __init__(
        self,
        readers: "Iterable[EventReader]",
        backend: "str" = "storage",
    ) -> "None":
        self._readers = readers
        self._backend = backend
        self._iter: "Iterator[EventReader] | None" = None
        self._current: "EventReader | None" = None

    def read(self) -> "UsageEvent | Literal[_Sentinel.EOF]":
        if self._iter is None:
            self._iter = iter(self._readers)

        while True:
            if self._current is None:
                self._current = self._next_reader()
                if self._current is None:
                    return EOF

            event = self._current.read()
            if event is not EOF:
                return event

            current, self._current = self._current, None
            current.close()

    def _next_reader(self) -> "EventReader | None":
        try:
            return next(self._iter)
        except StopIteration:
            return None
        except UsageError:
            raise
        except Exception as exc:
            raise BackendError(self._backend, f"error listing objects: {exc}") from exc

    def close(self) -> "None":
        if self._current is not None:
            current, self._current = self._current, None
            current.close()


class MultiReader(ReaderMixin):
    """
    MultiReader concatenates readers. It always reads from the
    first remaining reader, closing and dropping it once it
    returns EOF, and only returns EOF itself when none remain.
    """

    def __init__(self, readers: "Sequence[EventReader]") -> "None":
        self._readers: "deque[EventReader]" = deque(readers)

    def read(self) -> "UsageEvent | Literal[_Sentinel.EOF]":
        while self._readers:
            event = self._readers[0].read()
            if event is not EOF:
                return event
            self._readers.popleft().close()
        return EOF

    def close(self) -> "None":
        while self._readers:
            self._readers.popleft().close()
