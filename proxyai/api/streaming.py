# proxyai/api/streaming.py
"""
Server-sent event streaming.

This module turns a streamed HTTP body into frames and frames into typed
values. ``StreamFrameParser`` is the demand-driven frame reader built on
``sseclient`` and ``Stream`` is the closeable iterator handed to callers.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Iterator, Optional, TypeVar

import requests
import sseclient
from urllib3.exceptions import ReadTimeoutError

from ..constants import STREAM_DONE_SENTINEL
from ..exceptions import (
    DecodeError, ProxyAIError, TransportError, TransportTimeoutError, TruncatedStream
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# sseclient reports records without an event field under this name
DEFAULT_EVENT = "message"


@dataclass(frozen=True)
class StreamFrame:
    """
    One dispatched server-sent event record.

    Attributes:
        event: Value of the ``event`` field, if any
        data: ``data`` field values joined with newlines
        id: Value of the ``id`` field, if any
    """

    event: Optional[str]
    data: str
    id: Optional[str] = None


def _is_terminal(event: Optional[str], data: str) -> bool:
    return data == STREAM_DONE_SENTINEL or (data == "" and event is None)


class _ChunkSource:
    """Byte chunks handed to ``sseclient``; notes when the body runs out."""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = iter(chunks)
        self.exhausted = False

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        try:
            return next(self._chunks)
        except StopIteration:
            self.exhausted = True
            raise

    def close(self):
        close = getattr(self._chunks, "close", None)
        if close is not None:
            close()


class StreamFrameParser:
    """
    Lazy frame reader over an iterable of byte chunks.

    Records are split and parsed by ``sseclient``. A chunk is pulled only when
    the consumer asks for the next frame. The stream ends cleanly at the
    ``[DONE]`` sentinel (or an empty, event-less frame); running out of input
    before that raises ``TruncatedStream``.

    Args:
        chunks: Byte chunks, e.g. ``response.iter_content(chunk_size=None)``

    Example:
        >>> parser = StreamFrameParser([b'data: {"a": 1}\\n\\n', b'data: [DONE]\\n\\n'])
        >>> [frame.data for frame in parser]
        ['{"a": 1}']
    """

    def __init__(self, chunks: Iterable[bytes]):
        self._source = _ChunkSource(chunks)
        self._client = sseclient.SSEClient(self._source)
        self._frames = self._parse()
        self.frames_parsed = 0

    def __iter__(self) -> Iterator[StreamFrame]:
        return self

    def __next__(self) -> StreamFrame:
        frame = next(self._frames)
        self.frames_parsed += 1
        return frame

    def close(self):
        """Stop parsing and release the partial record."""
        self._frames.close()

    def _events(self) -> Iterator[sseclient.Event]:
        try:
            yield from self._client.events()
        except UnicodeDecodeError as e:
            raise DecodeError("Stream is not valid UTF-8", payload=repr(e.object[:64]), original_error=e) from e

    def _parse(self) -> Iterator[StreamFrame]:
        for event in self._events():
            frame = StreamFrame(
                event=None if event.event == DEFAULT_EVENT else event.event,
                data=event.data,
                id=event.id,
            )
            if _is_terminal(frame.event, frame.data):
                logger.debug("Stream reached its end sentinel")
                return
            # sseclient flushes a record cut off by EOF as a normal event
            if self._source.exhausted:
                raise TruncatedStream()
            yield frame

        raise TruncatedStream()


class Stream(Generic[T]):
    """
    Closeable iterator of decoded stream items.

    Wraps a streamed ``requests.Response``. Iteration pulls frames from the
    body on demand and decodes each one. The response is closed when the
    stream ends or fails, when the caller closes it, and when an abandoned
    stream is garbage collected.

    Args:
        response: Response opened with ``stream=True``
        decoder: Callable turning a ``StreamFrame`` into an item
        chunk_size: Read size for the body (None = as data arrives)

    Example:
        >>> with client.start_streamed_chat({"model": "gpt-4o", "messages": messages}) as stream:
        ...     for chunk in stream:
        ...         print(chunk.text, end="")
    """

    def __init__(
        self,
        response: requests.Response,
        decoder: Callable[[StreamFrame], T],
        chunk_size: Optional[int] = None
    ):
        self.response = response
        self._decoder = decoder
        self._parser = StreamFrameParser(response.iter_content(chunk_size=chunk_size))
        self._closed = False
        self.items_yielded = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        if self._closed:
            raise StopIteration

        try:
            frame = next(self._parser)
            item = self._decoder(frame)
        except StopIteration:
            self.close()
            raise
        except requests.exceptions.RequestException as e:
            self.close()
            raise self._translate(e) from e
        except Exception:
            self.close()
            raise

        self.items_yielded += 1
        return item

    def _translate(self, error: requests.exceptions.RequestException) -> ProxyAIError:
        url = self.response.url
        if isinstance(error, requests.exceptions.Timeout) or _caused_by_read_timeout(error):
            logger.error(f"Stream read timed out after {self.items_yielded} item(s): {error}")
            return TransportTimeoutError(f"Stream read timed out: {error}", url=url, original_error=error)
        if isinstance(error, (requests.exceptions.ChunkedEncodingError, requests.exceptions.ConnectionError)):
            logger.error(f"Stream connection dropped after {self.items_yielded} item(s): {error}")
            return TruncatedStream(f"Stream connection dropped before completion: {error}")
        logger.error(f"Stream transport failed: {error}")
        return TransportError(f"Stream transport failed: {error}", url=url, original_error=error)

    def close(self):
        """Close the stream and its response. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._parser.close()
        try:
            self.response.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing stream response: {e}")
        logger.debug(f"Stream closed after {self.items_yielded} item(s)")

    def __enter__(self) -> "Stream[T]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        # Abandoned streams still release their connection
        if not getattr(self, "_closed", True):
            self.close()

    def __repr__(self) -> str:
        return f"Stream(items={self.items_yielded}, closed={self._closed})"


def _caused_by_read_timeout(error: BaseException) -> bool:
    """True when a read timeout is wrapped anywhere in the error's arguments or cause chain."""
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, ReadTimeoutError):
            return True
        if isinstance(current, BaseException):
            pending.extend(arg for arg in current.args if isinstance(arg, BaseException))
            pending.append(current.__cause__)
            pending.append(current.__context__)
    return False
