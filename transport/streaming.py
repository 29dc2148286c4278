"""
Streaming transport for token-by-token HTTP delivery.

TokenStreamWriter frames each fragment as one JSON line and flushes it
straight away. ChunkChannel is the HTTP-side sink: backends run in a
worker thread and write into it, the ASGI event loop drains it.

Flow:
  backend thread → TokenStreamWriter.write → ChunkChannel.write/flush
  → event loop → StreamingResponse → client
"""

import asyncio
import concurrent.futures
import json
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Union

from inference.errors import TransportError

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"

# Chunks allowed to wait for a slow client before producers block
DEFAULT_MAX_PENDING = 16
PUT_POLL_S = 0.1


class ByteSink(Protocol):
    """Outbound byte transport with explicit flush and mutable headers."""

    headers: Dict[str, str]

    def write(self, data: bytes) -> int:
        ...

    def flush(self) -> None:
        ...


class TokenStreamWriter:
    """
    Decorates a byte sink so every fragment is forwarded and audited
    in one step.

    Each write():
      1. records the raw fragment (and notifies ``on_write`` if given)
      2. serializes {"token": fragment} as a single JSON line
      3. writes the bytes to the sink
      4. flushes, so the fragment leaves without waiting for the rest

    The full text is available from ``text`` at any time and is
    returned by close().
    """

    def __init__(self, sink: ByteSink, on_write: Optional[Callable[[str], None]] = None):
        self._sink = sink
        self._on_write = on_write
        self._fragments: List[str] = []
        self._closed = False

        # No Content-Length: the server falls back to chunked framing
        sink.headers["Content-Type"] = JSON_MEDIA_TYPE
        sink.headers.pop("Content-Length", None)

    @property
    def text(self) -> str:
        return "".join(self._fragments)

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    def write(self, fragment: str) -> int:
        """
        Frame, write and flush one fragment.

        Returns:
            Length of the fragment

        Raises:
            TransportError: writer closed, or the sink failed to write/flush
        """
        if self._closed:
            raise TransportError("write on closed token stream")

        self._fragments.append(fragment)
        if self._on_write is not None:
            self._on_write(fragment)

        try:
            line = json.dumps({"token": fragment}, ensure_ascii=False) + "\n"
        except (TypeError, ValueError) as e:
            raise TransportError(f"failed to encode token: {e}") from e

        try:
            self._sink.write(line.encode("utf-8"))
            self._sink.flush()
        except TransportError:
            raise
        except (OSError, RuntimeError) as e:
            raise TransportError(f"failed to write token: {e}") from e

        return len(fragment)

    def close(self) -> str:
        """Stop accepting fragments and return the accumulated text."""
        self._closed = True
        return self.text


@dataclass
class StreamClosed:
    """End-of-stream marker; ``error`` is set when the producer failed."""
    error: Optional[BaseException] = None


class ChunkChannel:
    """
    Thread-to-event-loop byte channel used as the HTTP streaming sink.

    write() buffers, flush() hands the buffer to the event loop. At most
    ``max_pending`` chunks wait for the client; beyond that flush() blocks
    the producing thread until the response drains or the client is gone.
    Producers run in worker threads; receive() is awaited on the loop.
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        self._loop = loop or asyncio.get_running_loop()
        self._queue: "asyncio.Queue[Union[bytes, StreamClosed]]" = asyncio.Queue(maxsize=max_pending)
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._closed = False
        self.headers: Dict[str, str] = {}
        self.cancelled = threading.Event()

    def write(self, data: bytes) -> int:
        if self.cancelled.is_set():
            raise TransportError("client disconnected")
        with self._lock:
            if self._closed:
                raise TransportError("write on closed channel")
            self._buffer.extend(data)
        return len(data)

    def flush(self) -> None:
        """
        Hand buffered bytes to the event loop.

        Raises:
            TransportError: client disconnected while waiting for room
        """
        with self._lock:
            if not self._buffer:
                return
            chunk = bytes(self._buffer)
            self._buffer.clear()
        self._put(chunk)

    def close(self, error: Optional[BaseException] = None) -> None:
        """Flush what is pending and mark the end of the stream."""
        self.flush()
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._put(StreamClosed(error=error))

    def cancel(self) -> None:
        """Client is gone: fail further writes and release a blocked producer."""
        self.cancelled.set()

    async def receive(self) -> Union[bytes, StreamClosed]:
        return await self._queue.get()

    def _put(self, item: Union[bytes, StreamClosed]) -> None:
        if _running_loop() is self._loop:
            # Called on the loop itself; blocking here would deadlock it
            try:
                self._queue.put_nowait(item)
            except asyncio.QueueFull as e:
                raise TransportError("stream buffer full") from e
            return

        if self._loop.is_closed():
            raise TransportError("transport unavailable: event loop is closed")
        try:
            future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        except RuntimeError as e:
            raise TransportError(f"transport unavailable: {e}") from e

        while True:
            try:
                future.result(timeout=PUT_POLL_S)
                return
            except concurrent.futures.CancelledError as e:
                raise TransportError("transport unavailable: hand-off cancelled") from e
            except concurrent.futures.TimeoutError:
                # Give up only while the client is gone and nothing is draining
                if self.cancelled.is_set() and self._queue.full() and future.cancel():
                    raise TransportError("client disconnected")
                if self._loop.is_closed() and future.cancel():
                    raise TransportError("transport unavailable: event loop is closed")


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
