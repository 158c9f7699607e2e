"""
Source Stream Adapter

Turns a blocking, push-style remote row stream into a cancellable async
sequence of ``(row, schema)`` pairs.

A producer thread resolves the schema, drains the remote iterator and pushes
row / error / close events onto an asyncio queue owned by the event loop.
At most ``max_buffered`` rows are in flight; the producer blocks until the
consumer catches up.

The stream is single use. Teardown (the remote stream's ``destroy()``) runs
exactly once: on natural completion, on a source error, or when the consumer
stops early via ``aclose()`` / leaving ``async with``.

Usage:
    async with SourceStream(source.open(spec)) as stream:
        async for row, schema in stream:
            ...
"""

import asyncio
import logging
import threading
from typing import Iterator, Optional, Protocol

from utils.errors import ExporterError, TransportError, error_context
from utils.schemas import Row, TableSchema

logger = logging.getLogger(__name__)

_ROW = "row"
_ERROR = "error"
_CLOSE = "close"


class RemoteRowStream(Protocol):
    """What the adapter needs from a source collaborator's stream."""

    def resolve_schema(self) -> Optional[TableSchema]: ...

    def __iter__(self) -> Iterator[Row]: ...

    def destroy(self) -> None: ...


class SourceStream:
    """Cancellable async sequence over a remote row stream."""

    def __init__(self, remote: RemoteRowStream, max_buffered: int = 1000) -> None:
        if max_buffered < 1:
            raise ValueError("max_buffered must be at least 1")

        self.remote = remote
        self.schema: Optional[TableSchema] = None
        self.rows_emitted = 0

        self._slots = threading.Semaphore(max_buffered)
        self._cancelled = threading.Event()
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._finished = False
        self._torn_down = False

    # Producer side (runs in the producer thread)

    def _emit(self, kind: str, payload: object) -> None:
        if self._cancelled.is_set() or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (kind, payload))

    def _acquire_slot(self) -> bool:
        while not self._cancelled.is_set():
            if self._slots.acquire(timeout=0.1):
                return True
        return False

    def _produce(self) -> None:
        try:
            schema = self.remote.resolve_schema()
            logger.debug(
                "Source schema resolved: fields=%s",
                schema.names if schema is not None else None,
            )
            for row in self.remote:
                if not self._acquire_slot():
                    return
                self._emit(_ROW, (row, schema))
        except Exception as e:
            self._emit(_ERROR, e)
            return
        self._emit(_CLOSE, None)

    # Consumer side (runs on the event loop)

    def _start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._thread = threading.Thread(target=self._produce, name="source-stream", daemon=True)
        self._thread.start()

    async def _teardown(self, reason: str) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self._cancelled.set()
        logger.debug("Destroying source stream: reason=%s, rows=%d", reason, self.rows_emitted)
        # destroy() may block on a job cancel request
        await asyncio.to_thread(self.remote.destroy)

    def __aiter__(self) -> "SourceStream":
        return self

    async def __anext__(self) -> tuple[Row, Optional[TableSchema]]:
        if self._finished:
            raise StopAsyncIteration
        if self._thread is None:
            self._start()

        kind, payload = await self._queue.get()

        if kind == _ROW:
            self._slots.release()
            row, schema = payload
            self.schema = schema
            self.rows_emitted += 1
            return row, schema

        self._finished = True

        if kind == _ERROR:
            await self._teardown("error")
            if isinstance(payload, ExporterError):
                raise payload
            message = str(payload) or payload.__class__.__name__
            raise TransportError(message, error_context(payload)) from payload

        await self._teardown("close")
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Stop consuming; destroys the remote stream if still running."""
        self._finished = True
        await self._teardown("cancelled")

    async def __aenter__(self) -> "SourceStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
