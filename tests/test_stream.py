"""Tests for the source stream adapter.

Tests cover:
- Rows and schema are emitted in source order
- Teardown runs exactly once on completion, error and early stop
- Transport errors are translated with their diagnostic attributes
- Backpressure bounds the rows read ahead of the consumer
"""

import asyncio
import itertools
import threading

import pytest

from apps.exporter.stream import SourceStream
from tests.fakes import FakeRemoteStream, make_schema
from utils.errors import TransformError, TransportError


class QuotaExceeded(Exception):
    def __init__(self, message, code, reason):
        super().__init__(message)
        self.code = code
        self.reason = reason


async def collect(stream):
    return [item async for item in stream]


class TestCompletion:
    @pytest.mark.asyncio
    async def test_emits_rows_with_schema_in_order(self):
        schema = make_schema("id", "name")
        remote = FakeRemoteStream([{"id": i, "name": f"n{i}"} for i in range(5)], schema=schema)

        async with SourceStream(remote) as stream:
            items = await collect(stream)

        assert [row["id"] for row, _ in items] == [0, 1, 2, 3, 4]
        assert all(item_schema == schema for _, item_schema in items)
        assert stream.rows_emitted == 5

    @pytest.mark.asyncio
    async def test_schema_is_none_when_unresolvable(self):
        remote = FakeRemoteStream([{"id": 1}], schema=None)

        async with SourceStream(remote) as stream:
            items = await collect(stream)

        assert items == [({"id": 1}, None)]

    @pytest.mark.asyncio
    async def test_empty_source_ends_cleanly(self):
        remote = FakeRemoteStream([], schema=make_schema("id"))

        async with SourceStream(remote) as stream:
            items = await collect(stream)

        assert items == []
        assert remote.destroy_calls == 1

    @pytest.mark.asyncio
    async def test_teardown_runs_once_on_completion(self):
        remote = FakeRemoteStream([{"id": 1}, {"id": 2}])

        stream = SourceStream(remote)
        await collect(stream)
        await stream.aclose()

        assert remote.destroy_calls == 1

    @pytest.mark.asyncio
    async def test_remote_destroyed_off_the_event_loop_thread(self):
        remote = FakeRemoteStream([{"id": 1}])

        async with SourceStream(remote) as stream:
            await collect(stream)

        assert remote.destroy_calls == 1
        assert remote.destroy_thread != threading.get_ident()

    @pytest.mark.asyncio
    async def test_not_restartable(self):
        remote = FakeRemoteStream([{"id": 1}])

        async with SourceStream(remote) as stream:
            first = await collect(stream)
            second = await collect(stream)

        assert len(first) == 1
        assert second == []


class TestErrors:
    @pytest.mark.asyncio
    async def test_error_after_first_row_is_terminal(self):
        remote = FakeRemoteStream([{"id": 1}, {"id": 2}], fail_after=1)
        received = []

        async with SourceStream(remote) as stream:
            with pytest.raises(TransportError) as exc_info:
                async for row, _ in stream:
                    received.append(row)

            with pytest.raises(StopAsyncIteration):
                await stream.__anext__()

        assert received == [{"id": 1}]
        assert str(exc_info.value) == "connection reset by peer"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert remote.destroy_calls == 1

    @pytest.mark.asyncio
    async def test_error_carries_diagnostic_attributes(self):
        error = QuotaExceeded("Quota exceeded", code=403, reason="quotaExceeded")
        remote = FakeRemoteStream([{"id": 1}], fail_after=0, error=error)

        async with SourceStream(remote) as stream:
            with pytest.raises(TransportError) as exc_info:
                await collect(stream)

        assert exc_info.value.context["code"] == 403
        assert exc_info.value.context["reason"] == "quotaExceeded"
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_schema_resolution_failure(self):
        remote = FakeRemoteStream([{"id": 1}], fail_after=-1, error=PermissionError("Access Denied"))

        async with SourceStream(remote) as stream:
            with pytest.raises(TransportError, match="Access Denied"):
                await collect(stream)

        assert remote.destroy_calls == 1

    @pytest.mark.asyncio
    async def test_exporter_errors_pass_through_unchanged(self):
        error = TransformError("bad value", key="ts", value="x", row={"ts": "x"})
        remote = FakeRemoteStream([{"id": 1}], fail_after=0, error=error)

        async with SourceStream(remote) as stream:
            with pytest.raises(TransformError) as exc_info:
                await collect(stream)

        assert exc_info.value is error


class TestCancellation:
    @pytest.mark.asyncio
    async def test_early_stop_destroys_remote_and_stops_producer(self):
        remote = FakeRemoteStream({"id": i} for i in itertools.count())

        async with SourceStream(remote, max_buffered=2) as stream:
            async for row, _ in stream:
                if row["id"] == 3:
                    break

        assert remote.destroy_calls == 1
        stream._thread.join(timeout=2)
        assert not stream._thread.is_alive()

    @pytest.mark.asyncio
    async def test_consumer_exception_destroys_remote(self):
        remote = FakeRemoteStream([{"id": 1}, {"id": 2}, {"id": 3}])

        with pytest.raises(RuntimeError):
            async with SourceStream(remote) as stream:
                async for _ in stream:
                    raise RuntimeError("consumer failed")

        assert remote.destroy_calls == 1

    @pytest.mark.asyncio
    async def test_close_before_start(self):
        remote = FakeRemoteStream([{"id": 1}])

        stream = SourceStream(remote)
        await stream.aclose()

        assert remote.destroy_calls == 1
        assert await collect(stream) == []

    @pytest.mark.asyncio
    async def test_backpressure_limits_read_ahead(self):
        remote = FakeRemoteStream({"id": i} for i in itertools.count())

        async with SourceStream(remote, max_buffered=3) as stream:
            await stream.__anext__()
            await asyncio.sleep(0.3)

            # Buffered rows plus the row held by the blocked producer
            assert remote.produced <= 3 + 2

    def test_rejects_empty_buffer(self):
        with pytest.raises(ValueError):
            SourceStream(FakeRemoteStream([]), max_buffered=0)
