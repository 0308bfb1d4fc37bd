"""Change stream subscription tests against a scripted collection double."""

import asyncio
from typing import Any

import pytest
from pymongo.errors import AutoReconnect, OperationFailure

from mailsync.exceptions import SubscriptionBroken
from mailsync.source.subscription import ChangeSubscription, is_resumable


def raw_change(doc_id: str, token: str) -> dict[str, Any]:
    return {
        "_id": {"_data": token},
        "operationType": "update",
        "documentKey": {"_id": doc_id},
        "fullDocument": {"_id": doc_id, "product": "p", "subject": "s", "body": "b"},
        "ns": {"db": "emaildb", "coll": "emails"},
    }


class ScriptedStream:
    """Yields scripted changes, raises scripted errors, then waits or ends."""

    def __init__(self, script: list[Any], block_at_end: bool) -> None:
        self._items = list(script)
        self._block_at_end = block_at_end
        self._closed_event = asyncio.Event()
        self.closed = False

    def __aiter__(self) -> "ScriptedStream":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        if self._items:
            item = self._items.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self._block_at_end:
            await self._closed_event.wait()
        raise StopAsyncIteration

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()


class ScriptedCollection:
    """Hands out one scripted stream per watch() call."""

    def __init__(self, *scripts: list[Any], block_at_end: bool = True) -> None:
        self._scripts = list(scripts)
        self._block_at_end = block_at_end
        self.watch_calls: list[dict[str, Any]] = []
        self.streams: list[ScriptedStream] = []

    def watch(self, pipeline: list[Any], **options: Any) -> ScriptedStream:
        self.watch_calls.append(options)
        script = self._scripts.pop(0) if self._scripts else []
        stream = ScriptedStream(script, self._block_at_end)
        self.streams.append(stream)
        return stream


@pytest.mark.asyncio
async def test_events_arrive_in_order_from_start_position() -> None:
    collection = ScriptedCollection([raw_change("1", "t1"), raw_change("2", "t2")])
    subscription = ChangeSubscription(collection, start_at="ts-0")
    events = aiter(subscription)

    first = await anext(events)
    second = await anext(events)

    assert [first.document_id, second.document_id] == ["1", "2"]
    assert collection.watch_calls[0] == {
        "full_document": "updateLookup",
        "start_at_operation_time": "ts-0",
    }
    await subscription.close()


@pytest.mark.asyncio
async def test_resume_token_recorded_after_event_is_handled() -> None:
    collection = ScriptedCollection([raw_change("1", "t1"), raw_change("2", "t2")])
    subscription = ChangeSubscription(collection)
    events = aiter(subscription)

    await anext(events)
    assert subscription.resume_token is None

    await anext(events)
    assert subscription.resume_token == {"_data": "t1"}
    await subscription.close()


@pytest.mark.asyncio
async def test_resumes_after_transient_error() -> None:
    """A dropped connection reopens the stream after the last handled event."""
    collection = ScriptedCollection(
        [raw_change("1", "t1"), AutoReconnect("connection reset")],
        [raw_change("2", "t2")],
    )
    subscription = ChangeSubscription(collection, start_at="ts-0", resume_backoff=0)
    events = aiter(subscription)

    first = await anext(events)
    second = await anext(events)

    assert [first.document_id, second.document_id] == ["1", "2"]
    assert collection.watch_calls[1] == {
        "full_document": "updateLookup",
        "resume_after": {"_data": "t1"},
    }
    assert collection.streams[0].closed
    await subscription.close()


@pytest.mark.asyncio
async def test_non_resumable_error_breaks_subscription() -> None:
    collection = ScriptedCollection([OperationFailure("not authorized", code=13)])
    subscription = ChangeSubscription(collection, resume_backoff=0)

    with pytest.raises(SubscriptionBroken):
        await anext(aiter(subscription))


@pytest.mark.asyncio
async def test_resume_attempts_are_bounded() -> None:
    collection = ScriptedCollection(
        [AutoReconnect("down")],
        [AutoReconnect("still down")],
        [AutoReconnect("gone")],
    )
    subscription = ChangeSubscription(
        collection, max_resume_attempts=2, resume_backoff=0
    )

    with pytest.raises(SubscriptionBroken):
        await anext(aiter(subscription))
    assert len(collection.watch_calls) == 3


@pytest.mark.asyncio
async def test_server_side_end_breaks_subscription() -> None:
    """A stream that ends without close() (invalidate) is a fault."""
    collection = ScriptedCollection([raw_change("1", "t1")], block_at_end=False)
    subscription = ChangeSubscription(collection)
    events = aiter(subscription)

    await anext(events)
    with pytest.raises(SubscriptionBroken):
        await anext(events)


@pytest.mark.asyncio
async def test_close_ends_waiting_iteration() -> None:
    collection = ScriptedCollection([])
    subscription = ChangeSubscription(collection)
    events = aiter(subscription)
    pending = asyncio.ensure_future(anext(events))
    await asyncio.sleep(0)

    await subscription.close()

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(pending, timeout=5)
    assert subscription.closed


def test_resumable_errors() -> None:
    assert is_resumable(AutoReconnect("reset"))
    assert not is_resumable(OperationFailure("bad", code=2))
    assert is_resumable(
        OperationFailure(
            "primary stepped down",
            code=189,
            details={"errorLabels": ["ResumableChangeStreamError"]},
        )
    )
