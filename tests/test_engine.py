"""Sync engine tests: backfill, streaming order, and fault handling."""

import asyncio
from datetime import UTC, datetime

import pytest

from fakes import FakeIndex, FakeSource, change, email
from mailsync.exceptions import ConnectionFault, SchemaFault, SubscriptionBroken
from mailsync.sync.engine import SyncEngine
from mailsync.sync.types import ChangeEvent, SyncPhase


async def replay(engine: SyncEngine, source: FakeSource, *events: ChangeEvent) -> None:
    """Deliver events through the subscription and wait until all are applied."""
    for event in events:
        source.emit(event)
    task = asyncio.create_task(engine.stream())
    await asyncio.sleep(0)
    # the stop marker queues behind the events, so all of them are applied first
    await engine.stop()
    await asyncio.wait_for(task, timeout=5)


@pytest.mark.asyncio
async def test_end_to_end_backfill_then_update(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """Backfilled e-mail is searchable without customer; an update is reflected."""
    t0 = datetime(2024, 1, 5, 10, 0, tzinfo=UTC)
    source.documents.append(
        {
            "_id": "a1",
            "product": "Widget",
            "subject": "Order issue",
            "body": "My widget broke",
            "customer": "c1",
            "date": t0,
        }
    )

    await engine.start()

    assert index.entries["a1"] == {
        "product": "Widget",
        "subject": "Order issue",
        "body": "My widget broke",
    }
    assert "customer" not in index.entries["a1"]
    assert engine.phase is SyncPhase.STREAMING

    updated = {
        "_id": "a1",
        "product": "Widget",
        "subject": "Order issue - resolved",
        "body": "My widget broke",
        "customer": "c1",
        "date": t0,
    }
    await replay(engine, source, change("update", "a1", updated))

    assert index.entries["a1"]["subject"] == "Order issue - resolved"
    assert index.entries["a1"]["body"] == "My widget broke"
    assert index.entries["a1"]["product"] == "Widget"


@pytest.mark.asyncio
async def test_backfill_continues_past_failing_document(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """One failing write is counted while the rest are indexed."""
    source.documents.extend(email(f"d{i}") for i in range(1, 6))
    index.failing_ids.add("d3")

    report = await engine.start()

    assert report.total == 5
    assert report.synced == 4
    assert report.failed == 1
    assert report.failed_ids == ["d3"]
    assert sorted(index.entries) == ["d1", "d2", "d4", "d5"]
    assert engine.phase is SyncPhase.STREAMING


@pytest.mark.asyncio
async def test_backfill_counts_invalid_documents(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """A document missing a searchable field fails alone."""
    broken = email("bad")
    del broken["subject"]
    source.documents.extend([email("ok"), broken])

    report = await engine.backfill()

    assert report.synced == 1
    assert report.failed_ids == ["bad"]
    assert list(index.entries) == ["ok"]


@pytest.mark.asyncio
async def test_start_captures_position_before_backfill(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """The subscription opens at the position read before the snapshot."""
    source.position = "before-backfill"
    await engine.start()

    assert source.start_at == "before-backfill"
    assert index.schema_created == 1


@pytest.mark.asyncio
async def test_updates_for_same_id_apply_in_order(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """The later update wins."""
    await engine.start()

    await replay(
        engine,
        source,
        change("update", "5", email("5", subject="v1")),
        change("update", "5", email("5", subject="v2")),
    )

    assert index.entries["5"]["subject"] == "v2"
    assert engine.stats.applied == 2


@pytest.mark.asyncio
async def test_delete_after_insert_leaves_id_absent(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """Insert followed by delete ends with no entry."""
    await engine.start()

    await replay(
        engine,
        source,
        change("insert", "7", email("7")),
        change("delete", "7"),
    )

    assert await index.fetch("7") is None
    assert index.writes == [("upsert", "7"), ("delete", "7")]


@pytest.mark.asyncio
async def test_delete_of_unknown_id_is_success(engine: SyncEngine) -> None:
    """Deleting an id that was never indexed is not a failure."""
    outcome = await engine.apply(change("delete", "never-indexed"))

    assert outcome == "applied"
    assert engine.stats.failed == 0


@pytest.mark.asyncio
async def test_missing_full_document_is_skipped(
    engine: SyncEngine, index: FakeIndex
) -> None:
    """An update without a looked-up document writes nothing."""
    outcome = await engine.apply(change("update", "9"))

    assert outcome == "skipped"
    assert index.entries == {}
    assert engine.stats.skipped == 1


@pytest.mark.asyncio
async def test_unknown_operation_does_not_stop_stream(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """Unhandled operation types are skipped and later events still apply."""
    await engine.start()

    await replay(
        engine,
        source,
        change("drop", None),
        change("invalidate", "x"),
        change("insert", "8", email("8")),
    )

    assert engine.stats.skipped == 2
    assert "8" in index.entries


@pytest.mark.asyncio
async def test_delete_without_document_key_is_skipped(engine: SyncEngine) -> None:
    """A delete with no id is malformed."""
    assert await engine.apply(change("delete", None)) == "skipped"


@pytest.mark.asyncio
async def test_failed_event_does_not_block_later_events(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """A write failure for one id is logged and the next event is applied."""
    index.failing_ids.add("bad")
    await engine.start()

    await replay(
        engine,
        source,
        change("insert", "bad", email("bad")),
        change("insert", "good", email("good")),
    )

    assert engine.stats.failed == 1
    assert engine.stats.applied == 1
    assert list(index.entries) == ["good"]


@pytest.mark.asyncio
async def test_invalid_full_document_counts_as_failure(engine: SyncEngine) -> None:
    """A looked-up document that does not validate is a failed event."""
    broken = email("b1")
    del broken["body"]

    assert await engine.apply(change("replace", "b1", broken)) == "failed"


@pytest.mark.asyncio
async def test_events_during_backfill_converge(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """A document changed mid-backfill ends at its post-mutation projection."""
    source.documents.append(email("o1", subject="before"))
    source.on_list = lambda doc: source.emit(
        change("update", doc["_id"], email(doc["_id"], subject="after"))
    )

    await engine.start()
    assert index.entries["o1"]["subject"] == "before"

    await replay(engine, source)

    assert index.entries["o1"]["subject"] == "after"


@pytest.mark.asyncio
async def test_schema_fault_is_fatal(engine: SyncEngine, index: FakeIndex) -> None:
    """Index provisioning failure faults the engine and propagates."""
    index.schema_error = SchemaFault("mapping rejected")

    with pytest.raises(SchemaFault):
        await engine.start()
    assert engine.phase is SyncPhase.FAULTED


@pytest.mark.asyncio
async def test_broken_subscription_faults_engine(
    engine: SyncEngine, source: FakeSource
) -> None:
    """A subscription that dies is surfaced, not swallowed."""
    await engine.start()
    assert source.subscription is not None
    source.subscription.break_with("cursor killed")

    with pytest.raises(SubscriptionBroken):
        await engine.stream()
    assert engine.phase is SyncPhase.FAULTED


@pytest.mark.asyncio
async def test_stop_closes_subscription(engine: SyncEngine, source: FakeSource) -> None:
    """Stopping an idle stream returns cleanly and closes the handle."""
    await engine.start()
    task = asyncio.create_task(engine.stream())
    await asyncio.sleep(0)

    await engine.stop()
    await asyncio.wait_for(task, timeout=5)

    assert engine.phase is SyncPhase.STOPPED
    assert source.subscription is not None
    assert source.subscription.closed


@pytest.mark.asyncio
async def test_stream_requires_start(engine: SyncEngine) -> None:
    """stream() before start() is a programming error."""
    with pytest.raises(RuntimeError):
        await engine.stream()


@pytest.mark.asyncio
async def test_unparseable_metadata_does_not_block_indexing(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """Fields that are never indexed are never validated."""
    source.documents.extend(
        [email("t1", date="last tuesday"), email("t2", updatedAt={"x": 1})]
    )

    report = await engine.start()

    assert report.failed == 0
    assert sorted(index.entries) == ["t1", "t2"]


@pytest.mark.asyncio
async def test_update_with_unparseable_metadata_is_applied(
    engine: SyncEngine, index: FakeIndex
) -> None:
    """A change carrying odd timestamps still reaches the index."""
    outcome = await engine.apply(
        change("update", "u1", email("u1", createdAt="n/a", subject="new"))
    )

    assert outcome == "applied"
    assert index.entries["u1"]["subject"] == "new"


@pytest.mark.asyncio
async def test_snapshot_read_failure_faults_engine(
    engine: SyncEngine, source: FakeSource, index: FakeIndex
) -> None:
    """A cursor that dies mid-backfill faults the engine and propagates."""
    source.documents.append(email("d1"))
    source.list_error = ConnectionFault("cursor lost")

    with pytest.raises(ConnectionFault):
        await engine.start()

    assert engine.phase is SyncPhase.FAULTED
    assert source.subscription is None
    assert list(index.entries) == ["d1"]
