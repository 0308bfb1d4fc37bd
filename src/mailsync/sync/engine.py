"""Backfill and change-stream replication from MongoDB into the search index."""

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from mailsync.exceptions import (
    ConnectionFault,
    DocumentProjectionFault,
    MalformedEvent,
    SchemaFault,
    SubscriptionBroken,
)
from mailsync.sync.gateways import IndexGateway, SourceGateway, Subscription
from mailsync.sync.projection import project
from mailsync.sync.types import (
    UPSERT_OPERATIONS,
    BackfillReport,
    ChangeEvent,
    EmailDocument,
    OperationType,
    StreamStats,
    SyncPhase,
)

logger = structlog.get_logger()

APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"


class SyncEngine:
    """Keeps the search index consistent with the source collection.

    Runs a full backfill, then applies change events one at a time in the
    order the source delivers them. Per-document failures are logged and
    counted; only startup faults and a broken subscription propagate.

    The engine owns one handle to each gateway for its whole lifetime and
    is the only writer to the index, so backfill and streaming never
    touch it concurrently.

    Attributes:
        phase: Current lifecycle phase.
        report: Result of the last backfill, if one ran.
        stats: Counters for the streaming phase.
    """

    def __init__(
        self,
        source: SourceGateway,
        index: IndexGateway,
        *,
        progress_interval: int = 100,
    ) -> None:
        """Initialize the engine.

        Args:
            source: Gateway to the document store.
            index: Gateway to the search index.
            progress_interval: Log backfill progress every N documents.
        """
        self._source = source
        self._index = index
        self._progress_interval = progress_interval
        self._phase = SyncPhase.IDLE
        self._subscription: Subscription | None = None
        self._report: BackfillReport | None = None
        self._stats = StreamStats()

    @property
    def phase(self) -> SyncPhase:
        """Current lifecycle phase."""
        return self._phase

    @property
    def report(self) -> BackfillReport | None:
        """Result of the last backfill."""
        return self._report

    @property
    def stats(self) -> StreamStats:
        """Counters for events handled while streaming."""
        return self._stats

    def _transition(self, phase: SyncPhase) -> None:
        logger.info("sync_phase_changed", previous=self._phase.value, phase=phase.value)
        self._phase = phase

    async def start(self) -> BackfillReport:
        """Provision the index, backfill, then open the change subscription.

        The feed position is captured before the snapshot read so that
        mutations committed during backfill are replayed afterwards.

        Returns:
            Backfill report.

        Raises:
            SchemaFault: If the index cannot be provisioned.
            ConnectionFault: If a backend becomes unreachable at startup.
            SubscriptionBroken: If the change feed cannot be opened.
        """
        try:
            await self._index.ensure_schema()
            position = await self._source.current_position()
        except (SchemaFault, ConnectionFault) as e:
            self._transition(SyncPhase.FAULTED)
            logger.error("sync_start_failed", error=str(e))
            raise

        if self._phase is SyncPhase.STOPPED:
            return BackfillReport()

        report = await self.backfill()

        if self._phase is SyncPhase.STOPPED:
            return report

        try:
            self._subscription = await self._source.subscribe(start_at=position)
        except SubscriptionBroken as e:
            self._transition(SyncPhase.FAULTED)
            logger.error("sync_subscribe_failed", error=str(e))
            raise

        self._transition(SyncPhase.STREAMING)
        logger.info("sync_watching_changes", start_at=str(position))
        return report

    async def backfill(self) -> BackfillReport:
        """Project and upsert every current source document.

        A failing document is logged with its id and counted; it never
        aborts the run.

        Returns:
            Counts of synced and failed documents.

        Raises:
            ConnectionFault: If the snapshot read breaks; the engine faults.
        """
        if self._phase is SyncPhase.STOPPED:
            return BackfillReport()
        self._transition(SyncPhase.BACKFILLING)
        report = BackfillReport()

        try:
            report.total = await self._source.count()
            logger.info("backfill_started", total=report.total)
            async for raw in self._source.list_all():
                if self._phase is SyncPhase.STOPPED:
                    logger.info("backfill_interrupted", synced=report.synced)
                    break
                await self._backfill_one(raw, report)
        except ConnectionFault as e:
            self._transition(SyncPhase.FAULTED)
            logger.error(
                "backfill_aborted",
                synced=report.synced,
                failed=report.failed,
                error=str(e),
            )
            raise

        # documents may be added during the scan
        report.total = max(report.total, report.synced + report.failed)
        self._report = report
        logger.info(
            "backfill_completed",
            synced=report.synced,
            failed=report.failed,
            total=report.total,
            outcome="success" if report.failed == 0 else "failure",
        )
        return report

    async def _backfill_one(self, raw: Mapping[str, Any], report: BackfillReport) -> None:
        document_id = _raw_id(raw)
        try:
            await self._upsert(EmailDocument.from_mongo(raw), "backfill")
        except (DocumentProjectionFault, ValidationError) as e:
            report.failed += 1
            report.failed_ids.append(str(document_id))
            logger.error(
                "backfill_document_failed",
                document_id=document_id,
                operation="backfill",
                error=str(e),
            )
            return

        report.synced += 1
        if report.synced % self._progress_interval == 0:
            logger.info("backfill_progress", synced=report.synced, total=report.total)

    async def _upsert(self, document: EmailDocument, operation: str) -> str:
        try:
            result = await self._index.upsert(document.id, project(document))
        except Exception as e:
            raise DocumentProjectionFault(document.id, operation, str(e)) from e
        logger.debug("document_indexed", document_id=document.id, result=result)
        return result

    async def _delete(self, document_id: str) -> str:
        try:
            result = await self._index.delete(document_id)
        except Exception as e:
            raise DocumentProjectionFault(
                document_id, OperationType.DELETE.value, str(e)
            ) from e
        return result

    async def apply(self, event: ChangeEvent) -> str:
        """Apply a single change event to the index.

        Args:
            event: Change event in delivery order.

        Returns:
            ``applied``, ``skipped`` or ``failed``.
        """
        operation = event.operation_type
        document_id = event.document_id

        try:
            if operation in UPSERT_OPERATIONS:
                if document_id is None:
                    raise MalformedEvent(f"{operation} event without documentKey")
                if event.full_document is None:
                    # deleted before the lookup ran; a later delete event follows
                    logger.warning(
                        "sync_full_document_missing",
                        document_id=document_id,
                        operation=operation,
                    )
                    self._stats.skipped += 1
                    return SKIPPED
                try:
                    document = EmailDocument.from_mongo(event.full_document)
                except ValidationError as e:
                    raise DocumentProjectionFault(document_id, operation, str(e)) from e
                result = await self._upsert(document, operation)

            elif operation == OperationType.DELETE.value:
                if document_id is None:
                    raise MalformedEvent("delete event without documentKey")
                result = await self._delete(document_id)

            else:
                raise MalformedEvent(f"unhandled operation type: {operation!r}")

        except MalformedEvent as e:
            logger.warning(
                "sync_event_malformed",
                document_id=document_id,
                operation=operation,
                error=str(e),
            )
            self._stats.skipped += 1
            return SKIPPED
        except DocumentProjectionFault as e:
            logger.error(
                "sync_event_failed",
                document_id=document_id,
                operation=operation,
                error=str(e),
            )
            self._stats.failed += 1
            return FAILED

        logger.info(
            "sync_event_applied",
            document_id=document_id,
            operation=operation,
            result=result,
            outcome="success",
        )
        self._stats.applied += 1
        return APPLIED

    async def stream(self) -> None:
        """Apply events from the subscription until stopped or broken.

        Raises:
            RuntimeError: If called before start().
            SubscriptionBroken: If the change feed terminates unexpectedly.
        """
        if self._phase is SyncPhase.STOPPED:
            return
        if self._subscription is None:
            raise RuntimeError("SyncEngine.start() must run before stream()")

        try:
            async for event in self._subscription:
                await self.apply(event)
        except SubscriptionBroken as e:
            if self._phase is SyncPhase.STOPPED:
                return
            self._transition(SyncPhase.FAULTED)
            logger.error("sync_subscription_broken", error=str(e))
            raise

        if self._phase is not SyncPhase.STOPPED:
            self._transition(SyncPhase.FAULTED)
            logger.error("sync_subscription_ended")
            raise SubscriptionBroken("change subscription ended unexpectedly")

    async def run(self) -> None:
        """Backfill, then stream until stopped."""
        await self.start()
        await self.stream()

    async def stop(self) -> None:
        """Stop accepting events.

        Closes the subscription; an event already being applied is left
        to finish by the task running stream().
        """
        if self._phase in (SyncPhase.STOPPED, SyncPhase.FAULTED):
            return
        self._transition(SyncPhase.STOPPED)
        if self._subscription is not None:
            await self._subscription.close()
        logger.info(
            "sync_stopped",
            applied=self._stats.applied,
            skipped=self._stats.skipped,
            failed=self._stats.failed,
        )


def _raw_id(raw: Mapping[str, Any]) -> str | None:
    value = raw.get("_id")
    return None if value is None else str(value)
