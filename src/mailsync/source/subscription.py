"""Resumable MongoDB change stream subscription."""

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

import structlog
from pymongo.errors import ConnectionFailure, CursorNotFound, PyMongoError

from mailsync.exceptions import SubscriptionBroken
from mailsync.sync.types import ChangeEvent

logger = structlog.get_logger()


def is_resumable(error: PyMongoError) -> bool:
    """Check whether a change stream error can be recovered by resuming.

    Args:
        error: Error raised while iterating the stream.

    Returns:
        True for network failures, lost cursors and errors the server
        labels as resumable.
    """
    if isinstance(error, (ConnectionFailure, CursorNotFound)):
        return True
    return error.has_error_label("ResumableChangeStreamError")


class ChangeSubscription:
    """Handle on a collection change stream.

    Iterating yields ChangeEvents in commit order. The resume token of an
    event is only recorded once the consumer asks for the next event, so
    a resume never skips an event that was handed out but not finished.

    Attributes:
        resume_token: Token of the last acknowledged event.
        closed: Whether close() has been called.
    """

    def __init__(
        self,
        collection: Any,
        *,
        start_at: Any = None,
        pipeline: Sequence[dict[str, Any]] | None = None,
        max_resume_attempts: int = 3,
        resume_backoff: float = 1.0,
    ) -> None:
        """Initialize the subscription (the stream opens on first iteration).

        Args:
            collection: Motor collection to watch.
            start_at: Operation time to start from, None for "now".
            pipeline: Optional aggregation stages applied server-side.
            max_resume_attempts: Consecutive resume attempts before failing.
            resume_backoff: Base delay in seconds, multiplied by the attempt.
        """
        self._collection = collection
        self._start_at = start_at
        self._pipeline = list(pipeline or [])
        self._max_resume_attempts = max_resume_attempts
        self._resume_backoff = resume_backoff
        self._resume_token: dict[str, Any] | None = None
        self._stream: Any = None
        self._closed = False

    @property
    def resume_token(self) -> dict[str, Any] | None:
        """Token of the last acknowledged event."""
        return self._resume_token

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def _open(self) -> Any:
        options: dict[str, Any] = {"full_document": "updateLookup"}
        if self._resume_token is not None:
            options["resume_after"] = self._resume_token
        elif self._start_at is not None:
            options["start_at_operation_time"] = self._start_at
        return self._collection.watch(self._pipeline, **options)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        attempts = 0
        while not self._closed:
            self._stream = self._open()
            try:
                async for change in self._stream:
                    attempts = 0
                    event = ChangeEvent.from_change(change)
                    logger.info(
                        "change_detected",
                        operation=event.operation_type,
                        document_id=event.document_id,
                    )
                    yield event
                    if event.resume_token is not None:
                        self._resume_token = event.resume_token
                    if self._closed:
                        return
            except PyMongoError as e:
                if self._closed:
                    return
                if not is_resumable(e) or attempts >= self._max_resume_attempts:
                    logger.error("change_stream_error", error=str(e), attempts=attempts)
                    raise SubscriptionBroken(str(e)) from e
                attempts += 1
                delay = self._resume_backoff * attempts
                logger.warning(
                    "change_stream_resuming",
                    attempt=attempts,
                    delay_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
                continue
            finally:
                await self._close_stream()

            if self._closed:
                return
            # invalidate (collection dropped or renamed) ends the cursor
            logger.error("change_stream_ended", resume_token=self._resume_token)
            raise SubscriptionBroken("change stream was closed by the server")

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.close()

    async def close(self) -> None:
        """Stop the subscription. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._close_stream()
        logger.info("change_stream_closed", resume_token=self._resume_token)
