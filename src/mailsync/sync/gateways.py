"""Contracts the sync engine requires from its source and index backends."""
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol, runtime_checkable

from mailsync.sync.types import ChangeEvent, IndexPayload


@runtime_checkable
class Subscription(Protocol):
    """Handle on a live change feed.

    Iterating yields ChangeEvents strictly in source-commit order; the
    next event is only pulled once the consumer is done with the current
    one. close() ends the iteration cleanly.
    """

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        """Iterate over change events in commit order."""
        ...

    async def close(self) -> None:
        """Stop delivering events. Idempotent."""
        ...


@runtime_checkable
class SourceGateway(Protocol):
    """Document store the index is derived from."""

    async def count(self) -> int:
        """Return the number of documents currently in the collection."""
        ...

    def list_all(self) -> AsyncIterator[Mapping[str, Any]]:
        """Yield every current document as a finite snapshot read."""
        ...

    async def current_position(self) -> Any:
        """Return an opaque feed position to start a subscription from."""
        ...

    async def subscribe(self, start_at: Any = None) -> Subscription:
        """Open the change feed, optionally from a captured position.

        Raises:
            SubscriptionBroken: If the feed cannot be opened.
        """
        ...


@runtime_checkable
class IndexGateway(Protocol):
    """Search index written by the sync engine."""

    async def ensure_schema(self) -> None:
        """Create the index with its mapping if it does not exist.

        Raises:
            SchemaFault: If the index cannot be created.
        """
        ...

    async def upsert(self, document_id: str, payload: IndexPayload) -> str:
        """Write payload under document_id, replacing any prior value."""
        ...

    async def delete(self, document_id: str) -> str:
        """Remove document_id; an absent id is reported, not raised."""
        ...
