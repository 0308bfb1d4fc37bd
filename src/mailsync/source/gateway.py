"""MongoDB source gateway: snapshot reads and change stream subscriptions."""

from collections.abc import AsyncIterator, Mapping
from typing import Any

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING, TEXT
from pymongo.errors import PyMongoError

from mailsync.exceptions import ConnectionFault
from mailsync.source.subscription import ChangeSubscription

logger = structlog.get_logger()

COLLECTION_INDEXES: tuple[tuple[list[tuple[str, Any]], str], ...] = (
    ([("product", ASCENDING)], "product_1"),
    ([("customer", ASCENDING)], "customer_1"),
    ([("date", DESCENDING)], "date_-1"),
    # server default name, shared with collections provisioned elsewhere
    (
        [("subject", TEXT), ("body", TEXT), ("product", TEXT)],
        "subject_text_body_text_product_text",
    ),
)


class MongoSource:
    """Gateway to the e-mail collection in MongoDB.

    Owns the Motor client for its lifetime. Call connect() before use and
    close() on shutdown.
    """

    def __init__(
        self,
        uri: str,
        database: str = "emaildb",
        collection: str = "emails",
        *,
        batch_size: int = 500,
        max_resume_attempts: int = 3,
        resume_backoff: float = 1.0,
        server_selection_timeout_ms: int = 5000,
        client: AsyncIOMotorClient | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            uri: MongoDB connection string.
            database: Database holding the collection.
            collection: Collection to read and watch.
            batch_size: Cursor batch size for list_all().
            max_resume_attempts: Resume attempts for subscriptions.
            resume_backoff: Base resume delay in seconds for subscriptions.
            server_selection_timeout_ms: Fail fast when no server is reachable.
            client: Pre-built client (mainly for tests).
        """
        self._uri = uri
        self._database = database
        self._collection_name = collection
        self._batch_size = batch_size
        self._max_resume_attempts = max_resume_attempts
        self._resume_backoff = resume_backoff
        self._server_selection_timeout_ms = server_selection_timeout_ms
        self._client = client
        self._subscriptions: list[ChangeSubscription] = []

    @property
    def collection(self) -> AsyncIOMotorCollection:
        """The watched collection.

        Raises:
            ConnectionFault: If connect() has not been called.
        """
        if self._client is None:
            raise ConnectionFault("MongoDB not connected; call connect() first")
        return self._client[self._database][self._collection_name]

    async def connect(self) -> None:
        """Connect, verify the server answers, then ensure collection indexes.

        Raises:
            ConnectionFault: If the server cannot be reached.
        """
        try:
            if self._client is None:
                self._client = AsyncIOMotorClient(
                    self._uri,
                    serverSelectionTimeoutMS=self._server_selection_timeout_ms,
                )
            await self._client.admin.command("ping")
        except PyMongoError as e:
            logger.error("mongodb_connection_failed", error=str(e))
            raise ConnectionFault(f"MongoDB connection failed: {e}") from e

        logger.info(
            "mongodb_connected",
            database=self._database,
            collection=self._collection_name,
        )
        await self.ensure_indexes()

    async def ensure_indexes(self) -> None:
        """Create the collection indexes used by snapshot and operational queries.

        Failure is logged, not raised: the sync itself does not depend on them.
        """
        try:
            for keys, name in COLLECTION_INDEXES:
                await self.collection.create_index(keys, name=name)
        except PyMongoError as e:
            logger.error("mongodb_index_creation_failed", error=str(e))
            return
        logger.info("mongodb_indexes_created", count=len(COLLECTION_INDEXES))

    async def count(self) -> int:
        """Return the number of documents in the collection.

        Raises:
            ConnectionFault: If the count fails.
        """
        try:
            return await self.collection.count_documents({})
        except PyMongoError as e:
            raise ConnectionFault(f"count failed: {e}") from e

    async def list_all(self) -> AsyncIterator[Mapping[str, Any]]:
        """Yield every document in the collection.

        Streams through a cursor in batches of ``batch_size``.

        Yields:
            Raw documents as returned by the driver.

        Raises:
            ConnectionFault: If the cursor fails mid-read.
        """
        cursor = self.collection.find({}, batch_size=self._batch_size)
        try:
            async for document in cursor:
                yield document
        except PyMongoError as e:
            logger.error("mongodb_snapshot_read_failed", error=str(e))
            raise ConnectionFault(f"snapshot read failed: {e}") from e

    async def current_position(self) -> Any:
        """Capture the cluster operation time to start a subscription from.

        Returns:
            BSON timestamp of a read issued now, or None when the server
            does not report one (standalone deployments).

        Raises:
            ConnectionFault: If the read fails.
        """
        collection = self.collection
        try:
            async with await collection.database.client.start_session() as session:
                await collection.find_one({}, {"_id": 1}, session=session)
                position = session.operation_time
        except PyMongoError as e:
            raise ConnectionFault(f"could not read operation time: {e}") from e
        logger.debug("mongodb_position_captured", position=str(position))
        return position

    async def subscribe(self, start_at: Any = None) -> ChangeSubscription:
        """Open a change subscription on the collection.

        Args:
            start_at: Operation time from current_position(), None for "now".

        Returns:
            Subscription handle; iterate it for events, close() to stop.
        """
        subscription = ChangeSubscription(
            self.collection,
            start_at=start_at,
            max_resume_attempts=self._max_resume_attempts,
            resume_backoff=self._resume_backoff,
        )
        self._subscriptions.append(subscription)
        logger.info("change_stream_opened", collection=self._collection_name)
        return subscription

    async def ping(self) -> bool:
        """Check whether the server is reachable."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
        except PyMongoError:
            return False
        return True

    async def close(self) -> None:
        """Stop open subscriptions and close the client."""
        for subscription in self._subscriptions:
            await subscription.close()
        self._subscriptions.clear()
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("mongodb_connection_closed")
