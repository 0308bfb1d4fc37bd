"""Elasticsearch index gateway for projected e-mails."""

from typing import Any

import structlog
from elasticsearch import (
    ApiError,
    AsyncElasticsearch,
    BadRequestError,
    NotFoundError,
    TransportError,
)

from mailsync.exceptions import ConnectionFault, SchemaFault
from mailsync.search.mapping import HIGHLIGHT, INDEX_MAPPINGS, INDEX_SETTINGS, build_query
from mailsync.search.schemas import SearchHit, SearchResponse
from mailsync.sync.projection import PROJECTED_FIELDS
from mailsync.sync.types import IndexPayload

logger = structlog.get_logger()

NOT_FOUND = "not_found"


class ElasticIndex:
    """Upsert-by-id / delete-by-id gateway to the e-mail search index.

    The client is created by connect() and shared by the backfill and
    streaming phases, which never run at the same time.
    """

    def __init__(
        self,
        url: str,
        index_name: str = "emaildb-email",
        *,
        request_timeout: float = 30.0,
        client: AsyncElasticsearch | None = None,
    ) -> None:
        """Initialize the gateway (call connect() before use).

        Args:
            url: Elasticsearch node URL.
            index_name: Name of the e-mail index.
            request_timeout: Seconds before a request times out.
            client: Pre-built client (mainly for tests).
        """
        self._url = url
        self._index_name = index_name
        self._request_timeout = request_timeout
        self._client = client

    @property
    def index_name(self) -> str:
        """Name of the managed index."""
        return self._index_name

    @property
    def client(self) -> AsyncElasticsearch:
        """The underlying client.

        Raises:
            ConnectionFault: If connect() has not been called.
        """
        if self._client is None:
            raise ConnectionFault("Elasticsearch not connected; call connect() first")
        return self._client

    async def connect(self) -> None:
        """Create the client and check cluster health.

        Raises:
            ConnectionFault: If the cluster cannot be reached.
        """
        try:
            if self._client is None:
                self._client = AsyncElasticsearch(
                    self._url,
                    request_timeout=self._request_timeout,
                )
            health = await self._client.cluster.health()
        except (ApiError, TransportError) as e:
            logger.error("elasticsearch_connection_failed", error=str(e))
            raise ConnectionFault(f"Elasticsearch connection failed: {e}") from e
        logger.info("elasticsearch_connected", cluster_status=health["status"])

    async def ensure_schema(self) -> None:
        """Create the index with its mapping if it does not exist.

        Safe to call on every start.

        Raises:
            SchemaFault: If the index cannot be checked or created.
        """
        try:
            if await self.client.indices.exists(index=self._index_name):
                logger.debug("elasticsearch_index_exists", index=self._index_name)
                return
            await self.client.indices.create(
                index=self._index_name,
                mappings=INDEX_MAPPINGS,
                settings=INDEX_SETTINGS,
            )
        except BadRequestError as e:
            if _error_type(e) == "resource_already_exists_exception":
                logger.info("elasticsearch_index_exists", index=self._index_name)
                return
            logger.error("elasticsearch_index_create_failed", error=str(e))
            raise SchemaFault(f"could not create index {self._index_name}: {e}") from e
        except (ApiError, TransportError) as e:
            logger.error("elasticsearch_index_create_failed", error=str(e))
            raise SchemaFault(f"could not create index {self._index_name}: {e}") from e
        logger.info("elasticsearch_index_created", index=self._index_name)

    async def upsert(self, document_id: str, payload: IndexPayload) -> str:
        """Index a payload under document_id, replacing any prior version.

        Args:
            document_id: Source document identifier.
            payload: Projected searchable fields.

        Returns:
            Backend result, ``created`` or ``updated``.
        """
        response = await self.client.index(
            index=self._index_name,
            id=document_id,
            document=payload.model_dump(),
        )
        result = str(response["result"])
        logger.debug("elasticsearch_document_indexed", document_id=document_id, result=result)
        return result

    async def delete(self, document_id: str) -> str:
        """Remove document_id from the index.

        Args:
            document_id: Source document identifier.

        Returns:
            ``deleted``, or ``not_found`` if the id was already absent.
        """
        try:
            response = await self.client.delete(index=self._index_name, id=document_id)
        except NotFoundError:
            logger.info("elasticsearch_document_absent", document_id=document_id)
            return NOT_FOUND
        return str(response["result"])

    async def fetch(self, document_id: str) -> dict[str, Any] | None:
        """Read the indexed fields for document_id.

        Args:
            document_id: Source document identifier.

        Returns:
            Stored source fields, or None if the id is not indexed.
        """
        try:
            response = await self.client.get(index=self._index_name, id=document_id)
        except NotFoundError:
            return None
        return dict(response["_source"])

    async def search(self, text: str, size: int = 50, from_: int = 0) -> SearchResponse:
        """Run the ranked e-mail query with highlights.

        Args:
            text: Raw user query.
            size: Maximum hits to return.
            from_: Number of hits to skip.

        Returns:
            Ranked hits with highlighted fragments.
        """
        try:
            response = await self.client.search(
                index=self._index_name,
                size=size,
                from_=from_,
                query=build_query(text),
                highlight=HIGHLIGHT,
                sort=["_score"],
            )
        except ApiError as e:
            logger.error("elasticsearch_search_failed", query=text, error=str(e))
            raise

        hits_section = response["hits"]
        total = hits_section.get("total", {})
        hits = [
            SearchHit(
                id=hit["_id"],
                score=hit.get("_score"),
                highlights=hit.get("highlight", {}),
                **{
                    name: hit.get("_source", {}).get(name)
                    for name in PROJECTED_FIELDS
                },
            )
            for hit in hits_section.get("hits", [])
        ]
        return SearchResponse(
            query=text,
            hits=hits,
            total=total.get("value", len(hits)) if isinstance(total, dict) else int(total),
            size=size,
            offset=from_,
        )

    async def ping(self) -> bool:
        """Check whether the cluster answers."""
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except TransportError:
            return False

    async def close(self) -> None:
        """Close the client transport."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("elasticsearch_connection_closed")


def _error_type(error: ApiError) -> str:
    body = error.body
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("type", ""))
    return str(error.message)
