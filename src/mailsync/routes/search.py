"""E-mail search API endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from elasticsearch import ApiError, TransportError
from fastapi import APIRouter, HTTPException, Query, Request, status

from mailsync.search.schemas import SearchResponse

if TYPE_CHECKING:
    from mailsync.search.index import ElasticIndex

router = APIRouter(tags=["search"])


@router.get(
    "/search",
    response_model=SearchResponse,
    summary="Full-text search across synced e-mails",
    description="Weighted exact, fuzzy, phrase and stemmed matching with highlights.",
)
async def search(
    request: Request,
    q: str = Query(
        ...,
        min_length=1,
        max_length=200,
        description="Search query string",
    ),
    size: int = Query(default=50, ge=1, le=100, description="Results per page"),
    offset: int = Query(default=0, ge=0, description="Results to skip"),
) -> SearchResponse:
    """Search e-mails by product, subject and body.

    Args:
        request: FastAPI request (provides access to app state).
        q: Search query string (1-200 characters).
        size: Maximum results per page (1-100, default 50).
        offset: Pagination offset (default 0).

    Returns:
        Ranked hits with <mark>-highlighted fragments.

    Raises:
        HTTPException: 503 when the search backend fails.
    """
    index: ElasticIndex = request.app.state.index

    try:
        return await index.search(q, size=size, from_=offset)
    except (ApiError, TransportError) as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search backend unavailable",
        ) from e
