"""Pydantic schemas for e-mail search responses."""

from pydantic import BaseModel, Field


class SearchHit(BaseModel):
    """Individual search hit with highlighted fragments.

    Attributes:
        id: Source document identifier.
        score: Relevance score (higher is better).
        product: Indexed product name.
        subject: Indexed subject line.
        body: Indexed body text.
        highlights: Matched fragments per field, wrapped in <mark> tags.
    """

    id: str
    score: float | None = None
    product: str | None = None
    subject: str | None = None
    body: str | None = None
    highlights: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Matched fragments per field with <mark> highlight tags",
    )


class SearchResponse(BaseModel):
    """Paginated search response envelope.

    Attributes:
        query: The original search query string.
        hits: Ranked hits for the requested page.
        total: Total number of matching documents.
        size: Maximum hits per page.
        offset: Number of hits skipped.
    """

    query: str
    hits: list[SearchHit]
    total: int
    size: int
    offset: int
