"""Elasticsearch index gateway, mapping and search schemas."""

from mailsync.search.index import ElasticIndex
from mailsync.search.mapping import INDEX_MAPPINGS, build_query
from mailsync.search.schemas import SearchHit, SearchResponse

__all__ = [
    "INDEX_MAPPINGS",
    "ElasticIndex",
    "SearchHit",
    "SearchResponse",
    "build_query",
]
