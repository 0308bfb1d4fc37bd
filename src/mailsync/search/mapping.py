"""Index mapping and the weighted search query for e-mails."""
from typing import Any

# customer, date, createdAt and updatedAt are intentionally not mapped
INDEX_MAPPINGS: dict[str, Any] = {
    "properties": {
        "product": {
            "type": "text",
            "analyzer": "standard",
            "fields": {
                "exact": {"type": "keyword"},
                "stemmed": {"type": "text", "analyzer": "english"},
            },
        },
        "subject": {
            "type": "text",
            "analyzer": "standard",
            "fields": {
                "exact": {"type": "keyword"},
                "stemmed": {"type": "text", "analyzer": "english"},
            },
        },
        "body": {
            "type": "text",
            "analyzer": "standard",
            "fields": {
                "stemmed": {"type": "text", "analyzer": "english"},
            },
        },
    },
}

INDEX_SETTINGS: dict[str, Any] = {
    "number_of_shards": 1,
    "number_of_replicas": 0,
}

HIGHLIGHT: dict[str, Any] = {
    "fields": {
        "subject": {"fragment_size": 200, "number_of_fragments": 1},
        "body": {"fragment_size": 200, "number_of_fragments": 2},
        "product": {},
    },
    "pre_tags": ["<mark>"],
    "post_tags": ["</mark>"],
}


def build_query(text: str) -> dict[str, Any]:
    """Build the ranked e-mail query.

    Four clauses are OR-ed together, from most to least specific: exact
    phrase on keyword fields, fuzzy best-field match, phrase match, and
    stemmed match for word variations.

    Args:
        text: Raw user query.

    Returns:
        Elasticsearch query DSL body for the ``query`` parameter.
    """
    return {
        "bool": {
            "should": [
                {
                    "multi_match": {
                        "query": text,
                        "fields": ["subject.exact^10", "product.exact^8"],
                        "type": "phrase",
                        "boost": 10,
                    }
                },
                {
                    "multi_match": {
                        "query": text,
                        "fields": ["subject^5", "product^3", "body^1"],
                        "type": "best_fields",
                        "fuzziness": "AUTO",
                        "prefix_length": 0,
                        "max_expansions": 50,
                        "tie_breaker": 0.3,
                    }
                },
                {
                    "multi_match": {
                        "query": text,
                        "fields": ["subject^3", "product^2", "body"],
                        "type": "phrase",
                        "boost": 3,
                    }
                },
                {
                    "multi_match": {
                        "query": text,
                        "fields": [
                            "subject.stemmed^2",
                            "product.stemmed^1.5",
                            "body.stemmed",
                        ],
                        "type": "best_fields",
                        "fuzziness": "AUTO",
                        "boost": 2,
                    }
                },
            ],
            "minimum_should_match": 1,
        }
    }
