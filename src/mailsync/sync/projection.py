"""Projection of source e-mails into the search index schema."""

from mailsync.sync.types import EmailDocument, IndexPayload

# customer, date, createdAt and updatedAt stay in MongoDB only
PROJECTED_FIELDS: tuple[str, ...] = ("product", "subject", "body")


def project(document: EmailDocument) -> IndexPayload:
    """Map an e-mail to its index payload.

    Pure and deterministic: only fields in PROJECTED_FIELDS are copied,
    everything else is dropped.

    Args:
        document: Validated source document.

    Returns:
        Payload holding exactly the searchable fields.
    """
    return IndexPayload(**{name: getattr(document, name) for name in PROJECTED_FIELDS})
