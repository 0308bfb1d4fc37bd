"""Error taxonomy for the replication pipeline."""


class SyncError(Exception):
    """Base class for all replication errors."""


class ConnectionFault(SyncError):
    """Raised when a backend (MongoDB or Elasticsearch) cannot be reached."""


class SchemaFault(SyncError):
    """Raised when the search index cannot be provisioned."""


class SubscriptionBroken(SyncError):
    """Raised when the change stream terminates and cannot be resumed."""


class MalformedEvent(SyncError):
    """Raised for change events that cannot be dispatched.

    Covers unrecognized operation types and events missing the fields
    their operation requires.
    """


class DocumentProjectionFault(SyncError):
    """Raised when a single document cannot be mapped or written.

    Attributes:
        document_id: Identifier of the affected source document.
        operation: Operation being applied (``backfill`` or a change type).
    """

    def __init__(self, document_id: str | None, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed for {document_id}: {message}")
        self.document_id = document_id
        self.operation = operation
