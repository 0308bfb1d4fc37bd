"""Data model for documents, change events and index payloads."""
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OperationType(str, Enum):
    """Change stream operations the engine knows how to apply."""

    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"


UPSERT_OPERATIONS: frozenset[str] = frozenset(
    {
        OperationType.INSERT.value,
        OperationType.UPDATE.value,
        OperationType.REPLACE.value,
    }
)


class SyncPhase(str, Enum):
    """Lifecycle phase of the sync engine."""

    IDLE = "idle"
    BACKFILLING = "backfilling"
    STREAMING = "streaming"
    STOPPED = "stopped"
    FAULTED = "faulted"


def _stringify_id(value: Any) -> Any:
    # ObjectId and other BSON ids are indexed under their string form
    if value is None or isinstance(value, str):
        return value
    return str(value)


class EmailDocument(BaseModel):
    """A support e-mail as stored in the source collection.

    Attributes:
        id: Stable document identifier (stringified ``_id``).
        product: Product the e-mail is about (searchable).
        customer: Customer identifier (not searchable).
        subject: E-mail subject line (searchable).
        body: E-mail body text (searchable).
        date: When the e-mail was sent.
        created_at: Record creation timestamp.
        updated_at: Record modification timestamp.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: str = Field(alias="_id")
    product: str
    customer: str | None = None
    subject: str
    body: str
    # carried as delivered; never indexed, so never validated
    date: Any = None
    created_at: Any = Field(default=None, alias="createdAt")
    updated_at: Any = Field(default=None, alias="updatedAt")

    @field_validator("id", "customer", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> Any:
        return _stringify_id(value)

    @classmethod
    def from_mongo(cls, raw: Mapping[str, Any]) -> "EmailDocument":
        """Validate a raw collection document.

        Args:
            raw: Document as returned by the driver.

        Returns:
            Parsed e-mail document.

        Raises:
            pydantic.ValidationError: If required fields are missing or mistyped.
        """
        return cls.model_validate(dict(raw))


class IndexPayload(BaseModel):
    """Index-ready projection of an e-mail: only the searchable fields."""

    model_config = ConfigDict(frozen=True)

    product: str
    subject: str
    body: str


class Namespace(BaseModel):
    """Database and collection a change event originated from."""

    model_config = ConfigDict(frozen=True)

    db: str | None = None
    coll: str | None = None


class ChangeEvent(BaseModel):
    """Immutable notification describing one committed mutation.

    ``operation_type`` stays a plain string so that operations the engine
    does not handle (``drop``, ``invalidate``, ...) still parse and can be
    logged and skipped.

    Attributes:
        operation_type: Change stream operation type.
        document_id: Stringified ``documentKey._id``, None if absent.
        full_document: Post-mutation document for insert/update/replace.
        namespace: Source database and collection.
        resume_token: Opaque token to resume the stream after this event.
        cluster_time: Commit time of the mutation.
    """

    model_config = ConfigDict(frozen=True)

    operation_type: str
    document_id: str | None = None
    full_document: dict[str, Any] | None = None
    namespace: Namespace | None = None
    resume_token: dict[str, Any] | None = None
    cluster_time: Any = None

    @classmethod
    def from_change(cls, raw: Mapping[str, Any]) -> "ChangeEvent":
        """Build an event from a raw change stream document.

        Args:
            raw: Change document as yielded by the driver.

        Returns:
            Parsed change event.
        """
        document_key = raw.get("documentKey") or {}
        ns = raw.get("ns")
        full_document = raw.get("fullDocument")
        return cls(
            operation_type=str(raw.get("operationType", "")),
            document_id=_stringify_id(document_key.get("_id")),
            full_document=dict(full_document) if full_document is not None else None,
            namespace=Namespace(**ns) if ns else None,
            resume_token=raw.get("_id"),
            cluster_time=raw.get("clusterTime"),
        )


@dataclass
class BackfillReport:
    """Outcome of a backfill run."""

    total: int = 0
    synced: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)


@dataclass
class StreamStats:
    """Counters for events handled while streaming."""

    applied: int = 0
    skipped: int = 0
    failed: int = 0
