"""Change-data-capture engine keeping the search index in sync."""

from mailsync.sync.engine import SyncEngine
from mailsync.sync.projection import PROJECTED_FIELDS, project
from mailsync.sync.types import (
    BackfillReport,
    ChangeEvent,
    EmailDocument,
    IndexPayload,
    OperationType,
    StreamStats,
    SyncPhase,
)

__all__ = [
    "PROJECTED_FIELDS",
    "BackfillReport",
    "ChangeEvent",
    "EmailDocument",
    "IndexPayload",
    "OperationType",
    "StreamStats",
    "SyncEngine",
    "SyncPhase",
    "project",
]
