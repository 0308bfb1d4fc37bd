"""MongoDB source gateway with snapshot reads and resumable change streams."""

from mailsync.source.gateway import MongoSource
from mailsync.source.subscription import ChangeSubscription

__all__ = [
    "ChangeSubscription",
    "MongoSource",
]
