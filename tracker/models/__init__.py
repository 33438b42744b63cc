"""Database models"""

from tracker.models.base import Base
from tracker.models.item import ItemKind, Priority, TrackedItem
from tracker.models.sync_log import SyncLog

__all__ = [
    "Base",
    "ItemKind",
    "Priority",
    "TrackedItem",
    "SyncLog",
]
