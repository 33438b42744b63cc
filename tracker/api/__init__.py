"""API routes"""

from tracker.api import dashboard, items, sync

__all__ = ["items", "sync", "dashboard"]
