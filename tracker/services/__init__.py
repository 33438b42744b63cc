"""Services"""

from tracker.services.gitcode_client import GitCodeClient, RemoteSourceError
from tracker.services.sync_service import SyncService

__all__ = ["GitCodeClient", "RemoteSourceError", "SyncService"]
