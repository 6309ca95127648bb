"""Provider chat history synchronisation."""

from .runner import SyncRunner
from .service import ChatSyncJob, SyncJob, SyncManager, SyncStatus

__all__ = ["ChatSyncJob", "SyncJob", "SyncManager", "SyncRunner", "SyncStatus"]
