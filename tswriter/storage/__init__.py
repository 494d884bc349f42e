# storage/__init__.py
from tswriter.storage.repository import LocalStore
from tswriter.storage.models import (
    Book, BookConfig, BookSource, BookSummary, Chapter, ChapterSyncStatus,
    DeleteScope, Idea, PendingChanges, StoredChapter, SyncDirection,
    SyncMetadata, SyncStatus,
)

__all__ = [
    "LocalStore",
    "Book", "BookConfig", "BookSummary", "Chapter", "Idea",
    "BookSource", "SyncStatus", "ChapterSyncStatus", "DeleteScope", "SyncDirection",
    "StoredChapter", "SyncMetadata", "PendingChanges",
]
