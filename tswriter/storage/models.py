# storage/models.py
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


DEFAULT_VERSION = "1.0.0"


def now_ms() -> int:
    """Timestamp en milisegundos desde epoch, el formato de todo el store."""
    return int(time.time() * 1000)


class BookSource(Enum):
    LOCAL    = "local"      # nunca salió de este dispositivo
    CLOUD    = "cloud"      # exportado al menos una vez
    IMPORTED = "imported"   # nació en remoto


class SyncStatus(Enum):
    LOCAL_ONLY  = "local_only"
    CLOUD_ONLY  = "cloud_only"
    IN_SYNC     = "in_sync"
    OUT_OF_SYNC = "out_of_sync"


class ChapterSyncStatus(Enum):
    SYNCED   = "synced"
    PENDING  = "pending"
    CONFLICT = "conflict"


class DeleteScope(Enum):
    LOCAL = "local"
    CLOUD = "cloud"
    BOTH  = "both"


class SyncDirection(Enum):
    PUSH = "push"
    PULL = "pull"


# ------------------------------------------------------------------
# Config del libro
# ------------------------------------------------------------------

@dataclass
class Idea:
    id:    str
    text:  str
    order: int

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "order": self.order}

    @classmethod
    def from_dict(cls, data: dict) -> "Idea":
        return cls(id=data["id"], text=data.get("text", ""), order=int(data.get("order", 0)))


@dataclass
class Chapter:
    """
    Metadata de un capítulo. file_name se deriva una sola vez al crearlo
    y no cambia aunque cambie el título: renombrar archivos remotos
    no es gratis.
    """
    id:        str
    title:     str
    file_name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "fileName": self.file_name}

    @classmethod
    def from_dict(cls, data: dict) -> "Chapter":
        return cls(id=data["id"], title=data.get("title", ""), file_name=data["fileName"])


@dataclass
class BookConfig:
    """
    chapter_order es siempre una permutación de los ids de chapters,
    y cada capítulo tiene su entrada en ideas (aunque esté vacía).
    Se serializa con las claves camelCase del formato remoto.
    """
    chapters:      list[Chapter]          = field(default_factory=list)
    chapter_order: list[str]              = field(default_factory=list)
    ideas:         dict[str, list[Idea]]  = field(default_factory=dict)

    def find_chapter(self, chapter_id: str) -> Optional[Chapter]:
        return next((c for c in self.chapters if c.id == chapter_id), None)

    def ordered_chapters(self) -> list[Chapter]:
        by_id = {c.id: c for c in self.chapters}
        return [by_id[cid] for cid in self.chapter_order if cid in by_id]

    def to_dict(self) -> dict:
        return {
            "chapters":     [c.to_dict() for c in self.chapters],
            "chapterOrder": list(self.chapter_order),
            "ideas": {
                chapter_id: [i.to_dict() for i in ideas]
                for chapter_id, ideas in self.ideas.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "BookConfig":
        data = data or {}
        return cls(
            chapters      = [Chapter.from_dict(c) for c in data.get("chapters", [])],
            chapter_order = list(data.get("chapterOrder", [])),
            ideas         = {
                chapter_id: [Idea.from_dict(i) for i in ideas]
                for chapter_id, ideas in (data.get("ideas") or {}).items()
            },
        )


# ------------------------------------------------------------------
# Entidades persistidas
# ------------------------------------------------------------------

@dataclass
class Book:
    id:                  str
    name:                str
    source:              BookSource
    sync_status:         SyncStatus
    config:              BookConfig
    local_last_modified: int
    cloud_last_modified: Optional[int] = None
    cloud_folder_path:   Optional[str] = None
    version:             str           = DEFAULT_VERSION


@dataclass
class BookSummary:
    """Lo que devuelven los listados: el libro sin su config."""
    id:                  str
    name:                str
    source:              BookSource
    sync_status:         SyncStatus
    local_last_modified: int
    cloud_last_modified: Optional[int] = None
    version:             str           = DEFAULT_VERSION

    @classmethod
    def from_book(cls, book: Book) -> "BookSummary":
        return cls(
            id                  = book.id,
            name                = book.name,
            source              = book.source,
            sync_status         = book.sync_status,
            local_last_modified = book.local_last_modified,
            cloud_last_modified = book.cloud_last_modified,
            version             = book.version,
        )


@dataclass
class StoredChapter:
    key:           str          # f"{book_id}:{file_name}"
    book_id:       str
    file_name:     str
    content:       str
    last_modified: int
    sync_status:   ChapterSyncStatus


@dataclass
class SyncMetadata:
    """Bookkeeping por archivo remoto, indexado por su path."""
    drive_file_id:       str
    last_sync_time:      int
    local_last_modified: int
    drive_last_modified: int


@dataclass
class PendingChanges:
    books:    list[str]              = field(default_factory=list)   # nombres out_of_sync
    chapters: list[tuple[str, str]]  = field(default_factory=list)   # (book_id, file_name)
    book_ids: list[str]              = field(default_factory=list)   # mismos libros, por id

    def is_empty(self) -> bool:
        return not self.books and not self.chapters


@dataclass
class JournalEntry:
    """Operación multi-paso empezada y todavía no confirmada."""
    book_id:    str
    operation:  str
    started_at: int


def chapter_key(book_id: str, file_name: str) -> str:
    return f"{book_id}:{file_name}"
