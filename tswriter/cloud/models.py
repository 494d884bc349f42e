# cloud/models.py
import json
from dataclasses import dataclass, field
from typing import Optional

from tswriter.storage.models import BookConfig, SyncStatus, DEFAULT_VERSION


FOLDER_MIME   = "application/vnd.google-apps.folder"
JSON_MIME     = "application/json"
MARKDOWN_MIME = "text/markdown"

INDEX_FILE_NAME    = "books.json"
INFO_FILE_NAME     = "info.json"
CHAPTERS_FOLDER    = "chapters"


@dataclass
class DriveFile:
    id:            str
    name:          str
    mime_type:     Optional[str] = None
    modified_time: Optional[str] = None
    parents:       list[str]     = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "DriveFile":
        return cls(
            id            = data["id"],
            name          = data.get("name", ""),
            mime_type     = data.get("mimeType"),
            modified_time = data.get("modifiedTime"),
            parents       = list(data.get("parents") or []),
        )


# ------------------------------------------------------------------
# Índice global (books.json)
# ------------------------------------------------------------------

@dataclass
class IndexEntry:
    name:          str
    folder_path:   str
    last_modified: int
    version:       str = DEFAULT_VERSION

    def to_dict(self) -> dict:
        return {
            "name":         self.name,
            "folderPath":   self.folder_path,
            "lastModified": self.last_modified,
            "version":      self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexEntry":
        return cls(
            name          = data.get("name", ""),
            folder_path   = data.get("folderPath", ""),
            last_modified = int(data.get("lastModified", 0)),
            version       = data.get("version", DEFAULT_VERSION),
        )


@dataclass
class CloudBooksIndex:
    books:        dict[str, IndexEntry] = field(default_factory=dict)
    last_updated: int                   = 0

    def to_json(self) -> str:
        return json.dumps({
            "books":       {book_id: e.to_dict() for book_id, e in self.books.items()},
            "lastUpdated": self.last_updated,
        }, ensure_ascii=False, indent=2)

    @classmethod
    def from_json(cls, raw: str) -> "CloudBooksIndex":
        data = json.loads(raw) if raw else {}
        return cls(
            books        = {
                book_id: IndexEntry.from_dict(entry)
                for book_id, entry in (data.get("books") or {}).items()
            },
            last_updated = int(data.get("lastUpdated", 0)),
        )


# ------------------------------------------------------------------
# Metadata por libro (<bookId>/info.json)
# ------------------------------------------------------------------

@dataclass
class BookInfo:
    """Fuente de verdad para pull e import."""
    id:            str
    name:          str
    version:       str
    created_at:    int
    last_modified: int
    config:        BookConfig

    def to_json(self) -> str:
        return json.dumps({
            "id":           self.id,
            "name":         self.name,
            "version":      self.version,
            "createdAt":    self.created_at,
            "lastModified": self.last_modified,
            "config":       self.config.to_dict(),
        }, ensure_ascii=False, indent=2)

    @classmethod
    def from_json(cls, raw: str) -> "BookInfo":
        data = json.loads(raw)
        return cls(
            id            = data["id"],
            name          = data.get("name", ""),
            version       = data.get("version", DEFAULT_VERSION),
            created_at    = int(data.get("createdAt", 0)),
            last_modified = int(data.get("lastModified", 0)),
            config        = BookConfig.from_dict(data.get("config")),
        )


@dataclass
class RemoteBook:
    """Lo que devuelve import_book: info + contenido de cada capítulo."""
    info:     BookInfo
    chapters: dict[str, str] = field(default_factory=dict)   # file_name -> markdown


@dataclass
class CloudBookInfo:
    """Entrada del índice remoto tal como la ve el usuario."""
    id:            str
    name:          str
    folder_path:   str
    last_modified: int
    version:       str
    available:     bool    # True si no existe localmente → se puede importar

    @property
    def sync_status(self) -> Optional[SyncStatus]:
        """cloud_only mientras no tenga copia local; nunca se persiste."""
        return SyncStatus.CLOUD_ONLY if self.available else None
