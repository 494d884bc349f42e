# storage/repository.py
import json
import logging
import random
import sqlite3
import string
from typing import Any, Optional

from tswriter.errors import BookNotFoundError
from tswriter.storage.db import get_connection, init_schema
from tswriter.storage.models import (
    DEFAULT_VERSION,
    Book, BookConfig, BookSource, SyncStatus, ChapterSyncStatus,
    StoredChapter, SyncMetadata, PendingChanges, JournalEntry,
    chapter_key, now_ms,
)

logger = logging.getLogger(__name__)

_GOOGLE_CLIENT_ID = "google_client_id"
_GOOGLE_API_KEY   = "google_api_key"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _generate_book_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"book_{now_ms()}_{suffix}"


class LocalStore:
    """
    Única interfaz entre el resto de la aplicación y SQLite.
    Recibe un db_path para facilitar el testing con :memory:.

    No aplica reglas de negocio (unicidad de nombres, permutaciones):
    eso es trabajo del BookManager y de los servicios.
    """

    def __init__(self, db_path: str | None = None):
        self._conn = get_connection(db_path)
        init_schema(self._conn)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def create_local_book(self, name: str) -> str:
        """
        Crea un libro local vacío y devuelve su id.
        No comprueba unicidad del nombre; el caller decide.
        """
        book = Book(
            id                  = _generate_book_id(),
            name                = name,
            source              = BookSource.LOCAL,
            sync_status         = SyncStatus.LOCAL_ONLY,
            config              = BookConfig(),
            local_last_modified = now_ms(),
            version             = DEFAULT_VERSION,
        )
        self.save_book(book)
        logger.debug("Libro local creado: %s (%s)", book.name, book.id)
        return book.id

    def get_book(self, book_id: str) -> Book | None:
        row = self._conn.execute(
            "SELECT * FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        return self._row_to_book(row) if row else None

    def save_book(self, book: Book) -> None:
        """Upsert: sobreescribe el libro entero."""
        with self._conn:
            self._save_book(book)

    def list_books(self) -> list[Book]:
        rows = self._conn.execute("SELECT * FROM books ORDER BY rowid ASC").fetchall()
        return [self._row_to_book(r) for r in rows]

    def list_local_books(self) -> list[Book]:
        return [b for b in self.list_books() if b.source == BookSource.LOCAL]

    def list_cloud_books(self) -> list[Book]:
        return [b for b in self.list_books() if b.source == BookSource.CLOUD]

    def get_book_config(self, book_id: str) -> BookConfig | None:
        book = self.get_book(book_id)
        return book.config if book else None

    def update_book_config(self, book_id: str, config: BookConfig) -> None:
        """
        Reemplaza la config y marca el libro como modificado.
        Un libro con copia remota pasa a out_of_sync.
        """
        book = self.get_book(book_id)
        if not book:
            raise BookNotFoundError(book_id)

        book.config = config
        book.local_last_modified = now_ms()
        if book.source != BookSource.LOCAL:
            book.sync_status = SyncStatus.OUT_OF_SYNC

        self.save_book(book)

    def update_book_sync_status(
        self,
        book_id:             str,
        sync_status:         SyncStatus,
        cloud_last_modified: int | None = None,
    ) -> None:
        book = self.get_book(book_id)
        if not book:
            raise BookNotFoundError(book_id)

        book.sync_status = sync_status
        if cloud_last_modified is not None:
            book.cloud_last_modified = cloud_last_modified

        self.save_book(book)

    def delete_book(self, book_id: str) -> None:
        """Borra el libro y todos sus capítulos en una sola transacción."""
        with self._conn:
            self._conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            self._conn.execute("DELETE FROM chapters WHERE book_id = ?", (book_id,))

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------

    def get_chapter_content(self, book_id: str, file_name: str) -> str | None:
        row = self._conn.execute(
            "SELECT content FROM chapters WHERE key = ?",
            (chapter_key(book_id, file_name),),
        ).fetchone()
        return row["content"] if row else None

    def get_stored_chapter(self, book_id: str, file_name: str) -> StoredChapter | None:
        row = self._conn.execute(
            "SELECT * FROM chapters WHERE key = ?",
            (chapter_key(book_id, file_name),),
        ).fetchone()
        return self._row_to_chapter(row) if row else None

    def save_chapter_content(
        self,
        book_id:           str,
        file_name:         str,
        content:           str,
        is_sync_operation: bool = False,
    ) -> None:
        """
        Guarda el contenido y sella last_modified.

        - Escritura normal: el capítulo queda pending y, si el libro
          tiene copia remota, el libro pasa a out_of_sync.
        - Escritura de sync (pull/import): el capítulo queda synced y
          el estado del libro no se toca, para que un pull no se
          marque a sí mismo como sucio.
        """
        now    = now_ms()
        status = ChapterSyncStatus.SYNCED if is_sync_operation else ChapterSyncStatus.PENDING

        with self._conn:
            self._conn.execute(
                """
                INSERT INTO chapters (key, book_id, file_name, content, last_modified, sync_status)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET
                    content       = excluded.content,
                    last_modified = excluded.last_modified,
                    sync_status   = excluded.sync_status
                """,
                (chapter_key(book_id, file_name), book_id, file_name, content, now, status.value),
            )

            book = self.get_book(book_id)
            if book:
                book.local_last_modified = now
                if not is_sync_operation and book.source != BookSource.LOCAL:
                    book.sync_status = SyncStatus.OUT_OF_SYNC
                self._save_book(book)

    def delete_chapter_content(self, book_id: str, file_name: str) -> None:
        with self._conn:
            self._conn.execute(
                "DELETE FROM chapters WHERE key = ?",
                (chapter_key(book_id, file_name),),
            )

    def list_chapter_files(self, book_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT file_name FROM chapters WHERE book_id = ? ORDER BY rowid ASC",
            (book_id,),
        ).fetchall()
        return [r["file_name"] for r in rows]

    # ------------------------------------------------------------------
    # Estado de sync
    # ------------------------------------------------------------------

    def get_pending_changes(self) -> PendingChanges:
        """Alimenta la cola de sync incremental."""
        books = self._conn.execute(
            "SELECT id, name FROM books WHERE sync_status = ? ORDER BY rowid ASC",
            (SyncStatus.OUT_OF_SYNC.value,),
        ).fetchall()
        chapters = self._conn.execute(
            "SELECT book_id, file_name FROM chapters WHERE sync_status = ? ORDER BY rowid ASC",
            (ChapterSyncStatus.PENDING.value,),
        ).fetchall()
        return PendingChanges(
            books    = [r["name"] for r in books],
            chapters = [(r["book_id"], r["file_name"]) for r in chapters],
            book_ids = [r["id"] for r in books],
        )

    def mark_as_synced(self, kind: str, key: str) -> None:
        """
        kind="book": key es el id del libro → in_sync.
        kind="chapter": key es "book_id:file_name" → synced.
        Claves inexistentes se ignoran.
        """
        if kind == "book":
            table, status = "books", SyncStatus.IN_SYNC.value
            column = "id"
        elif kind == "chapter":
            table, status = "chapters", ChapterSyncStatus.SYNCED.value
            column = "key"
        else:
            raise ValueError(f"kind desconocido: {kind!r}")

        with self._conn:
            self._conn.execute(
                f"UPDATE {table} SET sync_status = ? WHERE {column} = ?",
                (status, key),
            )

    def clear_pending_changes_for_book(self, book_id: str) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE chapters SET sync_status = ? WHERE book_id = ? AND sync_status = ?",
                (ChapterSyncStatus.SYNCED.value, book_id, ChapterSyncStatus.PENDING.value),
            )

    # ------------------------------------------------------------------
    # Sync metadata (por path remoto)
    # ------------------------------------------------------------------

    def get_sync_metadata(self, file_path: str) -> SyncMetadata | None:
        row = self._conn.execute(
            "SELECT * FROM sync_metadata WHERE key = ?", (file_path,)
        ).fetchone()
        if not row:
            return None
        return SyncMetadata(
            drive_file_id       = row["drive_file_id"],
            last_sync_time      = row["last_sync_time"],
            local_last_modified = row["local_last_modified"],
            drive_last_modified = row["drive_last_modified"],
        )

    def set_sync_metadata(self, file_path: str, metadata: SyncMetadata) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO sync_metadata
                    (key, drive_file_id, last_sync_time, local_last_modified, drive_last_modified)
                VALUES (?, ?, ?, ?, ?)
                """,
                (file_path, metadata.drive_file_id, metadata.last_sync_time,
                 metadata.local_last_modified, metadata.drive_last_modified),
            )

    def delete_sync_metadata(self, file_path: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM sync_metadata WHERE key = ?", (file_path,))

    # ------------------------------------------------------------------
    # App config
    # ------------------------------------------------------------------

    def get_app_config(self, key: str) -> Any:
        row = self._conn.execute(
            "SELECT value_json FROM app_config WHERE key = ?", (key,)
        ).fetchone()
        if not row or row["value_json"] is None:
            return None
        return json.loads(row["value_json"])

    def set_app_config(self, key: str, value: Any) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO app_config (key, value_json, last_modified) VALUES (?, ?, ?)",
                (key, json.dumps(value), now_ms()),
            )

    def delete_app_config(self, key: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM app_config WHERE key = ?", (key,))

    def get_google_client_id(self) -> Optional[str]:
        return self.get_app_config(_GOOGLE_CLIENT_ID)

    def set_google_client_id(self, client_id: str) -> None:
        self.set_app_config(_GOOGLE_CLIENT_ID, client_id)

    def get_google_api_key(self) -> Optional[str]:
        return self.get_app_config(_GOOGLE_API_KEY)

    def set_google_api_key(self, api_key: str) -> None:
        self.set_app_config(_GOOGLE_API_KEY, api_key)

    # ------------------------------------------------------------------
    # Journal de operaciones multi-paso
    # ------------------------------------------------------------------

    def begin_journal(self, book_id: str, operation: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_journal (book_id, operation, started_at) VALUES (?, ?, ?)",
                (book_id, operation, now_ms()),
            )

    def end_journal(self, book_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM sync_journal WHERE book_id = ?", (book_id,))

    def list_journal(self) -> list[JournalEntry]:
        rows = self._conn.execute(
            "SELECT * FROM sync_journal ORDER BY started_at ASC"
        ).fetchall()
        return [
            JournalEntry(book_id=r["book_id"], operation=r["operation"], started_at=r["started_at"])
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Limpieza
    # ------------------------------------------------------------------

    def clear_all_books(self) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM books")
            self._conn.execute("DELETE FROM chapters")

    def clear_all_config(self) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM app_config")

    def clear_all_data(self) -> None:
        with self._conn:
            for table in ("books", "chapters", "sync_metadata", "app_config", "sync_journal"):
                self._conn.execute(f"DELETE FROM {table}")

    # ------------------------------------------------------------------
    # Mapeo de rows a dataclasses
    # ------------------------------------------------------------------

    def _save_book(self, book: Book) -> None:
        # Sin transacción propia: los callers la abren.
        self._conn.execute(
            """
            INSERT INTO books
                (id, name, source, sync_status, config_json, local_last_modified,
                 cloud_last_modified, cloud_folder_path, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                name                = excluded.name,
                source              = excluded.source,
                sync_status         = excluded.sync_status,
                config_json         = excluded.config_json,
                local_last_modified = excluded.local_last_modified,
                cloud_last_modified = excluded.cloud_last_modified,
                cloud_folder_path   = excluded.cloud_folder_path,
                version             = excluded.version
            """,
            (
                book.id, book.name, book.source.value, book.sync_status.value,
                json.dumps(book.config.to_dict(), ensure_ascii=False),
                book.local_last_modified, book.cloud_last_modified,
                book.cloud_folder_path, book.version,
            ),
        )

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> Book:
        return Book(
            id                  = row["id"],
            name                = row["name"],
            source              = BookSource(row["source"]),
            sync_status         = SyncStatus(row["sync_status"]),
            config              = BookConfig.from_dict(json.loads(row["config_json"])),
            local_last_modified = row["local_last_modified"],
            cloud_last_modified = row["cloud_last_modified"],
            cloud_folder_path   = row["cloud_folder_path"],
            version             = row["version"],
        )

    @staticmethod
    def _row_to_chapter(row: sqlite3.Row) -> StoredChapter:
        return StoredChapter(
            key           = row["key"],
            book_id       = row["book_id"],
            file_name     = row["file_name"],
            content       = row["content"],
            last_modified = row["last_modified"],
            sync_status   = ChapterSyncStatus(row["sync_status"]),
        )

    # ------------------------------------------------------------------
    # Cleanup (para tests)
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._conn.close()
