# cloud/adapter.py
import logging
from typing import Optional

from tswriter.cloud.drive import DriveClient
from tswriter.cloud.models import (
    BookInfo, CloudBooksIndex, IndexEntry, RemoteBook,
    CHAPTERS_FOLDER, FOLDER_MIME, INDEX_FILE_NAME, INFO_FILE_NAME,
    JSON_MIME, MARKDOWN_MIME,
)
from tswriter.storage.models import now_ms

logger = logging.getLogger(__name__)


class RemoteAdapter:
    """
    Traduce operaciones de libros/capítulos a carpetas y archivos remotos.
    Layout:

        <app-folder>/
          books.json
          <bookId>/
            info.json
            chapters/<fileName>

    Toda escritura es create-or-update por nombre exacto dentro del padre,
    así que repetir una operación converge en vez de duplicar.
    Limitación conocida: si dos procesos compiten creando el mismo nombre
    pueden quedar duplicados; se usa siempre el primero que devuelva la búsqueda.

    Sin estado salvo el id de la carpeta raíz cacheado.
    """

    def __init__(self, client: DriveClient, app_folder_name: str = "TSWriter"):
        self._client          = client
        self._app_folder_name = app_folder_name
        self._app_folder_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Carpeta raíz e índice
    # ------------------------------------------------------------------

    def ensure_app_folder(self) -> str:
        """Find-or-create idempotente de la carpeta raíz. Se cachea."""
        if self._app_folder_id:
            return self._app_folder_id

        existing = self._client.find_file(None, self._app_folder_name, FOLDER_MIME)
        if existing:
            self._app_folder_id = existing.id
        else:
            logger.info("Creando carpeta raíz remota '%s'", self._app_folder_name)
            self._app_folder_id = self._client.create_folder(self._app_folder_name)

        return self._app_folder_id

    def get_cloud_books_index(self) -> CloudBooksIndex:
        """Índice vacío (no error) si books.json todavía no existe."""
        app_folder_id = self.ensure_app_folder()
        index_file = self._client.find_file(app_folder_id, INDEX_FILE_NAME, JSON_MIME)
        if not index_file:
            return CloudBooksIndex()

        return CloudBooksIndex.from_json(self._client.download(index_file.id))

    def update_cloud_books_index(self, index: CloudBooksIndex) -> str:
        index.last_updated = now_ms()
        app_folder_id = self.ensure_app_folder()
        return self._save_file(app_folder_id, INDEX_FILE_NAME, index.to_json(), JSON_MIME)

    def update_index_entry(self, book_id: str, info: BookInfo) -> str:
        """Read-modify-write de la entrada del libro en books.json."""
        index = self.get_cloud_books_index()
        index.books[book_id] = IndexEntry(
            name          = info.name,
            folder_path   = book_id,
            last_modified = info.last_modified,
            version       = info.version,
        )
        return self.update_cloud_books_index(index)

    # ------------------------------------------------------------------
    # Carpetas de libro
    # ------------------------------------------------------------------

    def create_book_folder(self, book_id: str) -> str:
        """
        Find-or-create de la carpeta del libro.
        Se nombra por id, no por nombre visible: renombrar no colisiona.
        """
        app_folder_id = self.ensure_app_folder()
        return self._ensure_folder(app_folder_id, book_id)

    def create_chapters_folder(self, book_folder_id: str) -> str:
        return self._ensure_folder(book_folder_id, CHAPTERS_FOLDER)

    # ------------------------------------------------------------------
    # info.json
    # ------------------------------------------------------------------

    def save_book_info(self, book_id: str, info: BookInfo) -> str:
        folder_id = self.create_book_folder(book_id)
        return self._save_file(folder_id, INFO_FILE_NAME, info.to_json(), JSON_MIME)

    def get_book_info(self, book_id: str) -> BookInfo | None:
        folder = self._find_book_folder(book_id)
        if not folder:
            return None
        return self._read_info(folder)

    # ------------------------------------------------------------------
    # Capítulos sueltos (sync incremental)
    # ------------------------------------------------------------------

    def save_chapter(self, book_id: str, file_name: str, content: str) -> str:
        folder_id   = self.create_book_folder(book_id)
        chapters_id = self.create_chapters_folder(folder_id)
        return self._save_file(chapters_id, file_name, content, MARKDOWN_MIME)

    def delete_chapter(self, book_id: str, file_name: str) -> None:
        folder = self._find_book_folder(book_id)
        if not folder:
            return
        chapters = self._client.find_file(folder, CHAPTERS_FOLDER, FOLDER_MIME)
        if not chapters:
            return
        chapter_file = self._client.find_file(chapters.id, file_name, MARKDOWN_MIME)
        if chapter_file:
            self._client.delete(chapter_file.id)

    def list_chapters(self, book_id: str) -> list[str]:
        """Nombres de los markdown en chapters/. Vacío si el libro no existe en remoto."""
        folder = self._find_book_folder(book_id)
        if not folder:
            return []
        chapters = self._client.find_file(folder, CHAPTERS_FOLDER, FOLDER_MIME)
        if not chapters:
            return []
        return [f.name for f in self._client.list_children(chapters.id, MARKDOWN_MIME)]

    # ------------------------------------------------------------------
    # Operaciones compuestas
    # ------------------------------------------------------------------

    def export_book(self, book_id: str, info: BookInfo, chapters: dict[str, str]) -> dict[str, str]:
        """
        Exporta un libro completo. Cada paso es idempotente y el índice
        se actualiza el último: si algo falla antes, el libro no aparece
        en los listados y el siguiente export lo completa.

        Devuelve {path remoto: file id} de cada archivo escrito.
        """
        written: dict[str, str] = {}

        # ── Fase 1: staging de todo el contenido ──────────────────────
        folder_id = self.create_book_folder(book_id)
        written[f"{book_id}/{INFO_FILE_NAME}"] = self._save_file(
            folder_id, INFO_FILE_NAME, info.to_json(), JSON_MIME
        )

        chapters_id = self.create_chapters_folder(folder_id)
        for file_name, content in chapters.items():
            written[f"{book_id}/{CHAPTERS_FOLDER}/{file_name}"] = self._save_file(
                chapters_id, file_name, content, MARKDOWN_MIME
            )

        # Capítulos borrados en local desde el último export
        for stale in self._client.list_children(chapters_id, MARKDOWN_MIME):
            if stale.name not in chapters:
                logger.debug("Borrando capítulo remoto obsoleto %s/%s", book_id, stale.name)
                self._client.delete(stale.id)

        # ── Fase 2: commit en el índice ───────────────────────────────
        written[INDEX_FILE_NAME] = self.update_index_entry(book_id, info)

        logger.info(
            "Libro '%s' (%s) exportado: %d capítulos", info.name, book_id, len(chapters)
        )
        return written

    def import_book(self, book_id: str) -> RemoteBook | None:
        """
        Lee info.json y todos los markdown de chapters/.
        None si falta la carpeta del libro o su info.json.
        """
        folder = self._find_book_folder(book_id)
        if not folder:
            return None

        info = self._read_info(folder)
        if not info:
            return None

        chapters: dict[str, str] = {}
        chapters_folder = self._client.find_file(folder, CHAPTERS_FOLDER, FOLDER_MIME)
        if chapters_folder:
            for f in self._client.list_children(chapters_folder.id, MARKDOWN_MIME):
                chapters[f.name] = self._client.download(f.id)

        return RemoteBook(info=info, chapters=chapters)

    def delete_book_from_cloud(self, book_id: str) -> None:
        """Borra la carpeta del libro (en cascada) y su entrada del índice."""
        folder = self._find_book_folder(book_id)
        if folder:
            self._client.delete(folder)

        index = self.get_cloud_books_index()
        if book_id in index.books:
            del index.books[book_id]
            self.update_cloud_books_index(index)

        logger.info("Libro %s borrado del remoto", book_id)

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _find_book_folder(self, book_id: str) -> str | None:
        app_folder_id = self.ensure_app_folder()
        folder = self._client.find_file(app_folder_id, book_id, FOLDER_MIME)
        return folder.id if folder else None

    def _read_info(self, book_folder_id: str) -> BookInfo | None:
        info_file = self._client.find_file(book_folder_id, INFO_FILE_NAME, JSON_MIME)
        if not info_file:
            return None
        return BookInfo.from_json(self._client.download(info_file.id))

    def _ensure_folder(self, parent_id: str, name: str) -> str:
        existing = self._client.find_file(parent_id, name, FOLDER_MIME)
        if existing:
            return existing.id
        return self._client.create_folder(name, parent_id)

    def _save_file(self, parent_id: str, name: str, content: str, mime_type: str) -> str:
        existing = self._client.find_file(parent_id, name, mime_type)
        return self._client.upload(
            name      = name,
            content   = content,
            mime_type = mime_type,
            parent_id = parent_id,
            file_id   = existing.id if existing else None,
        )
