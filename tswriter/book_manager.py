# tswriter/book_manager.py
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from tswriter.auth import AuthProvider
from tswriter.cloud.adapter import RemoteAdapter
from tswriter.cloud.models import BookInfo, CloudBookInfo, RemoteBook, INFO_FILE_NAME
from tswriter.config_loader import SyncSettings
from tswriter.errors import (
    BookNotFoundError, ConflictError, ImportConflictError, NameConflictError,
    NotExportableError, NotFoundError, RemoteUnavailableError, UnauthenticatedError,
)
from tswriter.storage.models import (
    Book, BookConfig, BookSource, BookSummary, DeleteScope, SyncDirection,
    SyncMetadata, SyncStatus, chapter_key, now_ms,
)
from tswriter.storage.repository import LocalStore

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Resultados: lo que consumen el CLI y el sync en background
# ------------------------------------------------------------------

@dataclass
class BatchSyncResult:
    success: list[str]      = field(default_factory=list)   # nombres de libro
    failed:  list[str]      = field(default_factory=list)
    errors:  dict[str, str] = field(default_factory=dict)   # nombre -> mensaje


@dataclass
class BookStats:
    total:       int
    local:       int
    cloud:       int
    imported:    int
    out_of_sync: int


class SyncOverview(Enum):
    """Resumen global para la barra de estado / `cloud status`."""
    OFFLINE = "offline"   # sync apagado, modo offline o sin sesión
    PENDING = "pending"   # hay cambios y el auto-sync los va a subir (o ya está subiendo)
    MANUAL  = "manual"    # hay cambios pero el auto-sync está apagado
    SYNCED  = "synced"


# Nombres de operación en el journal
_OP_EXPORT = "export"
_OP_IMPORT = "import"
_OP_PULL   = "pull"


class BookManager:
    """
    Único punto de entrada para los callers.
    Secuencia LocalStore y RemoteAdapter y es dueño de los invariantes
    que cruzan ambos stores.

    Responsabilidades:
    - Ciclo de vida del libro (crear, renombrar, duplicar, borrar)
    - Estado de sync y procedencia (local / cloud / imported)
    - export, push, pull, import
    - Journal de operaciones multi-paso para poder reanudarlas

    Las operaciones entre stores son best-effort: no hay atomicidad
    local/remoto. Push y pull sobreescriben sin preguntar (last writer wins)
    salvo que el caller pida detect_conflicts=True.
    """

    def __init__(
        self,
        store:     LocalStore,
        remote:    RemoteAdapter,
        auth:      AuthProvider,
        settings:  Optional[SyncSettings] = None,
        on_change: Optional[Callable[[str], None]] = None,
    ):
        self._store     = store
        self._remote    = remote
        self._auth      = auth
        self._settings  = settings or SyncSettings()
        self._on_change = on_change

    # ------------------------------------------------------------------
    # Libros locales
    # ------------------------------------------------------------------

    def create_local_book(self, name: str) -> str:
        """Nombre único entre todos los libros conocidos (local + cloud + imported)."""
        if not name or not name.strip():
            raise ValueError("El nombre del libro no puede estar vacío")
        if self.get_book_by_name(name):
            raise NameConflictError(name)

        book_id = self._store.create_local_book(name)
        logger.info("Nuevo libro local: '%s' (%s)", name, book_id)
        return book_id

    def get_book(self, book_id: str) -> Book | None:
        return self._store.get_book(book_id)

    def get_book_by_name(self, name: str) -> Book | None:
        return next((b for b in self._store.list_books() if b.name == name), None)

    def resolve_book_id(self, id_or_name: str) -> str:
        """
        Resolución en el borde (CLI): acepta id o nombre y devuelve el id.
        Hacia dentro todo trabaja solo con ids.
        """
        if self._store.get_book(id_or_name):
            return id_or_name
        book = self.get_book_by_name(id_or_name)
        if not book:
            raise BookNotFoundError(id_or_name)
        return book.id

    def update_book_config(self, book_id: str, config: BookConfig) -> None:
        self._store.update_book_config(book_id, config)
        self._changed(book_id)

    def rename_book(self, book_id: str, new_name: str) -> None:
        """
        El rename es una edición local: un libro con copia remota queda
        out_of_sync y el name de su info.json remoto queda viejo hasta el próximo push.
        """
        if not new_name or not new_name.strip():
            raise ValueError("El nombre del libro no puede estar vacío")

        book     = self._require_book(book_id)
        existing = self.get_book_by_name(new_name)
        if existing and existing.id != book_id:
            raise NameConflictError(new_name)

        book.name                = new_name
        book.local_last_modified = now_ms()
        if book.source != BookSource.LOCAL:
            book.sync_status = SyncStatus.OUT_OF_SYNC

        self._store.save_book(book)
        logger.info("Libro %s renombrado a '%s'", book_id, new_name)
        self._changed(book_id)

    def duplicate_book(self, source_id: str, new_name: str) -> str:
        """
        Siempre produce un libro NUEVO y local_only: la copia remota del
        original no se toca. Config y contenido se copian tal cual.
        """
        source = self._require_book(source_id)

        new_id = self.create_local_book(new_name)
        self._store.update_book_config(new_id, BookConfig.from_dict(source.config.to_dict()))

        for file_name in self._store.list_chapter_files(source_id):
            content = self._store.get_chapter_content(source_id, file_name)
            if content is not None:
                self._store.save_chapter_content(new_id, file_name, content)

        logger.info("Libro '%s' duplicado como '%s' (%s)", source.name, new_name, new_id)
        return new_id

    def delete_book(self, book_id: str, scope: DeleteScope | str = DeleteScope.LOCAL) -> None:
        """
        local → solo la copia local (y todo su contenido)
        cloud → solo la carpeta remota y su entrada del índice
        both  → ambas; el remoto primero, para no perder la copia local
                si el remoto falla; en un libro local_only equivale a local

        cloud sobre un libro que nunca se exportó lanza NotExportableError.
        """
        scope = DeleteScope(scope)
        book  = self._require_book(book_id)

        if scope == DeleteScope.CLOUD and book.source == BookSource.LOCAL:
            raise NotExportableError(book_id)

        if scope in (DeleteScope.CLOUD, DeleteScope.BOTH) and book.source != BookSource.LOCAL:
            self._require_signed_in("delete from cloud")
            self._remote.delete_book_from_cloud(book_id)
            self._store.delete_sync_metadata(f"{book_id}/{INFO_FILE_NAME}")

        if scope in (DeleteScope.LOCAL, DeleteScope.BOTH):
            self._store.delete_book(book_id)
            self._store.end_journal(book_id)
            logger.info("Libro '%s' (%s) borrado localmente", book.name, book_id)
        else:
            # Sin copia remota el libro vuelve a ser local_only
            book.source              = BookSource.LOCAL
            book.sync_status         = SyncStatus.LOCAL_ONLY
            book.cloud_last_modified = None
            book.cloud_folder_path   = None
            self._store.save_book(book)

    # ------------------------------------------------------------------
    # Listados
    # ------------------------------------------------------------------

    def list_books(self) -> list[BookSummary]:
        return [BookSummary.from_book(b) for b in self._store.list_books()]

    def list_local_books(self) -> list[BookSummary]:
        return [b for b in self.list_books() if b.source == BookSource.LOCAL]

    def list_cloud_books(self) -> list[BookSummary]:
        return [b for b in self.list_books() if b.source in (BookSource.CLOUD, BookSource.IMPORTED)]

    def list_out_of_sync_books(self) -> list[BookSummary]:
        return [b for b in self.list_books() if b.sync_status == SyncStatus.OUT_OF_SYNC]

    def get_book_stats(self) -> BookStats:
        books = self.list_books()
        return BookStats(
            total       = len(books),
            local       = sum(1 for b in books if b.source == BookSource.LOCAL),
            cloud       = sum(1 for b in books if b.source == BookSource.CLOUD),
            imported    = sum(1 for b in books if b.source == BookSource.IMPORTED),
            out_of_sync = sum(1 for b in books if b.sync_status == SyncStatus.OUT_OF_SYNC),
        )

    # ------------------------------------------------------------------
    # Estado de sync
    # ------------------------------------------------------------------

    def update_sync_status(
        self,
        book_id:             str,
        status:              SyncStatus,
        cloud_last_modified: int | None = None,
    ) -> None:
        self._store.update_book_sync_status(book_id, status, cloud_last_modified)

    def mark_as_in_sync(self, book_id: str, cloud_last_modified: int) -> None:
        self.update_sync_status(book_id, SyncStatus.IN_SYNC, cloud_last_modified)

    def mark_as_out_of_sync(self, book_id: str) -> None:
        self.update_sync_status(book_id, SyncStatus.OUT_OF_SYNC)

    # ------------------------------------------------------------------
    # Contenido de capítulos (con validación del libro)
    # ------------------------------------------------------------------

    def get_chapter_content(self, book_id: str, file_name: str) -> str | None:
        self._require_book(book_id)
        return self._store.get_chapter_content(book_id, file_name)

    def save_chapter_content(self, book_id: str, file_name: str, content: str) -> None:
        self._require_book(book_id)
        self._store.save_chapter_content(book_id, file_name, content)
        self._changed(book_id)

    def delete_chapter_content(self, book_id: str, file_name: str) -> None:
        self._require_book(book_id)
        self._store.delete_chapter_content(book_id, file_name)

    def list_chapter_files(self, book_id: str) -> list[str]:
        self._require_book(book_id)
        return self._store.list_chapter_files(book_id)

    # ------------------------------------------------------------------
    # Remoto
    # ------------------------------------------------------------------

    def check_cloud_connection(self) -> bool:
        if not self._auth.signed_in:
            return False
        try:
            self._remote.ensure_app_folder()
            return True
        except (RemoteUnavailableError, UnauthenticatedError) as e:
            logger.info("Sin conexión con el remoto: %s", e)
            return False

    def get_available_cloud_books(self) -> list[CloudBookInfo]:
        """
        Entradas del índice remoto, marcando cuáles se pueden importar.
        Best-effort: sin sesión o sin red devuelve lista vacía.
        """
        if not self._auth.signed_in:
            return []

        try:
            index = self._remote.get_cloud_books_index()
        except (RemoteUnavailableError, UnauthenticatedError) as e:
            logger.warning("No se pudo leer el índice remoto: %s", e)
            return []

        local_ids = {b.id for b in self._store.list_books()}
        return [
            CloudBookInfo(
                id            = book_id,
                name          = entry.name,
                folder_path   = entry.folder_path,
                last_modified = entry.last_modified,
                version       = entry.version,
                available     = book_id not in local_ids,
            )
            for book_id, entry in index.books.items()
        ]

    def export_book_to_cloud(self, book_id: str) -> None:
        """
        Sube libro + capítulos y actualiza el índice.
        También es la implementación de push: repetirlo converge.
        """
        self._require_signed_in("export to cloud")
        book = self._require_book(book_id)
        info = self._book_info(book)

        chapter_files = self._store.list_chapter_files(book_id)
        chapters: dict[str, str] = {}
        for file_name in chapter_files:
            content = self._store.get_chapter_content(book_id, file_name)
            if content is not None:
                chapters[file_name] = content

        self._store.begin_journal(book_id, _OP_EXPORT)
        try:
            written = self._remote.export_book(book_id, info, chapters)
        except Exception:
            logger.error("Export de '%s' (%s) falló; queda en el journal", book.name, book_id)
            raise

        if book.source == BookSource.LOCAL:
            book.source = BookSource.CLOUD
        book.sync_status         = SyncStatus.IN_SYNC
        book.cloud_last_modified = book.local_last_modified
        book.cloud_folder_path   = book_id
        self._store.save_book(book)

        for file_name in chapter_files:
            self._store.mark_as_synced("chapter", chapter_key(book_id, file_name))
        self._store.clear_pending_changes_for_book(book_id)

        self._record_sync_metadata(written, book.local_last_modified, info.last_modified)
        self._store.end_journal(book_id)
        logger.info("Libro '%s' (%s) en sync con el remoto", book.name, book_id)

    def import_cloud_book(self, remote_id: str) -> str:
        """
        Trae un libro remoto como libro local nuevo (source=imported).
        El id se conserva: un id que ya existe localmente es conflicto.
        El nombre también tiene que estar libre; si no, NameConflictError
        antes de escribir nada (se renombra el libro local y se reintenta).
        """
        self._require_signed_in("import from cloud")

        if self._store.get_book(remote_id):
            raise ImportConflictError(remote_id)

        remote = self._fetch_remote_book(remote_id)
        if self.get_book_by_name(remote.info.name):
            raise NameConflictError(remote.info.name)

        self._store.begin_journal(remote_id, _OP_IMPORT)

        # Capítulos primero, libro al final: sin libro guardado el import
        # no es visible y el journal permite repetirlo
        for file_name, content in remote.chapters.items():
            self._store.save_chapter_content(remote_id, file_name, content, is_sync_operation=True)

        info = remote.info
        self._store.save_book(Book(
            id                  = remote_id,
            name                = info.name,
            source              = BookSource.IMPORTED,
            sync_status         = SyncStatus.IN_SYNC,
            config              = info.config,
            local_last_modified = info.last_modified,
            cloud_last_modified = info.last_modified,
            cloud_folder_path   = remote_id,
            version             = info.version,
        ))

        self._record_info_metadata(remote_id, info.last_modified, info.last_modified)
        self._store.end_journal(remote_id)
        logger.info(
            "Libro '%s' (%s) importado con %d capítulos", info.name, remote_id, len(remote.chapters)
        )
        return remote_id

    def sync_book_with_cloud(
        self,
        book_id:          str,
        direction:        SyncDirection | str,
        detect_conflicts: bool = False,
    ) -> None:
        """
        push → export (sobreescribe remoto); pull → sobreescribe local.
        Un libro que nunca se exportó no se puede sincronizar.

        detect_conflicts=True antes de sobreescribir comprueba que el otro
        lado no haya cambiado desde el último sync y lanza ConflictError.
        """
        direction = SyncDirection(direction)
        self._require_signed_in("sync with cloud")
        book = self._require_book(book_id)

        if book.source == BookSource.LOCAL:
            raise NotExportableError(book_id)

        if direction == SyncDirection.PUSH:
            if detect_conflicts:
                self._check_push_conflict(book)
            self.export_book_to_cloud(book_id)
        else:
            if detect_conflicts and book.sync_status == SyncStatus.OUT_OF_SYNC:
                raise ConflictError(book_id, "local changes not pushed yet; pull would discard them")
            self._pull_book_from_cloud(book)

    def delete_book_from_cloud(self, book_id: str) -> None:
        self.delete_book(book_id, DeleteScope.CLOUD)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def sync_all_out_of_sync_books(self) -> BatchSyncResult:
        """Push de cada libro out_of_sync. Un fallo no aborta el resto."""
        result = BatchSyncResult()

        for book in self.list_out_of_sync_books():
            try:
                self.sync_book_with_cloud(book.id, SyncDirection.PUSH)
                result.success.append(book.name)
            except Exception as e:
                logger.error("Falló el sync de '%s': %s", book.name, e)
                result.failed.append(book.name)
                result.errors[book.name] = str(e)

        if result.success or result.failed:
            logger.info(
                "Sync batch: %d ok, %d fallidos", len(result.success), len(result.failed)
            )
        return result

    def sync_pending_changes(self) -> BatchSyncResult:
        """
        Sync incremental: sube solo lo que está pendiente.

        Por libro con copia remota: primero cada capítulo pending
        (save_chapter + mark_as_synced), después, si el libro está
        out_of_sync, borra los capítulos remotos que ya no existen en local,
        sube info.json y su entrada del índice, y lo marca in_sync.
        Los libros locales se saltan: sus cambios viajan con el export.
        Un fallo en un libro no aborta el resto.
        """
        self._require_signed_in("sync with cloud")
        result = BatchSyncResult()

        for book_id, file_names in self._pending_remote_work().items():
            book = self._store.get_book(book_id)
            try:
                self._push_pending(book, file_names)
                result.success.append(book.name)
            except Exception as e:
                logger.error("Falló el sync incremental de '%s': %s", book.name, e)
                result.failed.append(book.name)
                result.errors[book.name] = str(e)

        if result.success or result.failed:
            logger.info(
                "Sync incremental: %d ok, %d fallidos", len(result.success), len(result.failed)
            )
        return result

    def get_sync_status(self, in_progress: bool = False) -> SyncOverview:
        """
        in_progress lo aporta el caller (estado del SyncCoordinator).
        Los capítulos pending de libros sin copia remota no cuentan.
        """
        settings = self._settings
        if not settings.sync_enabled or settings.offline_mode or not self._auth.signed_in:
            return SyncOverview.OFFLINE
        if in_progress:
            return SyncOverview.PENDING
        if not self._pending_remote_work():
            return SyncOverview.SYNCED
        return SyncOverview.PENDING if settings.auto_sync_enabled else SyncOverview.MANUAL

    def pending_operations(self) -> list:
        return self._store.list_journal()

    def resume_interrupted_operations(self) -> BatchSyncResult:
        """
        Repite cada operación que quedó en el journal.
        Todas son idempotentes, así que repetir converge.
        """
        result = BatchSyncResult()

        for entry in self._store.list_journal():
            book  = self._store.get_book(entry.book_id)
            label = book.name if book else entry.book_id
            try:
                if entry.operation == _OP_IMPORT and book:
                    # El libro llegó a guardarse: solo faltaba cerrar el journal
                    self._store.end_journal(entry.book_id)
                elif entry.operation == _OP_IMPORT:
                    self.import_cloud_book(entry.book_id)
                elif not book:
                    self._store.end_journal(entry.book_id)
                    continue
                elif entry.operation == _OP_PULL:
                    self._pull_book_from_cloud(book)
                else:
                    self.export_book_to_cloud(entry.book_id)
                result.success.append(label)
            except Exception as e:
                logger.error("No se pudo reanudar %s de '%s': %s", entry.operation, label, e)
                result.failed.append(label)
                result.errors[label] = str(e)

        return result

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _pull_book_from_cloud(self, book: Book) -> None:
        book_id = book.id
        remote = self._fetch_remote_book(book_id)
        self._store.begin_journal(book_id, _OP_PULL)

        # Borrar capítulos que ya no existen en remoto
        for file_name in self._store.list_chapter_files(book_id):
            if file_name not in remote.chapters:
                self._store.delete_chapter_content(book_id, file_name)

        for file_name, content in remote.chapters.items():
            self._store.save_chapter_content(book_id, file_name, content, is_sync_operation=True)

        info = remote.info
        now  = now_ms()
        book.name                = info.name
        book.config              = info.config
        book.version             = info.version
        book.local_last_modified = now
        book.cloud_last_modified = now
        book.sync_status         = SyncStatus.IN_SYNC
        self._store.save_book(book)

        self._record_info_metadata(book_id, now, info.last_modified)
        self._store.end_journal(book_id)
        logger.info("Libro '%s' (%s) actualizado desde el remoto", book.name, book_id)

    def _pending_remote_work(self) -> dict[str, list[str]]:
        """{book_id: [file_name pending]} solo de libros con copia remota."""
        pending = self._store.get_pending_changes()
        work: dict[str, list[str]] = {}

        for book_id, file_name in pending.chapters:
            work.setdefault(book_id, []).append(file_name)
        for book_id in pending.book_ids:
            work.setdefault(book_id, [])

        for book_id in list(work):
            book = self._store.get_book(book_id)
            if not book or book.source == BookSource.LOCAL:
                del work[book_id]
        return work

    def _push_pending(self, book: Book, file_names: list[str]) -> None:
        for file_name in file_names:
            content = self._store.get_chapter_content(book.id, file_name)
            if content is None:
                continue
            self._remote.save_chapter(book.id, file_name, content)
            self._store.mark_as_synced("chapter", chapter_key(book.id, file_name))

        if book.sync_status != SyncStatus.OUT_OF_SYNC:
            return

        local_files = set(self._store.list_chapter_files(book.id))
        for stale in self._remote.list_chapters(book.id):
            if stale not in local_files:
                self._remote.delete_chapter(book.id, stale)

        info    = self._book_info(book)
        file_id = self._remote.save_book_info(book.id, info)
        self._remote.update_index_entry(book.id, info)

        self.mark_as_in_sync(book.id, book.local_last_modified)
        self._store.set_sync_metadata(f"{book.id}/{INFO_FILE_NAME}", SyncMetadata(
            drive_file_id       = file_id or "",
            last_sync_time      = now_ms(),
            local_last_modified = book.local_last_modified,
            drive_last_modified = info.last_modified,
        ))
        logger.info("Libro '%s' (%s) en sync (incremental)", book.name, book.id)

    @staticmethod
    def _book_info(book: Book) -> BookInfo:
        return BookInfo(
            id            = book.id,
            name          = book.name,
            version       = book.version,
            created_at    = book.local_last_modified,
            last_modified = book.local_last_modified,
            config        = book.config,
        )

    def _fetch_remote_book(self, book_id: str) -> RemoteBook:
        remote = self._remote.import_book(book_id)
        if not remote:
            raise NotFoundError(f"Book with ID {book_id} not found in cloud")
        return remote

    def _check_push_conflict(self, book: Book) -> None:
        """
        Conflicto si el info.json remoto cambió desde nuestro último sync
        (otro dispositivo hizo push). Sin metadata previa no hay base de
        comparación y se deja pasar.
        """
        meta = self._store.get_sync_metadata(f"{book.id}/{INFO_FILE_NAME}")
        if not meta:
            return

        info = self._remote.get_book_info(book.id)
        if info and info.last_modified != meta.drive_last_modified:
            raise ConflictError(book.id, "remote copy changed since last sync; pull first")

    def _record_sync_metadata(self, written: dict[str, str], local_modified: int, drive_modified: int) -> None:
        now = now_ms()
        for path, file_id in written.items():
            self._store.set_sync_metadata(path, SyncMetadata(
                drive_file_id       = file_id or "",
                last_sync_time      = now,
                local_last_modified = local_modified,
                drive_last_modified = drive_modified,
            ))

    def _record_info_metadata(self, book_id: str, local_modified: int, drive_modified: int) -> None:
        path     = f"{book_id}/{INFO_FILE_NAME}"
        previous = self._store.get_sync_metadata(path)
        self._store.set_sync_metadata(path, SyncMetadata(
            drive_file_id       = previous.drive_file_id if previous else "",
            last_sync_time      = now_ms(),
            local_last_modified = local_modified,
            drive_last_modified = drive_modified,
        ))

    def _require_book(self, book_id: str) -> Book:
        book = self._store.get_book(book_id)
        if not book:
            raise BookNotFoundError(book_id)
        return book

    def _require_signed_in(self, action: str) -> None:
        if not self._auth.signed_in:
            raise UnauthenticatedError(f"Must be signed in to {action}")

    def _changed(self, book_id: str) -> None:
        if self._on_change:
            self._on_change(book_id)
