# tswriter/errors.py


class TSWriterError(Exception):
    """Raíz de todos los errores propios del motor de almacenamiento."""
    pass


# ------------------------------------------------------------------
# Entidades inexistentes
# ------------------------------------------------------------------

class NotFoundError(TSWriterError):
    """Un libro, capítulo o idea no existe."""
    pass


class BookNotFoundError(NotFoundError):
    def __init__(self, book_id: str):
        super().__init__(f"Book with id {book_id} not found")
        self.book_id = book_id


class ChapterNotFoundError(NotFoundError):
    def __init__(self, chapter_id: str):
        super().__init__(f"Chapter {chapter_id} not found")
        self.chapter_id = chapter_id


class IdeaNotFoundError(NotFoundError):
    def __init__(self, idea_id: str):
        super().__init__(f"Idea {idea_id} not found")
        self.idea_id = idea_id


# ------------------------------------------------------------------
# Reglas de negocio
# ------------------------------------------------------------------

class NameConflictError(TSWriterError):
    """Ya existe otro libro con ese nombre (comparación exacta)."""

    def __init__(self, name: str):
        super().__init__(f'A book with the name "{name}" already exists')
        self.name = name


class ImportConflictError(TSWriterError):
    """El id remoto ya existe en el store local."""

    def __init__(self, book_id: str):
        super().__init__(f"Book with ID {book_id} already exists locally")
        self.book_id = book_id


class NotExportableError(TSWriterError):
    """Operación de sync sobre un libro que nunca salió de este dispositivo."""

    def __init__(self, book_id: str):
        super().__init__(
            f"Cannot sync local-only book {book_id}. Export to cloud first."
        )
        self.book_id = book_id


class ConflictError(TSWriterError):
    """
    Detección de conflictos (opt-in): ambos lados cambiaron desde
    el último sync y sobreescribir perdería cambios.
    """

    def __init__(self, book_id: str, reason: str):
        super().__init__(f"Sync conflict on book {book_id}: {reason}")
        self.book_id = book_id
        self.reason  = reason


# ------------------------------------------------------------------
# Remoto
# ------------------------------------------------------------------

class UnauthenticatedError(TSWriterError):
    """
    Operación remota sin sesión válida.
    El caller debe invalidar el estado signed-in.
    """
    pass


class RemoteUnavailableError(TSWriterError):
    """Fallo de red o HTTP contra el servicio remoto."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ------------------------------------------------------------------
# Storage local
# ------------------------------------------------------------------

class SchemaCorruptionError(TSWriterError):
    """El self-check del store local encontró un layout inesperado."""
    pass
