# services/chapters.py
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from tswriter.errors import BookNotFoundError, ChapterNotFoundError
from tswriter.storage.models import BookConfig, Chapter
from tswriter.storage.repository import LocalStore

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ChapterWithContent:
    id:        str
    title:     str
    file_name: str
    content:   str


def derive_file_name(title: str, chapter_id: str) -> str:
    """
    "Mi Capítulo" + id → "mi-capítulo-1a2b3c4d.md".
    Se calcula una sola vez al crear el capítulo.
    """
    slug = _WHITESPACE.sub("-", title.lower())
    return f"{slug}-{chapter_id[:8]}.md"


def initial_content(title: str) -> str:
    return f"# {title}\n\nStart writing..."


class ChapterService:
    """
    Valida los invariantes de capítulos antes de delegar en el LocalStore:
    - chapter_order es siempre una permutación de los ids de chapters
    - cada capítulo tiene su lista de ideas (aunque vacía)

    on_change(book_id) se llama después de cada escritura;
    el factory lo conecta al sync en background.
    """

    def __init__(self, store: LocalStore, on_change: Optional[Callable[[str], None]] = None):
        self._store     = store
        self._on_change = on_change

    def get_all_chapters(self, book_id: str) -> list[Chapter]:
        return self._config(book_id).ordered_chapters()

    def get_chapter(self, book_id: str, chapter_id: str) -> ChapterWithContent:
        chapter = self._chapter(self._config(book_id), chapter_id)
        content = self._store.get_chapter_content(book_id, chapter.file_name)
        return _with_content(chapter, content)

    def create_chapter(self, book_id: str, title: str) -> Chapter:
        if not title or not title.strip():
            raise ValueError("El título del capítulo no puede estar vacío")

        config     = self._config(book_id)
        chapter_id = str(uuid.uuid4())
        chapter    = Chapter(
            id        = chapter_id,
            title     = title,
            file_name = derive_file_name(title, chapter_id),
        )

        self._store.save_chapter_content(book_id, chapter.file_name, initial_content(title))

        config.chapters.append(chapter)
        config.chapter_order.append(chapter_id)
        config.ideas[chapter_id] = []
        self._store.update_book_config(book_id, config)

        logger.info("Capítulo '%s' creado en %s (%s)", title, book_id, chapter.file_name)
        self._changed(book_id)
        return chapter

    def update_chapter(
        self,
        book_id:    str,
        chapter_id: str,
        title:      Optional[str] = None,
        content:    Optional[str] = None,
    ) -> ChapterWithContent:
        """
        Cambiar el título NO cambia file_name: el archivo remoto
        conserva su nombre original.
        """
        config  = self._config(book_id)
        chapter = self._chapter(config, chapter_id)

        if content is not None:
            self._store.save_chapter_content(book_id, chapter.file_name, content)

        if title and title != chapter.title:
            chapter.title = title
            self._store.update_book_config(book_id, config)

        if content is not None or title:
            self._changed(book_id)

        return _with_content(
            chapter, self._store.get_chapter_content(book_id, chapter.file_name)
        )

    def delete_chapter(self, book_id: str, chapter_id: str) -> None:
        config  = self._config(book_id)
        chapter = self._chapter(config, chapter_id)

        self._store.delete_chapter_content(book_id, chapter.file_name)

        config.chapters      = [c for c in config.chapters if c.id != chapter_id]
        config.chapter_order = [cid for cid in config.chapter_order if cid != chapter_id]
        config.ideas.pop(chapter_id, None)
        self._store.update_book_config(book_id, config)

        logger.info("Capítulo %s borrado de %s", chapter_id, book_id)
        self._changed(book_id)

    def reorder_chapters(self, book_id: str, chapter_order: list[str]) -> list[Chapter]:
        """El nuevo orden debe contener todos y solo los ids existentes, sin repetir."""
        config   = self._config(book_id)
        existing = {c.id for c in config.chapters}

        if len(chapter_order) != len(existing) or set(chapter_order) != existing:
            raise ValueError("Chapter order must contain all and only existing chapter IDs.")

        config.chapter_order = list(chapter_order)
        self._store.update_book_config(book_id, config)
        self._changed(book_id)
        return config.ordered_chapters()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _config(self, book_id: str) -> BookConfig:
        config = self._store.get_book_config(book_id)
        if config is None:
            raise BookNotFoundError(book_id)
        return config

    @staticmethod
    def _chapter(config: BookConfig, chapter_id: str) -> Chapter:
        chapter = config.find_chapter(chapter_id)
        if not chapter:
            raise ChapterNotFoundError(chapter_id)
        return chapter

    def _changed(self, book_id: str) -> None:
        if self._on_change:
            self._on_change(book_id)


def _with_content(chapter: Chapter, content: Optional[str]) -> ChapterWithContent:
    return ChapterWithContent(
        id        = chapter.id,
        title     = chapter.title,
        file_name = chapter.file_name,
        content   = content or "",
    )
