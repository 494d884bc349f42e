# services/ideas.py
import uuid
from typing import Callable, Optional

from tswriter.errors import BookNotFoundError, ChapterNotFoundError, IdeaNotFoundError
from tswriter.storage.models import BookConfig, Idea
from tswriter.storage.repository import LocalStore


class IdeaService:
    """
    Listas de ideas por capítulo.
    Invariante: los order de cada lista son densos 0..n-1 después de
    cualquier alta, baja, movimiento o reordenación.
    """

    def __init__(self, store: LocalStore, on_change: Optional[Callable[[str], None]] = None):
        self._store     = store
        self._on_change = on_change

    def get_ideas(self, book_id: str, chapter_id: str) -> list[Idea]:
        config = self._config(book_id, chapter_id)
        return sorted(config.ideas.get(chapter_id, []), key=lambda i: i.order)

    def create_idea(self, book_id: str, chapter_id: str, text: str) -> Idea:
        config = self._config(book_id, chapter_id)
        ideas  = _sorted(config, chapter_id)

        idea = Idea(id=str(uuid.uuid4()), text=text, order=len(ideas))
        config.ideas[chapter_id] = ideas + [idea]

        self._save(book_id, config)
        return idea

    def update_idea(
        self,
        book_id:    str,
        chapter_id: str,
        idea_id:    str,
        text:       Optional[str] = None,
        order:      Optional[int] = None,
    ) -> Idea:
        """
        order mueve la idea a esa posición (acotada a 0..n-1) y
        renumera el resto, así nunca quedan huecos ni repetidos.
        """
        config = self._config(book_id, chapter_id)
        ideas  = _sorted(config, chapter_id)
        idea   = _find(ideas, idea_id)

        if text is not None:
            idea.text = text

        if order is not None:
            ideas.remove(idea)
            position = max(0, min(order, len(ideas)))
            ideas.insert(position, idea)

        config.ideas[chapter_id] = _renumber(ideas)
        self._save(book_id, config)
        return idea

    def delete_idea(self, book_id: str, chapter_id: str, idea_id: str) -> None:
        config = self._config(book_id, chapter_id)
        ideas  = _sorted(config, chapter_id)
        idea   = _find(ideas, idea_id)

        ideas.remove(idea)
        config.ideas[chapter_id] = _renumber(ideas)
        self._save(book_id, config)

    def reorder_ideas(self, book_id: str, chapter_id: str, idea_order: list[str]) -> list[Idea]:
        config   = self._config(book_id, chapter_id)
        by_id    = {i.id: i for i in config.ideas.get(chapter_id, [])}

        if len(idea_order) != len(by_id) or set(idea_order) != set(by_id):
            raise ValueError("Idea order must match existing ideas.")

        config.ideas[chapter_id] = _renumber([by_id[idea_id] for idea_id in idea_order])
        self._save(book_id, config)
        return config.ideas[chapter_id]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _config(self, book_id: str, chapter_id: str) -> BookConfig:
        config = self._store.get_book_config(book_id)
        if config is None:
            raise BookNotFoundError(book_id)
        if not config.find_chapter(chapter_id):
            raise ChapterNotFoundError(chapter_id)
        return config

    def _save(self, book_id: str, config: BookConfig) -> None:
        self._store.update_book_config(book_id, config)
        if self._on_change:
            self._on_change(book_id)


def _sorted(config: BookConfig, chapter_id: str) -> list[Idea]:
    return sorted(config.ideas.get(chapter_id, []), key=lambda i: i.order)


def _find(ideas: list[Idea], idea_id: str) -> Idea:
    for idea in ideas:
        if idea.id == idea_id:
            return idea
    raise IdeaNotFoundError(idea_id)


def _renumber(ideas: list[Idea]) -> list[Idea]:
    for position, idea in enumerate(ideas):
        idea.order = position
    return ideas
