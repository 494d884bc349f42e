# services/__init__.py
from tswriter.services.chapters import ChapterService, ChapterWithContent
from tswriter.services.ideas import IdeaService

__all__ = ["ChapterService", "ChapterWithContent", "IdeaService"]
