# tswriter/factory.py
from dataclasses import dataclass
from typing import Optional

import httpx

from tswriter.auth import AuthProvider, StaticTokenAuth
from tswriter.book_manager import BookManager
from tswriter.cloud.adapter import RemoteAdapter
from tswriter.cloud.drive import DriveClient
from tswriter.config_loader import AppConfig, load_config
from tswriter.services.chapters import ChapterService
from tswriter.services.ideas import IdeaService
from tswriter.storage.repository import LocalStore
from tswriter.sync import SyncCoordinator


@dataclass
class App:
    """Servicios ya conectados. Su ciclo de vida es el de la aplicación."""
    config:   AppConfig
    store:    LocalStore
    drive:    DriveClient
    remote:   RemoteAdapter
    auth:     AuthProvider
    books:    BookManager
    chapters: ChapterService
    ideas:    IdeaService
    sync:     SyncCoordinator

    def close(self) -> None:
        self.drive.close()
        self.store.close()


def build_app(
    config_path: Optional[str]                   = None,
    db_path:     Optional[str]                   = None,
    auth:        Optional[AuthProvider]          = None,
    transport:   Optional[httpx.BaseTransport]   = None,
    config:      Optional[AppConfig]             = None,
) -> App:
    """
    Ensambla todos los servicios con sus dependencias.
    Punto de entrada único para el CLI y los tests de integración.

    transport permite enchufar un httpx.MockTransport en tests.
    """
    config = config or load_config(config_path)
    auth   = auth or StaticTokenAuth(config.auth.access_token, config.auth.expires_at)

    store  = LocalStore(db_path=db_path or config.db_path)
    drive  = DriveClient(
        auth            = auth,
        base_url        = config.cloud.base_url,
        upload_url      = config.cloud.upload_url,
        timeout_seconds = config.cloud.timeout_seconds,
        transport       = transport,
    )
    remote = RemoteAdapter(drive, app_folder_name=config.cloud.app_folder_name)

    # coordinator se resuelve al llamar: existe antes de la primera edición
    def on_change(book_id: str) -> None:
        coordinator.trigger(book_id)

    books = BookManager(
        store     = store,
        remote    = remote,
        auth      = auth,
        settings  = config.sync,
        on_change = on_change,
    )
    coordinator = SyncCoordinator(
        job      = books.sync_pending_changes,
        settings = config.sync,
        auth     = auth,
    )

    return App(
        config   = config,
        store    = store,
        drive    = drive,
        remote   = remote,
        auth     = auth,
        books    = books,
        chapters = ChapterService(store, on_change=on_change),
        ideas    = IdeaService(store, on_change=on_change),
        sync     = coordinator,
    )
