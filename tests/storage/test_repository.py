# tests/storage/test_repository.py
import pytest

from tswriter.errors import BookNotFoundError
from tswriter.storage.repository import LocalStore
from tswriter.storage.models import (
    BookConfig, BookSource, Chapter, ChapterSyncStatus, Idea,
    SyncMetadata, SyncStatus,
)


def make_cloud_book(store, name="Nube") -> str:
    """Libro local promovido a cloud, como lo deja un export."""
    book_id = store.create_local_book(name)
    book = store.get_book(book_id)
    book.source      = BookSource.CLOUD
    book.sync_status = SyncStatus.IN_SYNC
    store.save_book(book)
    return book_id


# ------------------------------------------------------------------
# Books
# ------------------------------------------------------------------

class TestBooks:

    def test_create_local_book_defaults(self, store):
        book_id = store.create_local_book("Novela")
        book = store.get_book(book_id)

        assert book.name == "Novela"
        assert book.source == BookSource.LOCAL
        assert book.sync_status == SyncStatus.LOCAL_ONLY
        assert book.config == BookConfig()
        assert book.version == "1.0.0"
        assert book.cloud_last_modified is None

    def test_book_id_format(self, store):
        book_id = store.create_local_book("Novela")
        prefix, millis, suffix = book_id.split("_")
        assert prefix == "book"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_ids_son_unicos(self, store):
        ids = {store.create_local_book(f"Libro {i}") for i in range(20)}
        assert len(ids) == 20

    def test_get_book_inexistente(self, store):
        assert store.get_book("nope") is None

    def test_store_no_valida_nombres(self, store):
        store.create_local_book("Repetido")
        store.create_local_book("Repetido")
        assert len(store.list_books()) == 2

    def test_list_books_en_orden_de_creacion(self, store):
        a = store.create_local_book("A")
        b = store.create_local_book("B")
        assert [x.id for x in store.list_books()] == [a, b]

    def test_list_local_y_cloud(self, store):
        local_id = store.create_local_book("Local")
        cloud_id = make_cloud_book(store)

        assert [b.id for b in store.list_local_books()] == [local_id]
        assert [b.id for b in store.list_cloud_books()] == [cloud_id]

    def test_save_book_es_upsert(self, store):
        book_id = store.create_local_book("Viejo")
        book = store.get_book(book_id)
        book.name = "Nuevo"
        store.save_book(book)

        assert store.get_book(book_id).name == "Nuevo"
        assert len(store.list_books()) == 1

    def test_config_round_trip(self, store):
        book_id = store.create_local_book("Novela")
        config = BookConfig(
            chapters      = [Chapter(id="c1", title="Intro", file_name="intro-c1.md")],
            chapter_order = ["c1"],
            ideas         = {"c1": [Idea(id="i1", text="Dragón", order=0)]},
        )
        store.update_book_config(book_id, config)

        assert store.get_book_config(book_id) == config

    def test_config_se_guarda_con_claves_camel_case(self, store):
        book_id = store.create_local_book("Novela")
        store.update_book_config(book_id, BookConfig(
            chapters=[Chapter(id="c1", title="Intro", file_name="intro-c1.md")],
            chapter_order=["c1"],
        ))
        raw = store.connection.execute(
            "SELECT config_json FROM books WHERE id = ?", (book_id,)
        ).fetchone()["config_json"]

        assert '"chapterOrder"' in raw
        assert '"fileName"' in raw

    def test_update_config_libro_local_sigue_local_only(self, store):
        book_id = store.create_local_book("Novela")
        before = store.get_book(book_id).local_last_modified

        store.update_book_config(book_id, BookConfig())

        book = store.get_book(book_id)
        assert book.sync_status == SyncStatus.LOCAL_ONLY
        assert book.local_last_modified >= before

    def test_update_config_libro_cloud_pasa_a_out_of_sync(self, store):
        book_id = make_cloud_book(store)
        store.update_book_config(book_id, BookConfig())
        assert store.get_book(book_id).sync_status == SyncStatus.OUT_OF_SYNC

    def test_update_config_libro_inexistente(self, store):
        with pytest.raises(BookNotFoundError):
            store.update_book_config("nope", BookConfig())

    def test_update_sync_status(self, store):
        book_id = make_cloud_book(store)
        store.update_book_sync_status(book_id, SyncStatus.OUT_OF_SYNC, cloud_last_modified=123)

        book = store.get_book(book_id)
        assert book.sync_status == SyncStatus.OUT_OF_SYNC
        assert book.cloud_last_modified == 123

    def test_update_sync_status_libro_inexistente(self, store):
        with pytest.raises(BookNotFoundError):
            store.update_book_sync_status("nope", SyncStatus.IN_SYNC)

    def test_delete_book_borra_capitulos(self, store):
        book_id = store.create_local_book("Novela")
        other   = store.create_local_book("Otra")
        store.save_chapter_content(book_id, "a.md", "A")
        store.save_chapter_content(other, "b.md", "B")

        store.delete_book(book_id)

        assert store.get_book(book_id) is None
        assert store.list_chapter_files(book_id) == []
        assert store.get_chapter_content(other, "b.md") == "B"


# ------------------------------------------------------------------
# Chapters
# ------------------------------------------------------------------

class TestChapters:

    def test_save_y_get_content(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "intro.md", "# Intro\n\nÁrbol 🌲")
        assert store.get_chapter_content(book_id, "intro.md") == "# Intro\n\nÁrbol 🌲"

    def test_contenido_inexistente_es_none(self, store):
        book_id = store.create_local_book("Novela")
        assert store.get_chapter_content(book_id, "nope.md") is None

    def test_contenido_vacio_no_es_none(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "vacio.md", "")
        assert store.get_chapter_content(book_id, "vacio.md") == ""

    def test_key_compuesta(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "intro.md", "x")
        chapter = store.get_stored_chapter(book_id, "intro.md")
        assert chapter.key == f"{book_id}:intro.md"

    def test_escritura_normal_queda_pending(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "intro.md", "x")
        assert store.get_stored_chapter(book_id, "intro.md").sync_status == ChapterSyncStatus.PENDING

    def test_escritura_de_sync_queda_synced(self, store):
        book_id = make_cloud_book(store)
        store.save_chapter_content(book_id, "intro.md", "x", is_sync_operation=True)

        assert store.get_stored_chapter(book_id, "intro.md").sync_status == ChapterSyncStatus.SYNCED
        assert store.get_book(book_id).sync_status == SyncStatus.IN_SYNC

    def test_escritura_en_libro_cloud_lo_marca_out_of_sync(self, store):
        book_id = make_cloud_book(store)
        store.save_chapter_content(book_id, "intro.md", "x")
        assert store.get_book(book_id).sync_status == SyncStatus.OUT_OF_SYNC

    def test_escritura_en_libro_importado_lo_marca_out_of_sync(self, store):
        book_id = make_cloud_book(store)
        book = store.get_book(book_id)
        book.source = BookSource.IMPORTED
        store.save_book(book)

        store.save_chapter_content(book_id, "intro.md", "x")
        assert store.get_book(book_id).sync_status == SyncStatus.OUT_OF_SYNC

    def test_escritura_sella_last_modified_del_libro(self, store):
        book_id = store.create_local_book("Novela")
        book = store.get_book(book_id)
        book.local_last_modified = 1
        store.save_book(book)

        store.save_chapter_content(book_id, "intro.md", "x")

        chapter = store.get_stored_chapter(book_id, "intro.md")
        assert store.get_book(book_id).local_last_modified == chapter.last_modified

    def test_sobrescribir_no_duplica(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "intro.md", "v1")
        store.save_chapter_content(book_id, "intro.md", "v2")

        assert store.list_chapter_files(book_id) == ["intro.md"]
        assert store.get_chapter_content(book_id, "intro.md") == "v2"

    def test_delete_chapter_content(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "intro.md", "x")
        store.delete_chapter_content(book_id, "intro.md")
        assert store.get_chapter_content(book_id, "intro.md") is None

    def test_list_chapter_files_solo_del_libro(self, store):
        a = store.create_local_book("A")
        b = store.create_local_book("B")
        store.save_chapter_content(a, "1.md", "x")
        store.save_chapter_content(a, "2.md", "x")
        store.save_chapter_content(b, "3.md", "x")

        assert store.list_chapter_files(a) == ["1.md", "2.md"]


# ------------------------------------------------------------------
# Estado de sync
# ------------------------------------------------------------------

class TestPendingChanges:

    def test_store_vacio_sin_pendientes(self, store):
        assert store.get_pending_changes().is_empty()

    def test_pendientes_de_libros_y_capitulos(self, store):
        book_id = make_cloud_book(store, name="Sucio")
        store.save_chapter_content(book_id, "intro.md", "x")

        pending = store.get_pending_changes()
        assert pending.books == ["Sucio"]
        assert pending.book_ids == [book_id]
        assert pending.chapters == [(book_id, "intro.md")]

    def test_mark_as_synced_book(self, store):
        book_id = make_cloud_book(store)
        store.save_chapter_content(book_id, "intro.md", "x")

        store.mark_as_synced("book", book_id)
        assert store.get_book(book_id).sync_status == SyncStatus.IN_SYNC

    def test_mark_as_synced_chapter(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "intro.md", "x")

        store.mark_as_synced("chapter", f"{book_id}:intro.md")
        assert store.get_stored_chapter(book_id, "intro.md").sync_status == ChapterSyncStatus.SYNCED

    def test_mark_as_synced_kind_invalido(self, store):
        with pytest.raises(ValueError):
            store.mark_as_synced("idea", "x")

    def test_mark_as_synced_clave_inexistente_no_falla(self, store):
        store.mark_as_synced("book", "nope")

    def test_clear_pending_changes_for_book(self, store):
        a = store.create_local_book("A")
        b = store.create_local_book("B")
        store.save_chapter_content(a, "1.md", "x")
        store.save_chapter_content(b, "2.md", "x")

        store.clear_pending_changes_for_book(a)

        assert store.get_pending_changes().chapters == [(b, "2.md")]


# ------------------------------------------------------------------
# Sync metadata, app config, journal
# ------------------------------------------------------------------

class TestSyncMetadata:

    def test_round_trip(self, store):
        meta = SyncMetadata("file-1", 10, 20, 30)
        store.set_sync_metadata("book/info.json", meta)
        assert store.get_sync_metadata("book/info.json") == meta

    def test_inexistente_es_none(self, store):
        assert store.get_sync_metadata("nope") is None

    def test_delete(self, store):
        store.set_sync_metadata("p", SyncMetadata("f", 1, 1, 1))
        store.delete_sync_metadata("p")
        assert store.get_sync_metadata("p") is None


class TestAppConfig:

    def test_valores_json(self, store):
        store.set_app_config("settings", {"syncEnabled": True, "interval": 5})
        assert store.get_app_config("settings") == {"syncEnabled": True, "interval": 5}

    def test_clave_inexistente(self, store):
        assert store.get_app_config("nope") is None

    def test_delete(self, store):
        store.set_app_config("k", 1)
        store.delete_app_config("k")
        assert store.get_app_config("k") is None

    def test_credenciales_google(self, store):
        store.set_google_client_id("client-123")
        store.set_google_api_key("key-456")
        assert store.get_google_client_id() == "client-123"
        assert store.get_google_api_key() == "key-456"


class TestJournal:

    def test_begin_y_end(self, store):
        store.begin_journal("book_1", "export")
        entries = store.list_journal()
        assert [(e.book_id, e.operation) for e in entries] == [("book_1", "export")]

        store.end_journal("book_1")
        assert store.list_journal() == []

    def test_una_entrada_por_libro(self, store):
        store.begin_journal("book_1", "export")
        store.begin_journal("book_1", "pull")
        assert [e.operation for e in store.list_journal()] == ["pull"]


class TestLimpieza:

    def test_clear_all_books_conserva_config(self, store):
        book_id = store.create_local_book("Novela")
        store.save_chapter_content(book_id, "a.md", "x")
        store.set_app_config("k", "v")

        store.clear_all_books()

        assert store.list_books() == []
        assert store.list_chapter_files(book_id) == []
        assert store.get_app_config("k") == "v"

    def test_clear_all_config(self, store):
        store.set_app_config("k", "v")
        store.clear_all_config()
        assert store.get_app_config("k") is None

    def test_clear_all_data(self, store):
        store.create_local_book("Novela")
        store.set_app_config("k", "v")
        store.set_sync_metadata("p", SyncMetadata("f", 1, 1, 1))
        store.begin_journal("b", "export")

        store.clear_all_data()

        assert store.list_books() == []
        assert store.get_app_config("k") is None
        assert store.get_sync_metadata("p") is None
        assert store.list_journal() == []


def test_persiste_entre_aperturas(tmp_path):
    path = str(tmp_path / "tswriter.db")
    first = LocalStore(db_path=path)
    book_id = first.create_local_book("Persistente")
    first.save_chapter_content(book_id, "a.md", "contenido")
    first.close()

    second = LocalStore(db_path=path)
    assert second.get_book(book_id).name == "Persistente"
    assert second.get_chapter_content(book_id, "a.md") == "contenido"
    second.close()

