# tests/cloud/test_drive.py
import httpx
import pytest

from tswriter.auth import StaticTokenAuth
from tswriter.cloud.drive import DriveClient
from tswriter.cloud.models import FOLDER_MIME, MARKDOWN_MIME
from tswriter.errors import RemoteUnavailableError, UnauthenticatedError


class TestBusqueda:

    def test_find_file_por_nombre_y_padre(self, drive_client):
        root  = drive_client.create_folder("TSWriter")
        other = drive_client.create_folder("Otra")
        drive_client.upload("a.md", "en root", MARKDOWN_MIME, parent_id=root)
        drive_client.upload("a.md", "en otra", MARKDOWN_MIME, parent_id=other)

        found = drive_client.find_file(other, "a.md", MARKDOWN_MIME)
        assert drive_client.download(found.id) == "en otra"

    def test_find_file_filtra_por_mime(self, drive_client):
        root = drive_client.create_folder("TSWriter")
        drive_client.create_folder("chapters", root)
        assert drive_client.find_file(root, "chapters", MARKDOWN_MIME) is None
        assert drive_client.find_file(root, "chapters", FOLDER_MIME) is not None

    def test_find_file_inexistente(self, drive_client):
        assert drive_client.find_file(None, "nope") is None

    def test_nombre_con_comillas(self, drive_client):
        root = drive_client.create_folder("TSWriter")
        drive_client.upload("l'amour.md", "x", MARKDOWN_MIME, parent_id=root)
        assert drive_client.find_file(root, "l'amour.md").name == "l'amour.md"

    def test_query_con_comilla_escapada(self, drive_client, fake_drive):
        drive_client.find_file(None, "it's")
        query = fake_drive.requests[-1].url.params["q"]
        assert "name='it\\'s'" in query
        assert "trashed=false" in query

    def test_list_children_pagina(self, drive_client, fake_drive):
        root = drive_client.create_folder("TSWriter")
        for i in range(250):
            fake_drive._new_file(f"{i}.md", MARKDOWN_MIME, [root])

        children = drive_client.list_children(root, MARKDOWN_MIME)

        assert len(children) == 250
        list_calls = [r for r in fake_drive.requests if r.method == "GET" and "q" in r.url.params]
        assert len(list_calls) == 3


class TestEscritura:

    def test_upload_crea_y_luego_actualiza(self, drive_client, fake_drive):
        root    = drive_client.create_folder("TSWriter")
        file_id = drive_client.upload("a.md", "v1", MARKDOWN_MIME, parent_id=root)
        same_id = drive_client.upload("a.md", "v2", MARKDOWN_MIME, file_id=file_id)

        assert same_id == file_id
        assert fake_drive.count("a.md") == 1
        assert drive_client.download(file_id) == "v2"

    def test_upload_es_multipart(self, drive_client, fake_drive):
        drive_client.upload("a.md", "hola", MARKDOWN_MIME)
        request = fake_drive.requests[-1]

        assert request.url.params["uploadType"] == "multipart"
        assert request.headers["Content-Type"].startswith("multipart/related; boundary=")

    def test_contenido_unicode_byte_a_byte(self, drive_client):
        content = "# Capítulo\n\nÑandú, 漢字 y 🐉\r\n--fin"
        file_id = drive_client.upload("u.md", content, MARKDOWN_MIME)
        assert drive_client.download(file_id) == content

    def test_delete_carpeta_en_cascada(self, drive_client, fake_drive):
        root = drive_client.create_folder("TSWriter")
        book = drive_client.create_folder("book_1", root)
        drive_client.upload("info.json", "{}", "application/json", parent_id=book)

        drive_client.delete(book)

        assert fake_drive.find("info.json") is None
        assert fake_drive.find("TSWriter") is not None

    def test_bearer_token(self, drive_client, fake_drive):
        drive_client.find_file(None, "x")
        assert fake_drive.requests[-1].headers["Authorization"] == "Bearer test-token"


class TestErrores:

    def test_sin_sesion(self, fake_drive):
        client = DriveClient(
            StaticTokenAuth(None), base_url="https://drive.test/drive/v3",
            transport=httpx.MockTransport(fake_drive),
        )
        with pytest.raises(UnauthenticatedError):
            client.find_file(None, "x")
        assert fake_drive.requests == []

    @pytest.mark.parametrize("status", [401, 403])
    def test_status_de_auth_cierra_sesion(self, drive_client, fake_drive, auth, status):
        fake_drive.status_override = status
        with pytest.raises(UnauthenticatedError):
            drive_client.find_file(None, "x")
        assert not auth.signed_in

    def test_status_de_error(self, drive_client, fake_drive):
        fake_drive.status_override = 503
        with pytest.raises(RemoteUnavailableError) as exc:
            drive_client.find_file(None, "x")
        assert exc.value.status_code == 503

    def test_red_caida(self, drive_client, fake_drive, auth):
        fake_drive.network_down = True
        with pytest.raises(RemoteUnavailableError):
            drive_client.create_folder("TSWriter")
        assert auth.signed_in

    def test_download_inexistente(self, drive_client):
        with pytest.raises(RemoteUnavailableError) as exc:
            drive_client.download("nope")
        assert exc.value.status_code == 404
