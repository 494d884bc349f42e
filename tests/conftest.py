# tests/conftest.py
import itertools
import json
import re
from typing import Callable, Optional

import httpx
import pytest

from tswriter.auth import StaticTokenAuth
from tswriter.book_manager import BookManager
from tswriter.cloud.adapter import RemoteAdapter
from tswriter.cloud.drive import DriveClient
from tswriter.services.chapters import ChapterService
from tswriter.services.ideas import IdeaService
from tswriter.storage.repository import LocalStore


BASE_URL   = "https://drive.test/drive/v3"
UPLOAD_URL = "https://drive.test/upload/drive/v3"

_QUOTED   = r"'((?:[^'\\]|\\.)*)'"
_NAME_Q   = re.compile(r"name=" + _QUOTED)
_PARENT_Q = re.compile(_QUOTED + r" in parents")
_MIME_Q   = re.compile(r"mimeType=" + _QUOTED)


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


class FakeDrive:
    """
    Servicio de carpetas/archivos en memoria con la forma de la API v3.
    Se usa como handler de httpx.MockTransport: los tests pasan por el
    DriveClient real, incluyendo queries, multipart y errores HTTP.
    """

    def __init__(self):
        self.files:    dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.network_down = False
        self.status_override: Optional[int] = None
        # Devuelve un status (o None) para fallar requests concretas
        self.fail_on: Optional[Callable[[httpx.Request], Optional[int]]] = None
        self._ids = itertools.count(1)

    # ── helpers para los asserts ──────────────────────────────────────

    def find(self, name: str, parent: Optional[str] = None) -> Optional[dict]:
        for f in self.files.values():
            if f["name"] == name and (parent is None or parent in f["parents"]):
                return f
        return None

    def children(self, parent_id: str) -> list[dict]:
        return [f for f in self.files.values() if parent_id in f["parents"]]

    def count(self, name: str) -> int:
        return sum(1 for f in self.files.values() if f["name"] == name)

    def root_folder(self, name: str = "TSWriter") -> Optional[dict]:
        for f in self.files.values():
            if f["name"] == name and not f["parents"]:
                return f
        return None

    def book_json(self, name: str, book_folder: str) -> dict:
        folder = self.find(book_folder)
        return json.loads(self.find(name, folder["id"])["content"])

    def index_json(self) -> dict:
        root = self.root_folder()
        return json.loads(self.find("books.json", root["id"])["content"])

    # ── handler ───────────────────────────────────────────────────────

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.network_down:
            raise httpx.ConnectError("network down", request=request)
        if self.status_override:
            return httpx.Response(self.status_override, json={"error": "forced"})
        if self.fail_on:
            status = self.fail_on(request)
            if status:
                return httpx.Response(status, json={"error": "forced"})

        path = request.url.path
        if path.startswith("/upload/drive/v3/files"):
            return self._upload(request, path[len("/upload/drive/v3/files"):].strip("/"))

        file_id = path[len("/drive/v3/files"):].strip("/")
        if request.method == "GET" and not file_id:
            return self._list(request)
        if request.method == "GET":
            return self._download(file_id)
        if request.method == "POST":
            return self._create(json.loads(request.content))
        if request.method == "DELETE":
            return self._delete(file_id)
        return httpx.Response(405)

    def _new_file(self, name: str, mime: str, parents: list[str], content: str = "") -> dict:
        file_id = f"f{next(self._ids)}"
        self.files[file_id] = {
            "id": file_id, "name": name, "mimeType": mime,
            "parents": list(parents), "content": content,
        }
        return self.files[file_id]

    def _list(self, request: httpx.Request) -> httpx.Response:
        query   = request.url.params.get("q", "")
        name    = _NAME_Q.search(query)
        parent  = _PARENT_Q.search(query)
        mime    = _MIME_Q.search(query)

        matches = [
            f for f in self.files.values()
            if (not name or f["name"] == _unescape(name.group(1)))
            and (not parent or _unescape(parent.group(1)) in f["parents"])
            and (not mime or f["mimeType"] == _unescape(mime.group(1)))
        ]

        size   = int(request.url.params.get("pageSize", "100"))
        offset = int(request.url.params.get("pageToken", "0"))
        page   = matches[offset:offset + size]

        body: dict = {"files": [
            {"id": f["id"], "name": f["name"], "mimeType": f["mimeType"], "parents": f["parents"]}
            for f in page
        ]}
        if offset + size < len(matches):
            body["nextPageToken"] = str(offset + size)
        return httpx.Response(200, json=body)

    def _download(self, file_id: str) -> httpx.Response:
        f = self.files.get(file_id)
        if not f:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, content=f["content"].encode("utf-8"))

    def _create(self, metadata: dict) -> httpx.Response:
        f = self._new_file(metadata["name"], metadata["mimeType"], metadata.get("parents", []))
        return httpx.Response(200, json={"id": f["id"]})

    def _upload(self, request: httpx.Request, file_id: str) -> httpx.Response:
        boundary = request.headers["Content-Type"].split("boundary=")[1]
        parts    = request.content.decode("utf-8").split(f"--{boundary}")
        metadata = json.loads(parts[1].partition("\r\n\r\n")[2].strip())
        content  = parts[2].partition("\r\n\r\n")[2][:-2]

        if request.method == "PATCH":
            f = self.files.get(file_id)
            if not f:
                return httpx.Response(404, json={"error": "not found"})
            f["name"], f["content"] = metadata["name"], content
        else:
            f = self._new_file(metadata["name"], metadata["mimeType"], metadata.get("parents", []), content)
        return httpx.Response(200, json={"id": f["id"]})

    def _delete(self, file_id: str) -> httpx.Response:
        if file_id not in self.files:
            return httpx.Response(404, json={"error": "not found"})
        pending = [file_id]
        while pending:
            current = pending.pop()
            self.files.pop(current, None)
            pending.extend(f["id"] for f in list(self.files.values()) if current in f["parents"])
        return httpx.Response(204)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------

@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def auth():
    return StaticTokenAuth("test-token")


@pytest.fixture
def store():
    """Cada test tiene su propia DB en memoria, aislada, sin cleanup."""
    s = LocalStore(db_path=":memory:")
    yield s
    s.close()


def make_drive_client(fake_drive: FakeDrive, auth) -> DriveClient:
    return DriveClient(
        auth       = auth,
        base_url   = BASE_URL,
        upload_url = UPLOAD_URL,
        transport  = httpx.MockTransport(fake_drive),
    )


@pytest.fixture
def drive_client(fake_drive, auth):
    client = make_drive_client(fake_drive, auth)
    yield client
    client.close()


@pytest.fixture
def remote(drive_client):
    return RemoteAdapter(drive_client)


@pytest.fixture
def manager(store, remote, auth):
    return BookManager(store=store, remote=remote, auth=auth)


@pytest.fixture
def chapters(store):
    return ChapterService(store)


@pytest.fixture
def ideas(store):
    return IdeaService(store)


@pytest.fixture
def second_device(fake_drive):
    """Otro dispositivo: store propio, mismo remoto."""
    other_auth  = StaticTokenAuth("other-token")
    other_store = LocalStore(db_path=":memory:")
    client      = make_drive_client(fake_drive, other_auth)
    device = BookManager(store=other_store, remote=RemoteAdapter(client), auth=other_auth)
    yield device, other_store
    client.close()
    other_store.close()


