# cloud/drive.py
import json
import logging
from typing import Optional

import httpx

from tswriter.auth import AuthProvider
from tswriter.cloud.models import DriveFile, FOLDER_MIME
from tswriter.config_loader import DRIVE_API_URL, DRIVE_UPLOAD_URL
from tswriter.errors import RemoteUnavailableError, UnauthenticatedError

logger = logging.getLogger(__name__)

_BOUNDARY = "-------314159265358979323846"

_FILE_FIELDS = "files(id, name, mimeType, modifiedTime, parents), nextPageToken"

# Status que significan "la sesión no vale", no "la red falló"
_AUTH_STATUS = (401, 403)


class DriveClient:
    """
    Cliente HTTP mínimo para un servicio jerárquico carpetas/archivos
    con la forma de la API v3 de Google Drive.

    No sabe nada de libros: solo buscar, crear, subir, bajar y borrar.
    Todas las búsquedas son por (carpeta padre, nombre exacto, mime opcional)
    y devuelven la primera coincidencia.
    """

    def __init__(
        self,
        auth:            AuthProvider,
        base_url:        str   = DRIVE_API_URL,
        upload_url:      str   = DRIVE_UPLOAD_URL,
        timeout_seconds: float = 30.0,
        transport:       Optional[httpx.BaseTransport] = None,
    ):
        self._auth       = auth
        self._base_url   = base_url.rstrip("/")
        self._upload_url = upload_url.rstrip("/")
        self._client     = httpx.Client(timeout=timeout_seconds, transport=transport)

    # ------------------------------------------------------------------
    # Búsqueda
    # ------------------------------------------------------------------

    def find_file(
        self,
        parent_id: Optional[str],
        name:      str,
        mime_type: Optional[str] = None,
    ) -> DriveFile | None:
        query = f"name='{_escape(name)}' and trashed=false"
        if parent_id:
            query += f" and '{_escape(parent_id)}' in parents"
        if mime_type:
            query += f" and mimeType='{_escape(mime_type)}'"

        files = self._list(query, page_size=10, first_page_only=True)
        return files[0] if files else None

    def list_children(self, parent_id: str, mime_type: Optional[str] = None) -> list[DriveFile]:
        query = f"'{_escape(parent_id)}' in parents and trashed=false"
        if mime_type:
            query += f" and mimeType='{_escape(mime_type)}'"
        return self._list(query)

    # ------------------------------------------------------------------
    # Escritura
    # ------------------------------------------------------------------

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        metadata: dict = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            metadata["parents"] = [parent_id]

        response = self._request("POST", f"{self._base_url}/files", json=metadata)
        folder_id = response.json()["id"]
        logger.debug("Carpeta remota creada: %s (%s)", name, folder_id)
        return folder_id

    def upload(
        self,
        name:      str,
        content:   str,
        mime_type: str,
        parent_id: Optional[str] = None,
        file_id:   Optional[str] = None,
    ) -> str:
        """
        Subida multipart. Con file_id actualiza el archivo existente
        (sin tocar parents); sin file_id lo crea dentro de parent_id.
        Devuelve el id del archivo.
        """
        metadata: dict = {"name": name, "mimeType": mime_type}

        if file_id:
            method = "PATCH"
            url    = f"{self._upload_url}/files/{file_id}"
        else:
            method = "POST"
            url    = f"{self._upload_url}/files"
            if parent_id:
                metadata["parents"] = [parent_id]

        response = self._request(
            method,
            url,
            params  = {"uploadType": "multipart"},
            content = _multipart_body(metadata, content),
            headers = {"Content-Type": f"multipart/related; boundary={_BOUNDARY}"},
        )
        return response.json().get("id", file_id)

    def download(self, file_id: str) -> str:
        response = self._request(
            "GET", f"{self._base_url}/files/{file_id}", params={"alt": "media"}
        )
        # Todo lo que subimos es UTF-8; no fiarse del charset que declare el servidor
        return response.content.decode("utf-8")

    def delete(self, file_id: str) -> None:
        """Borra el archivo; si es carpeta el servicio borra en cascada."""
        self._request("DELETE", f"{self._base_url}/files/{file_id}")

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _list(
        self,
        query:           str,
        page_size:       int  = 100,
        first_page_only: bool = False,
    ) -> list[DriveFile]:
        files: list[DriveFile] = []
        page_token: Optional[str] = None

        while True:
            params = {"q": query, "fields": _FILE_FIELDS, "pageSize": str(page_size)}
            if page_token:
                params["pageToken"] = page_token

            data = self._request("GET", f"{self._base_url}/files", params=params).json()
            files.extend(DriveFile.from_api(f) for f in data.get("files", []))

            page_token = data.get("nextPageToken")
            if first_page_only or not page_token:
                return files

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Añade el bearer token y traduce errores:
        - sin sesión / 401 / 403 → UnauthenticatedError (y se cierra la sesión)
        - red o cualquier otro status de error → RemoteUnavailableError
        """
        token   = self._auth.ensure_valid_token()
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}

        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Error de red en %s %s: %s", method, url, e)
            raise RemoteUnavailableError(f"Network error talking to cloud storage: {e}") from e

        if response.status_code in _AUTH_STATUS:
            logger.warning("Remoto rechazó la sesión (%d) en %s %s", response.status_code, method, url)
            self._auth.sign_out()
            raise UnauthenticatedError(
                f"Cloud storage rejected credentials ({response.status_code})"
            )

        if response.is_error:
            logger.error(
                "API request failed: %d %s: %s",
                response.status_code, response.reason_phrase, response.text[:200],
            )
            raise RemoteUnavailableError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        return response


def _escape(value: str) -> str:
    """Escapa comillas y backslashes para el lenguaje de queries."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _multipart_body(metadata: dict, content: str) -> bytes:
    body = (
        f"--{_BOUNDARY}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata)}\r\n"
        f"--{_BOUNDARY}\r\n"
        f"Content-Type: {metadata['mimeType']}\r\n\r\n"
        f"{content}"
        f"\r\n--{_BOUNDARY}--"
    )
    return body.encode("utf-8")
