# tswriter/auth.py
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from tswriter.errors import UnauthenticatedError

logger = logging.getLogger(__name__)

# Un token que expira en menos de esto se considera ya caducado
_EXPIRY_MARGIN_SECONDS = 5 * 60


class AuthProvider(ABC):
    """
    Capacidad de autenticación que consume el motor de sync.
    El flujo interactivo de login vive fuera de este paquete:
    aquí solo importa si hay sesión y cuál es el bearer token.
    """

    @property
    @abstractmethod
    def signed_in(self) -> bool:
        ...

    @abstractmethod
    def ensure_valid_token(self) -> str:
        """
        Devuelve un bearer token utilizable.
        Lanza UnauthenticatedError si no hay sesión o el token no se
        puede recuperar; en ese caso la sesión queda cerrada.
        """
        ...

    @abstractmethod
    def sign_out(self) -> None:
        ...


class StaticTokenAuth(AuthProvider):
    """
    Token obtenido por fuera (variable de entorno, config, otro proceso).
    expires_at en segundos epoch; None = no caduca.
    """

    def __init__(self, access_token: Optional[str], expires_at: Optional[float] = None):
        self._access_token = access_token or None
        self._expires_at   = expires_at

    @property
    def signed_in(self) -> bool:
        return self._access_token is not None

    def ensure_valid_token(self) -> str:
        if not self._access_token:
            raise UnauthenticatedError("User not signed in")

        if self._expires_at is not None and time.time() > self._expires_at - _EXPIRY_MARGIN_SECONDS:
            logger.warning("Token caducado o a punto de caducar, cerrando sesión")
            self.sign_out()
            raise UnauthenticatedError("Token expired, please sign in again")

        return self._access_token

    def sign_out(self) -> None:
        self._access_token = None
        self._expires_at   = None
