# tswriter/config_loader.py
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

_DEFAULT_CONFIG_PATH = Path.home() / ".tswriter" / "config.yaml"

DRIVE_API_URL    = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"


@dataclass
class SyncSettings:
    """
    Capacidad de settings que consulta el BookManager.
    sync_enabled apaga todo lo remoto automático;
    auto_sync_enabled decide si cada edición dispara un push en background.
    """
    sync_enabled:      bool  = False
    auto_sync_enabled: bool  = False
    offline_mode:      bool  = False
    sync_timeout:      float = 30.0    # segundos antes de dar un sync por colgado

    @property
    def background_sync_allowed(self) -> bool:
        return self.sync_enabled and self.auto_sync_enabled and not self.offline_mode


@dataclass
class CloudConfig:
    app_folder_name: str   = "TSWriter"
    base_url:        str   = DRIVE_API_URL
    upload_url:      str   = DRIVE_UPLOAD_URL
    timeout_seconds: float = 30.0


@dataclass
class AuthConfig:
    access_token: Optional[str]   = None
    expires_at:   Optional[float] = None


@dataclass
class AppConfig:
    db_path: Optional[str] = None
    sync:    SyncSettings  = field(default_factory=SyncSettings)
    cloud:   CloudConfig   = field(default_factory=CloudConfig)
    auth:    AuthConfig    = field(default_factory=AuthConfig)


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Carga la configuración desde YAML.
    Resuelve variables de entorno (${VAR}) en cualquier valor string.
    Si el archivo no existe devuelve los defaults: la app funciona offline
    sin configurar nada.
    """
    path = Path(config_path or os.environ.get("TSWRITER_CONFIG_PATH") or _DEFAULT_CONFIG_PATH)

    raw: dict = {}
    if path.exists():
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    storage = raw.get("storage") or {}
    sync    = raw.get("sync") or {}
    cloud   = raw.get("cloud") or {}
    auth    = raw.get("auth") or {}

    defaults = SyncSettings()
    settings = SyncSettings(
        sync_enabled      = bool(sync.get("enabled", defaults.sync_enabled)),
        auto_sync_enabled = bool(sync.get("auto_sync", defaults.auto_sync_enabled)),
        offline_mode      = bool(sync.get("offline_mode", defaults.offline_mode)),
        sync_timeout      = float(sync.get("timeout_seconds", defaults.sync_timeout)),
    )

    cloud_defaults = CloudConfig()
    cloud_config = CloudConfig(
        app_folder_name = _resolve_env(cloud.get("app_folder_name")) or cloud_defaults.app_folder_name,
        base_url        = _resolve_env(cloud.get("base_url")) or cloud_defaults.base_url,
        upload_url      = _resolve_env(cloud.get("upload_url")) or cloud_defaults.upload_url,
        timeout_seconds = float(cloud.get("timeout_seconds", cloud_defaults.timeout_seconds)),
    )

    # El token del entorno gana sobre el del archivo
    token      = os.environ.get("TSWRITER_ACCESS_TOKEN") or _resolve_env(auth.get("access_token"))
    expires_at = auth.get("expires_at")

    return AppConfig(
        db_path = _resolve_env(storage.get("db_path")),
        sync    = settings,
        cloud   = cloud_config,
        auth    = AuthConfig(
            access_token = token,
            expires_at   = float(expires_at) if expires_at is not None else None,
        ),
    )


def _resolve_env(value: Optional[str]) -> Optional[str]:
    """Expande ${VAR_NAME} desde el entorno."""
    if not value or not isinstance(value, str) or not value.startswith("${"):
        return value
    var_name = value.strip("${}").strip()
    return os.environ.get(var_name)
