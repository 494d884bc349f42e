# storage/db.py
import logging
import os
import sqlite3
from pathlib import Path

from tswriter.errors import SchemaCorruptionError

logger = logging.getLogger(__name__)


_DEFAULT_DB_PATH = Path.home() / ".tswriter" / "tswriter.db"

# Cada entrada lleva el schema de la versión N-1 a la N.
# user_version de SQLite guarda la última aplicada.
_MIGRATIONS: list[str] = [
    # v1: las cuatro tablas lógicas
    """
    CREATE TABLE IF NOT EXISTS books (
        id                  TEXT    PRIMARY KEY,
        name                TEXT    NOT NULL,
        source              TEXT    NOT NULL DEFAULT 'local',
        sync_status         TEXT    NOT NULL DEFAULT 'local_only',
        config_json         TEXT    NOT NULL,
        local_last_modified INTEGER NOT NULL,
        cloud_last_modified INTEGER,
        cloud_folder_path   TEXT,
        version             TEXT    NOT NULL DEFAULT '1.0.0'
    );

    CREATE TABLE IF NOT EXISTS chapters (
        key           TEXT    PRIMARY KEY,
        book_id       TEXT    NOT NULL,
        file_name     TEXT    NOT NULL,
        content       TEXT    NOT NULL,
        last_modified INTEGER NOT NULL,
        sync_status   TEXT    NOT NULL DEFAULT 'pending'
    );

    CREATE INDEX IF NOT EXISTS idx_chapters_book_id ON chapters (book_id);

    CREATE TABLE IF NOT EXISTS sync_metadata (
        key                 TEXT    PRIMARY KEY,
        drive_file_id       TEXT    NOT NULL,
        last_sync_time      INTEGER NOT NULL,
        local_last_modified INTEGER NOT NULL,
        drive_last_modified INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS app_config (
        key           TEXT    PRIMARY KEY,
        value_json    TEXT,
        last_modified INTEGER NOT NULL
    );
    """,
    # v2: journal de operaciones multi-paso (export/import/pull)
    """
    CREATE TABLE IF NOT EXISTS sync_journal (
        book_id    TEXT    PRIMARY KEY,
        operation  TEXT    NOT NULL,
        started_at INTEGER NOT NULL
    );
    """,
]

SCHEMA_VERSION = len(_MIGRATIONS)

# tabla -> (primary key, columnas requeridas)
_EXPECTED_LAYOUT: dict[str, tuple[str, set[str]]] = {
    "books": ("id", {
        "id", "name", "source", "sync_status", "config_json",
        "local_last_modified", "cloud_last_modified", "cloud_folder_path", "version",
    }),
    "chapters": ("key", {
        "key", "book_id", "file_name", "content", "last_modified", "sync_status",
    }),
    "sync_metadata": ("key", {
        "key", "drive_file_id", "last_sync_time",
        "local_last_modified", "drive_last_modified",
    }),
    "app_config": ("key", {"key", "value_json", "last_modified"}),
    "sync_journal": ("book_id", {"book_id", "operation", "started_at"}),
}


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """
    Abre y configura la conexión a SQLite.
    Siempre devuelve rows como sqlite3.Row.
    check_same_thread=False porque el SyncCoordinator puede correr en un executor;
    el sistema asume un único writer activo.
    """
    path = db_path or os.environ.get("TSWRITER_DB_PATH") or str(_DEFAULT_DB_PATH)

    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def init_schema(conn: sqlite3.Connection) -> None:
    """
    Aplica las migraciones pendientes y valida el layout resultante.
    Idempotente. Nunca destruye datos: si el layout no cuadra lanza
    SchemaCorruptionError y la decisión de recrear queda en manos del caller.
    """
    current = get_schema_version(conn)

    if current > SCHEMA_VERSION:
        raise SchemaCorruptionError(
            f"Store en versión {current}, este código solo conoce hasta {SCHEMA_VERSION}"
        )

    for version in range(current, SCHEMA_VERSION):
        logger.info("Migrando store local a versión %d", version + 1)
        with conn:
            conn.executescript(_MIGRATIONS[version])
            conn.execute(f"PRAGMA user_version = {version + 1}")

    problems = validate_schema(conn)
    if problems:
        raise SchemaCorruptionError(
            "Layout del store local inválido: " + "; ".join(problems)
        )


def validate_schema(conn: sqlite3.Connection) -> list[str]:
    """Self-check del layout. Devuelve la lista de problemas (vacía = OK)."""
    problems = []
    for table, (primary_key, columns) in _EXPECTED_LAYOUT.items():
        rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
        if not rows:
            problems.append(f"falta la tabla {table}")
            continue

        found = {r["name"] for r in rows}
        missing = columns - found
        if missing:
            problems.append(f"{table}: faltan columnas {sorted(missing)}")

        pk = [r["name"] for r in rows if r["pk"]]
        if pk != [primary_key]:
            problems.append(f"{table}: primary key {pk}, se esperaba [{primary_key!r}]")

    return problems


def recreate_store(conn: sqlite3.Connection, confirm: bool = False) -> None:
    """
    Borra TODAS las tablas y recrea el store vacío.
    Recuperación de emergencia: pierde todos los libros locales.
    Exige confirm=True explícito.
    """
    if not confirm:
        raise SchemaCorruptionError(
            "recreate_store destruye todos los datos locales; "
            "llamar con confirm=True solo tras confirmación explícita"
        )

    logger.warning(
        "!!! RECREANDO EL STORE LOCAL DESDE CERO: todos los libros, capítulos "
        "y configuración locales se van a perder !!!"
    )
    tables = [
        r["name"] for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
    ]
    with conn:
        for table in tables:
            conn.execute(f'DROP TABLE IF EXISTS "{table}"')
        conn.execute("PRAGMA user_version = 0")

    init_schema(conn)
    logger.warning("Store local recreado vacío (versión %d)", SCHEMA_VERSION)
