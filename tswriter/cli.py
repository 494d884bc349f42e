# tswriter/cli.py
import functools
import logging
import sqlite3
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from tswriter.errors import (
    ConflictError, ImportConflictError, NameConflictError, NotExportableError,
    NotFoundError, RemoteUnavailableError, SchemaCorruptionError, UnauthenticatedError,
)
from tswriter.factory import build_app
from tswriter.storage.db import get_connection, recreate_store, validate_schema
from tswriter.storage.models import DeleteScope, SyncDirection
from tswriter.sync import SyncState


# Carga .env una sola vez, antes que cualquier otra cosa
load_dotenv()

# Errores que son culpa del usuario (exit 1)
_USER_ERRORS = (
    NotFoundError, NameConflictError, ImportConflictError,
    NotExportableError, ConflictError, ValueError,
)


# ------------------------------------------------------------------
# Grupo raíz
# ------------------------------------------------------------------

@click.group()
@click.version_option(package_name="tswriter")
@click.option("--config", "config_path", type=click.Path(), default=None,
              help="Ruta al config.yaml (por defecto ~/.tswriter/config.yaml)")
@click.option("--db", "db_path", type=click.Path(), default=None,
              help="Ruta a la base de datos local")
@click.option("--verbose", "-v", is_flag=True, help="Logging detallado")
@click.pass_context
def main(ctx, config_path, db_path, verbose):
    """
    TSWriter: libros en local, con copia opcional en la nube.

    Los libros se pueden indicar por id o por nombre.
    """
    logging.basicConfig(
        level  = logging.DEBUG if verbose else logging.WARNING,
        format = "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["db_path"]     = db_path


def _app(ctx: click.Context):
    """Construye los servicios la primera vez que un comando los pide."""
    root = ctx.find_root()
    if "app" not in root.obj:
        app = build_app(config_path=root.obj["config_path"], db_path=root.obj["db_path"])
        root.obj["app"] = app
        root.call_on_close(app.close)
    return root.obj["app"]


def _handles_errors(command):
    """Traduce los errores del motor a un mensaje legible y un exit code."""
    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except SchemaCorruptionError as e:
            _error(
                f"La base de datos local no es válida: {e}\n"
                f"Si no se puede recuperar, 'tswriter store recreate' la recrea vacía "
                f"(se pierden todos los datos locales)."
            )
            sys.exit(1)
        except _USER_ERRORS as e:
            _abort(str(e))
        except UnauthenticatedError as e:
            _error(f"No hay sesión válida: {e}")
            sys.exit(2)
        except RemoteUnavailableError as e:
            _error(f"Sin conexión con la nube: {e}")
            sys.exit(2)
        except sqlite3.Error as e:
            _error(f"Error de la base de datos local: {e}")
            sys.exit(1)
    return wrapper


# ------------------------------------------------------------------
# tswriter books
# ------------------------------------------------------------------

@main.group()
def books():
    """Crear, listar, renombrar, duplicar y borrar libros."""


@books.command("list")
@click.option("--source", type=click.Choice(["all", "local", "cloud"]), default="all", show_default=True)
@click.pass_context
@_handles_errors
def books_list(ctx, source):
    """Lista los libros locales y su estado de sync."""
    manager = _app(ctx).books
    listing = {
        "all":   manager.list_books,
        "local": manager.list_local_books,
        "cloud": manager.list_cloud_books,
    }[source]()

    if not listing:
        click.echo("[tswriter] No hay libros.")
        return

    for book in listing:
        click.echo(
            f"{book.id}  {book.name:<30}  {book.source.value:<8}  {book.sync_status.value}"
        )


@books.command("create")
@click.argument("name")
@click.pass_context
@_handles_errors
def books_create(ctx, name):
    """Crea un libro local vacío."""
    book_id = _app(ctx).books.create_local_book(name)
    click.echo(f"[tswriter] Libro creado: {name} ({book_id})")


@books.command("rename")
@click.argument("book")
@click.argument("new_name")
@click.pass_context
@_handles_errors
def books_rename(ctx, book, new_name):
    manager = _app(ctx).books
    manager.rename_book(manager.resolve_book_id(book), new_name)
    click.echo(f"[tswriter] Renombrado a: {new_name}")


@books.command("duplicate")
@click.argument("book")
@click.argument("new_name")
@click.pass_context
@_handles_errors
def books_duplicate(ctx, book, new_name):
    """Copia un libro como libro local nuevo."""
    manager = _app(ctx).books
    new_id  = manager.duplicate_book(manager.resolve_book_id(book), new_name)
    click.echo(f"[tswriter] Copia creada: {new_name} ({new_id})")


@books.command("delete")
@click.argument("book")
@click.option("--scope", type=click.Choice([s.value for s in DeleteScope]), default="local", show_default=True)
@click.option("--yes", "-y", is_flag=True, help="No pedir confirmación")
@click.pass_context
@_handles_errors
def books_delete(ctx, book, scope, yes):
    """Borra un libro en local, en la nube o en ambos."""
    manager = _app(ctx).books
    book_id = manager.resolve_book_id(book)

    if not yes and not click.confirm(f"¿Borrar '{book}' ({scope})?", default=False):
        click.echo("[tswriter] Sin cambios.")
        return

    manager.delete_book(book_id, DeleteScope(scope))
    click.echo(f"[tswriter] Libro borrado ({scope}).")


@books.command("stats")
@click.pass_context
@_handles_errors
def books_stats(ctx):
    stats = _app(ctx).books.get_book_stats()
    click.echo(f"[tswriter]   Total        : {stats.total}")
    click.echo(f"[tswriter]   Locales      : {stats.local}")
    click.echo(f"[tswriter]   En la nube   : {stats.cloud}")
    click.echo(f"[tswriter]   Importados   : {stats.imported}")
    click.echo(f"[tswriter]   Sin sync     : {stats.out_of_sync}")


# ------------------------------------------------------------------
# tswriter chapters
# ------------------------------------------------------------------

@main.group()
def chapters():
    """Capítulos de un libro."""


@chapters.command("list")
@click.argument("book")
@click.pass_context
@_handles_errors
def chapters_list(ctx, book):
    app = _app(ctx)
    for position, chapter in enumerate(app.chapters.get_all_chapters(app.books.resolve_book_id(book)), 1):
        click.echo(f"{position:>3}. {chapter.id}  {chapter.title}  ({chapter.file_name})")


@chapters.command("add")
@click.argument("book")
@click.argument("title")
@click.pass_context
@_handles_errors
def chapters_add(ctx, book, title):
    app     = _app(ctx)
    chapter = app.chapters.create_chapter(app.books.resolve_book_id(book), title)
    click.echo(f"[tswriter] Capítulo creado: {chapter.title} ({chapter.id})")


@chapters.command("rename")
@click.argument("book")
@click.argument("chapter_id")
@click.argument("title")
@click.pass_context
@_handles_errors
def chapters_rename(ctx, book, chapter_id, title):
    app = _app(ctx)
    app.chapters.update_chapter(app.books.resolve_book_id(book), chapter_id, title=title)
    click.echo(f"[tswriter] Capítulo renombrado: {title}")


@chapters.command("write")
@click.argument("book")
@click.argument("chapter_id")
@click.option("--file", "source", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Archivo markdown; sin --file se lee de stdin")
@click.pass_context
@_handles_errors
def chapters_write(ctx, book, chapter_id, source):
    """Reemplaza el contenido markdown de un capítulo."""
    content = Path(source).read_text(encoding="utf-8") if source else click.get_text_stream("stdin").read()
    app = _app(ctx)
    app.chapters.update_chapter(app.books.resolve_book_id(book), chapter_id, content=content)
    click.echo(f"[tswriter] Capítulo guardado ({len(content)} caracteres).")


@chapters.command("show")
@click.argument("book")
@click.argument("chapter_id")
@click.pass_context
@_handles_errors
def chapters_show(ctx, book, chapter_id):
    app     = _app(ctx)
    chapter = app.chapters.get_chapter(app.books.resolve_book_id(book), chapter_id)
    click.echo(chapter.content)


@chapters.command("delete")
@click.argument("book")
@click.argument("chapter_id")
@click.pass_context
@_handles_errors
def chapters_delete(ctx, book, chapter_id):
    app = _app(ctx)
    app.chapters.delete_chapter(app.books.resolve_book_id(book), chapter_id)
    click.echo("[tswriter] Capítulo borrado.")


@chapters.command("reorder")
@click.argument("book")
@click.argument("chapter_ids", nargs=-1, required=True)
@click.pass_context
@_handles_errors
def chapters_reorder(ctx, book, chapter_ids):
    """Nuevo orden: todos los ids de capítulo, cada uno una vez."""
    app = _app(ctx)
    ordered = app.chapters.reorder_chapters(app.books.resolve_book_id(book), list(chapter_ids))
    click.echo("[tswriter] Orden actualizado: " + ", ".join(c.title for c in ordered))


# ------------------------------------------------------------------
# tswriter ideas
# ------------------------------------------------------------------

@main.group()
def ideas():
    """Ideas por capítulo."""


@ideas.command("list")
@click.argument("book")
@click.argument("chapter_id")
@click.pass_context
@_handles_errors
def ideas_list(ctx, book, chapter_id):
    app = _app(ctx)
    for idea in app.ideas.get_ideas(app.books.resolve_book_id(book), chapter_id):
        click.echo(f"{idea.order:>3}. {idea.text}  ({idea.id})")


@ideas.command("add")
@click.argument("book")
@click.argument("chapter_id")
@click.argument("text")
@click.pass_context
@_handles_errors
def ideas_add(ctx, book, chapter_id, text):
    app  = _app(ctx)
    idea = app.ideas.create_idea(app.books.resolve_book_id(book), chapter_id, text)
    click.echo(f"[tswriter] Idea añadida en posición {idea.order} ({idea.id})")


@ideas.command("delete")
@click.argument("book")
@click.argument("chapter_id")
@click.argument("idea_id")
@click.pass_context
@_handles_errors
def ideas_delete(ctx, book, chapter_id, idea_id):
    app = _app(ctx)
    app.ideas.delete_idea(app.books.resolve_book_id(book), chapter_id, idea_id)
    click.echo("[tswriter] Idea borrada.")


# ------------------------------------------------------------------
# tswriter cloud
# ------------------------------------------------------------------

@main.group()
def cloud():
    """Export, import, push y pull contra la nube."""


@cloud.command("list")
@click.pass_context
@_handles_errors
def cloud_list(ctx):
    """Libros del índice remoto; marca los que se pueden importar."""
    app = _app(ctx)
    if not app.auth.signed_in:
        _abort("No hay sesión. Define TSWRITER_ACCESS_TOKEN o auth.access_token en el config.")

    listing = app.books.get_available_cloud_books()
    if not listing:
        click.echo("[tswriter] No hay libros en la nube.")
        return

    for book in listing:
        mark = "importable" if book.available else "local"
        click.echo(f"{book.id}  {book.name:<30}  {book.version:<8}  {mark}")


@cloud.command("export")
@click.argument("book")
@click.pass_context
@_handles_errors
def cloud_export(ctx, book):
    manager = _app(ctx).books
    manager.export_book_to_cloud(manager.resolve_book_id(book))
    click.echo("[tswriter] Libro exportado.")


@cloud.command("import")
@click.argument("book_id")
@click.pass_context
@_handles_errors
def cloud_import(ctx, book_id):
    """Importa un libro remoto por su id."""
    _app(ctx).books.import_cloud_book(book_id)
    click.echo(f"[tswriter] Libro importado ({book_id}).")


@cloud.command("push")
@click.argument("book")
@click.option("--check-conflicts", is_flag=True, help="Abortar si la copia remota cambió")
@click.pass_context
@_handles_errors
def cloud_push(ctx, book, check_conflicts):
    manager = _app(ctx).books
    manager.sync_book_with_cloud(manager.resolve_book_id(book), SyncDirection.PUSH, check_conflicts)
    click.echo("[tswriter] Push completado.")


@cloud.command("pull")
@click.argument("book")
@click.option("--check-conflicts", is_flag=True, help="Abortar si hay cambios locales sin subir")
@click.pass_context
@_handles_errors
def cloud_pull(ctx, book, check_conflicts):
    manager = _app(ctx).books
    manager.sync_book_with_cloud(manager.resolve_book_id(book), SyncDirection.PULL, check_conflicts)
    click.echo("[tswriter] Pull completado.")


@cloud.command("sync-all")
@click.pass_context
@_handles_errors
def cloud_sync_all(ctx):
    """Push de todos los libros con cambios sin subir."""
    result = _app(ctx).books.sync_all_out_of_sync_books()
    _print_batch(result, "sincronizados")


@cloud.command("sync-now")
@click.pass_context
@_handles_errors
def cloud_sync_now(ctx):
    """Sube ahora los cambios pendientes (capítulos e info de libros)."""
    app  = _app(ctx)
    task = app.sync.sync_now()
    if task is None:
        _abort("Sync desactivado o sin sesión (sync.enabled en el config y un token válido).")

    task.result()
    if app.sync.last_error:
        raise app.sync.last_error
    _print_batch(app.sync.last_result, "sincronizados")


@cloud.command("status")
@click.pass_context
@_handles_errors
def cloud_status(ctx):
    """Estado global del sync: offline, pending, manual o synced."""
    app      = _app(ctx)
    overview = app.books.get_sync_status(in_progress=app.sync.state == SyncState.RUNNING)

    click.echo(f"[tswriter] Sync: {overview.value}")
    for book in app.books.list_out_of_sync_books():
        click.echo(f"[tswriter]   ⚠ {book.name} tiene cambios sin subir")


@cloud.command("resume")
@click.pass_context
@_handles_errors
def cloud_resume(ctx):
    """Reanuda exports/imports/pulls que quedaron a medias."""
    result = _app(ctx).books.resume_interrupted_operations()
    _print_batch(result, "reanudados")


# ------------------------------------------------------------------
# tswriter store
# ------------------------------------------------------------------

@main.group()
def store():
    """Mantenimiento de la base de datos local."""


@store.command("check")
@click.pass_context
def store_check(ctx):
    """Valida el layout de la base de datos local sin tocarla."""
    conn = get_connection(ctx.find_root().obj["db_path"])
    try:
        problems = validate_schema(conn)
    finally:
        conn.close()

    if problems:
        for problem in problems:
            _error(problem)
        sys.exit(1)
    click.echo("[tswriter] Base de datos local OK.")


@store.command("recreate")
@click.option("--yes", is_flag=True, help="Confirmar sin preguntar")
@click.pass_context
def store_recreate(ctx, yes):
    """Borra la base de datos local y la recrea vacía. Destructivo."""
    click.echo(click.style(
        "[tswriter] ATENCIÓN: se van a perder TODOS los libros y capítulos locales.",
        fg="yellow",
    ))
    if not yes and not click.confirm("¿Recrear la base de datos local?", default=False):
        click.echo("[tswriter] Sin cambios.")
        return

    conn = get_connection(ctx.find_root().obj["db_path"])
    try:
        recreate_store(conn, confirm=True)
    finally:
        conn.close()
    click.echo("[tswriter] Base de datos local recreada.")


# ------------------------------------------------------------------
# Helpers de output
# ------------------------------------------------------------------

def _print_batch(result, label: str) -> None:
    click.echo("─" * 50)
    click.echo(f"[tswriter]   {label.capitalize():<13}: {len(result.success)}")
    click.echo(f"[tswriter]   Fallidos     : {len(result.failed)}")
    for name in result.failed:
        click.echo(f"[tswriter]     ⚠ {name}: {result.errors.get(name, '')}")
    click.echo("─" * 50)
    if result.failed:
        sys.exit(2)


def _abort(message: str) -> None:
    """Error de validación, culpa del usuario."""
    click.echo(click.style(f"[tswriter] Error: {message}", fg="red"), err=True)
    sys.exit(1)


def _error(message: str) -> None:
    """Error de sistema, no es culpa del usuario."""
    click.echo(click.style(f"[tswriter] {message}", fg="red"), err=True)
