# tswriter/sync.py
import logging
import threading
import time
from concurrent.futures import Executor, Future
from enum import Enum
from typing import Any, Callable, Optional

from tswriter.auth import AuthProvider
from tswriter.config_loader import SyncSettings

logger = logging.getLogger(__name__)


class SyncState(Enum):
    IDLE    = "idle"
    RUNNING = "running"
    STALE   = "stale"     # lleva más del timeout corriendo: resultado desconocido


class InlineExecutor(Executor):
    """Ejecuta en el mismo hilo. Modelo por defecto: un solo hilo, un solo writer."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        if not future.set_running_or_notify_cancel():
            return future
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


class SyncCoordinator:
    """
    Serializa los syncs automáticos en background.

    - trigger() no hace nada si ya hay un sync en RUNNING (no encola).
    - Si el sync en curso superó el timeout pasa a STALE: se avisa y se
      permite lanzar otro. STALE no significa éxito; conviene revisar
      los cambios pendientes.
    - Los errores del job se loguean y se tragan: un push fallido nunca
      bloquea la edición local que lo disparó.
    """

    def __init__(
        self,
        job:      Callable[[], Any],
        settings: SyncSettings,
        auth:     AuthProvider,
        executor: Optional[Executor] = None,
        timeout:  Optional[float] = None,
        clock:    Callable[[], float] = time.monotonic,
    ):
        self._job      = job
        self._settings = settings
        self._auth     = auth
        self._executor = executor or InlineExecutor()
        self._timeout  = timeout if timeout is not None else settings.sync_timeout
        self._clock    = clock

        self._lock       = threading.Lock()
        self._started_at: Optional[float]  = None
        self._run_id     = 0
        self._future:     Optional[Future] = None

        self.last_result: Any                 = None
        self.last_error:  Optional[Exception] = None

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state_locked()

    @property
    def task(self) -> Optional[Future]:
        return self._future

    def trigger(self, book_id: Optional[str] = None) -> Optional[Future]:
        """
        Disparo oportunista tras una edición local.
        Devuelve el handle de la tarea, o None si no se lanzó nada.
        """
        if not self._settings.background_sync_allowed or not self._auth.signed_in:
            return None
        return self._start(reason=f"cambio en {book_id}" if book_id else "trigger")

    def sync_now(self) -> Optional[Future]:
        """Sync manual: ignora auto_sync pero respeta un sync en curso."""
        if not self._settings.sync_enabled or not self._auth.signed_in:
            return None
        return self._start(reason="manual")

    def cancel(self) -> bool:
        """
        Cancela la tarea si todavía no empezó y vuelve a IDLE.
        Una tarea ya en marcha no se puede interrumpir.
        """
        cancelled = self._future.cancel() if self._future else False
        with self._lock:
            self._started_at = None
            self._run_id += 1
        return cancelled

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _state_locked(self) -> SyncState:
        # Llamar con self._lock tomado
        if self._started_at is None:
            return SyncState.IDLE
        if self._clock() - self._started_at > self._timeout:
            return SyncState.STALE
        return SyncState.RUNNING

    def _start(self, reason: str) -> Optional[Future]:
        # Comprobar y reservar el run en la misma sección crítica
        with self._lock:
            state = self._state_locked()
            if state == SyncState.RUNNING:
                logger.debug("Sync ya en curso, ignorando trigger (%s)", reason)
                return None
            self._run_id    += 1
            run_id           = self._run_id
            self._started_at = self._clock()

        if state == SyncState.STALE:
            logger.warning(
                "El sync anterior lleva más de %.0fs sin terminar; resultado desconocido, "
                "se relanza (revisar cambios pendientes)",
                self._timeout,
            )

        logger.debug("Lanzando sync (%s)", reason)
        self._future = self._executor.submit(self._run, run_id)
        return self._future

    def _run(self, run_id: int) -> Any:
        try:
            result = self._job()
            self.last_result = result
            self.last_error  = None
            return result
        except Exception as e:
            logger.warning("Sync en background falló: %s", e)
            self.last_error = e
            return None
        finally:
            with self._lock:
                # Un run viejo (STALE relanzado o cancelado) no pisa el estado del nuevo
                if self._run_id == run_id:
                    self._started_at = None
