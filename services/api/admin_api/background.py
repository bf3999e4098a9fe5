# services/api/admin_api/background.py

"""
Fire-and-forget side effects (audit inserts, session activity touches).

Jobs run on one daemon worker with their own DB session. A failing job is logged
and counted, then dropped; it never reaches the request that enqueued it. When the
queue is full the job is dropped the same way instead of blocking the caller.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session as OrmSession

from .config import settings

LOG = logging.getLogger("admin_api.side_effects")

Job = Callable[[OrmSession], None]
ErrorHook = Callable[[str, BaseException], None]


class SideEffectQueue:
    def __init__(
        self,
        session_factory: Callable[[], OrmSession],
        *,
        maxsize: int | None = None,
        on_error: Optional[ErrorHook] = None,
    ):
        self._session_factory = session_factory
        self._q: "queue.Queue[tuple[str, Job] | None]" = queue.Queue(
            maxsize=int(maxsize if maxsize is not None else settings.SIDE_EFFECT_QUEUE_MAX)
        )
        self._on_error = on_error
        self._worker: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self.errors = 0
        self.dropped = 0

    def submit(self, name: str, job: Job) -> bool:
        self._ensure_started()
        try:
            self._q.put_nowait((name, job))
            return True
        except queue.Full:
            with self._stats_lock:
                self.dropped += 1
            LOG.warning("side_effect_dropped name=%s reason=queue_full", name)
            return False

    def flush(self, timeout: float | None = None) -> bool:
        """
        Block until everything submitted so far has run. Returns False on timeout.
        """
        if self._worker is None:
            return True
        if timeout is None:
            self._q.join()
            return True
        done = threading.Event()

        def _wait():
            self._q.join()
            done.set()

        threading.Thread(target=_wait, daemon=True).start()
        return done.wait(timeout)

    def close(self, timeout: float = 5.0) -> None:
        w = self._worker
        if w is None:
            return
        self.flush(timeout)
        self._q.put(None)
        w.join(timeout)
        self._worker = None

    def _ensure_started(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        with self._start_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="admin-side-effects", daemon=True)
            self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._q.get()
            try:
                if item is None:
                    return
                name, job = item
                self._run_job(name, job)
            finally:
                self._q.task_done()

    def _run_job(self, name: str, job: Job) -> None:
        db = self._session_factory()
        try:
            job(db)
        except Exception as e:
            with self._stats_lock:
                self.errors += 1
            try:
                db.rollback()
            except Exception:
                LOG.exception("side_effect_rollback_failed name=%s", name)
            LOG.exception("side_effect_failed name=%s", name)
            if self._on_error is not None:
                try:
                    self._on_error(name, e)
                except Exception:
                    LOG.exception("side_effect_error_hook_failed name=%s", name)
        finally:
            db.close()


def _default_session_factory() -> OrmSession:
    # resolved lazily so tests can point the engine elsewhere before first use
    from .db import SessionLocal
    return SessionLocal()


side_effects = SideEffectQueue(_default_session_factory)
