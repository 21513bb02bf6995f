from __future__ import annotations

import logging
import threading
import time
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from bindery.services.collection_sessions import CollectionSessionStore
from bindery.telemetry import TelemetryClient

LOGGER = logging.getLogger("bindery.sweeper")


class SessionSweeper:
    """Background thread that periodically reclaims expired collection sessions."""

    def __init__(
        self,
        store: CollectionSessionStore,
        interval_seconds: int,
        *,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._store = store
        self._interval_seconds = max(1, interval_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="bindery-session-sweeper")
        self._thread.daemon = True
        self._thread.start()
        LOGGER.info("session sweeper started interval_seconds=%s", self._interval_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None

    def run_once(self) -> int:
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(sweep_tick_id=tick_id)
        started_at = time.perf_counter()
        try:
            removed = self._store.sweep()
        except Exception as exc:
            self._telemetry.emit(
                "session.sweep.error",
                tick_id=tick_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            self._telemetry.emit(
                "session.sweep",
                tick_id=tick_id,
                removed=removed,
                remaining=len(self._store),
                duration_ms=int((time.perf_counter() - started_at) * 1000),
            )
            return removed
        finally:
            reset_contextvars(**tick_tokens)

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self.run_once()
            except Exception:
                LOGGER.warning("session sweep failed", exc_info=True)
