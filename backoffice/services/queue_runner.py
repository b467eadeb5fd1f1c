"""
Billing Back Office
Document Queue Runner.

Owns the in-process drain loop for the document job queue:
    - poke():  non-blocking trigger fired after enqueue; starts a drain
               thread unless one is already running in this process
    - drain(): synchronous claim/process loop until nothing is picked
    - a periodic poller thread (DOCUMENT_QUEUE_POLL_SECONDS > 0) that
      sweeps stale processing jobs and then pokes, so due jobs are picked
      up even when the enqueuing process is not the worker process

At most one drain loop runs per process: the loop holds a non-blocking
threading.Lock for its whole lifetime. Cross-process exclusivity is the
job of the claim step (FOR UPDATE SKIP LOCKED + compare-and-swap).
"""

from __future__ import annotations

import logging
import threading

from flask import Flask

logger = logging.getLogger(__name__)


class QueueRunner:
    """Single-consumer drain loop for one process."""

    def __init__(self) -> None:
        self._app: Flask | None = None
        self._lock = threading.Lock()
        self._poller: threading.Thread | None = None
        self._stop = threading.Event()
        # set by a poke that found the loop busy; the loop re-checks it on exit
        self._pending = threading.Event()

    def init_app(self, app: Flask) -> None:
        self._app = app
        app.extensions["queue_runner"] = self

    @property
    def running(self) -> bool:
        return self._lock.locked()

    # ── Drain ────────────────────────────────────────────────────────────────

    def drain(self) -> int | None:
        """Process due jobs until none is left.

        Returns the number of jobs picked, or None when another drain loop
        already runs in this process.
        """
        if not self._lock.acquire(blocking=False):
            self._pending.set()
            return None
        return self._drain_until_idle()

    def _drain_until_idle(self) -> int:
        """Drain with the lock held, release it, and go again if poked meanwhile.

        A poke that lands after the last empty claim but before the release
        only sets ``_pending``; it is seen here once the lock is free.
        """
        picked = 0
        while True:
            self._pending.clear()
            try:
                picked += self._drain_locked()
            finally:
                self._lock.release()
            if not self._pending.is_set() or not self._lock.acquire(blocking=False):
                return picked

    def _drain_locked(self) -> int:
        from backoffice.services import document_queue

        picked = 0
        with self._app.app_context():
            while True:
                try:
                    result = document_queue.process_one()
                except Exception:
                    logger.exception("Document drain loop aborted")
                    break
                if not result.picked:
                    break
                picked += 1
        if picked:
            logger.info("Document drain finished: %d jobs picked", picked)
        return picked

    def poke(self) -> bool:
        """Start a background drain if none is running. Returns True if started."""
        if self._app is None or not self._app.config.get("DOCUMENT_QUEUE_POKE", True):
            return False
        if not self._lock.acquire(blocking=False):
            self._pending.set()
            return False

        thread = threading.Thread(target=self._drain_until_idle, name="document-drain",
                                  daemon=True)
        try:
            thread.start()
        except RuntimeError:
            self._lock.release()
            raise
        return True

    # ── Periodic poller ──────────────────────────────────────────────────────

    def start_poller(self) -> bool:
        """Start the periodic stale-sweep + poke thread (idempotent)."""
        if self._app is None:
            return False
        interval = int(self._app.config.get("DOCUMENT_QUEUE_POLL_SECONDS", 0) or 0)
        if interval <= 0 or (self._poller is not None and self._poller.is_alive()):
            return False

        self._stop.clear()
        self._poller = threading.Thread(
            target=self._poll_loop, args=(interval,), name="document-poller", daemon=True,
        )
        self._poller.start()
        logger.info("Document queue poller started (every %ds)", interval)
        return True

    def stop_poller(self) -> None:
        self._stop.set()

    def _poll_loop(self, interval: int) -> None:
        from backoffice.services import document_queue

        while not self._stop.wait(interval):
            try:
                with self._app.app_context():
                    document_queue.recover_stale_jobs()
            except Exception:
                logger.exception("Stale job sweep failed")
            self.poke()


# Module-level singleton
queue_runner = QueueRunner()
