import logging
import threading
from typing import Optional
from school_library.config import settings
from school_library.database import SessionLocal
from school_library.services.library import LibraryService

logger = logging.getLogger(__name__)


class SweepScheduler:
    """Background thread running the overdue and reservation-expiry sweeps on a fixed interval."""

    def __init__(self, interval_minutes: Optional[int] = None, session_factory=SessionLocal):
        self.interval_seconds = (interval_minutes if interval_minutes is not None else settings.sweep_interval_minutes) * 60
        self.session_factory = session_factory
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self):
        db = self.session_factory()
        try:
            library = LibraryService(db)
            refreshed = library.run_overdue_sweep()
            expired = library.run_reservation_sweep()
            logger.info(f"Scheduled sweep done: {refreshed} overdue fines refreshed, {expired} reservations expired")
        finally:
            db.close()

    def _loop(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                # Keep the thread alive, the next tick retries from current state
                logger.error(f"Scheduled sweep failed: {e}", exc_info=True)

    def start(self):
        if self.interval_seconds <= 0:
            logger.info("Sweep scheduler disabled")
            return
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="library-sweeps", daemon=True)
        self._thread.start()
        logger.info(f"Sweep scheduler started, every {self.interval_seconds // 60} minutes")

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("Sweep scheduler stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


sweep_scheduler = SweepScheduler()
