import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

from errors import PersistenceError

logger = logging.getLogger(__name__)


class PersistScheduler:
    """
    Coalesces bursts of changes into one save.

    Every `schedule()` call cancels the pending timer and starts a new one,
    so `save` runs once the state has been quiet for `delay` seconds.
    Single writes handed to `submit()` run in order on one worker thread.
    Neither path blocks the caller; failures are logged and kept in
    `last_error` for the health check.
    """

    def __init__(self, save: Callable[[], None], delay: float = 2.0):
        self.save = save
        self.delay = delay
        self.last_error: Optional[str] = None
        self.last_saved_at: Optional[datetime] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="persist")

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> None:
        """Save right now, raising on failure."""
        self.cancel()
        self._run()

    def submit(self, fn: Callable, *args) -> Future:
        return self._executor.submit(self._guarded, fn, *args)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        if self.pending:
            self.cancel()
            self._run(raise_errors=False)

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._run(raise_errors=False)

    def _run(self, raise_errors: bool = True) -> None:
        with self._save_lock:
            try:
                self.save()
            except PersistenceError as exc:
                self.last_error = str(exc)
                logger.error("Saving shop state failed: %s", exc)
                if raise_errors:
                    raise
                return
            self.last_error = None
            self.last_saved_at = datetime.now(timezone.utc)
            logger.debug("Shop state saved")

    def _guarded(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except PersistenceError as exc:
            self.last_error = str(exc)
            logger.error("Background write %s failed: %s", getattr(fn, "__name__", fn), exc)
