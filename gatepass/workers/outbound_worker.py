# =======================================================================================
# gatepass/workers/outbound_worker.py - Background Side-Effect Dispatcher
# =======================================================================================
import logging
import queue
import threading
from typing import Any, Callable, Optional
from ..config import config

logger = logging.getLogger(__name__)

_STOP = object()


class OutboundDispatcher:
    """Runs audit writes and notifications after the state transition has committed.

    Jobs are fire-and-forget: a failing job is logged and dropped. Until
    `start()` is called (CLI use, tests) jobs run inline on the caller's thread.
    """

    def __init__(self, maxsize: Optional[int] = None):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize or config.OUTBOUND_QUEUE_SIZE)
        self._thread: Optional[threading.Thread] = None
        self.running = False

    # ------------------------------------------------------------------
    # Start / Stop
    # ------------------------------------------------------------------
    def start(self):
        """Start the dispatcher in a background thread."""
        if self.running:
            return
        self.running = True
        self._thread = threading.Thread(target=self._run_loop, name="outbound-dispatcher", daemon=True)
        self._thread.start()
        logger.info("[outbound] Worker started")

    def stop(self, timeout: float = 5.0):
        """Drain queued jobs, then stop the worker."""
        if not self.running:
            return
        self._queue.put(_STOP)
        if self._thread is not None:
            self._thread.join(timeout)
        self.running = False
        logger.info("[outbound] Worker stopped")

    def join(self):
        """Block until every queued job has been processed."""
        if self.running:
            self._queue.join()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        if not self.running:
            self._execute(fn, args, kwargs)
            return
        try:
            self._queue.put_nowait((fn, args, kwargs))
        except queue.Full:
            logger.error("[outbound] Queue full; dropping %s", getattr(fn, "__qualname__", fn))

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    def _run_loop(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fn, args, kwargs = item
                self._execute(fn, args, kwargs)
            finally:
                self._queue.task_done()

    @staticmethod
    def _execute(fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("[outbound] Job %s failed", getattr(fn, "__qualname__", fn))
