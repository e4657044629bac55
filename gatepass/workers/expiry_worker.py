# =======================================================================================
# gatepass/workers/expiry_worker.py - Background Expiry Sweeper
# =======================================================================================
import logging
import threading
from typing import Optional
from ..config import config
from ..services.expiry_sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


class ExpiryWorker:
    """Runs ExpirySweeper.sweep on a fixed interval in a background thread."""

    def __init__(self, sweeper: ExpirySweeper, interval: Optional[int] = None):
        self.sweeper = sweeper
        self.interval = interval or config.EXPIRY_SWEEP_INTERVAL
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Start / Stop
    # ------------------------------------------------------------------
    def start(self):
        if not config.EXPIRY_SWEEP_ENABLED:
            logger.info("[expiry] Sweeper disabled; skipping worker.")
            return
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="expiry-sweeper", daemon=True)
        self._thread.start()
        logger.info("[expiry] Worker started (every %ss)", self.interval)

    def stop(self, timeout: float = 5.0):
        """Signal the loop and wait for an in-flight sweep to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("[expiry] Worker stopped")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    def _run_loop(self):
        while not self._stop.wait(self.interval):
            try:
                self.sweeper.sweep()
            except Exception:
                logger.exception("[expiry] Sweep failed; retrying next tick")
