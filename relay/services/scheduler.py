from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Runs ``callback`` every ``interval`` seconds on a daemon thread.

    An exception from one run is logged and the job carries on with the next tick.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], object],
        *,
        initial_delay: float = 0.0,
    ):
        self.name = name
        self.interval = max(0.01, float(interval))
        self.initial_delay = max(0.0, float(initial_delay))
        self._callback = callback
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            if self._stop.is_set():
                logger.warning("Job '%s' is still finishing its last run; not starting another", self.name)
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"relay-{self.name}", daemon=True)
        self._thread.start()
        logger.info("Started job '%s' every %.2fs", self.name, self.interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Job '%s' did not stop within %ss", self.name, timeout)
        # A thread still finishing its last run stays tracked.
        if thread is None or not thread.is_alive():
            self._thread = None

    def run_once(self) -> None:
        try:
            self._callback()
        except Exception:
            logger.exception("Job '%s' failed; retrying on the next tick", self.name)

    def _run(self) -> None:
        if self.initial_delay and self._stop.wait(self.initial_delay):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval):
                break
