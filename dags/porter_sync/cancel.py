from __future__ import annotations

import logging
import threading

from porter_sync.errors import PullCancelled

LOG = logging.getLogger(__name__)


class CancelToken:
    """
    Cooperative stop signal shared by one run.
    Every backoff sleep goes through sleep() so a stop request is honoured
    at the next retry boundary instead of killing a half-written batch.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        LOG.warning("Cancellation requested; stopping at the next retry boundary")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise PullCancelled("Run cancelled")

    def sleep(self, seconds: float) -> None:
        self.check()
        if seconds > 0 and self._event.wait(seconds):
            raise PullCancelled(f"Run cancelled during a {seconds:.3f}s wait")
