"""Clock/timer abstraction used by the scan worker."""

from __future__ import annotations

import threading
import time
from datetime import datetime

from tiiscan.util.time import utc_now


class Clock:
    """Wall-clock time plus cancellable waits."""

    def now(self) -> datetime:
        return utc_now()

    def monotonic(self) -> float:
        return time.monotonic()

    def wait(self, seconds: float, cancel: threading.Event) -> bool:
        """Sleep up to `seconds`; returns True as soon as `cancel` is set."""
        if seconds <= 0:
            return cancel.is_set()
        return cancel.wait(seconds)
