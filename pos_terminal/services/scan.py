import time
from typing import Callable, Optional


class ScanDebouncer:
    """Drops a code identical to the previous read within ``window`` seconds.

    The timestamp moves on every read, so a code held in front of a camera
    stays suppressed until it leaves the frame for a full window.
    """

    def __init__(self, window: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._last_code: Optional[str] = None
        self._last_at: float = 0.0

    def accept(self, code: str) -> bool:
        code = code.strip().lower()
        now = self._clock()
        duplicate = code == self._last_code and (now - self._last_at) < self.window
        self._last_code = code
        self._last_at = now
        return not duplicate

    def reset(self) -> None:
        self._last_code = None
        self._last_at = 0.0
