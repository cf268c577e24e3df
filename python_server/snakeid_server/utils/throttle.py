"""Frame admission for the continuous camera stream.

Frames arriving while a request is in flight are dropped, and accepted
frames are spaced at least ``min_interval_s`` apart even when inference
finishes quickly.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def should_accept(
    now: float,
    last_accepted: Optional[float],
    busy: bool,
    min_interval_s: float,
) -> bool:
    """Decide whether a stream frame should be classified.

    Args:
        now: Current clock reading in seconds
        last_accepted: Clock reading of the last accepted frame, or None
        busy: Whether a request is currently in flight
        min_interval_s: Minimum spacing between accepted frames

    Returns:
        True if the frame should be processed, False if it should be dropped
    """
    if busy:
        return False
    if last_accepted is None:
        return True
    return (now - last_accepted) >= min_interval_s


class FrameThrottle:
    """Stateful wrapper around should_accept with an injectable clock."""

    def __init__(
        self,
        min_interval_s: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._last_accepted: Optional[float] = None
        self._lock = threading.Lock()

    def admit(self, busy: bool = False) -> bool:
        """Return True and record the time if the frame is accepted."""
        with self._lock:
            now = self._clock()
            if not should_accept(now, self._last_accepted, busy, self.min_interval_s):
                logger.debug("Frame dropped (busy=%s)", busy)
                return False
            self._last_accepted = now
            return True

    def reset(self) -> None:
        """Forget the last accepted frame."""
        with self._lock:
            self._last_accepted = None
