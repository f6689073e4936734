# countdown.py
# -----------------------------------------------------------------------------
# Per-attempt countdown: one cancellable timer that fires a terminal action
# (autosubmit) once the deadline passes. Wall-clock based so a deadline derived
# from a stored started_at lines up with one armed at start time.
# -----------------------------------------------------------------------------

import math
import threading
import time
from typing import Callable, Optional


class AttemptCountdown:
    def __init__(self, attempt_id: str, deadline: float, on_expire: Callable[[str], None],
                 clock: Callable[[], float] = time.time,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer):
        self.attempt_id = attempt_id
        self.deadline = float(deadline)
        self._on_expire = on_expire
        self._clock = clock
        self._timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._done = False

    def remaining(self) -> int:
        """Whole seconds left, never negative."""
        left = self.deadline - self._clock()
        return max(0, int(math.ceil(left))) if left > 0 else 0

    def start(self) -> "AttemptCountdown":
        with self._lock:
            if self._done or self._timer is not None:
                return self
            t = self._timer_factory(max(0.0, self.deadline - self._clock()), self._fire)
            t.daemon = True
            self._timer = t
        t.start()
        return self

    def cancel(self) -> None:
        with self._lock:
            self._done = True
            t, self._timer = self._timer, None
        if t is not None:
            t.cancel()

    def _fire(self) -> None:
        with self._lock:
            if self._done:
                return
            self._done = True
            self._timer = None
        print(f"[timer] attempt {self.attempt_id} reached zero; autosubmitting")
        try:
            self._on_expire(self.attempt_id)
        except Exception as e:
            # Timer thread: nothing upstream to propagate to
            print(f"[timer] autosubmit failed for {self.attempt_id}: {e}")
