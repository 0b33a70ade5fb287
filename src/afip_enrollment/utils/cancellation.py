from __future__ import annotations

import threading
import time

from afip_enrollment.utils.errors import RunCancelledError


class CancelToken:
    """
    What it does:
    - Carries a cancellation flag and an optional run deadline into a portal run.

    Behavior:
    - The deadline clock starts at `start()`, not at construction, so queued jobs
      do not use up their deadline while waiting for a worker.
    - `check()` raises RunCancelledError once cancelled or past the deadline.
    - Thread-safe: the job manager cancels from another thread.
    """

    def __init__(self, deadline_s: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline_s = deadline_s
        self._expires_at: float | None = None
        self._reason: str | None = None

    def start(self) -> None:
        if self._deadline_s is not None and self._expires_at is None:
            self._expires_at = time.monotonic() + self._deadline_s

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(f"Run cancelled: {self._reason}")
        if self.expired:
            raise RunCancelledError(f"Run exceeded its deadline of {self._deadline_s:g}s")
