"""Caller deadline and cancellation token for blocking lifecycle calls.

A ``Deadline`` is created once per transition and threaded through the
permission check and the provisioning steps. Outbound calls clip their own
timeout to whatever is left, so the transition as a whole never outlives
the caller's budget.
"""

from __future__ import annotations

import threading
import time


class Deadline:
    """Monotonic deadline plus optional cancel event.

    Args:
        seconds: Total budget. ``None`` means no deadline.
        cancel_event: ``threading.Event`` the caller may set to abandon the call.
    """

    def __init__(self, seconds: float | None = None, cancel_event: threading.Event | None = None) -> None:
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds if seconds is not None else None
        self.cancel_event = cancel_event

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def clip(self, timeout: float) -> float:
        """Shorten a per-call timeout to the time left on the deadline."""
        left = self.remaining()
        if left is None:
            return timeout
        return min(timeout, left)
