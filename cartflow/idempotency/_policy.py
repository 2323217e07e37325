"""
Idempotency policy.

    Policy()                            # no expiry, wait up to 30s for a pending twin
        .with_window(minutes=10)        # replay window
        .with_wait_timeout(seconds=45)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta


def _span(seconds: float | None, minutes: float | None) -> timedelta | None:
    total = (seconds or 0) + (minutes or 0) * 60
    return timedelta(seconds=total) if total > 0 else None


@dataclass(frozen=True, slots=True)
class Policy:
    """
    How long outcomes are replayed and how long a twin call waits.

    A call that finds its key pending polls every poll_interval until the
    owner settles, up to wait_timeout. Failures are never replayed: they
    free the key, so the caller can fix the input and retry with the same
    token.
    """

    window: timedelta | None = None
    wait_timeout: timedelta = timedelta(seconds=30)
    poll_interval: timedelta = timedelta(milliseconds=50)

    def with_window(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        return replace(self, window=delta if delta is not None else _span(seconds, minutes))

    def with_wait_timeout(
        self,
        *,
        seconds: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        timeout = delta if delta is not None else _span(seconds, None)
        if timeout is None:
            raise ValueError("wait timeout must be positive")
        return replace(self, wait_timeout=timeout)

    def with_poll_interval(self, *, seconds: float) -> Policy:
        return replace(self, poll_interval=timedelta(seconds=seconds))


__all__ = ("Policy",)
