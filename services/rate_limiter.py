"""
Rate limiter for public endpoints.

Sliding-window attempt counter keyed by (identifier, action). Every check
counts as an attempt, whether or not it is limited, so rapid polling also
consumes budget. Attempts are persisted through an AttemptStore, which keeps
limits consistent across processes.

One RateLimiter is built per process and injected where needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional

from domain.errors import RateLimitedError
from domain.time import Clock
from repositories.rate_limit_repository import AttemptStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(minutes=15)
DEFAULT_MAX_ATTEMPTS = 5

# Per-action overrides of DEFAULT_MAX_ATTEMPTS.
ACTION_LIMITS: Mapping[str, int] = {"verify": 10}

# Actions used by the request service.
CREATE_REQUEST = "create_request"
TRACK_REQUEST = "track_request"
VERIFY = "verify"


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    is_limited: bool
    attempts: int
    remaining: int
    reset_time: datetime


class RateLimiter:
    def __init__(
        self,
        store: AttemptStore,
        clock: Clock,
        *,
        window: timedelta = DEFAULT_WINDOW,
        default_limit: int = DEFAULT_MAX_ATTEMPTS,
        action_limits: Optional[Mapping[str, int]] = None,
    ):
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self._store = store
        self._clock = clock
        self._window = window
        self._default_limit = default_limit
        self._action_limits = dict(ACTION_LIMITS if action_limits is None else action_limits)

    @property
    def window(self) -> timedelta:
        return self._window

    def limit_for(self, action: str) -> int:
        return self._action_limits.get(action, self._default_limit)

    def check(self, identifier: str, action: str) -> RateLimitResult:
        """
        Evaluate and record one attempt.

        `attempts` is the number of earlier attempts inside the window; the
        call is limited once that number reaches the action's maximum.
        """

        now = self._clock.now()
        max_attempts = self.limit_for(action)

        attempts = self._store.record_and_count(identifier, action, now - self._window, now)

        return RateLimitResult(
            is_limited=attempts >= max_attempts,
            attempts=attempts,
            remaining=max(0, max_attempts - attempts),
            reset_time=now + self._window,
        )

    def enforce(self, identifier: str, action: str) -> RateLimitResult:
        """Like check(), but raises RateLimitedError when limited."""

        result = self.check(identifier, action)
        if result.is_limited:
            logger.warning(
                "Rate limit exceeded",
                extra={"identifier": identifier, "action": action, "attempts": result.attempts},
            )
            raise RateLimitedError(
                "Too many attempts. Please try again later.",
                reset_time=result.reset_time,
                retry_after_seconds=int(self._window.total_seconds()),
                details={"reset_time": result.reset_time.isoformat()},
            )
        return result

    def purge_expired(self) -> int:
        """Delete attempts that fell out of the window."""

        removed = self._store.purge_before(self._clock.now() - self._window)
        logger.info("Purged expired rate-limit attempts", extra={"removed": removed})
        return removed


__all__ = [
    "DEFAULT_WINDOW",
    "DEFAULT_MAX_ATTEMPTS",
    "ACTION_LIMITS",
    "CREATE_REQUEST",
    "TRACK_REQUEST",
    "VERIFY",
    "RateLimitResult",
    "RateLimiter",
]
