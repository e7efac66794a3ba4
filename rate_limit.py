"""Login attempt limiter with timed lockout.

State per (action, identifier) lives in the TTL store as
``{"attempts": [epoch seconds...], "lockedUntil": epoch seconds | None}``.

- Attempts are counted over a sliding window (default 15 minutes).
- When the window holds MAX attempts (default 5), the next check locks the
  key for the lockout period (default 30 minutes).
- A check made while locked is denied and records nothing, so repeated
  checks never extend a lockout.
- A successful login removes the key.

Corrupted stored state fails open (the check is allowed); see FAIL_OPEN.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any

from flask import current_app

from ttl_store import TTLStore, get_ttl_store

logger = logging.getLogger(__name__)

TTL_SLACK_SECONDS = 60

# Unreadable state is treated as "no state" rather than "locked".
FAIL_OPEN = True


@dataclass
class LimitStatus:
    allowed: bool
    remaining: int = 0
    retry_after: int = 0  # minutes
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "retryAfter": self.retry_after,
            "message": self.message,
        }


class CorruptState(ValueError):
    pass


class RateLimiter:
    def __init__(
        self,
        store: TTLStore,
        max_attempts: int = 5,
        window_minutes: int = 15,
        lockout_minutes: int = 30,
        clock=time.time,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window = window_minutes * 60
        self.lockout = lockout_minutes * 60
        self._clock = clock

    @staticmethod
    def key(action: str, identifier: str) -> str:
        return f"ratelimit:{action}:{identifier}"

    def _load(self, key: str) -> dict[str, Any]:
        raw = self.store.get(key)
        if raw is None:
            return {"attempts": [], "lockedUntil": None}
        if not isinstance(raw, dict):
            raise CorruptState(f"unexpected state type {type(raw).__name__}")
        attempts = raw.get("attempts", [])
        locked_until = raw.get("lockedUntil")
        if not isinstance(attempts, list):
            raise CorruptState("attempts is not a list")
        try:
            attempts = [float(t) for t in attempts]
            locked_until = float(locked_until) if locked_until is not None else None
        except (TypeError, ValueError) as e:
            raise CorruptState(str(e)) from e
        return {"attempts": attempts, "lockedUntil": locked_until}

    def _in_window(self, attempts: list[float], now: float) -> list[float]:
        return [t for t in attempts if now - t < self.window]

    def check_limit(self, identifier: str, action: str = "login") -> LimitStatus:
        key = self.key(action, identifier)
        try:
            state = self._load(key)
        except CorruptState as e:
            if not FAIL_OPEN:
                raise
            logger.warning("Ignoring unreadable rate-limit state for %s: %s", key, e)
            return LimitStatus(allowed=True, remaining=self.max_attempts - 1)

        now = self._clock()
        locked_until = state["lockedUntil"]
        if locked_until and locked_until > now:
            return self._denied(locked_until - now)

        attempts = self._in_window(state["attempts"], now)
        if len(attempts) >= self.max_attempts:
            locked_until = now + self.lockout
            self.store.put(
                key,
                {"attempts": attempts, "lockedUntil": locked_until},
                self.lockout + TTL_SLACK_SECONDS,
            )
            logger.info("Locked %s for %d minutes", key, self.lockout // 60)
            return self._denied(self.lockout)

        return LimitStatus(allowed=True, remaining=self.max_attempts - len(attempts) - 1)

    def _denied(self, seconds_left: float) -> LimitStatus:
        minutes = max(1, math.ceil(seconds_left / 60))
        return LimitStatus(
            allowed=False,
            retry_after=minutes,
            message=f"Too many failed attempts. Try again in {minutes} minute(s).",
        )

    def record_attempt(self, identifier: str, action: str = "login") -> int:
        """Record one failed attempt; returns the attempts now in the window."""
        key = self.key(action, identifier)
        try:
            state = self._load(key)
        except CorruptState as e:
            logger.warning("Resetting unreadable rate-limit state for %s: %s", key, e)
            state = {"attempts": [], "lockedUntil": None}

        now = self._clock()
        attempts = self._in_window(state["attempts"], now)
        attempts.append(now)
        locked_until = state["lockedUntil"] if state["lockedUntil"] and state["lockedUntil"] > now else None
        ttl = self.window + TTL_SLACK_SECONDS
        if locked_until:
            ttl = max(ttl, int(locked_until - now) + TTL_SLACK_SECONDS)
        self.store.put(key, {"attempts": attempts, "lockedUntil": locked_until}, ttl)
        return len(attempts)

    def reset_attempts(self, identifier: str, action: str = "login") -> None:
        self.store.remove(self.key(action, identifier))


def get_rate_limiter() -> RateLimiter:
    """Rate limiter configured from the current app."""
    cfg = current_app.config
    return RateLimiter(
        get_ttl_store(),
        max_attempts=cfg.get("RATE_LIMIT_MAX_ATTEMPTS", 5),
        window_minutes=cfg.get("RATE_LIMIT_WINDOW_MINUTES", 15),
        lockout_minutes=cfg.get("RATE_LIMIT_LOCKOUT_MINUTES", 30),
    )


def student_identifier(name: str, number: int) -> str:
    return f"student:{name}:{number}"
