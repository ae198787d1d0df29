"""
Per-wallet attempt limiter.

Fixed-window limit: a wallet gets ATTEMPT_LIMIT rounds; the cooldown window
starts on the first round after a reset, and once it has elapsed all attempts
come back at once (no per-attempt regeneration).

State lives in the injected IdentityKeyValueStore under "attempts_<wallet>" as
{"attemptsRemaining": int, "windowStartedAt": epoch ms | null}.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import config
from services.identity_store import IdentityKeyValueStore

logger = logging.getLogger(__name__)

ATTEMPTS_KEY_PREFIX = "attempts_"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AttemptState:
    attempts_remaining: int
    window_started_at: Optional[int] = None

    def to_dict(self) -> dict:
        return {"attemptsRemaining": self.attempts_remaining, "windowStartedAt": self.window_started_at}

    @classmethod
    def from_dict(cls, data, limit: int) -> "AttemptState":
        if not isinstance(data, dict):
            return cls(limit, None)
        try:
            remaining = int(data.get("attemptsRemaining", limit))
        except (TypeError, ValueError):
            remaining = limit
        started = data.get("windowStartedAt")
        if not isinstance(started, (int, float)) or isinstance(started, bool):
            started = None
        remaining = max(0, min(limit, remaining))
        if started is None and remaining < limit:
            # Spent attempts without a window start could never reset
            return cls(limit, None)
        return cls(remaining, int(started) if started is not None else None)


@dataclass
class AttemptDecision:
    allowed: bool
    remaining: int
    retry_after_ms: int = 0

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "remaining": self.remaining, "retryAfterMs": self.retry_after_ms}


class AttemptLimiter:
    """
    Usage:
        limiter = AttemptLimiter(store)
        decision = limiter.try_consume(wallet)
        if not decision.allowed:
            wait(decision.retry_after_ms)
    """

    def __init__(
        self,
        store: IdentityKeyValueStore,
        limit: Optional[int] = None,
        cooldown_ms: Optional[int] = None,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.limit = int(limit if limit is not None else config.ATTEMPT_LIMIT)
        self.cooldown_ms = int(cooldown_ms if cooldown_ms is not None else config.ATTEMPT_COOLDOWN_SEC * 1000)
        self._clock_ms = clock_ms

    def _key(self, identity: str) -> str:
        return f"{ATTEMPTS_KEY_PREFIX}{identity}"

    def _fresh(self) -> AttemptState:
        return AttemptState(self.limit, None)

    def _reset_if_elapsed(self, state: AttemptState, now: int) -> AttemptState:
        if state.window_started_at is not None and now - state.window_started_at >= self.cooldown_ms:
            return self._fresh()
        return state

    def retry_after_ms(self, state: AttemptState, now: Optional[int] = None) -> int:
        """Milliseconds until an exhausted window resets; 0 while attempts remain."""
        if state.attempts_remaining > 0:
            return 0
        now = self._clock_ms() if now is None else now
        started = state.window_started_at if state.window_started_at is not None else now
        return max(0, self.cooldown_ms - (now - started))

    def check_and_maybe_reset(self, identity: str) -> AttemptState:
        """Current state for identity, resetting (and persisting) an elapsed window."""
        now = self._clock_ms()
        result = {}

        def _check(current):
            state = AttemptState.from_dict(current, self.limit)
            fresh = self._reset_if_elapsed(state, now)
            result["state"] = fresh
            if current is not None and fresh.to_dict() != current:
                if fresh is not state:
                    logger.debug("Attempt window elapsed for %s; reset to %d", identity, self.limit)
                return fresh.to_dict()
            return current

        self.store.update(self._key(identity), _check)
        return result["state"]

    def try_consume(self, identity: str) -> AttemptDecision:
        """Consume one attempt if any remain; otherwise report when the window ends."""
        now = self._clock_ms()
        result = {}

        def _consume(current):
            state = self._reset_if_elapsed(AttemptState.from_dict(current, self.limit), now)
            if state.attempts_remaining <= 0:
                result["decision"] = AttemptDecision(False, 0, self.retry_after_ms(state, now))
                return state.to_dict()
            state.attempts_remaining -= 1
            if state.window_started_at is None:
                state.window_started_at = now
            result["decision"] = AttemptDecision(True, state.attempts_remaining, 0)
            return state.to_dict()

        self.store.update(self._key(identity), _consume)
        decision = result["decision"]
        if not decision.allowed:
            logger.info("Attempts exhausted for %s; retry in %d ms", identity, decision.retry_after_ms)
        return decision

    def clear(self, identity: str) -> None:
        """Forget the stored state for identity (developer tool)."""
        self.store.delete(self._key(identity))
