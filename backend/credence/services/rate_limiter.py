"""Fixed-window rate limiting keyed by (client key, action).

A window opens on the first request for a pair and lasts the rule's
period. Up to `limit` requests are allowed inside it; later requests are
denied without being counted until the window rolls over.

Rules use the "count/period" strings from settings ("5/15minute").
Counting is done by the `limits` library that slowapi is built on: a
FixedWindowRateLimiter over the storage named by RATE_LIMIT_STORAGE_URI
(in-process memory by default).
"""

import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass

from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from credence.core.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single allow() call.

    Attributes:
        allowed: Whether the request may proceed.
        retry_after_seconds: Seconds until the window resets (0 when allowed).
        remaining: Requests left in the current window.
    """

    allowed: bool
    retry_after_seconds: int = 0
    remaining: int = 0


class RateLimiter:
    """Per-action fixed-window limiter.

    Args:
        rules: Rule string per action name.
        default_rule: Rule string for actions without an explicit rule.
        storage: limits storage backend. Built from storage_uri when omitted.
        storage_uri: limits storage URI ("memory://", "redis://...").
        enabled: When False every request is allowed.
    """

    def __init__(
        self,
        rules: Mapping[str, str],
        *,
        default_rule: str = "100/15minute",
        storage: Storage | None = None,
        storage_uri: str = "memory://",
        enabled: bool = True,
    ) -> None:
        self._rules = {action: parse(rule) for action, rule in rules.items()}
        self._default = parse(default_rule)
        if storage is None:
            storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(storage)
        self.enabled = enabled

    def rule_for(self, action: str) -> RateLimitItem:
        return self._rules.get(action, self._default)

    def _denied(self, item: RateLimitItem, key: str, action: str) -> RateLimitDecision:
        stats = self._strategy.get_window_stats(item, action, key)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        logger.warning(
            "Rate limit exceeded",
            extra={"action": action, "retry_after": retry_after},
        )
        return RateLimitDecision(allowed=False, retry_after_seconds=retry_after)

    def allow(self, key: str, action: str) -> RateLimitDecision:
        """Count a request and decide whether it may proceed.

        Args:
            key: Client identity, typically the network address.
            action: Endpoint family ("login", "register", "otp", ...).

        Returns:
            RateLimitDecision.
        """
        item = self.rule_for(action)
        if not self.enabled:
            return RateLimitDecision(allowed=True, remaining=item.amount)

        # test() first so a denied request never touches the counter
        if not self._strategy.test(item, action, key):
            return self._denied(item, key, action)
        if not self._strategy.hit(item, action, key):
            # Lost a race for the last slot
            return self._denied(item, key, action)

        stats = self._strategy.get_window_stats(item, action, key)
        return RateLimitDecision(allowed=True, remaining=stats.remaining)

    def check(self, key: str, action: str) -> None:
        """Like allow(), but raise when denied.

        Raises:
            RateLimitExceededError: With the retry-after hint.
        """
        decision = self.allow(key, action)
        if not decision.allowed:
            raise RateLimitExceededError(decision.retry_after_seconds)

    def reset(self, key: str, action: str) -> None:
        """Forget the window for a pair (e.g. after a successful login)."""
        self._strategy.clear(self.rule_for(action), action, key)
