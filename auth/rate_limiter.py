"""Fixed-window rate limiting on Valkey.

Throttles the public checkout endpoint (per invoice) and exports (per
organization). The window starts at the first hit and is not extended by
later ones.
"""

from clients.valkey_client import ValkeyClient
from auth.exceptions import RateLimitedError


class RateLimiter:
    """
    Rate limiter for one named action.

    Usage:
        checkout_limiter = RateLimiter(valkey, "checkout", attempts=10, window_seconds=600)
        checkout_limiter.check(str(invoice_id))
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(self, valkey: ValkeyClient, action: str, attempts: int, window_seconds: int):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self._valkey = valkey
        self._action = action
        self._attempts = attempts
        self._window_seconds = window_seconds

    def _key(self, subject: str) -> str:
        return f"{self.KEY_PREFIX}{self._action}:{subject.lower()}"

    def check(self, subject: str) -> None:
        """Count one attempt for subject.

        Raises:
            RateLimitedError: If the window's attempts are used up.
        """
        key = self._key(subject)
        count = self._valkey.incr(key)

        if count == 1 or self._valkey.ttl(key) < 0:
            self._valkey.expire(key, self._window_seconds)

        if count > self._attempts:
            retry_after = max(self._valkey.ttl(key), 1)
            raise RateLimitedError(retry_after_seconds=retry_after)

    def reset(self, subject: str) -> None:
        self._valkey.delete(self._key(subject))

    def get_remaining_attempts(self, subject: str) -> int:
        current = self._valkey.get(self._key(subject))
        if current is None:
            return self._attempts
        return max(self._attempts - int(current), 0)
