"""
Valkey (Redis-compatible) store backing sessions and rate-limit counters.

Sessions are JSON blobs under session:<token>; counters are plain integers
under ratelimit:<action>:<subject>. Connection errors propagate: a throttle
or session check that cannot reach Valkey fails the request.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    redis-py wrapper with bounded socket timeouts.

    Usage:
        valkey = ValkeyClient(get_valkey_url())
        valkey.set_json("session:abc", {...}, expire_seconds=3600)
        count = valkey.incr("ratelimit:checkout:<invoice id>")
    """

    def __init__(self, url: str, socket_timeout: float = 2.0):
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._client.ping()
        logger.info("ValkeyClient connected")

    def get(self, key: str) -> str | None:
        """Missing keys read as None."""
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        if expire_seconds is not None:
            self._client.setex(key, expire_seconds, value)
        else:
            self._client.set(key, value)

    def delete(self, key: str) -> bool:
        """True if the key existed."""
        return self._client.delete(key) > 0

    def ttl(self, key: str) -> int:
        """Seconds left; -1 when the key never expires, -2 when it is missing."""
        return self._client.ttl(key)

    def expire(self, key: str, seconds: int) -> bool:
        """False when the key does not exist."""
        return bool(self._client.expire(key, seconds))

    def incr(self, key: str) -> int:
        """Atomic increment; a missing key starts at 1."""
        return self._client.incr(key)

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value), expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        """
        Decode a JSON value stored with set_json.

        Raises:
            ValueError: Stored value is not JSON
        """
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")
