"""Tag-indexed Redis cache for access decisions and menu trees.

Keys live under ``{prefix}:{generation}:``. Each tag is a Redis set holding
the full keys written with that tag, so invalidating a tag deletes exactly
its members. ``invalidate_all`` bumps the generation counter instead of
scanning keys; entries of older generations simply expire. Tag sets are
only ever given longer TTLs (``EXPIRE ... NX`` / ``GT``, Redis 7+), so a tag
never expires before the longest-lived entry it indexes.

The cache is an optimization only: when Redis is unreachable every read is a
miss and writes/invalidations are logged and dropped.
"""

import json
import logging
from dataclasses import asdict, dataclass
from functools import partial
from typing import Any, Callable, Iterable

import redis
from django.db import transaction
from django.utils import timezone

from core.redis_client import get_redis_client

from .conf import access_settings
from .exceptions import CacheUnavailable

logger = logging.getLogger(__name__)

MENU_TAG = "menu"
MENU_TREE_TAG = "menu_tree"


def user_tag(user_id) -> str:
    return f"user:{user_id}"


def role_tag(role_id) -> str:
    return f"role:{role_id}"


def resource_tag(resource_key: str) -> str:
    return f"resource:{resource_key}"


def method_tag(method: str) -> str:
    return f"method:{method.upper()}"


@dataclass(frozen=True)
class Decision:
    """Outcome of one access check."""

    granted: bool
    reason: str
    timestamp: str = ""
    resource_key: str | None = None

    @classmethod
    def make(cls, granted: bool, reason: str, resource_key: str | None = None) -> "Decision":
        return cls(granted, reason, timezone.now().isoformat(), resource_key)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Decision":
        return cls(
            granted=bool(data["granted"]),
            reason=str(data["reason"]),
            timestamp=data.get("timestamp", ""),
            resource_key=data.get("resource_key"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DecisionCache:
    """Keyed JSON values with tag-based bulk invalidation."""

    GENERATION_KEY = "generation"

    def __init__(
        self,
        client_factory: Callable[[], Any] | None = None,
        prefix: str | None = None,
        default_ttl: int | None = None,
        enabled: bool | None = None,
    ):
        self._client_factory = client_factory or get_redis_client
        self.prefix = prefix or access_settings.CACHE_PREFIX
        self.default_ttl = default_ttl or access_settings.CACHE_TTL
        self.enabled = access_settings.CACHE_ENABLED if enabled is None else enabled

    # -- public API -----------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the cached value or None on miss or store failure."""
        if not self.enabled:
            return None
        try:
            raw = self._call(lambda client: client.get(self._key(client, key)))
        except CacheUnavailable:
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    def put(self, key: str, value: Any, ttl: int | None = None, tags: Iterable[str] = ()) -> bool:
        if not self.enabled:
            return False
        ttl = ttl or self.default_ttl
        payload = json.dumps(value, default=str)

        def _write(client):
            generation = self._generation(client)
            full_key = f"{self.prefix}:{generation}:{key}"
            client.set(full_key, payload, ex=ttl)
            for tag in tags:
                tag_key = f"{self.prefix}:{generation}:tag:{tag}"
                client.sadd(tag_key, full_key)
                # The tag set must outlive every member it indexes: a new set
                # takes this TTL, an existing one is only ever extended.
                client.expire(tag_key, ttl, nx=True)
                client.expire(tag_key, ttl, gt=True)
            return True

        try:
            return self._call(_write)
        except CacheUnavailable:
            return False

    def invalidate(self, key: str) -> None:
        if not self.enabled:
            return
        try:
            self._call(lambda client: client.delete(self._key(client, key)))
        except CacheUnavailable:
            logger.error("Could not invalidate cache key %s", key)

    def invalidate_by_tag(self, tag: str) -> None:
        if not self.enabled:
            return

        def _sweep(client):
            tag_key = self._tag_key(client, tag)
            members = list(client.smembers(tag_key))
            client.delete(*members, tag_key)
            return len(members)

        try:
            swept = self._call(_sweep)
        except CacheUnavailable:
            logger.error("Could not invalidate cache tag %s", tag)
            return
        logger.debug("Invalidated %s cache entries for tag %s", swept, tag)

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        for tag in tags:
            self.invalidate_by_tag(tag)

    def invalidate_all(self) -> None:
        if not self.enabled:
            return
        try:
            self._call(lambda client: client.incr(self._generation_key()))
        except CacheUnavailable:
            logger.error("Could not flush the access cache")
            return
        logger.info("Access cache flushed")

    def invalidate_on_commit(self, *tags: str, everything: bool = False) -> None:
        """Schedule invalidation for after the current transaction commits.

        Outside a transaction the callback runs immediately; a rolled back
        transaction discards it.
        """
        if everything:
            transaction.on_commit(self.invalidate_all)
        else:
            transaction.on_commit(partial(self.invalidate_tags, tuple(tags)))

    def remember(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: int | None = None,
        tags: Iterable[str] = (),
    ) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.put(key, value, ttl=ttl, tags=tags)
        return value

    def stats(self) -> dict[str, Any]:
        available = True
        generation = None
        if self.enabled:
            try:
                generation = self._call(self._generation)
            except CacheUnavailable:
                available = False
        return {
            "enabled": self.enabled,
            "available": available,
            "prefix": self.prefix,
            "ttl": self.default_ttl,
            "generation": generation,
        }

    # -- internals ------------------------------------------------------

    def _call(self, operation):
        try:
            return operation(self._client_factory())
        except redis.RedisError as exc:
            logger.warning("Access cache unavailable: %s", exc)
            raise CacheUnavailable() from exc

    def _generation_key(self) -> str:
        return f"{self.prefix}:{self.GENERATION_KEY}"

    def _generation(self, client) -> str:
        return str(client.get(self._generation_key()) or 0)

    def _key(self, client, key: str) -> str:
        return f"{self.prefix}:{self._generation(client)}:{key}"

    def _tag_key(self, client, tag: str) -> str:
        return self._key(client, f"tag:{tag}")


__all__ = [
    "Decision",
    "DecisionCache",
    "MENU_TAG",
    "MENU_TREE_TAG",
    "user_tag",
    "role_tag",
    "resource_tag",
    "method_tag",
]
