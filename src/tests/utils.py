"""Shared helpers for tests (fake Redis, users, roles, API clients)."""

from __future__ import annotations

import fnmatch
from typing import Dict, Iterable, Set
from unittest import mock

import redis
from django.conf import settings
from django.contrib.auth import get_user_model
from django.test import override_settings
from rest_framework.test import APIClient

from access_control.models import Permission, Role
from authentication.services import TokenService

User = get_user_model()


class FakeRedis:
    """In-memory stand-in for the Redis commands used by DecisionCache.

    Set ``fail = True`` to make every command raise ``redis.ConnectionError``.
    Time only moves through ``advance``; keys whose TTL has run out are
    dropped then, like Redis would.
    """

    def __init__(self):
        self._store: Dict[str, str] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._expires_at: Dict[str, int] = {}
        self.now = 0
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("fake redis is down")

    def _exists(self, name: str) -> bool:
        return name in self._store or name in self._sets

    def get(self, name: str):
        self._check()
        return self._store.get(name)

    def set(self, name: str, value, ex: int | None = None):
        self._check()
        self._store[name] = str(value)
        if ex is not None:
            self._expires_at[name] = self.now + ex
        else:
            self._expires_at.pop(name, None)
        return True

    def sadd(self, name: str, *values) -> int:
        self._check()
        members = self._sets.setdefault(name, set())
        before = len(members)
        members.update(str(v) for v in values)
        return len(members) - before

    def smembers(self, name: str) -> Set[str]:
        self._check()
        return set(self._sets.get(name, set()))

    def expire(self, name: str, time: int, nx: bool = False, xx: bool = False, gt: bool = False, lt: bool = False) -> bool:
        self._check()
        if not self._exists(name):
            return False
        current = self.ttl(name)
        if nx and current >= 0:
            return False
        if xx and current < 0:
            return False
        # A key without a TTL counts as an infinite one for GT and LT.
        if gt and (current < 0 or time <= current):
            return False
        if lt and current >= 0 and time >= current:
            return False
        self._expires_at[name] = self.now + time
        return True

    def ttl(self, name: str) -> int:
        if not self._exists(name):
            return -2
        if name not in self._expires_at:
            return -1
        return self._expires_at[name] - self.now

    def delete(self, *names) -> int:
        self._check()
        removed = 0
        for name in names:
            self._expires_at.pop(name, None)
            if self._store.pop(name, None) is not None:
                removed += 1
            if self._sets.pop(name, None) is not None:
                removed += 1
        return removed

    def incr(self, name: str, amount: int = 1) -> int:
        self._check()
        value = int(self._store.get(name, 0)) + amount
        self._store[name] = str(value)
        return value

    def advance(self, seconds: int) -> None:
        """Move the clock forward and drop every key that expired meanwhile."""
        self.now += seconds
        expired = [name for name, at in self._expires_at.items() if at <= self.now]
        for name in expired:
            self.delete(name)

    def keys(self, pattern: str = "*"):
        return [key for key in list(self._store) + list(self._sets) if fnmatch.fnmatchcase(key, pattern)]

    def flushall(self):
        self._store.clear()
        self._sets.clear()
        self._expires_at.clear()
        self.now = 0
        self.fail = False


class FakeRedisMixin:
    """Patch the cache's Redis client with one FakeRedis per test class."""

    fake_redis: FakeRedis

    @classmethod
    def setUpClass(cls):
        cls.fake_redis = FakeRedis()
        cls.redis_patcher = mock.patch("access_control.cache.get_redis_client", return_value=cls.fake_redis)
        cls.redis_patcher.start()
        super().setUpClass()

    @classmethod
    def tearDownClass(cls):
        super().tearDownClass()
        cls.redis_patcher.stop()

    def setUp(self):
        super().setUp()
        self.fake_redis.flushall()


def create_user(email: str, roles: Iterable[Role] = (), permissions: Iterable[Permission] = (), **extra):
    """Create a user holding ``roles`` and direct ``permissions``."""

    user = User.objects.create_user(email, **extra)
    if roles:
        user.roles.add(*roles)
    if permissions:
        user.direct_permissions.add(*permissions)
    return user


def make_role(name: str, permissions: Iterable[str] = ()) -> Role:
    role, _ = Role.objects.get_or_create(name=name, guard_name="web")
    for permission_name in permissions:
        permission, _ = Permission.objects.get_or_create(name=permission_name, guard_name="web")
        role.permissions.add(permission)
    return role


def make_permission(name: str) -> Permission:
    permission, _ = Permission.objects.get_or_create(name=name, guard_name="web")
    return permission


def auth_client(user) -> APIClient:
    """Return an APIClient authenticated with a fresh access token."""

    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {TokenService.generate_access_token(user)}")
    return client


def override_access(**options):
    """``override_settings`` for individual DYNAMIC_ACCESS options."""

    return override_settings(DYNAMIC_ACCESS={**settings.DYNAMIC_ACCESS, **options})
