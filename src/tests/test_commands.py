"""Management command smoke tests."""

from __future__ import annotations

from io import StringIO
from unittest import mock

from django.core.management import CommandError, call_command
from django.test import TestCase

from access_control.models import MenuItem, Resource, Role
from access_control.service import DynamicAccessService
from tests.utils import FakeRedisMixin


class SeedAccessCommandTests(FakeRedisMixin, TestCase):
    def test_seed_is_repeatable(self):
        out = StringIO()

        call_command("seed_access", stdout=out)
        call_command("seed_access", "--tokens", stdout=out)

        self.assertIn("Access-control seed completed.", out.getvalue())
        self.assertIn("admin@example.com: ", out.getvalue())
        self.assertEqual(
            sorted(Role.objects.values_list("name", flat=True)), ["admin", "editor", "super-admin", "user"]
        )
        self.assertEqual(MenuItem.objects.filter(parent__name="administration").count(), 3)
        admin = Role.objects.get(name="admin")
        self.assertTrue(admin.permissions.filter(name="menu.dashboard").exists())
        self.assertTrue(Resource.objects.filter(pattern="/resources", method="GET").exists())

    def test_reset_removes_demo_data_first(self):
        call_command("seed_access", stdout=StringIO())
        MenuItem.objects.filter(name="dashboard").update(label="Changed")

        call_command("seed_access", "--reset", stdout=StringIO())

        self.assertEqual(MenuItem.objects.get(name="dashboard").label, "Dashboard")

    def test_reset_flushes_cached_decisions_before_reseeding(self):
        call_command("seed_access", stdout=StringIO())
        self.assertEqual(self.fake_redis.get("dynamic_access:generation"), "1")

        with mock.patch.object(DynamicAccessService, "invalidate_cache", autospec=True) as invalidate:
            call_command("seed_access", "--reset", stdout=StringIO())

        self.assertEqual([c.args[1:] for c in invalidate.call_args_list], [("all",), ("all",)])

    def test_reset_bumps_the_cache_generation(self):
        call_command("seed_access", "--reset", stdout=StringIO())

        self.assertEqual(self.fake_redis.get("dynamic_access:generation"), "2")

    def test_admin_role_can_manage_menus(self):
        call_command("seed_access", stdout=StringIO())

        self.assertTrue(Role.objects.get(name="admin").permissions.filter(name="manage_menus").exists())


class SyncPermissionsCommandTests(FakeRedisMixin, TestCase):
    def test_auto_discover_registers_routes(self):
        out = StringIO()

        call_command("sync_permissions", "--auto-discover", "--clear-cache", stdout=out)

        self.assertIn("Permission synchronization completed.", out.getvalue())
        self.assertTrue(Resource.objects.filter(pattern="/menus/tree", method="GET", is_auto_discovered=True).exists())
        self.assertEqual(self.fake_redis.get("dynamic_access:generation"), "1")

    def test_without_flags_changes_nothing(self):
        call_command("sync_permissions", stdout=StringIO())

        self.assertFalse(Resource.objects.exists())


class ClearAccessCacheCommandTests(FakeRedisMixin, TestCase):
    def test_targeted_scope_requires_ident(self):
        with self.assertRaises(CommandError):
            call_command("clear_access_cache", "--scope", "role", stdout=StringIO())

    def test_user_scope(self):
        out = StringIO()

        call_command("clear_access_cache", "--scope", "user", "--ident", "42", stdout=out)

        self.assertIn("scope=user", out.getvalue())
