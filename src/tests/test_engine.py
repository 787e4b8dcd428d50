"""Access decision engine: url checks, menu checks, caching and failure modes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone as dt_timezone
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase, override_settings

from access_control.cache import DecisionCache
from access_control.checks import dynamic_access_settings
from access_control.conditions import register_predicate, unregister_predicate
from access_control.engine import AccessDecisionEngine, Reason
from access_control.menus import MenuTreeBuilder
from access_control.models import AccessCheck, MenuItem, Resource
from access_control.registry import ResourceRegistry
from access_control.roles import RolePermissionService
from tests.utils import FakeRedisMixin, create_user, make_permission, make_role, override_access


def fixed_clock(*args):
    return lambda: datetime(*args, tzinfo=dt_timezone.utc)


class UrlAccessTests(FakeRedisMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.cache = DecisionCache()
        self.registry = ResourceRegistry(self.cache)
        self.engine = AccessDecisionEngine(cache=self.cache, registry=self.registry)
        self.admin_role = make_role("admin")
        self.reports = self.registry.upsert("/admin/reports", "GET", roles=["admin"])
        self.alice = create_user("alice@example.com", roles=[self.admin_role])
        self.bob = create_user("bob@example.com", roles=[make_role("editor")])

    def test_role_holder_is_granted_and_other_user_denied(self):
        granted = self.engine.check_access(self.alice, "/admin/reports", "GET")
        denied = self.engine.check_access(self.bob, "/admin/reports", "GET")

        self.assertTrue(granted.granted)
        self.assertEqual(granted.reason, Reason.ROLE_MATCH)
        self.assertEqual(granted.resource_key, "GET:/admin/reports")
        self.assertFalse(denied.granted)
        self.assertEqual(denied.reason, Reason.NO_MATCH)

    def test_direct_or_inherited_permission_grants(self):
        self.registry.upsert("/invoices", "GET", permissions=["invoices.view"])
        viewer = make_role("viewer", permissions=["invoices.view"])
        carol = create_user("carol@example.com", permissions=[make_permission("invoices.view")])
        dave = create_user("dave@example.com", roles=[viewer])

        self.assertEqual(self.engine.check_access(carol, "/invoices", "GET").reason, Reason.PERMISSION_MATCH)
        self.assertEqual(self.engine.check_access(dave, "/invoices", "GET").reason, Reason.PERMISSION_MATCH)

    def test_resource_without_requirements_is_unrestricted(self):
        self.registry.upsert("/dashboard", "GET")

        decision = self.engine.check_access(self.bob, "/dashboard/", "get")

        self.assertTrue(decision.granted)
        self.assertEqual(decision.reason, Reason.UNRESTRICTED)

    def test_anonymous_access(self):
        self.registry.upsert("/docs", "GET", is_public=True)

        public = self.engine.check_access(None, "/docs", "GET")
        protected = self.engine.check_access(None, "/admin/reports", "GET")

        self.assertEqual((public.granted, public.reason), (True, Reason.PUBLIC))
        self.assertEqual((protected.granted, protected.reason), (False, Reason.UNAUTHENTICATED))

    def test_unknown_or_inactive_principal_is_denied(self):
        ghost = self.engine.check_access(str(uuid.uuid4()), "/admin/reports", "GET")
        garbage = self.engine.check_access("not-a-uuid", "/admin/reports", "GET")
        self.alice.is_active = False
        self.alice.save()
        inactive = self.engine.check_access(self.alice, "/admin/reports", "GET")

        for decision in (ghost, garbage, inactive):
            self.assertFalse(decision.granted)
            self.assertEqual(decision.reason, Reason.INVALID_PRINCIPAL)

    def test_super_admin_bypasses_requirements(self):
        boss = create_user("boss@example.com", roles=[make_role("super-admin")])

        decision = self.engine.check_access(boss, "/admin/reports", "GET")

        self.assertEqual((decision.granted, decision.reason), (True, Reason.SUPER_ADMIN))

    def test_superuser_flag_only_counts_when_enabled(self):
        root = create_user("root@example.com", is_superuser=True)

        self.assertEqual(self.engine.check_access(root, "/admin/reports", "GET").reason, Reason.NO_MATCH)
        self.fake_redis.flushall()
        with override_settings(ALLOW_SUPERUSER_BYPASS=True):
            self.assertEqual(self.engine.check_access(root, "/admin/reports", "GET").reason, Reason.SUPER_ADMIN)

    def test_unresolved_url_is_denied_even_for_super_admin(self):
        boss = create_user("boss@example.com", roles=[make_role("super-admin")])

        decision = self.engine.check_access(boss, "/nowhere", "GET")

        self.assertEqual((decision.granted, decision.reason), (False, Reason.UNRESOLVED))
        self.assertFalse(Resource.objects.filter(pattern="/nowhere").exists())

    def test_unsupported_method_is_unresolved_and_not_cached(self):
        decision = self.engine.check_access(self.alice, "/admin/reports", "TRACE")

        self.assertEqual(decision.reason, Reason.UNRESOLVED)
        self.assertEqual(self.fake_redis.keys("*decision*"), [])

    def test_auto_register_on_miss(self):
        with override_access(AUTO_REGISTER_ON_MISS=True, DEFAULT_PERMISSIONS=["view"]):
            decision = self.engine.check_access(self.bob, "/new/page", "GET")
            skipped = self.engine.check_access(self.bob, "/health/live", "GET")

        resource = Resource.objects.get(pattern="/new/page")
        self.assertTrue(resource.is_auto_discovered)
        self.assertEqual([p.name for p in resource.permissions.all()], ["view"])
        self.assertEqual(decision.reason, Reason.NO_MATCH)
        self.assertEqual(skipped.reason, Reason.UNRESOLVED)
        self.assertFalse(Resource.objects.filter(pattern="/health/live").exists())

    def test_second_check_is_served_from_cache(self):
        first = self.engine.check_access(self.alice, "/admin/reports", "GET")
        with mock.patch.object(self.engine.matcher, "resolve") as resolve:
            second = self.engine.check_access(self.alice, "/admin/reports", "GET")

        resolve.assert_not_called()
        self.assertEqual(second, first)

    def test_role_change_invalidates_cached_denial(self):
        self.registry.upsert("/billing", "GET", permissions=["billing.view"])
        self.assertFalse(self.engine.check_access(self.alice, "/billing", "GET").granted)

        with self.captureOnCommitCallbacks(execute=True):
            RolePermissionService(self.cache).assign_permissions_to_role(self.admin_role, ["billing.view"])

        decision = self.engine.check_access(self.alice, "/billing", "GET")
        self.assertEqual((decision.granted, decision.reason), (True, Reason.PERMISSION_MATCH))

    def test_user_membership_change_invalidates_cached_denial(self):
        self.assertFalse(self.engine.check_access(self.bob, "/admin/reports", "GET").granted)

        with self.captureOnCommitCallbacks(execute=True):
            self.bob.roles.add(self.admin_role)

        self.assertTrue(self.engine.check_access(self.bob, "/admin/reports", "GET").granted)

    def test_resource_change_invalidates_cached_grant(self):
        self.assertTrue(self.engine.check_access(self.alice, "/admin/reports", "GET").granted)

        with self.captureOnCommitCallbacks(execute=True):
            self.registry.set_roles(self.reports, ["auditor"])

        self.assertEqual(self.engine.check_access(self.alice, "/admin/reports", "GET").reason, Reason.NO_MATCH)

    def test_removing_role_from_user_revokes_cached_grant(self):
        self.assertTrue(self.engine.check_access(self.alice, "/admin/reports", "GET").granted)

        with self.captureOnCommitCallbacks(execute=True):
            RolePermissionService(self.cache).remove_role_from_user(self.alice, self.admin_role)

        decision = self.engine.check_access(self.alice, "/admin/reports", "GET")
        self.assertEqual((decision.granted, decision.reason), (False, Reason.NO_MATCH))

    def test_removing_permission_from_role_revokes_cached_grant(self):
        self.registry.upsert("/invoices", "GET", permissions=["invoices.view"])
        viewer = make_role("viewer", permissions=["invoices.view"])
        dave = create_user("dave@example.com", roles=[viewer])
        self.assertTrue(self.engine.check_access(dave, "/invoices", "GET").granted)

        with self.captureOnCommitCallbacks(execute=True):
            RolePermissionService(self.cache).remove_permissions_from_role(viewer, ["invoices.view"])

        self.assertEqual(self.engine.check_access(dave, "/invoices", "GET").reason, Reason.NO_MATCH)

    def test_revoking_direct_permission_revokes_cached_grant(self):
        self.registry.upsert("/invoices", "GET", permissions=["invoices.view"])
        carol = create_user("carol@example.com", permissions=[make_permission("invoices.view")])
        self.assertTrue(self.engine.check_access(carol, "/invoices", "GET").granted)

        with self.captureOnCommitCallbacks(execute=True):
            RolePermissionService(self.cache).revoke_permission_from_user(carol, ["invoices.view"])

        self.assertEqual(self.engine.check_access(carol, "/invoices", "GET").reason, Reason.NO_MATCH)

    def test_menu_tree_write_keeps_user_tag_alive_for_cached_decisions(self):
        self.assertTrue(self.engine.check_access(self.alice, "/admin/reports", "GET").granted)
        MenuTreeBuilder(engine=self.engine).build_tree(self.alice)

        tag_key = f"dynamic_access:0:tag:user:{self.alice.pk}"
        members = self.fake_redis.smembers(tag_key)
        self.assertEqual(len(members), 2)
        for member in members:
            self.assertGreaterEqual(self.fake_redis.ttl(tag_key), self.fake_redis.ttl(member))

        # The menu tree has expired; the decision has not.
        self.fake_redis.advance(2000)
        with self.captureOnCommitCallbacks(execute=True):
            RolePermissionService(self.cache).remove_role_from_user(self.alice, self.admin_role)

        self.assertEqual(self.engine.check_access(self.alice, "/admin/reports", "GET").reason, Reason.NO_MATCH)

    def test_unresolved_denial_is_cached_until_the_url_is_registered(self):
        self.assertEqual(self.engine.check_access(self.alice, "/billing", "GET").reason, Reason.UNRESOLVED)
        self.assertEqual(len(self.fake_redis.keys("*decision*")), 1)

        with self.captureOnCommitCallbacks(execute=True):
            self.registry.upsert("/billing", "GET", roles=["admin"])

        self.assertEqual(self.engine.check_access(self.alice, "/billing", "GET").reason, Reason.ROLE_MATCH)

    def test_unavailable_cache_still_decides(self):
        self.fake_redis.fail = True

        decision = self.engine.check_access(self.alice, "/admin/reports", "GET")

        self.assertEqual((decision.granted, decision.reason), (True, Reason.ROLE_MATCH))

    def test_database_failure_denies_without_caching(self):
        with mock.patch.object(self.engine.matcher, "resolve", side_effect=DatabaseError("boom")):
            decision = self.engine.check_access(self.alice, "/admin/reports", "GET")

        self.assertEqual((decision.granted, decision.reason), (False, Reason.ERROR))
        self.assertEqual(self.fake_redis.keys("*decision*"), [])
        self.assertTrue(self.engine.check_access(self.alice, "/admin/reports", "GET").granted)

    def test_checks_are_audited_when_enabled(self):
        with override_access(LOG_CHECKS=True):
            self.engine.check_access(self.bob, "/admin/reports", "GET", client_meta={"ip_address": "10.0.0.1"})

        entry = AccessCheck.objects.get()
        self.assertEqual(entry.principal_id, str(self.bob.pk))
        self.assertEqual(entry.resource, self.reports)
        self.assertFalse(entry.granted)
        self.assertEqual(entry.reason, Reason.NO_MATCH)
        self.assertEqual(entry.ip_address, "10.0.0.1")

    def test_checks_are_not_audited_by_default(self):
        self.engine.check_access(self.bob, "/admin/reports", "GET")

        self.assertFalse(AccessCheck.objects.exists())


class NamedPermissionTests(FakeRedisMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.engine = AccessDecisionEngine(cache=DecisionCache())

    def test_permission_held_through_a_role_or_directly(self):
        via_role = create_user("frank@example.com", roles=[make_role("curator", permissions=["manage_menus"])])
        direct = create_user("gina@example.com", permissions=[make_permission("manage_menus")])

        for user in (via_role, direct):
            decision = self.engine.check_permission(user, "manage_menus")
            self.assertEqual((decision.granted, decision.reason), (True, Reason.PERMISSION_MATCH))
            self.assertEqual(decision.resource_key, "permission:manage_menus")

    def test_missing_permission_or_anonymous_is_denied(self):
        viewer = create_user("hank@example.com", roles=[make_role("viewer", permissions=["view"])])

        self.assertEqual(self.engine.check_permission(viewer, "manage_menus").reason, Reason.NO_MATCH)
        self.assertEqual(self.engine.check_permission(None, "manage_menus").reason, Reason.UNAUTHENTICATED)
        ghost = self.engine.check_permission(str(uuid.uuid4()), "manage_menus")
        self.assertEqual(ghost.reason, Reason.INVALID_PRINCIPAL)

    def test_super_admin_holds_every_permission(self):
        boss = create_user("ivy@example.com", roles=[make_role("super-admin")])

        self.assertEqual(self.engine.check_permission(boss, "manage_menus").reason, Reason.SUPER_ADMIN)

    def test_blank_admin_permission_setting_is_rejected(self):
        with override_access(MENU_ADMIN_PERMISSION=" "):
            errors = dynamic_access_settings(None)

        self.assertEqual([error.id for error in errors], ["access_control.E003"])


class MenuAccessTests(FakeRedisMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.engine = AccessDecisionEngine(cache=DecisionCache(), clock=fixed_clock(2025, 1, 1, 12))
        self.user = create_user("erin@example.com", attributes={"profile": {"department": "sales"}, "level": 3})

    def menu(self, name, conditions=None, **extra):
        return MenuItem.objects.create(name=name, label=name.title(), conditions=conditions or [], **extra)

    def test_expired_date_range_fails(self):
        item = self.menu("promo", [{"type": "date_range", "start": "2024-01-01", "end": "2024-12-31"}])

        decision = self.engine.check_menu_access(self.user, item)

        self.assertEqual((decision.granted, decision.reason), (False, Reason.CONDITION_FAILED))

    def test_date_only_end_covers_the_whole_day(self):
        item = self.menu("newyear", [{"type": "date_range", "start": "2024-12-31", "end": "2025-01-01"}])

        self.assertTrue(self.engine.check_menu_access(self.user, item).granted)

    def test_user_property_conditions(self):
        sales = self.menu("sales", [{"type": "user_property", "value": "profile.department", "expected": "sales"}])
        senior = self.menu("senior", [{"type": "user_property", "value": "level", "operator": ">=", "expected": 5}])
        in_list = self.menu(
            "teams", [{"type": "user_property", "value": "profile.department", "operator": "in", "expected": ["ops", "sales"]}]
        )

        self.assertTrue(self.engine.check_menu_access(self.user, sales).granted)
        self.assertEqual(self.engine.check_menu_access(self.user, senior).reason, Reason.CONDITION_FAILED)
        self.assertTrue(self.engine.check_menu_access(self.user, in_list).granted)

    def test_unknown_operator_compares_for_equality(self):
        item = self.menu(
            "fuzzy", [{"type": "user_property", "value": "profile.department", "operator": "~", "expected": "sales"}]
        )

        self.assertTrue(self.engine.check_menu_access(self.user, item).granted)

    def test_registered_predicate(self):
        register_predicate("is_erin")(lambda principal: principal.attributes["email"] == "erin@example.com")
        self.addCleanup(unregister_predicate, "is_erin")
        item = self.menu("erin-only", [{"type": "custom_predicate", "value": "is_erin"}])

        self.assertTrue(self.engine.check_menu_access(self.user, item).granted)

    def test_malformed_conditions_deny_with_invalid_metadata(self):
        for index, conditions in enumerate(
            [
                [{"type": "teleport"}],
                [{"type": "date_range", "start": "yesterday"}],
                [{"type": "custom_predicate", "value": "missing"}],
                ["not-a-dict"],
            ]
        ):
            item = self.menu(f"bad{index}", conditions)
            with self.subTest(conditions=conditions):
                self.assertEqual(self.engine.check_menu_access(self.user, item).reason, Reason.INVALID_METADATA)

    def test_conditions_do_not_open_items_the_user_cannot_reach(self):
        item = self.menu("gated", [{"type": "date_range", "start": "2024-01-01"}])
        item.roles.add(make_role("manager"))

        self.assertEqual(self.engine.check_menu_access(self.user, item).reason, Reason.NO_MATCH)

    def test_hidden_or_inactive_items_are_denied(self):
        hidden = self.menu("hidden", is_visible=False)
        inactive = self.menu("inactive", is_active=False)

        self.assertFalse(self.engine.check_menu_access(self.user, hidden).granted)
        self.assertFalse(self.engine.check_menu_access(self.user, inactive).granted)

    def test_anonymous_menu_check(self):
        item = self.menu("home")

        self.assertEqual(self.engine.check_menu_access(None, item).reason, Reason.UNAUTHENTICATED)
