"""End-to-end API tests: authentication, dynamic authorization and envelopes."""

from __future__ import annotations

from django.test import TestCase
from rest_framework.test import APIClient

from access_control.discovery import collect_django_routes
from access_control.models import MenuItem, Permission, Resource, Role
from access_control.service import DynamicAccessService
from tests.utils import FakeRedisMixin, auth_client, create_user, make_permission, make_role


class ApiTestCase(FakeRedisMixin, TestCase):
    """Registers the API's own routes and signs in a super-admin."""

    def setUp(self):
        super().setUp()
        DynamicAccessService().import_discovered_routes(collect_django_routes())
        self.boss = create_user("boss@example.com", roles=[make_role("super-admin")])
        self.client = auth_client(self.boss)


class AuthenticationTests(ApiTestCase):
    def test_anonymous_request_is_unauthorized(self):
        response = APIClient().get("/resources/")

        self.assertEqual(response.status_code, 401)
        self.assertIsNone(response.json()["data"])
        self.assertEqual(len(response.json()["errors"]), 1)

    def test_invalid_token_is_rejected_by_middleware(self):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION="Bearer not-a-token")

        response = client.get("/resources/")

        self.assertEqual(response.status_code, 401)

    def test_inactive_user_token_is_rejected(self):
        self.boss.is_active = False
        self.boss.save()

        self.assertEqual(self.client.get("/resources/").status_code, 401)

    def test_user_without_grants_is_forbidden(self):
        nobody = create_user("nobody@example.com")

        response = auth_client(nobody).get("/resources/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(
            response.json()["errors"],
            ["You do not have permission to perform this action on this resource."],
        )

    def test_inferred_permission_grants_listing_only(self):
        reader = create_user("reader@example.com", roles=[make_role("reader", permissions=["read"])])
        client = auth_client(reader)

        self.assertEqual(client.get("/resources/").status_code, 200)
        self.assertEqual(client.post("/resources/", {"pattern": "/x"}, format="json").status_code, 403)

    def test_unregistered_route_is_forbidden_even_for_super_admin(self):
        Resource.objects.filter(pattern="/access/cache", method="GET").delete()

        self.assertEqual(self.client.get("/access/cache/").status_code, 403)


class ResourceApiTests(ApiTestCase):
    def test_crud_round_trip(self):
        created = self.client.post(
            "/resources/",
            {"pattern": "/admin/reports", "method": "GET", "roles": ["admin"], "priority": 2},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        body = created.json()["data"]
        self.assertEqual(body["roles"], ["admin"])
        resource_id = body["id"]

        fetched = self.client.get(f"/resources/{resource_id}/")
        self.assertEqual(fetched.json()["data"]["pattern"], "/admin/reports")

        patched = self.client.patch(f"/resources/{resource_id}/", {"permissions": ["reports.view"]}, format="json")
        self.assertEqual(patched.status_code, 200)
        self.assertEqual(patched.json()["data"]["permissions"], ["reports.view"])

        self.assertEqual(self.client.delete(f"/resources/{resource_id}/").status_code, 204)
        self.assertEqual(self.client.get(f"/resources/{resource_id}/").status_code, 404)

    def test_list_is_paginated_and_filterable(self):
        response = self.client.get("/resources/", {"category": "web", "per_page": 5, "method": "GET"})

        data = response.json()["data"]
        self.assertEqual(response.status_code, 200)
        self.assertLessEqual(len(data["results"]), 5)
        self.assertEqual(data["page"], 1)
        self.assertTrue(all(item["method"] == "GET" for item in data["results"]))

    def test_invalid_pattern_returns_field_errors(self):
        response = self.client.post("/resources/", {"pattern": "/bad/{"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(list(response.json()["errors"][0]), ["pattern"])

    def test_discover_imports_posted_routes(self):
        response = self.client.post(
            "/resources/discover/",
            {"routes": [{"pattern": "/api/widgets", "methods": ["GET", "POST"], "action": "index"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["count"], 2)
        self.assertTrue(Resource.objects.filter(pattern="/api/widgets", is_auto_discovered=True).exists())

    def test_bulk_update_applies_every_change_or_none(self):
        first = Resource.objects.create(pattern="/admin/reports", method="GET")
        second = Resource.objects.create(pattern="/admin/audit", method="GET")

        response = self.client.patch(
            "/resources/bulk-update/",
            {
                "resources": [
                    {"id": first.pk, "category": "reports", "roles": ["auditor"]},
                    {"id": second.pk, "is_active": False},
                ]
            },
            format="json",
        )
        failed = self.client.patch(
            "/resources/bulk-update/",
            {"resources": [{"id": second.pk, "is_active": True}, {"id": 999999, "is_active": True}]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["updated"], 2)
        first.refresh_from_db()
        self.assertEqual(first.category, "reports")
        self.assertEqual([role.name for role in first.roles.all()], ["auditor"])
        self.assertEqual(failed.status_code, 404)
        second.refresh_from_db()
        self.assertFalse(second.is_active)


class MenuApiTests(ApiTestCase):
    def test_create_and_tree(self):
        parent = self.client.post("/menus/", {"name": "settings", "label": "Settings"}, format="json")
        self.assertEqual(parent.status_code, 201)
        parent_id = parent.json()["data"]["id"]
        child = self.client.post(
            "/menus/", {"name": "users", "label": "Users", "parent_id": parent_id}, format="json"
        )
        self.assertEqual(child.status_code, 201)

        tree = self.client.get("/menus/tree/").json()["data"]
        self.assertEqual([node["name"] for node in tree], ["settings"])
        self.assertEqual([node["name"] for node in tree[0]["children"]], ["users"])

        crumbs = self.client.get(f"/menus/{child.json()['data']['id']}/breadcrumbs/").json()["data"]
        self.assertEqual([crumb["name"] for crumb in crumbs], ["settings", "users"])

    def test_cycle_is_a_bad_request(self):
        root = MenuItem.objects.create(name="root", label="Root")
        leaf = MenuItem.objects.create(name="leaf", label="Leaf", parent=root)

        response = self.client.put(f"/menus/{root.pk}/", {"parent_id": leaf.pk}, format="json")

        self.assertEqual(response.status_code, 400)
        root.refresh_from_db()
        self.assertIsNone(root.parent_id)

    def test_bulk_failure_lists_errors_by_index(self):
        MenuItem.objects.create(name="taken", label="Taken")

        response = self.client.post(
            "/menus/bulk/",
            {"items": [{"name": "ok", "label": "Ok"}, {"name": "taken", "label": "Again"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        errors = response.json()["errors"]
        self.assertEqual([error["index"] for error in errors], [1])
        self.assertEqual(errors[0]["name"], "taken")
        self.assertFalse(MenuItem.objects.filter(name="ok").exists())

    def test_assign_roles_action(self):
        item = MenuItem.objects.create(name="reports", label="Reports")

        response = self.client.post(f"/menus/{item.pk}/roles/", {"roles": ["manager"]}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["roles"], ["manager"])

    def test_missing_menu_item_is_not_found(self):
        self.assertEqual(self.client.get("/menus/999999/breadcrumbs/").status_code, 404)

    def test_list_is_paginated_and_filtered(self):
        root = MenuItem.objects.create(name="settings", label="Settings", sort_order=1)
        MenuItem.objects.create(name="dashboard", label="Dashboard", sort_order=0)
        MenuItem.objects.create(name="users", label="Users", parent=root)

        response = self.client.get("/menus/", {"parent_id": "null", "per_page": 1})
        searched = self.client.get("/menus/", {"search": "user"}).json()["data"]

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual((data["count"], data["page"], data["num_pages"]), (2, 1, 2))
        self.assertEqual([item["name"] for item in data["results"]], ["dashboard"])
        self.assertEqual([item["name"] for item in searched["results"]], ["users"])

    def test_admin_tree_requires_menu_management_permission(self):
        MenuItem.objects.create(name="secret", label="Secret", is_visible=False)
        viewer = create_user("viewer@example.com", roles=[make_role("viewer", permissions=["view"])])
        client = auth_client(viewer)

        refused = client.get("/menus/tree/", {"variant": "admin"})
        own_tree = client.get("/menus/tree/")

        self.assertEqual(refused.status_code, 403)
        self.assertIsNone(refused.json()["data"])
        self.assertEqual(own_tree.status_code, 200)
        self.assertEqual(own_tree.json()["data"], [])

    def test_menu_manager_sees_hidden_items_in_admin_tree(self):
        MenuItem.objects.create(name="secret", label="Secret", is_visible=False)
        curator = create_user(
            "curator@example.com", roles=[make_role("curator", permissions=["view", "manage_menus"])]
        )

        response = auth_client(curator).get("/menus/tree/", {"variant": "admin"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([node["name"] for node in response.json()["data"]], ["secret"])


class RoleApiTests(ApiTestCase):
    def test_create_list_and_permissions(self):
        created = self.client.post("/roles/", {"name": "editor", "permissions": ["posts.edit"]}, format="json")
        self.assertEqual(created.status_code, 201)
        role_id = created.json()["data"]["id"]

        listing = self.client.get("/roles/").json()["data"]
        self.assertIn("editor", [role["name"] for role in listing])

        self.client.post(f"/roles/{role_id}/permissions/", {"permissions": ["posts.publish"]}, format="json")
        perms = self.client.get(f"/roles/{role_id}/permissions/").json()["data"]
        self.assertEqual(perms, ["posts.edit", "posts.publish"])

    def test_duplicate_role_is_a_bad_request(self):
        response = self.client.post("/roles/", {"name": "super-admin"}, format="json")

        self.assertEqual(response.status_code, 400)

    def test_delete_role_in_use_is_refused(self):
        role = Role.objects.get(name="super-admin")

        response = self.client.delete(f"/roles/{role.pk}/")

        self.assertEqual(response.status_code, 400)
        self.assertTrue(Role.objects.filter(pk=role.pk).exists())

    def test_remove_permissions_from_role(self):
        role = make_role("editor", permissions=["posts.edit", "posts.publish"])

        response = self.client.delete(
            f"/roles/{role.pk}/permissions/", {"permissions": ["posts.publish"]}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["permissions"], ["posts.edit"])


class PermissionApiTests(ApiTestCase):
    def test_create_and_search(self):
        created = self.client.post("/permissions/", {"name": "reports.export"}, format="json")
        again = self.client.post("/permissions/", {"name": "reports.export"}, format="json")

        self.assertEqual(created.status_code, 201)
        self.assertEqual(again.json()["data"]["id"], created.json()["data"]["id"])
        names = [p["name"] for p in self.client.get("/permissions/", {"search": "reports"}).json()["data"]]
        self.assertEqual(names, ["reports.export"])

    def test_delete_referenced_permission_is_refused(self):
        permission = make_permission("posts.edit")
        make_role("editor", permissions=["posts.edit"])

        self.assertEqual(self.client.delete(f"/permissions/{permission.pk}/").status_code, 400)


class UserAccessApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.editor_role = make_role("editor", permissions=["posts.edit"])
        self.lena = create_user("lena@example.com")

    def test_assign_and_remove_role(self):
        body = {"user_id": str(self.lena.pk), "role": "editor"}

        assigned = self.client.post("/users/assign-role/", body, format="json")
        self.assertEqual(assigned.status_code, 200)
        self.assertTrue(self.lena.roles.filter(name="editor").exists())

        removed = self.client.post("/users/remove-role/", body, format="json")
        self.assertEqual(removed.status_code, 200)
        self.assertFalse(self.lena.roles.exists())

    def test_unknown_role_or_user_is_not_found(self):
        unknown_role = self.client.post(
            "/users/assign-role/", {"user_id": str(self.lena.pk), "role": "ghost"}, format="json"
        )
        unknown_user = self.client.get("/users/not-a-user/permissions/")

        self.assertEqual(unknown_role.status_code, 404)
        self.assertEqual(unknown_user.status_code, 404)

    def test_direct_permissions(self):
        self.lena.roles.add(self.editor_role)
        url = f"/users/{self.lena.pk}/permissions/"

        given = self.client.post(url, {"permissions": ["reports.view"]}, format="json")
        self.assertEqual(given.json()["data"], ["posts.edit", "reports.view"])

        revoked = self.client.delete(url, {"permissions": ["reports.view"]}, format="json")
        self.assertEqual(revoked.json()["data"], ["posts.edit"])
        self.assertEqual(self.client.get(url).json()["data"], ["posts.edit"])

    def test_role_change_revokes_access_through_the_api(self):
        Resource.objects.create(pattern="/admin/reports", method="GET").roles.add(self.editor_role)
        body = {"user_id": str(self.lena.pk), "role": "editor"}
        check = {"url": "/admin/reports", "user_id": str(self.lena.pk)}

        with self.captureOnCommitCallbacks(execute=True):
            self.client.post("/users/assign-role/", body, format="json")
        self.assertTrue(self.client.post("/access/check/", check, format="json").json()["data"]["granted"])

        with self.captureOnCommitCallbacks(execute=True):
            self.client.post("/users/remove-role/", body, format="json")
        self.assertFalse(self.client.post("/access/check/", check, format="json").json()["data"]["granted"])


class AccessAdminApiTests(ApiTestCase):
    def test_bulk_assignments(self):
        make_role("editor")
        lena = create_user("lena@example.com")

        permissions = self.client.post(
            "/access/bulk/assign-permissions/", {"role_permissions": {"editor": ["posts.edit"]}}, format="json"
        )
        roles = self.client.post(
            "/access/bulk/assign-roles/", {"user_roles": {str(lena.pk): ["editor"]}}, format="json"
        )

        self.assertEqual(permissions.status_code, 200)
        self.assertEqual(roles.status_code, 200)
        self.assertEqual(DynamicAccessService().roles.user_permissions(lena), ["posts.edit"])

    def test_stats(self):
        stats = self.client.get("/access/stats/").json()["data"]

        self.assertEqual(stats["total_roles"], 1)
        self.assertEqual(stats["total_resources"], Resource.objects.count())

    def test_export_then_import(self):
        make_role("auditor", permissions=["audit.view"])
        exported = self.client.get("/access/export/").json()["data"]
        Role.objects.filter(name="auditor").delete()

        response = self.client.post("/access/import/", {"config": exported}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["roles"], len(exported["roles"]))
        self.assertTrue(Role.objects.get(name="auditor").permissions.filter(name="audit.view").exists())

    def test_import_rejects_malformed_config(self):
        response = self.client.post("/access/import/", {"config": {"roles": "admin"}}, format="json")

        self.assertEqual(response.status_code, 400)

    def test_cleanup_removes_orphans(self):
        make_permission("stale")

        response = self.client.post("/access/cleanup/", format="json")

        self.assertEqual(response.status_code, 200)
        self.assertGreaterEqual(response.json()["data"]["orphaned_permissions"], 1)
        self.assertFalse(Permission.objects.filter(name="stale").exists())


class AccessApiTests(ApiTestCase):
    def test_check_for_another_user(self):
        Resource.objects.create(pattern="/admin/reports", method="GET")
        other = create_user("kate@example.com")

        response = self.client.post(
            "/access/check/", {"url": "/admin/reports", "method": "GET", "user_id": str(other.pk)}, format="json"
        )

        data = response.json()["data"]
        self.assertEqual(response.status_code, 200)
        self.assertTrue(data["granted"])
        self.assertEqual(data["reason"], "unrestricted")
        self.assertEqual(data["resource_key"], "GET:/admin/reports")

    def test_check_for_caller(self):
        response = self.client.post("/access/check/", {"url": "/nowhere"}, format="json")

        self.assertEqual(response.json()["data"]["reason"], "unresolved")

    def test_resolve(self):
        response = self.client.get("/access/resolve/", {"url": "/resources/12", "method": "DELETE"})

        self.assertEqual(response.json()["data"]["pattern"], "/resources/{pk}")

    def test_cache_stats_and_invalidation(self):
        stats = self.client.get("/access/cache/").json()["data"]
        self.assertTrue(stats["available"])

        response = self.client.post("/access/cache/", {"scope": "all"}, format="json")
        self.assertEqual(response.json()["data"], {"invalidated": "all"})
        self.assertEqual(self.fake_redis.get("dynamic_access:generation"), "1")

        missing_ident = self.client.post("/access/cache/", {"scope": "user"}, format="json")
        self.assertEqual(missing_ident.status_code, 400)
