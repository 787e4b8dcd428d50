"""Role and permission administration."""

import logging
from typing import Any, Iterable

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Avg, Count, Q

from .cache import MENU_TAG, MENU_TREE_TAG, DecisionCache, resource_tag, role_tag
from .conf import access_settings
from .exceptions import NotFoundError, ValidationError, persistence_guard
from .models import MenuItem, Permission, Resource, Role
from .principal import Principal
from .refs import resolve_permissions, resolve_roles
from .registry import ResourceRegistry

logger = logging.getLogger(__name__)

# Never removed by cleanup_orphaned, in addition to the super-admin role.
SYSTEM_ROLES = ("admin", "user")


class RolePermissionService:
    """Manage roles, permissions and their assignment to users.

    Role-side mutations drop the ``role:{id}`` tag on commit. User-side
    membership changes are invalidated by the signal handlers in
    ``access_control.signals``, so they also cover direct ORM writes.
    """

    def __init__(self, cache: DecisionCache | None = None, registry: ResourceRegistry | None = None):
        self.cache = cache or DecisionCache()
        self.registry = registry or ResourceRegistry(self.cache)

    # -- roles & permissions ------------------------------------------

    def create_role(
        self,
        name: str,
        permissions: Iterable = (),
        description: str = "",
        guard_name: str | None = None,
    ) -> Role:
        name = _clean_name(name, "name")
        guard = guard_name or access_settings.DEFAULT_GUARD
        with persistence_guard(), transaction.atomic():
            if Role.objects.filter(name=name, guard_name=guard).exists():
                raise ValidationError.for_field("name", f"Role '{name}' already exists.")
            role = Role.objects.create(name=name, guard_name=guard, description=description or "")
            if permissions:
                role.permissions.add(*resolve_permissions(permissions, guard))
        logger.info("Created role %s", name)
        return role

    def create_permission(self, name: str, guard_name: str | None = None) -> Permission:
        """Get or create; creating an existing permission is a no-op."""
        name = _clean_name(name, "name")
        with persistence_guard():
            permission, _ = Permission.objects.get_or_create(
                name=name, guard_name=guard_name or access_settings.DEFAULT_GUARD
            )
        return permission

    def assign_permissions_to_role(self, role, permissions: Iterable) -> Role:
        return self._role_permissions(role, permissions, mode="add")

    def sync_role_permissions(self, role, permissions: Iterable) -> Role:
        return self._role_permissions(role, permissions, mode="set")

    def remove_permissions_from_role(self, role, permissions: Iterable) -> Role:
        return self._role_permissions(role, permissions, mode="remove")

    def delete_role(self, role) -> bool:
        """Delete a role no active user holds; detaches it from resources and menus."""
        with persistence_guard(), transaction.atomic():
            role = Role.objects.select_for_update().get(pk=self.get_role(role).pk)
            if role.users.filter(is_active=True).exists():
                raise ValidationError.for_field("role", f"Role '{role.name}' is still assigned to active users.")
            tags = [role_tag(role.pk), MENU_TAG, MENU_TREE_TAG]
            # Dropping a role requirement can open a resource to everyone.
            tags.extend(resource_tag(resource.cache_key) for resource in role.resources.all())
            role.resources.clear()
            role.menu_items.clear()
            role.permissions.clear()
            role.delete()
            self.cache.invalidate_on_commit(*tags)
        logger.info("Deleted role %s", role.name)
        return True

    def delete_permission(self, permission) -> bool:
        """Delete a permission that nothing references."""
        with persistence_guard(), transaction.atomic():
            permission = self.get_permission(permission)
            if _permission_in_use(permission):
                raise ValidationError.for_field(
                    "permission", f"Permission '{permission.name}' is still referenced."
                )
            permission.delete()
        return True

    def get_role(self, role) -> Role:
        if isinstance(role, Role):
            return role
        return resolve_roles([role], create=False)[0]

    def get_permission(self, permission) -> Permission:
        if isinstance(permission, Permission):
            return permission
        if isinstance(permission, int) and not isinstance(permission, bool):
            found = Permission.objects.filter(pk=permission).first()
        else:
            found = Permission.objects.filter(
                name=str(permission), guard_name=access_settings.DEFAULT_GUARD
            ).first()
        if found is None:
            raise NotFoundError(f"Permission {permission!r} does not exist.")
        return found

    def list_roles(self, filters: dict[str, Any] | None = None):
        filters = filters or {}
        queryset = Role.objects.prefetch_related("permissions").annotate(user_count=Count("users", distinct=True))
        if filters.get("guard_name"):
            queryset = queryset.filter(guard_name=filters["guard_name"])
        if filters.get("search"):
            queryset = queryset.filter(name__icontains=filters["search"])
        return queryset.order_by("name")

    def list_permissions(self, filters: dict[str, Any] | None = None):
        filters = filters or {}
        queryset = Permission.objects.all()
        if filters.get("guard_name"):
            queryset = queryset.filter(guard_name=filters["guard_name"])
        if filters.get("search"):
            queryset = queryset.filter(name__icontains=filters["search"])
        return queryset.order_by("name")

    def role_permissions(self, role) -> list[str]:
        return sorted(self.get_role(role).permissions.values_list("name", flat=True))

    # -- users --------------------------------------------------------

    def assign_role_to_user(self, user, role) -> None:
        user = _get_user(user)
        with persistence_guard():
            user.roles.add(self.get_role(role))

    def remove_role_from_user(self, user, role) -> None:
        user = _get_user(user)
        with persistence_guard():
            user.roles.remove(self.get_role(role))

    def give_permission_to_user(self, user, permissions: Iterable) -> None:
        user = _get_user(user)
        with persistence_guard(), transaction.atomic():
            user.direct_permissions.add(*resolve_permissions(permissions))

    def revoke_permission_from_user(self, user, permissions: Iterable) -> None:
        user = _get_user(user)
        with persistence_guard(), transaction.atomic():
            user.direct_permissions.remove(*[self.get_permission(p) for p in permissions])

    def user_permissions(self, user) -> list[str]:
        """Flattened permission names: direct grants plus role-inherited."""
        return sorted(Principal.from_user(_get_user(user)).permission_names)

    # -- bulk & maintenance ---------------------------------------------

    def bulk_assign_permissions(self, role_permissions: dict[Any, Iterable]) -> None:
        with transaction.atomic():
            for role, permissions in role_permissions.items():
                self.assign_permissions_to_role(role, permissions)

    def bulk_assign_roles(self, user_roles: dict[Any, Iterable]) -> None:
        with persistence_guard(), transaction.atomic():
            for user, roles in user_roles.items():
                _get_user(user).roles.add(*resolve_roles(roles, create=False))

    def stats(self) -> dict[str, Any]:
        User = get_user_model()
        with persistence_guard():
            per_role = Role.objects.annotate(n=Count("permissions")).aggregate(avg=Avg("n"))["avg"]
            per_user = User.objects.annotate(n=Count("roles")).aggregate(avg=Avg("n"))["avg"]
            return {
                "total_roles": Role.objects.count(),
                "total_permissions": Permission.objects.count(),
                "total_resources": Resource.objects.count(),
                "active_resources": Resource.objects.filter(is_active=True).count(),
                "auto_discovered_resources": Resource.objects.filter(is_auto_discovered=True).count(),
                "total_menu_items": MenuItem.objects.count(),
                "permissions_per_role": round(per_role or 0, 2),
                "roles_per_user": round(per_user or 0, 2),
            }

    def cleanup_orphaned(self) -> dict[str, int]:
        """Delete unreferenced permissions and roles nobody holds."""
        protected = {access_settings.SUPER_ADMIN_ROLE, *SYSTEM_ROLES}
        with persistence_guard(), transaction.atomic():
            orphaned = Permission.objects.filter(
                roles__isnull=True, resources__isnull=True, users__isnull=True, menu_items__isnull=True
            )
            permission_count = orphaned.count()
            orphaned.delete()
            unused = Role.objects.filter(
                users__isnull=True, resources__isnull=True, menu_items__isnull=True
            ).exclude(name__in=protected)
            role_count = unused.count()
            unused.delete()
            self.cache.invalidate_on_commit(everything=True)
        logger.info("Removed %s orphaned permissions and %s unused roles", permission_count, role_count)
        return {"orphaned_permissions": permission_count, "unused_roles": role_count}

    def export_configuration(self) -> dict[str, list[dict[str, Any]]]:
        with persistence_guard():
            roles = [
                {
                    "name": role.name,
                    "guard_name": role.guard_name,
                    "description": role.description,
                    "permissions": sorted(p.name for p in role.permissions.all()),
                }
                for role in Role.objects.prefetch_related("permissions").order_by("name")
            ]
            resources = [
                {
                    "pattern": resource.pattern,
                    "method": resource.method,
                    "name": resource.name,
                    "description": resource.description,
                    "category": resource.category,
                    "priority": resource.priority,
                    "is_active": resource.is_active,
                    "is_public": resource.is_public,
                    "permissions": sorted(p.name for p in resource.permissions.all()),
                    "roles": sorted(r.name for r in resource.roles.all()),
                }
                for resource in Resource.objects.prefetch_related("permissions", "roles").order_by(
                    "pattern", "method"
                )
            ]
        return {"roles": roles, "resources": resources}

    def import_configuration(self, config: dict[str, Any]) -> None:
        """Apply an exported configuration; existing rows are updated."""
        with persistence_guard(), transaction.atomic():
            for entry in config.get("roles") or []:
                role, _ = Role.objects.get_or_create(
                    name=_clean_name(entry.get("name"), "roles"),
                    guard_name=entry.get("guard_name") or access_settings.DEFAULT_GUARD,
                    defaults={"description": entry.get("description") or ""},
                )
                if entry.get("permissions"):
                    role.permissions.add(*resolve_permissions(entry["permissions"], role.guard_name))
            for entry in config.get("resources") or []:
                options = {
                    key: entry[key]
                    for key in ("name", "description", "category", "priority", "is_active", "is_public")
                    if key in entry
                }
                self.registry.upsert(
                    entry.get("pattern"),
                    entry.get("method", "GET"),
                    permissions=entry.get("permissions") or None,
                    roles=entry.get("roles") or None,
                    replace=True,
                    **options,
                )
            self.cache.invalidate_on_commit(everything=True)

    # -- helpers ------------------------------------------------------

    def _role_permissions(self, role, permissions: Iterable, mode: str) -> Role:
        with persistence_guard(), transaction.atomic():
            role = Role.objects.select_for_update().get(pk=self.get_role(role).pk)
            if mode == "remove":
                role.permissions.remove(*[self.get_permission(p) for p in permissions])
            else:
                resolved = resolve_permissions(permissions, role.guard_name)
                if mode == "set":
                    role.permissions.set(resolved)
                else:
                    role.permissions.add(*resolved)
            self.cache.invalidate_on_commit(role_tag(role.pk))
        return role


def _clean_name(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError.for_field(field, "Name must be a non-empty string.")
    return value.strip()


def _permission_in_use(permission: Permission) -> bool:
    return Permission.objects.filter(pk=permission.pk).filter(
        Q(roles__isnull=False) | Q(users__isnull=False) | Q(resources__isnull=False) | Q(menu_items__isnull=False)
    ).exists()


def _get_user(user):
    User = get_user_model()
    if isinstance(user, User):
        return user
    try:
        return User.objects.get(pk=user)
    except (User.DoesNotExist, ValueError, DjangoValidationError) as exc:
        raise NotFoundError(f"User {user} does not exist.") from exc


__all__ = ["RolePermissionService", "SYSTEM_ROLES"]
