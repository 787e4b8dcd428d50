"""Resource Registry: URL resources keyed by (pattern, method)."""

import logging
from typing import Any, Iterable

from django.core.paginator import Page, Paginator
from django.db import IntegrityError, transaction
from django.db.models import Q

from .cache import DecisionCache, method_tag, resource_tag
from .conf import access_settings
from .exceptions import NotFoundError, ValidationError, persistence_guard
from .models import Resource
from .patterns import normalize_method, normalize_pattern
from .refs import resolve_permissions, resolve_roles

logger = logging.getLogger(__name__)

_STRING_FIELDS = ("name", "description", "controller", "action", "category")
_INT_FIELDS = ("priority",)
_BOOL_FIELDS = ("is_active", "is_public", "is_auto_discovered")
# Fields that change which resource a url resolves to or whether it is
# public; decisions for every url of the method may depend on them.
_ROUTING_FIELDS = ("is_active", "priority", "is_public")


def generate_resource_name(pattern: str, method: str) -> str:
    """``GET /users/{id}`` -> ``get.users.id``."""
    name = pattern.replace("/", ".").replace("{", "").replace("}", "")
    return f"{method.lower()}.{name.strip('.')}".rstrip(".")


def clean_options(options: dict[str, Any]) -> dict[str, Any]:
    """Validate resource metadata options, collecting per-field errors."""
    errors: dict[str, list[str]] = {}
    cleaned: dict[str, Any] = {}
    for field, value in options.items():
        if field in _STRING_FIELDS:
            if value is None:
                value = ""
            if not isinstance(value, str):
                errors.setdefault(field, []).append("Must be a string.")
                continue
            if field == "category" and not value.strip():
                errors.setdefault(field, []).append("Must not be blank.")
                continue
        elif field in _INT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int):
                errors.setdefault(field, []).append("Must be an integer.")
                continue
        elif field in _BOOL_FIELDS:
            if not isinstance(value, bool):
                errors.setdefault(field, []).append("Must be a boolean.")
                continue
        elif field == "middleware":
            if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                errors.setdefault(field, []).append("Must be a list of strings.")
                continue
            value = list(value)
        elif field == "metadata":
            if not isinstance(value, dict):
                errors.setdefault(field, []).append("Must be an object.")
                continue
        else:
            errors.setdefault(field, []).append("Unknown option.")
            continue
        cleaned[field] = value
    if errors:
        raise ValidationError("Invalid resource options.", errors=errors)
    return cleaned


class ResourceRegistry:
    """Create, update, find, list and delete URL resources.

    Every mutation schedules invalidation of the ``resource:{key}`` cache tag
    for after commit; mutations that can change url resolution also drop the
    ``method:{METHOD}`` tag.
    """

    def __init__(self, cache: DecisionCache | None = None):
        self.cache = cache or DecisionCache()

    def upsert(
        self,
        pattern: str,
        method: str = "GET",
        permissions: Iterable | None = None,
        roles: Iterable | None = None,
        replace: bool = False,
        **options,
    ) -> Resource:
        """Create or update the resource for ``(pattern, method)``.

        Permissions and roles are added to the existing sets unless
        ``replace`` is True, in which case they become the exact sets.
        """
        pattern = normalize_pattern(pattern)
        method = normalize_method(method)
        fields = clean_options(options)
        with persistence_guard(), transaction.atomic():
            resource = (
                Resource.objects.select_for_update().filter(pattern=pattern, method=method).first()
            )
            created = False
            if resource is None:
                resource = self._try_create(pattern, method, fields)
                created = resource is not None
            if resource is None:
                # Lost a concurrent insert race; the row exists now.
                resource = Resource.objects.select_for_update().get(pattern=pattern, method=method)
            routing_changed = created or self._apply_fields(resource, fields)
            self._apply_memberships(resource, permissions, roles, replace)
            self._schedule_invalidation(resource, routing_changed)
        return resource

    @staticmethod
    def _try_create(pattern: str, method: str, fields: dict[str, Any]) -> Resource | None:
        values = {"name": generate_resource_name(pattern, method), **fields}
        try:
            with transaction.atomic():
                resource = Resource.objects.create(pattern=pattern, method=method, **values)
        except IntegrityError:
            return None
        logger.info("Registered resource %s %s", method, pattern)
        return resource

    def update(
        self,
        resource_id: int,
        pattern: str | None = None,
        method: str | None = None,
        permissions: Iterable | None = None,
        roles: Iterable | None = None,
        replace: bool = True,
        **options,
    ) -> Resource:
        """Update an existing resource by id, including its pattern or method."""
        fields = clean_options(options)
        new_pattern = normalize_pattern(pattern) if pattern is not None else None
        new_method = normalize_method(method) if method is not None else None
        with persistence_guard(), transaction.atomic():
            resource = Resource.objects.select_for_update().filter(pk=resource_id).first()
            if resource is None:
                raise NotFoundError(f"Resource {resource_id} does not exist.")
            old_key, old_method = resource.cache_key, resource.method
            routing_changed = False
            if new_pattern is not None or new_method is not None:
                target_pattern = new_pattern or resource.pattern
                target_method = new_method or resource.method
                clash = (
                    Resource.objects.filter(pattern=target_pattern, method=target_method)
                    .exclude(pk=resource.pk)
                    .exists()
                )
                if clash:
                    raise ValidationError.for_field(
                        "pattern", f"{target_method} {target_pattern} is already registered."
                    )
                routing_changed = (target_pattern, target_method) != (resource.pattern, resource.method)
                resource.pattern, resource.method = target_pattern, target_method
            routing_changed = self._apply_fields(resource, fields, force_save=routing_changed) or routing_changed
            self._apply_memberships(resource, permissions, roles, replace)
            self._schedule_invalidation(resource, routing_changed)
            if old_key != resource.cache_key:
                self.cache.invalidate_on_commit(resource_tag(old_key), method_tag(old_method))
        return resource

    def delete(self, resource_id: int) -> bool:
        """Detach permissions and roles, then delete the resource."""
        with persistence_guard(), transaction.atomic():
            resource = Resource.objects.select_for_update().filter(pk=resource_id).first()
            if resource is None:
                raise NotFoundError(f"Resource {resource_id} does not exist.")
            resource.permissions.clear()
            resource.roles.clear()
            self._schedule_invalidation(resource, routing_changed=True)
            resource.delete()
        logger.info("Deleted resource %s", resource_id)
        return True

    def find(self, pattern: str, method: str) -> Resource | None:
        """Exact lookup by pattern and method."""
        with persistence_guard():
            return Resource.objects.filter(
                pattern=normalize_pattern(pattern), method=normalize_method(method)
            ).first()

    def get(self, resource_id) -> Resource | None:
        with persistence_guard():
            return Resource.objects.prefetch_related("permissions", "roles").filter(pk=resource_id).first()

    def list(self, filters: dict[str, Any] | None = None) -> Page:
        """Filtered, paginated resources ordered by pattern."""
        filters = filters or {}
        queryset = Resource.objects.prefetch_related("permissions", "roles")
        if filters.get("method"):
            queryset = queryset.filter(method=normalize_method(filters["method"]))
        if filters.get("category"):
            queryset = queryset.filter(category=filters["category"])
        is_active = parse_bool(filters.get("is_active"))
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active)
        if filters.get("search"):
            term = filters["search"]
            queryset = queryset.filter(
                Q(pattern__icontains=term) | Q(name__icontains=term) | Q(description__icontains=term)
            )
        queryset = queryset.order_by("pattern", "method", "id")
        per_page = parse_positive_int(filters.get("per_page"), access_settings.PAGE_SIZE)
        with persistence_guard():
            return Paginator(queryset, per_page).get_page(filters.get("page") or 1)

    def bulk_update(self, updates: Iterable[dict[str, Any]]) -> list:
        """Apply several ``update`` calls atomically; each entry carries its ``id``."""
        updated = []
        with transaction.atomic():
            for entry in updates:
                entry = dict(entry)
                resource_id = entry.pop("id", None)
                if resource_id is None:
                    raise ValidationError.for_field("id", "Each update needs a resource id.")
                updated.append(self.update(resource_id, **entry))
        logger.info("Bulk-updated %s resources", len(updated))
        return updated

    def set_permissions(self, resource: Resource, permissions: Iterable) -> Resource:
        return self._sync(resource, permissions=permissions, replace=True)

    def assign_permissions(self, resource: Resource, permissions: Iterable) -> Resource:
        return self._sync(resource, permissions=permissions, replace=False)

    def set_roles(self, resource: Resource, roles: Iterable) -> Resource:
        return self._sync(resource, roles=roles, replace=True)

    def assign_roles(self, resource: Resource, roles: Iterable) -> Resource:
        return self._sync(resource, roles=roles, replace=False)

    # -- helpers ------------------------------------------------------------

    def _sync(self, resource: Resource, permissions=None, roles=None, replace=False) -> Resource:
        with persistence_guard(), transaction.atomic():
            locked = Resource.objects.select_for_update().filter(pk=resource.pk).first()
            if locked is None:
                raise NotFoundError(f"Resource {resource.pk} does not exist.")
            self._apply_memberships(locked, permissions, roles, replace)
            self._schedule_invalidation(locked, routing_changed=False)
        return locked

    @staticmethod
    def _apply_fields(resource: Resource, fields: dict[str, Any], force_save: bool = False) -> bool:
        routing_changed = any(
            field in fields and getattr(resource, field) != fields[field] for field in _ROUTING_FIELDS
        )
        for field, value in fields.items():
            if field == "metadata":
                resource.metadata = {**(resource.metadata or {}), **value}
            else:
                setattr(resource, field, value)
        if fields or force_save:
            resource.save()
        return routing_changed

    @staticmethod
    def _apply_memberships(resource: Resource, permissions, roles, replace: bool) -> None:
        # set() and add() run inside the caller's transaction, so concurrent
        # readers see either the old or the new membership.
        if permissions is not None:
            resolved = resolve_permissions(permissions)
            if replace:
                resource.permissions.set(resolved)
            else:
                resource.permissions.add(*resolved)
        if roles is not None:
            resolved_roles = resolve_roles(roles)
            if replace:
                resource.roles.set(resolved_roles)
            else:
                resource.roles.add(*resolved_roles)

    def _schedule_invalidation(self, resource: Resource, routing_changed: bool) -> None:
        tags = [resource_tag(resource.cache_key)]
        if routing_changed:
            tags.append(method_tag(resource.method))
        self.cache.invalidate_on_commit(*tags)


def parse_bool(value) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes")


def parse_positive_int(value, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


__all__ = ["ResourceRegistry", "generate_resource_name", "clean_options", "parse_bool", "parse_positive_int"]
