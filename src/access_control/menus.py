"""Menu Tree Builder and menu administration.

Trees are assembled from a flat, id-indexed table of nodes loaded once per
operation; parent/child links are ids, never lazily loaded relations.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from django.core.paginator import Page, Paginator
from django.db import transaction
from django.db.models import Q

from .cache import MENU_TAG, MENU_TREE_TAG, DecisionCache, role_tag, user_tag
from .conditions import CONDITION_TYPES
from .conf import access_settings
from .engine import ANONYMOUS, AccessDecisionEngine, principal_key
from .exceptions import (
    AccessControlError,
    CyclicReferenceError,
    NotFoundError,
    ValidationError,
    persistence_guard,
)
from .models import MenuItem, Permission
from .principal import load_principal
from .refs import resolve_permissions, resolve_roles
from .registry import parse_bool, parse_positive_int

logger = logging.getLogger(__name__)

USER_VARIANT = "user"
ADMIN_VARIANT = "admin"
VARIANTS = (USER_VARIANT, ADMIN_VARIANT)

_TEXT_FIELDS = ("url", "icon", "route_name", "description")
_BOOL_FIELDS = ("is_active", "is_visible")


def ensure_acyclic(node_id: int, parent_id: int | None, parents: dict[int, int | None]) -> None:
    """Walk from ``parent_id`` to the root; fail if ``node_id`` is on the way.

    ``parents`` maps every node id to its parent id.
    """
    current = parent_id
    seen = set()
    while current is not None:
        if current == node_id:
            raise CyclicReferenceError()
        if current not in parents:
            raise NotFoundError(f"Menu item {current} does not exist.")
        if current in seen:
            # Stored data already contains a loop above this node.
            raise CyclicReferenceError()
        seen.add(current)
        current = parents[current]


def clean_conditions(conditions) -> list[dict[str, Any]]:
    if conditions is None:
        return []
    if not isinstance(conditions, list):
        raise ValidationError.for_field("conditions", "Conditions must be a list.")
    for condition in conditions:
        if not isinstance(condition, dict) or condition.get("type") not in CONDITION_TYPES:
            raise ValidationError.for_field(
                "conditions", f"Each condition needs a type in {', '.join(CONDITION_TYPES)}."
            )
    return conditions


def clean_menu_data(data: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """Validate menu fields, collecting per-field errors."""
    if not isinstance(data, dict):
        raise ValidationError("Menu data must be an object.")
    errors: dict[str, list[str]] = {}
    cleaned: dict[str, Any] = {}
    for key in ("name", "label"):
        if key in data or not partial:
            value = data.get(key)
            if not isinstance(value, str) or not value.strip():
                errors.setdefault(key, []).append(f"Menu {key} is required.")
            else:
                cleaned[key] = value.strip()
    for key in _TEXT_FIELDS:
        if key in data:
            value = data[key]
            if value is not None and not isinstance(value, str):
                errors.setdefault(key, []).append("Must be a string.")
            else:
                cleaned[key] = value if key != "description" else (value or "")
    for key in _BOOL_FIELDS:
        if key in data:
            if not isinstance(data[key], bool):
                errors.setdefault(key, []).append("Must be a boolean.")
            else:
                cleaned[key] = data[key]
    if "sort_order" in data:
        value = data["sort_order"]
        if isinstance(value, bool) or not isinstance(value, int):
            errors.setdefault("sort_order", []).append("Must be an integer.")
        else:
            cleaned["sort_order"] = value
    for key in ("route_params", "metadata"):
        if key in data:
            if not isinstance(data[key], dict):
                errors.setdefault(key, []).append("Must be an object.")
            else:
                cleaned[key] = data[key]
    parent_key = "parent_id" if "parent_id" in data else "parent"
    if parent_key in data:
        value = data[parent_key]
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            errors.setdefault("parent_id", []).append("Must be a menu item id or null.")
        else:
            cleaned["parent_id"] = value
    if "conditions" in data:
        try:
            cleaned["conditions"] = clean_conditions(data["conditions"])
        except ValidationError as exc:
            errors.update(exc.errors)
    if errors:
        raise ValidationError("Invalid menu data.", errors=errors)
    return cleaned


def _node_payload(item: MenuItem, children: list[dict], admin: bool) -> dict[str, Any]:
    payload = {
        "id": item.pk,
        "name": item.name,
        "label": item.label,
        "url": item.url,
        "icon": item.icon,
        "route_name": item.route_name,
        "route_params": item.route_params or {},
        "parent_id": item.parent_id,
        "sort_order": item.sort_order,
        "metadata": item.metadata or {},
        "children": children,
    }
    if admin:
        payload.update(
            is_active=item.is_active,
            is_visible=item.is_visible,
            permissions=sorted(p.name for p in item.permissions.all()),
            roles=sorted(r.name for r in item.roles.all()),
            conditions=item.conditions or [],
        )
    return payload


class MenuTreeBuilder:
    """Build access-filtered (user) or unfiltered (admin) menu trees."""

    def __init__(self, engine: AccessDecisionEngine | None = None, cache: DecisionCache | None = None):
        self.cache = cache or (engine.cache if engine else DecisionCache())
        self.engine = engine or AccessDecisionEngine(cache=self.cache)

    def build_tree(self, subject=None, variant: str = USER_VARIANT) -> list[dict[str, Any]]:
        if variant not in VARIANTS:
            raise ValidationError.for_field("variant", f"Variant must be one of {', '.join(VARIANTS)}.")
        ttl = access_settings.MENU_CACHE_TTL
        if variant == ADMIN_VARIANT:
            return self.cache.remember(
                "menu_tree:admin",
                lambda: self._assemble(self._load(admin=True), visible=None, admin=True),
                ttl=ttl,
                tags=[MENU_TAG, MENU_TREE_TAG],
            )

        pid = principal_key(subject)
        with persistence_guard():
            principal = None if pid == ANONYMOUS else load_principal(subject)
        tags = [MENU_TAG, MENU_TREE_TAG, user_tag(pid)]
        if principal is not None:
            tags.extend(role_tag(role_id) for role_id in principal.role_ids)

        def compute():
            nodes = self._load(admin=False)
            visible = {
                node_id
                for node_id, item in nodes.items()
                if self.engine.decide_menu(principal, item, anonymous=pid == ANONYMOUS).granted
            }
            return self._assemble(nodes, visible=visible, admin=False)

        return self.cache.remember(f"menu_tree:user:{pid}", compute, ttl=ttl, tags=tags)

    def breadcrumbs(self, node_id: int) -> list[dict[str, Any]]:
        """Root-to-node path for ``node_id``."""
        with persistence_guard():
            rows = {
                row["id"]: row
                for row in MenuItem.objects.values("id", "name", "label", "url", "route_name", "parent_id")
            }
        if node_id not in rows:
            raise NotFoundError(f"Menu item {node_id} does not exist.")
        trail = []
        seen = set()
        current = node_id
        while current is not None and current not in seen:
            seen.add(current)
            row = rows[current]
            trail.append({key: row[key] for key in ("id", "name", "label", "url", "route_name")})
            current = row["parent_id"]
        trail.reverse()
        return trail

    @staticmethod
    def _load(admin: bool) -> dict[int, MenuItem]:
        queryset = MenuItem.objects.prefetch_related("permissions", "roles")
        if not admin:
            queryset = queryset.filter(is_active=True, is_visible=True)
        with persistence_guard():
            return {item.pk: item for item in queryset}

    @staticmethod
    def _assemble(nodes: dict[int, MenuItem], visible: set[int] | None, admin: bool) -> list[dict]:
        by_parent: dict[int | None, list[MenuItem]] = {}
        for item in nodes.values():
            by_parent.setdefault(item.parent_id, []).append(item)
        for siblings in by_parent.values():
            siblings.sort(key=lambda item: (item.sort_order, item.name))
        hide_empty = visible is not None and access_settings.HIDE_EMPTY_PARENTS

        def children_of(parent_id, path):
            result = []
            for item in by_parent.get(parent_id, []):
                if item.pk in path or (visible is not None and item.pk not in visible):
                    continue
                children = children_of(item.pk, path | {item.pk})
                if hide_empty and item.pk in by_parent and not children and not item.url:
                    continue
                result.append(_node_payload(item, children, admin))
            return result

        return children_of(None, frozenset())


@dataclass
class BulkResult:
    created: list[MenuItem] = field(default_factory=list)
    errors: dict[int, dict[str, Any]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


class _BatchRolledBack(Exception):
    pass


class MenuService:
    """Create, update, delete and reorder menu items.

    Every committed mutation drops the ``menu`` and ``menu_tree`` cache tags.
    """

    def __init__(self, cache: DecisionCache | None = None):
        self.cache = cache or DecisionCache()

    def create(self, data: dict[str, Any]) -> MenuItem:
        with persistence_guard(), transaction.atomic():
            item = self._create(data)
            self._schedule_invalidation()
        return item

    def update(self, item_id: int, data: dict[str, Any]) -> MenuItem:
        fields = clean_menu_data(data, partial=True)
        with persistence_guard(), transaction.atomic():
            item = MenuItem.objects.select_for_update().filter(pk=item_id).first()
            if item is None:
                raise NotFoundError(f"Menu item {item_id} does not exist.")
            if "name" in fields:
                self._ensure_unique_name(fields["name"], exclude=item.pk)
            if "parent_id" in fields and fields["parent_id"] != item.parent_id:
                ensure_acyclic(item.pk, fields["parent_id"], self._parent_table())
            for key, value in fields.items():
                setattr(item, key, value)
            item.save()
            if data.get("permissions") is not None:
                item.permissions.set(resolve_permissions(data["permissions"]))
            if data.get("roles") is not None:
                item.roles.set(resolve_roles(data["roles"]))
            self._schedule_invalidation()
        return item

    def delete(self, item_id: int, cascade: bool = True) -> bool:
        """Delete a node; children are deleted too or moved up one level."""
        with persistence_guard(), transaction.atomic():
            item = MenuItem.objects.select_for_update().filter(pk=item_id).first()
            if item is None:
                raise NotFoundError(f"Menu item {item_id} does not exist.")
            if not cascade:
                MenuItem.objects.filter(parent_id=item.pk).update(parent_id=item.parent_id)
            item.delete()
            self._schedule_invalidation()
        logger.info("Deleted menu item %s (cascade=%s)", item_id, cascade)
        return True

    def reorder(self, order: Iterable[int]) -> bool:
        """Set each listed node's sort_order to its position in ``order``."""
        ids = list(order)
        if any(isinstance(pk, bool) or not isinstance(pk, int) for pk in ids):
            raise ValidationError.for_field("order", "Order must be a list of menu item ids.")
        with persistence_guard(), transaction.atomic():
            existing = set(MenuItem.objects.select_for_update().filter(pk__in=ids).values_list("id", flat=True))
            missing = [pk for pk in ids if pk not in existing]
            if missing:
                raise NotFoundError(f"Menu items {missing} do not exist.")
            for position, pk in enumerate(ids):
                MenuItem.objects.filter(pk=pk).update(sort_order=position)
            self._schedule_invalidation()
        return True

    def assign_permissions(self, item_id: int, permissions: Iterable) -> MenuItem:
        return self._memberships(item_id, permissions=permissions, replace=False)

    def sync_permissions(self, item_id: int, permissions: Iterable) -> MenuItem:
        return self._memberships(item_id, permissions=permissions, replace=True)

    def assign_roles(self, item_id: int, roles: Iterable) -> MenuItem:
        return self._memberships(item_id, roles=roles, replace=False)

    def sync_roles(self, item_id: int, roles: Iterable) -> MenuItem:
        return self._memberships(item_id, roles=roles, replace=True)

    def bulk_create(self, items: list[dict[str, Any]]) -> BulkResult:
        """Create every item or none; each failing item is reported by index."""
        result = BulkResult()
        try:
            with persistence_guard(), transaction.atomic():
                for index, data in enumerate(items):
                    try:
                        with transaction.atomic():
                            result.created.append(self._create(data))
                    except AccessControlError as exc:
                        result.errors[index] = _item_error(data, exc)
                if result.errors:
                    raise _BatchRolledBack()
                self._schedule_invalidation()
        except _BatchRolledBack:
            logger.info("Bulk menu creation rolled back: %s failing items", len(result.errors))
            result.created = []
        return result

    def list(self, filters: dict[str, Any] | None = None) -> Page:
        """Filtered, paginated menu items ordered by sort order, then name.

        ``parent_id=null`` selects the root items.
        """
        filters = filters or {}
        queryset = MenuItem.objects.prefetch_related("permissions", "roles")
        if filters.get("search"):
            term = filters["search"]
            queryset = queryset.filter(
                Q(name__icontains=term) | Q(label__icontains=term) | Q(description__icontains=term)
            )
        parent_id = filters.get("parent_id")
        if parent_id in ("null", "none"):
            queryset = queryset.filter(parent_id__isnull=True)
        elif parent_id not in (None, ""):
            try:
                queryset = queryset.filter(parent_id=int(parent_id))
            except (TypeError, ValueError) as exc:
                raise ValidationError.for_field("parent_id", "Parent id must be an integer.") from exc
        for flag in _BOOL_FIELDS:
            value = parse_bool(filters.get(flag))
            if value is not None:
                queryset = queryset.filter(**{flag: value})
        queryset = queryset.order_by("sort_order", "name", "id")
        per_page = parse_positive_int(filters.get("per_page"), access_settings.PAGE_SIZE)
        with persistence_guard():
            return Paginator(queryset, per_page).get_page(filters.get("page") or 1)

    # -- helpers ------------------------------------------------------------

    def _create(self, data: dict[str, Any]) -> MenuItem:
        fields = clean_menu_data(data)
        self._ensure_unique_name(fields["name"])
        parent_id = fields.get("parent_id")
        if parent_id is not None and not MenuItem.objects.filter(pk=parent_id).exists():
            raise NotFoundError(f"Menu item {parent_id} does not exist.")
        item = MenuItem.objects.create(**fields)
        if access_settings.MENU_AUTO_PERMISSIONS:
            Permission.objects.get_or_create(
                name=f"menu.{item.name}", guard_name=access_settings.DEFAULT_GUARD
            )
        if data.get("permissions"):
            item.permissions.add(*resolve_permissions(data["permissions"]))
        if data.get("roles"):
            item.roles.add(*resolve_roles(data["roles"]))
        return item

    def _memberships(self, item_id, permissions=None, roles=None, replace=False) -> MenuItem:
        with persistence_guard(), transaction.atomic():
            item = MenuItem.objects.select_for_update().filter(pk=item_id).first()
            if item is None:
                raise NotFoundError(f"Menu item {item_id} does not exist.")
            if permissions is not None:
                resolved = resolve_permissions(permissions)
                if replace:
                    item.permissions.set(resolved)
                else:
                    item.permissions.add(*resolved)
            if roles is not None:
                resolved_roles = resolve_roles(roles)
                if replace:
                    item.roles.set(resolved_roles)
                else:
                    item.roles.add(*resolved_roles)
            self._schedule_invalidation()
        return item

    @staticmethod
    def _ensure_unique_name(name: str, exclude: int | None = None) -> None:
        queryset = MenuItem.objects.filter(name=name)
        if exclude is not None:
            queryset = queryset.exclude(pk=exclude)
        if queryset.exists():
            raise ValidationError.for_field("name", "Menu name must be unique.")

    @staticmethod
    def _parent_table() -> dict[int, int | None]:
        return dict(MenuItem.objects.values_list("id", "parent_id"))

    def _schedule_invalidation(self) -> None:
        self.cache.invalidate_on_commit(MENU_TAG, MENU_TREE_TAG)


def _item_error(data, exc: AccessControlError) -> dict[str, Any]:
    errors = exc.errors if isinstance(exc, ValidationError) and exc.errors else {"non_field_errors": [exc.message]}
    return {"name": data.get("name") if isinstance(data, dict) else None, "message": exc.message, "errors": errors}


__all__ = [
    "MenuTreeBuilder",
    "MenuService",
    "BulkResult",
    "ensure_acyclic",
    "clean_menu_data",
    "clean_conditions",
    "USER_VARIANT",
    "ADMIN_VARIANT",
]
