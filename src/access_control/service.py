"""Entry point used by views, the DRF permission class and commands."""

import logging
from typing import Any, Iterable

from .cache import MENU_TAG, MENU_TREE_TAG, Decision, DecisionCache, resource_tag, role_tag, user_tag
from .discovery import AutoDiscoveryImporter, RouteInfo
from .engine import AccessDecisionEngine
from .exceptions import ValidationError
from .matcher import PatternMatcher
from .menus import USER_VARIANT, MenuService, MenuTreeBuilder
from .models import Resource
from .registry import ResourceRegistry
from .roles import RolePermissionService

logger = logging.getLogger(__name__)

CACHE_SCOPES = ("all", "user", "role", "resource", "menu")


class DynamicAccessService:
    """Wire the engine components around one shared DecisionCache.

    Instances are cheap; build one per request or command rather than
    keeping a module-level singleton.
    """

    def __init__(self, cache: DecisionCache | None = None):
        self.cache = cache or DecisionCache()
        self.matcher = PatternMatcher()
        self.registry = ResourceRegistry(self.cache)
        self.engine = AccessDecisionEngine(cache=self.cache, matcher=self.matcher, registry=self.registry)
        self.menus = MenuService(self.cache)
        self.menu_tree = MenuTreeBuilder(engine=self.engine, cache=self.cache)
        self.roles = RolePermissionService(cache=self.cache, registry=self.registry)
        self.importer = AutoDiscoveryImporter(self.registry)

    def check_access(self, principal, url: str, method: str = "GET", client_meta: dict | None = None) -> Decision:
        return self.engine.check_access(principal, url, method, client_meta)

    def resolve_resource(self, url: str, method: str = "GET") -> Resource | None:
        return self.matcher.resolve(url, method)

    def register_resource(
        self,
        pattern: str,
        method: str = "GET",
        permissions: Iterable | None = None,
        roles: Iterable | None = None,
        metadata: dict[str, Any] | None = None,
        **options,
    ) -> Resource:
        if metadata is not None:
            options["metadata"] = metadata
        return self.registry.upsert(pattern, method, permissions=permissions, roles=roles, **options)

    def build_menu_tree(self, principal=None, variant: str = USER_VARIANT) -> list[dict[str, Any]]:
        return self.menu_tree.build_tree(principal, variant)

    def breadcrumbs(self, node_id: int) -> list[dict[str, Any]]:
        return self.menu_tree.breadcrumbs(node_id)

    def invalidate_cache(self, scope: str = "all", ident=None) -> None:
        """Drop cached decisions now for one scope.

        ``ident`` is the user id, role id or resource key (``METHOD:pattern``)
        for the targeted scopes.
        """
        if scope not in CACHE_SCOPES:
            raise ValidationError.for_field("scope", f"Scope must be one of {', '.join(CACHE_SCOPES)}.")
        if scope == "all":
            self.cache.invalidate_all()
        elif scope == "menu":
            self.cache.invalidate_tags([MENU_TAG, MENU_TREE_TAG])
        else:
            if ident in (None, ""):
                raise ValidationError.for_field("ident", f"Scope '{scope}' requires an identifier.")
            tag = {"user": user_tag, "role": role_tag, "resource": resource_tag}[scope](ident)
            self.cache.invalidate_by_tag(tag)
        logger.info("Invalidated access cache scope=%s ident=%s", scope, ident)

    def import_discovered_routes(self, routes: Iterable[RouteInfo]) -> list[Resource]:
        return self.importer.import_routes(routes)


__all__ = ["DynamicAccessService", "CACHE_SCOPES"]
