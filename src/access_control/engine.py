"""Access Decision Engine.

One check walks these steps in a fixed order; reordering them changes the
security semantics::

    resolve resource -> public -> authenticated -> super-admin
        -> direct permission -> role membership -> custom conditions (menus)

Required permissions and roles are OR'd. For menu items the ordered
condition list gates any grant from the permission/role steps. Decisions
are memoized in the DecisionCache: read before evaluation, written after.

A check never raises: unknown principals, malformed metadata and database
failures all end in a denial (the last one is not cached).
"""

import hashlib
import logging
from typing import Any, Callable

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

from .cache import Decision, DecisionCache, method_tag, resource_tag, role_tag, user_tag
from .conditions import MalformedCondition, evaluate_conditions
from .conf import access_settings
from .exceptions import PersistenceFailure, ValidationError
from .matcher import PatternMatcher
from .models import AccessCheck, MenuItem, Resource
from .patterns import matches_any, normalize_method, normalize_url
from .principal import Principal, load_principal
from .registry import ResourceRegistry

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


class Reason:
    """Reason codes attached to every decision."""

    PUBLIC = "public"
    SUPER_ADMIN = "super_admin"
    UNRESTRICTED = "unrestricted"
    PERMISSION_MATCH = "permission_match"
    ROLE_MATCH = "role_match"
    UNAUTHENTICATED = "unauthenticated"
    INVALID_PRINCIPAL = "invalid_principal"
    UNRESOLVED = "unresolved"
    CONDITION_FAILED = "condition_failed"
    INVALID_METADATA = "invalid_metadata"
    NO_MATCH = "no_match"
    ERROR = "error"


def is_anonymous(subject) -> bool:
    return subject is None or getattr(subject, "is_authenticated", True) is False


def principal_key(subject) -> str:
    if is_anonymous(subject):
        return ANONYMOUS
    if isinstance(subject, Principal):
        return subject.id
    return str(getattr(subject, "pk", subject))


def decision_cache_key(principal_id: str, method: str, url: str) -> str:
    digest = hashlib.sha1(f"{method}:{url}".encode()).hexdigest()
    return f"decision:{principal_id}:{method}:{digest}"


class AccessDecisionEngine:
    """Evaluate url and menu-item access for principals."""

    def __init__(
        self,
        cache: DecisionCache | None = None,
        matcher: PatternMatcher | None = None,
        registry: ResourceRegistry | None = None,
        clock: Callable[[], Any] | None = None,
    ):
        self.cache = cache or DecisionCache()
        self.matcher = matcher or PatternMatcher()
        self.registry = registry or ResourceRegistry(self.cache)
        self.clock = clock or timezone.now

    # -- url checks -----------------------------------------------------

    def check_access(self, subject, url: str, method: str, client_meta: dict | None = None) -> Decision:
        """Decide whether ``subject`` may call ``method url``."""
        pid = principal_key(subject)
        try:
            url = normalize_url(url)
            method = normalize_method(method)
        except ValidationError:
            logger.info("Denied %s %s for %s: unsupported method", method, url, pid)
            return Decision.make(False, Reason.UNRESOLVED)

        cache_key = decision_cache_key(pid, method, url)
        cached = self.cache.get(cache_key)
        if cached is not None:
            decision = Decision.from_dict(cached)
            self._audit(pid, None, decision, url, method, client_meta)
            return decision

        try:
            principal = None if pid == ANONYMOUS else load_principal(subject)
            decision, resource = self._evaluate_url(principal, pid, url, method)
        except (PersistenceFailure, DatabaseError):
            logger.exception("Access check for %s %s failed; denying", method, url)
            return Decision.make(False, Reason.ERROR)

        tags = [user_tag(pid), method_tag(method)]
        if principal is not None:
            tags.extend(role_tag(role_id) for role_id in principal.role_ids)
        if resource is not None:
            tags.append(resource_tag(resource.cache_key))
        self.cache.put(cache_key, decision.to_dict(), tags=tags)
        self._audit(pid, resource, decision, url, method, client_meta)
        return decision

    def _evaluate_url(self, principal, pid, url, method) -> tuple[Decision, Resource | None]:
        resource = self.matcher.resolve(url, method)
        if resource is None:
            resource = self._register_on_miss(url, method)
        if resource is None:
            return Decision.make(False, Reason.UNRESOLVED), None

        key = resource.cache_key
        if resource.is_public:
            return Decision.make(True, Reason.PUBLIC, key), resource
        try:
            decision = self.decide(
                principal,
                anonymous=pid == ANONYMOUS,
                required_permissions={p.pk for p in resource.permissions.all()},
                required_roles={r.pk for r in resource.roles.all()},
                resource_key=key,
            )
        except MalformedCondition:
            logger.warning("Resource %s has malformed metadata; denying", key, exc_info=True)
            decision = Decision.make(False, Reason.INVALID_METADATA, key)
        return decision, resource

    def _register_on_miss(self, url: str, method: str) -> Resource | None:
        if not access_settings.AUTO_REGISTER_ON_MISS:
            return None
        if method in access_settings.EXCLUDED_METHODS or matches_any(url, access_settings.EXCLUDED_PATTERNS):
            return None
        try:
            resource = self.registry.upsert(
                url,
                method,
                permissions=access_settings.DEFAULT_PERMISSIONS,
                is_auto_discovered=True,
            )
        except ValidationError:
            logger.info("Cannot auto-register %s %s as a resource", method, url)
            return None
        logger.info("Auto-registered %s %s with default permissions", method, url)
        return resource

    # -- menu checks ----------------------------------------------------

    def check_menu_access(self, subject, item: MenuItem) -> Decision:
        """Evaluate one menu item; inactive or hidden items are denied."""
        pid = principal_key(subject)
        principal = None if pid == ANONYMOUS else load_principal(subject)
        return self.decide_menu(principal, item, anonymous=pid == ANONYMOUS)

    def decide_menu(self, principal: Principal | None, item: MenuItem, anonymous: bool = False) -> Decision:
        key = f"menu:{item.pk}"
        if not item.is_active or not item.is_visible:
            return Decision.make(False, Reason.NO_MATCH, key)
        try:
            return self.decide(
                principal,
                anonymous=anonymous,
                required_permissions={p.pk for p in item.permissions.all()},
                required_roles={r.pk for r in item.roles.all()},
                conditions=item.conditions or [],
                resource_key=key,
            )
        except MalformedCondition:
            logger.warning("Menu item %s has malformed conditions; denying", item.name, exc_info=True)
            return Decision.make(False, Reason.INVALID_METADATA, key)

    # -- named permissions ----------------------------------------------

    def check_permission(self, subject, permission: str) -> Decision:
        """Decide whether ``subject`` holds ``permission`` directly or through a role.

        Used for capabilities that are not a url of their own, such as reading
        the unfiltered admin menu tree. Not cached.
        """
        key = f"permission:{permission}"
        pid = principal_key(subject)
        try:
            principal = None if pid == ANONYMOUS else load_principal(subject)
        except (PersistenceFailure, DatabaseError):
            logger.exception("Permission check for %s failed; denying", permission)
            return Decision.make(False, Reason.ERROR, key)
        if principal is None:
            reason = Reason.UNAUTHENTICATED if pid == ANONYMOUS else Reason.INVALID_PRINCIPAL
            return Decision.make(False, reason, key)
        if self.is_super_admin(principal):
            return Decision.make(True, Reason.SUPER_ADMIN, key)
        if permission in principal.permission_names:
            return Decision.make(True, Reason.PERMISSION_MATCH, key)
        return Decision.make(False, Reason.NO_MATCH, key)

    # -- shared state machine ------------------------------------------

    def decide(
        self,
        principal: Principal | None,
        anonymous: bool,
        required_permissions: set,
        required_roles: set,
        conditions: list | None = None,
        resource_key: str | None = None,
    ) -> Decision:
        if principal is None:
            reason = Reason.UNAUTHENTICATED if anonymous else Reason.INVALID_PRINCIPAL
            return Decision.make(False, reason, resource_key)
        if self.is_super_admin(principal):
            return Decision.make(True, Reason.SUPER_ADMIN, resource_key)

        if not required_permissions and not required_roles:
            reason = Reason.UNRESTRICTED
        elif principal.permission_ids & required_permissions:
            reason = Reason.PERMISSION_MATCH
        elif principal.role_ids & required_roles:
            reason = Reason.ROLE_MATCH
        else:
            return Decision.make(False, Reason.NO_MATCH, resource_key)

        if conditions is not None and not evaluate_conditions(conditions, principal, self.clock()):
            return Decision.make(False, Reason.CONDITION_FAILED, resource_key)
        return Decision.make(True, reason, resource_key)

    @staticmethod
    def is_super_admin(principal: Principal) -> bool:
        if principal.has_role(access_settings.SUPER_ADMIN_ROLE):
            return True
        return bool(getattr(settings, "ALLOW_SUPERUSER_BYPASS", False) and principal.is_superuser)

    # -- audit ----------------------------------------------------------

    @staticmethod
    def _audit(pid, resource, decision: Decision, url, method, client_meta) -> None:
        if not access_settings.LOG_CHECKS:
            return
        meta = client_meta or {}
        try:
            AccessCheck.objects.create(
                principal_id="" if pid == ANONYMOUS else pid,
                resource=resource,
                resource_key=decision.resource_key or "",
                method=method,
                url=url,
                granted=decision.granted,
                reason=decision.reason,
                ip_address=meta.get("ip_address"),
                user_agent=meta.get("user_agent") or "",
            )
        except DatabaseError:
            logger.warning("Failed to record access check for %s %s", method, url, exc_info=True)


__all__ = ["AccessDecisionEngine", "Reason", "decision_cache_key", "principal_key", "is_anonymous"]
