"""Auto-discovery: reconcile the resource registry with a route table.

``collect_django_routes`` produces the route table from the project's URL
configuration; ``AutoDiscoveryImporter.import_routes`` accepts any list of
``RouteInfo`` records, so other route sources can be fed in as well.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from django.urls import URLPattern, URLResolver, get_resolver

from .conf import access_settings
from .exceptions import AccessControlError
from .models import Resource
from .patterns import SUPPORTED_METHODS, matches_any, normalize_url
from .registry import ResourceRegistry

logger = logging.getLogger(__name__)

_CONVERTER_RE = re.compile(r"<(?:[^>:]+:)?([A-Za-z_][A-Za-z0-9_]*)>")
_REGEX_META = set("()[]*+?|^$.{}")


@dataclass
class RouteInfo:
    """One route of the supplied table."""

    pattern: str
    methods: list[str]
    action: str = ""
    controller: str = ""
    middleware: list[str] = field(default_factory=list)
    name: str = ""


def infer_permissions(action: str) -> list[str]:
    """Permission categories whose keywords appear in the action name."""
    action = (action or "").lower()
    found = [
        category
        for category, keywords in access_settings.PERMISSION_PATTERNS.items()
        if any(keyword in action for keyword in keywords)
    ]
    return found or list(access_settings.DEFAULT_PERMISSIONS)


def categorize(pattern: str) -> str:
    path = pattern.lstrip("/")
    if path.startswith("api/"):
        return "api"
    if path.startswith("admin/"):
        return "admin"
    return "web"


class AutoDiscoveryImporter:
    """Upsert discovered routes as auto-discovered resources."""

    def __init__(self, registry: ResourceRegistry | None = None):
        self.registry = registry or ResourceRegistry()

    def import_routes(self, routes: Iterable[RouteInfo]) -> list[Resource]:
        """Return the resources touched; failing routes are logged and skipped.

        Resources an administrator created by hand keep their permissions and
        roles; only controller, action and middleware are refreshed.
        """
        touched: dict[int, Resource] = {}
        excluded_methods = {m.upper() for m in access_settings.EXCLUDED_METHODS}
        for route in routes:
            if isinstance(route, dict):
                route = RouteInfo(**route)
            pattern = normalize_url(route.pattern)
            if matches_any(pattern, access_settings.EXCLUDED_PATTERNS):
                continue
            for method in route.methods:
                method = str(method).upper()
                if method in excluded_methods:
                    continue
                try:
                    resource = self._import_one(route, pattern, method)
                except AccessControlError as exc:
                    logger.warning("Skipping route %s %s: %s", method, pattern, exc.message)
                    continue
                touched[resource.pk] = resource
        logger.info("Auto-discovery touched %s resources", len(touched))
        return list(touched.values())

    def _import_one(self, route: RouteInfo, pattern: str, method: str) -> Resource:
        details = {
            "controller": route.controller or "",
            "action": route.action or "",
            "middleware": list(route.middleware or []),
        }
        existing = self.registry.find(pattern, method)
        if existing is not None and not existing.is_auto_discovered:
            return self.registry.update(existing.pk, **details)
        options = dict(details, is_auto_discovered=True, category=categorize(pattern))
        if route.name and existing is None:
            options["name"] = route.name
        return self.registry.upsert(pattern, method, permissions=infer_permissions(route.action), **options)


def collect_django_routes(urlconf=None) -> list[RouteInfo]:
    """Walk the URL resolver and describe every representable route.

    Regex routes that cannot be written as ``{name}`` placeholders (DRF's
    format-suffix routes, for instance) are skipped.
    """
    routes: list[RouteInfo] = []
    _walk(get_resolver(urlconf).url_patterns, "", routes)
    return routes


def _walk(patterns, prefix: str, routes: list[RouteInfo]) -> None:
    for entry in patterns:
        text = _pattern_text(entry.pattern)
        if text is None:
            continue
        if isinstance(entry, URLResolver):
            _walk(entry.url_patterns, prefix + text, routes)
        elif isinstance(entry, URLPattern):
            routes.extend(_describe(entry, prefix + text))


def _pattern_text(pattern) -> str | None:
    if hasattr(pattern, "_route"):
        return _CONVERTER_RE.sub(r"{\1}", str(pattern))
    return _regex_to_pattern(str(pattern))


def _regex_to_pattern(regex: str) -> str | None:
    text = regex[1:] if regex.startswith("^") else regex
    if text.endswith("$") and not text.endswith("\\$"):
        text = text[:-1]
    out = []
    i = 0
    while i < len(text):
        if text.startswith("(?P<", i):
            name_end = text.index(">", i)
            name = text[i + 4:name_end]
            depth = 0
            j = i
            while j < len(text):
                if text[j] == "\\":
                    j += 2
                    continue
                if text[j] == "(":
                    depth += 1
                elif text[j] == ")":
                    depth -= 1
                    if depth == 0:
                        break
                j += 1
            out.append("{" + name + "}")
            i = j + 1
            continue
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            out.append(text[i + 1])
            i += 2
            continue
        if char in _REGEX_META:
            return None
        out.append(char)
        i += 1
    return "".join(out)


def _describe(entry: URLPattern, route: str) -> list[RouteInfo]:
    callback = entry.callback
    view_class = getattr(callback, "cls", None) or getattr(callback, "view_class", None)
    name = entry.name or ""
    if view_class is None:
        return [
            RouteInfo(
                pattern=route,
                methods=["GET"],
                action=callback.__name__,
                controller=f"{callback.__module__}.{callback.__name__}",
                name=name,
            )
        ]
    controller = f"{view_class.__module__}.{view_class.__name__}"
    middleware = [cls.__name__ for cls in getattr(view_class, "permission_classes", []) or []]
    actions = getattr(callback, "actions", None)
    if actions:
        # ViewSet routes map each http method to a named action.
        return [
            RouteInfo(route, [method.upper()], action, controller, middleware, name)
            for method, action in actions.items()
            if method.upper() in SUPPORTED_METHODS
        ]
    methods = [
        method.upper()
        for method in getattr(view_class, "http_method_names", [])
        if method.upper() in SUPPORTED_METHODS and hasattr(view_class, method) and method != "options"
    ]
    return [RouteInfo(route, [method], method, controller, middleware, name) for method in methods]


__all__ = [
    "RouteInfo",
    "AutoDiscoveryImporter",
    "collect_django_routes",
    "infer_permissions",
    "categorize",
]
