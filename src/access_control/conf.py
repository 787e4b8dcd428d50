"""Engine options read from ``settings.DYNAMIC_ACCESS`` with defaults.

Values are looked up on every attribute access so ``override_settings`` in
tests and runtime settings changes are honoured.
"""

from typing import Any

from django.conf import settings

DEFAULTS: dict[str, Any] = {
    "SUPER_ADMIN_ROLE": "super-admin",
    "DEFAULT_GUARD": "web",
    "CACHE_ENABLED": True,
    "CACHE_PREFIX": "dynamic_access",
    "CACHE_TTL": 3600,
    "MENU_CACHE_TTL": 1800,
    "AUTO_REGISTER_ON_MISS": False,
    "DEFAULT_PERMISSIONS": ["view"],
    "EXCLUDED_PATTERNS": ["/schema*", "/health*", "/status*", "/static/*"],
    "EXCLUDED_METHODS": ["OPTIONS", "HEAD"],
    "PERMISSION_PATTERNS": {
        "create": ["store", "create"],
        "read": ["index", "show", "view", "list", "retrieve"],
        "update": ["update", "edit"],
        "delete": ["destroy", "delete"],
    },
    "HIDE_EMPTY_PARENTS": False,
    "MENU_AUTO_PERMISSIONS": True,
    "MENU_ADMIN_PERMISSION": "manage_menus",
    "LOG_CHECKS": False,
    "PAGE_SIZE": 20,
    "CONDITION_PREDICATES": {},
}


class AccessSettings:
    """Attribute-style access to the ``DYNAMIC_ACCESS`` settings dict."""

    def __getattr__(self, name: str) -> Any:
        if name not in DEFAULTS:
            raise AttributeError(f"Invalid DYNAMIC_ACCESS setting: {name}")
        user_settings = getattr(settings, "DYNAMIC_ACCESS", None) or {}
        return user_settings.get(name, DEFAULTS[name])


access_settings = AccessSettings()


__all__ = ["DEFAULTS", "access_settings"]
