"""System checks for the DYNAMIC_ACCESS configuration."""

from django.conf import settings
from django.core.checks import Error, Warning, register

from access_control.conf import DEFAULTS
from access_control.patterns import SUPPORTED_METHODS


@register()
def dynamic_access_settings(app_configs, **kwargs):
    """Validate DYNAMIC_ACCESS at startup instead of at the first check."""
    errors = []
    user_settings = getattr(settings, "DYNAMIC_ACCESS", None) or {}

    unknown = sorted(set(user_settings) - set(DEFAULTS))
    if unknown:
        errors.append(
            Warning(
                f"Unknown DYNAMIC_ACCESS options: {', '.join(unknown)}.",
                hint=f"Known options: {', '.join(sorted(DEFAULTS))}.",
                id="access_control.W001",
            )
        )

    for key in ("CACHE_TTL", "MENU_CACHE_TTL", "PAGE_SIZE"):
        value = user_settings.get(key, DEFAULTS[key])
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            errors.append(
                Error(f"DYNAMIC_ACCESS['{key}'] must be a positive integer.", id="access_control.E001")
            )

    methods = user_settings.get("EXCLUDED_METHODS", DEFAULTS["EXCLUDED_METHODS"])
    bad_methods = [m for m in methods if str(m).upper() not in SUPPORTED_METHODS]
    if bad_methods:
        errors.append(
            Error(
                f"DYNAMIC_ACCESS['EXCLUDED_METHODS'] has unsupported methods: {bad_methods}.",
                id="access_control.E002",
            )
        )

    for key in ("SUPER_ADMIN_ROLE", "MENU_ADMIN_PERMISSION"):
        value = user_settings.get(key, DEFAULTS[key])
        if not isinstance(value, str) or not value.strip():
            errors.append(Error(f"DYNAMIC_ACCESS['{key}'] must be a non-empty string.", id="access_control.E003"))

    return errors
