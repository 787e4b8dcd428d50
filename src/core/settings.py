"""Django settings for the Dynamic Access project.

Environment-driven configuration for the database, Redis, and the dynamic
access-control engine.
"""
import os
from pathlib import Path
from urllib.parse import urlparse

from django.core.exceptions import ImproperlyConfigured

BASE_DIR = Path(__file__).resolve().parent.parent


def _get_env(name: str, default: str | None = None) -> str | None:
    """Read an environment variable with an optional fallback."""
    return os.environ.get(name, default)


def _get_bool(name: str, default: str = "False") -> bool:
    return _get_env(name, default) == "True"


def _get_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in _get_env(name, default).split(",") if item.strip()]


def _parse_database_url(url: str) -> dict:
    """Parse a PostgreSQL- or SQLite-style DATABASE_URL into a DATABASES entry."""
    parsed = urlparse(url)
    if parsed.scheme == "sqlite":
        return {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": parsed.path.lstrip("/") or BASE_DIR / "db.sqlite3",
        }
    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": parsed.path.lstrip("/"),
        "USER": parsed.username,
        "PASSWORD": parsed.password,
        "HOST": parsed.hostname,
        "PORT": parsed.port or "5432",
    }


SECRET_KEY = _get_env("SECRET_KEY", "dev-secret-key-change-me-before-deploying")
DEBUG = _get_bool("DEBUG", "True")
if not DEBUG and SECRET_KEY in ("change-me", "dev-secret-key-change-me-before-deploying"):
    raise ImproperlyConfigured("SECRET_KEY must be set in production")
ALLOWED_HOSTS = _get_list("ALLOWED_HOSTS", "localhost,127.0.0.1,0.0.0.0,testserver")

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_spectacular",
    "core",
    "authentication",
    "access_control",
    "scripts",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    # Attaches request.user from the bearer token; must run before views.
    "core.middleware.JWTAuthMiddleware",
]

ROOT_URLCONF = "core.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "core.wsgi.application"

DATABASE_URL = _get_env("DATABASE_URL")
if DATABASE_URL:
    DATABASES = {"default": _parse_database_url(DATABASE_URL)}
elif _get_env("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": _get_env("POSTGRES_DB"),
            "USER": _get_env("POSTGRES_USER", "dynamic_access"),
            "PASSWORD": _get_env("POSTGRES_PASSWORD", "dynamic_access"),
            "HOST": _get_env("POSTGRES_HOST", "localhost"),
            "PORT": _get_env("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_USER_MODEL = "authentication.User"

ALLOW_SUPERUSER_BYPASS = _get_bool("ALLOW_SUPERUSER_BYPASS")
DEBUG_AUTH_ERRORS = _get_bool("DEBUG_AUTH_ERRORS")
REDIS_URL = _get_env("REDIS_URL", "redis://localhost:6379/0")

DYNAMIC_ACCESS = {
    "SUPER_ADMIN_ROLE": _get_env("DYNAMIC_ACCESS_SUPER_ADMIN", "super-admin"),
    "DEFAULT_GUARD": _get_env("DYNAMIC_ACCESS_GUARD", "web"),
    "CACHE_ENABLED": _get_bool("DYNAMIC_ACCESS_CACHE_ENABLED", "True"),
    "CACHE_PREFIX": _get_env("DYNAMIC_ACCESS_CACHE_PREFIX", "dynamic_access"),
    "CACHE_TTL": int(_get_env("DYNAMIC_ACCESS_CACHE_TTL", "3600")),
    "MENU_CACHE_TTL": int(_get_env("DYNAMIC_ACCESS_MENU_CACHE_TTL", "1800")),
    "AUTO_REGISTER_ON_MISS": _get_bool("DYNAMIC_ACCESS_AUTO_REGISTER"),
    "HIDE_EMPTY_PARENTS": _get_bool("DYNAMIC_ACCESS_HIDE_EMPTY_PARENTS"),
    "MENU_AUTO_PERMISSIONS": _get_bool("DYNAMIC_ACCESS_MENU_AUTO_PERMISSIONS", "True"),
    "MENU_ADMIN_PERMISSION": _get_env("DYNAMIC_ACCESS_MENU_ADMIN_PERMISSION", "manage_menus"),
    "LOG_CHECKS": _get_bool("DYNAMIC_ACCESS_LOG_CHECKS"),
    "PAGE_SIZE": int(_get_env("DYNAMIC_ACCESS_PAGE_SIZE", "20")),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "loggers": {
        "access_control": {
            "handlers": ["console"],
            "level": _get_env("DYNAMIC_ACCESS_LOG_LEVEL", "INFO"),
        },
    },
}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": ["core.authentication.MiddlewareUserAuthentication"],
    "DEFAULT_PERMISSION_CLASSES": [],
    "EXCEPTION_HANDLER": "core.exceptions.custom_exception_handler",
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Dynamic Access API",
    "DESCRIPTION": (
        "OpenAPI schema for the database-driven access-control layer: URL "
        "resources, menu trees, roles and permissions, and cached access decisions."
    ),
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SERVE_PUBLIC": True,
    "APPEND_COMPONENTS": {
        "securitySchemes": {
            "bearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
            }
        }
    },
    "SECURITY": [{"bearerAuth": []}],
}
