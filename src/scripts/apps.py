"""App configuration for project management commands."""

from django.apps import AppConfig


class ScriptsConfig(AppConfig):
    """Holds the seeding and maintenance management commands."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "scripts"
