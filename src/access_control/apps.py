"""App configuration for the access_control Django application.

This module wires up the application config, registers the configuration
system checks and connects the user signal handlers that keep the decision
cache coherent.
"""

from django.apps import AppConfig


class AccessControlConfig(AppConfig):
    """Application configuration for the access_control app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "access_control"

    def ready(self) -> None:
        """Register system checks and signal handlers when the app is loaded."""
        from . import checks  # noqa: F401
        from . import signals

        signals.connect()
