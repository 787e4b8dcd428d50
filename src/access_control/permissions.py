"""DRF permission class backed by the dynamic access engine."""

import logging

from rest_framework import permissions

from .service import DynamicAccessService

logger = logging.getLogger(__name__)


class DynamicAccessPermission(permissions.BasePermission):
    """Allow the request when the engine grants ``request.method request.path``.

    The path is resolved against the registered resources, so a view needs no
    per-view configuration; what it requires is whatever the registry says.
    Superuser bypass follows ``settings.ALLOW_SUPERUSER_BYPASS`` inside the
    engine, after the resource has been resolved.
    """

    message = "You do not have permission to perform this action on this resource."

    def has_permission(self, request, view) -> bool:
        decision = DynamicAccessService().check_access(
            request.user,
            request.path,
            request.method,
            client_meta=self._client_meta(request),
        )
        if not decision.granted:
            logger.info(
                "Denied %s %s for %s: %s", request.method, request.path, request.user, decision.reason
            )
        return decision.granted

    @staticmethod
    def _client_meta(request) -> dict:
        return {
            "ip_address": request.META.get("REMOTE_ADDR"),
            "user_agent": request.META.get("HTTP_USER_AGENT", ""),
        }


__all__ = ["DynamicAccessPermission"]
