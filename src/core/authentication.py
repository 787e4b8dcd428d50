"""Bridge the user attached by ``JWTAuthMiddleware`` into DRF.

Tokens are verified once, in the middleware. DRF only needs to see the
result so that ``DynamicAccessPermission`` gets a real user (or an anonymous
one) and unauthenticated denials become 401 responses instead of 403.
"""

from typing import Any, Optional, Tuple

from rest_framework.authentication import BaseAuthentication


class MiddlewareUserAuthentication(BaseAuthentication):
    """Surface ``request._request.user`` without parsing credentials again."""

    keyword = "Bearer"

    def authenticate(self, request) -> Optional[Tuple[Any, None]]:
        django_request = getattr(request, "_request", None)
        user = getattr(django_request, "user", None)
        if user is None or not getattr(user, "is_authenticated", False):
            return None
        if not getattr(user, "is_active", False):
            return None
        return user, None

    def authenticate_header(self, request) -> str:
        # A non-empty challenge makes DRF answer NotAuthenticated with 401.
        return f'{self.keyword} realm="api"'


__all__ = ["MiddlewareUserAuthentication"]
