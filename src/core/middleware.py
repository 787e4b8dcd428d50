"""Bearer-token authentication for every request.

A request without an ``Authorization: Bearer`` header continues as
anonymous; whether anonymous callers get anywhere is decided later by the
registered resources. A header that is present but does not verify, or that
names an unknown or inactive user, is answered with 401 right here.
"""

import logging
from typing import Optional

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin
from rest_framework import status
from rest_framework.exceptions import AuthenticationFailed

from authentication.services import TokenService
from core.exceptions import UNAUTHORIZED_MESSAGE

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class JWTAuthMiddleware(MiddlewareMixin):
    """Attach ``request.user`` and ``request.token_claims``."""

    def process_request(self, request):  # type: ignore[override]
        request.user = AnonymousUser()
        request.token_claims = None
        header = request.META.get("HTTP_AUTHORIZATION", "")
        if not header.startswith(BEARER_PREFIX):
            return None

        token = header[len(BEARER_PREFIX):].strip()
        try:
            claims = TokenService.decode_token(token, expected_type="access")
        except AuthenticationFailed as exc:
            logger.debug("Rejected bearer token for %s: %s", request.path, exc.detail)
            return _unauthorized()

        user = _active_user(claims.get("sub"))
        if user is None:
            logger.debug("Bearer token for %s names no active user", request.path)
            return _unauthorized()

        request.user = user
        request.token_claims = claims
        return None


def _active_user(user_id: Optional[str]):
    if not user_id:
        return None
    User = get_user_model()
    try:
        user = User.objects.get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError, DjangoValidationError):
        return None
    return user if user.is_active else None


def _unauthorized() -> JsonResponse:
    response = JsonResponse({"data": None, "errors": [UNAUTHORIZED_MESSAGE]}, status=status.HTTP_401_UNAUTHORIZED)
    response["WWW-Authenticate"] = 'Bearer realm="api"'
    return response


__all__ = ["JWTAuthMiddleware"]
