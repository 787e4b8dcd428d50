"""Custom exception handling to enforce the API error envelope."""

import logging
from typing import Any

from django.conf import settings
from django.db import DatabaseError
from rest_framework import status
from rest_framework.exceptions import AuthenticationFailed, NotAuthenticated
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from access_control.exceptions import (
    AccessControlError,
    CyclicReferenceError,
    NotFoundError,
    PersistenceFailure,
    ResourceUnresolved,
    ValidationError,
)
from core.response import error_response

logger = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "Authentication credentials were not provided or are invalid, or user is inactive."
FORBIDDEN_MESSAGE = "You do not have permission to perform this action on this resource."
UNAVAILABLE_MESSAGE = "Service temporarily unavailable."

_ENGINE_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (CyclicReferenceError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ResourceUnresolved, status.HTTP_404_NOT_FOUND),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _normalize_errors(payload: Any) -> list[Any]:
    """Convert DRF's response.data into a list for the envelope."""

    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and "detail" in payload:
        # Common DRF pattern: {"detail": "..."}
        return [payload["detail"]]
    return [payload]


def _engine_error_response(exc: AccessControlError) -> Response:
    code = status.HTTP_400_BAD_REQUEST
    for exc_type, mapped in _ENGINE_STATUS:
        if isinstance(exc, exc_type):
            code = mapped
            break
    if isinstance(exc, PersistenceFailure):
        logger.error("Persistence failure while handling request", exc_info=exc)
    errors = exc.as_list() if isinstance(exc, ValidationError) else [exc.message]
    return error_response(errors, status=code)


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response | None:
    """Wrap DRF and engine errors in `{ "data": null, "errors": [...] }` shape.

    - Engine errors map to 400 (validation, cycles), 404 (not found) and 503
      (persistence).
    - Normalizes common auth/permission messages so denials leak no detail.
    - Optionally exposes more detailed auth errors when DEBUG_AUTH_ERRORS is enabled.
    """

    if isinstance(exc, AccessControlError):
        return _engine_error_response(exc)

    # Treat database errors as a temporary service outage and still respect the
    # global envelope format instead of returning Django's HTML 500 page.
    if isinstance(exc, DatabaseError):
        logger.error("Database error while handling request", exc_info=exc)
        return error_response([UNAVAILABLE_MESSAGE], status=status.HTTP_503_SERVICE_UNAVAILABLE)

    response = drf_exception_handler(exc, context)

    if response is None:
        return response

    if isinstance(exc, (AuthenticationFailed, NotAuthenticated)):
        response.status_code = status.HTTP_401_UNAUTHORIZED

    if response.status_code >= 400:
        base_errors = response.data

        if response.status_code == status.HTTP_401_UNAUTHORIZED:
            if getattr(settings, "DEBUG_AUTH_ERRORS", False):
                errors = _normalize_errors(base_errors)
            else:
                errors = [UNAUTHORIZED_MESSAGE]
        elif response.status_code == status.HTTP_403_FORBIDDEN:
            errors = [FORBIDDEN_MESSAGE]
        else:
            errors = _normalize_errors(base_errors)

        response.data = {"data": None, "errors": errors}

    return response
