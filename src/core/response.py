"""Response helpers and base classes for the `{data, errors}` envelope."""

from typing import Any

from django.core.paginator import Page
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import ModelViewSet, ViewSet


def api_response(data: Any, status: int = 200) -> Response:
    """Return data wrapped in the standard envelope."""

    return Response({"data": data, "errors": []}, status=status)


def error_response(errors: list[Any], status: int = 400) -> Response:
    """Failure envelope: `{ "data": null, "errors": [...] }`."""

    return Response({"data": None, "errors": errors}, status=status)


def paginated_response(page: Page, serializer_class) -> Response:
    """Envelope a Django paginator page as results plus paging counters."""

    return api_response(
        {
            "results": serializer_class(page.object_list, many=True).data,
            "count": page.paginator.count,
            "page": page.number,
            "num_pages": page.paginator.num_pages,
        }
    )


def _is_enveloped(payload: Any) -> bool:
    return isinstance(payload, dict) and "data" in payload and "errors" in payload


class EnvelopeMixin:
    """Wrap successful responses built by DRF's generic actions."""

    def finalize_response(self, request, response, *args, **kwargs):  # type: ignore[override]
        if hasattr(response, "data") and response.status_code and response.status_code < 400:
            if response.status_code != 204 and not _is_enveloped(response.data):
                response.data = {"data": response.data, "errors": []}
        return super().finalize_response(request, response, *args, **kwargs)  # type: ignore[attr-defined]


class BaseAPIView(EnvelopeMixin, APIView):
    """APIView with enveloped success responses."""


class BaseViewSet(EnvelopeMixin, ModelViewSet):
    """ModelViewSet with enveloped success responses.

    Access-control viewsets override the standard actions to go through the
    service layer.
    """


class BaseActionViewSet(EnvelopeMixin, ViewSet):
    """Model-less ViewSet whose routes are only its ``@action`` methods."""


__all__ = [
    "api_response",
    "error_response",
    "paginated_response",
    "BaseAPIView",
    "BaseViewSet",
    "BaseActionViewSet",
]
