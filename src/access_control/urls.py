"""Routing for access-control admin endpoints."""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    AccessAdminViewSet,
    AccessCheckView,
    CacheView,
    MenuItemViewSet,
    PermissionViewSet,
    ResolveView,
    ResourceViewSet,
    RoleViewSet,
    UserAccessViewSet,
)

router = DefaultRouter()
router.register(r"resources", ResourceViewSet, basename="resource")
router.register(r"menus", MenuItemViewSet, basename="menu")
router.register(r"roles", RoleViewSet, basename="role")
router.register(r"permissions", PermissionViewSet, basename="permission")
router.register(r"users", UserAccessViewSet, basename="user-access")
router.register(r"access", AccessAdminViewSet, basename="access-admin")

urlpatterns = [
    path("access/check/", AccessCheckView.as_view(), name="access-check"),
    path("access/resolve/", ResolveView.as_view(), name="access-resolve"),
    path("access/cache/", CacheView.as_view(), name="access-cache"),
    path("", include(router.urls)),
]
