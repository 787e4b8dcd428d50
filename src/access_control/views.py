"""ViewSets and views for access-control administration.

Every endpoint is guarded by DynamicAccessPermission, so what a caller may do
here is itself decided by the registered resources.
"""

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response

from core.response import (
    BaseActionViewSet,
    BaseAPIView,
    BaseViewSet,
    api_response,
    error_response,
    paginated_response,
)
from .conf import access_settings
from .discovery import RouteInfo, collect_django_routes
from .exceptions import NotFoundError
from .menus import ADMIN_VARIANT, USER_VARIANT
from .models import MenuItem, Permission, Resource, Role
from .permissions import DynamicAccessPermission
from .serializers import (
    AccessCheckRequestSerializer,
    BulkMenuSerializer,
    BulkRolePermissionsSerializer,
    BulkUserRolesSerializer,
    CacheInvalidateSerializer,
    ConfigurationImportSerializer,
    DiscoverSerializer,
    MemberRefsSerializer,
    MenuItemSerializer,
    PermissionSerializer,
    PermissionWriteSerializer,
    ReorderSerializer,
    ResolveRequestSerializer,
    ResourceBulkUpdateSerializer,
    ResourceSerializer,
    ResourceWriteSerializer,
    RoleSerializer,
    RoleWriteSerializer,
    UserRoleSerializer,
)
from .service import DynamicAccessService


def _pk(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise NotFoundError(f"Invalid id: {value}") from exc


def _truthy(value, default: bool = True) -> bool:
    if value is None:
        return default
    return str(value).lower() in ("1", "true", "yes")


class ResourceViewSet(BaseViewSet):
    """CRUD for URL resources plus route auto-discovery."""

    serializer_class = ResourceSerializer
    permission_classes = [DynamicAccessPermission]
    queryset = Resource.objects.prefetch_related("permissions", "roles")

    def list(self, request, *args, **kwargs):
        page = DynamicAccessService().registry.list(request.query_params.dict())
        return paginated_response(page, ResourceSerializer)

    def retrieve(self, request, pk=None, *args, **kwargs):
        resource = DynamicAccessService().registry.get(_pk(pk))
        if resource is None:
            raise NotFoundError(f"Resource {pk} does not exist.")
        return api_response(ResourceSerializer(resource).data)

    def create(self, request, *args, **kwargs):
        serializer = ResourceWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        resource = DynamicAccessService().register_resource(
            data.pop("pattern"),
            data.pop("method"),
            permissions=data.pop("permissions", None),
            roles=data.pop("roles", None),
            **data,
        )
        return api_response(ResourceSerializer(resource).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        serializer = ResourceWriteSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        data.setdefault("replace", True)
        resource = DynamicAccessService().registry.update(_pk(pk), **data)
        return api_response(ResourceSerializer(resource).data)

    def destroy(self, request, pk=None, *args, **kwargs):
        DynamicAccessService().registry.delete(_pk(pk))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["post"])
    def discover(self, request):
        """Import the posted route table, or the project's own routes."""
        serializer = DiscoverSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        routes = serializer.validated_data.get("routes")
        route_infos = [RouteInfo(**route) for route in routes] if routes else collect_django_routes()
        touched = DynamicAccessService().import_discovered_routes(route_infos)
        return api_response({"count": len(touched), "results": ResourceSerializer(touched, many=True).data})

    @action(detail=False, methods=["patch"], url_path="bulk-update")
    def bulk_update(self, request):
        """Update several resources at once; any failure rolls back all of them."""
        serializer = ResourceBulkUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        updated = DynamicAccessService().registry.bulk_update(serializer.validated_data["resources"])
        return api_response({"updated": len(updated), "results": ResourceSerializer(updated, many=True).data})


class MenuItemViewSet(BaseViewSet):
    """Menu administration, trees and breadcrumbs."""

    serializer_class = MenuItemSerializer
    permission_classes = [DynamicAccessPermission]
    queryset = MenuItem.objects.prefetch_related("permissions", "roles")

    def list(self, request, *args, **kwargs):
        page = DynamicAccessService().menus.list(request.query_params.dict())
        return paginated_response(page, MenuItemSerializer)

    def retrieve(self, request, pk=None, *args, **kwargs):
        item = self.queryset.filter(pk=_pk(pk)).first()
        if item is None:
            raise NotFoundError(f"Menu item {pk} does not exist.")
        return api_response(MenuItemSerializer(item).data)

    def create(self, request, *args, **kwargs):
        item = DynamicAccessService().menus.create(request.data)
        return api_response(MenuItemSerializer(item).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None, *args, **kwargs):
        kwargs.pop("partial", None)
        item = DynamicAccessService().menus.update(_pk(pk), request.data)
        return api_response(MenuItemSerializer(item).data)

    def destroy(self, request, pk=None, *args, **kwargs):
        cascade = _truthy(request.query_params.get("cascade"))
        DynamicAccessService().menus.delete(_pk(pk), cascade=cascade)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["get"])
    def tree(self, request):
        """Access-filtered tree for the caller, or the full admin tree.

        The admin variant lists hidden and restricted items, so it also needs
        the MENU_ADMIN_PERMISSION permission.
        """
        variant = request.query_params.get("variant", USER_VARIANT)
        service = DynamicAccessService()
        if variant == ADMIN_VARIANT:
            decision = service.engine.check_permission(request.user, access_settings.MENU_ADMIN_PERMISSION)
            if not decision.granted:
                raise PermissionDenied()
        return api_response(service.build_menu_tree(request.user, variant))

    @action(detail=False, methods=["post"])
    def bulk(self, request):
        serializer = BulkMenuSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = DynamicAccessService().menus.bulk_create(serializer.validated_data["items"])
        if not result.success:
            errors = [{"index": index, **error} for index, error in sorted(result.errors.items())]
            return error_response(errors)
        return api_response(
            {
                "total_created": len(result.created),
                "results": MenuItemSerializer(result.created, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["post"])
    def reorder(self, request):
        serializer = ReorderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        DynamicAccessService().menus.reorder(serializer.validated_data["order"])
        return api_response({"reordered": len(serializer.validated_data["order"])})

    @action(detail=True, methods=["get"])
    def breadcrumbs(self, request, pk=None):
        return api_response(DynamicAccessService().breadcrumbs(_pk(pk)))

    @action(detail=True, methods=["post"])
    def permissions(self, request, pk=None):
        serializer = MemberRefsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        menus = DynamicAccessService().menus
        refs = serializer.validated_data.get("permissions", [])
        if serializer.validated_data["replace"]:
            item = menus.sync_permissions(_pk(pk), refs)
        else:
            item = menus.assign_permissions(_pk(pk), refs)
        return api_response(MenuItemSerializer(item).data)

    @action(detail=True, methods=["post"])
    def roles(self, request, pk=None):
        serializer = MemberRefsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        menus = DynamicAccessService().menus
        refs = serializer.validated_data.get("roles", [])
        if serializer.validated_data["replace"]:
            item = menus.sync_roles(_pk(pk), refs)
        else:
            item = menus.assign_roles(_pk(pk), refs)
        return api_response(MenuItemSerializer(item).data)


class RoleViewSet(BaseViewSet):
    """List, create and delete roles; manage their permissions."""

    serializer_class = RoleSerializer
    permission_classes = [DynamicAccessPermission]
    queryset = Role.objects.prefetch_related("permissions")
    http_method_names = ["get", "post", "delete", "head", "options"]

    def list(self, request, *args, **kwargs):
        roles = DynamicAccessService().roles.list_roles(request.query_params.dict())
        return api_response(RoleSerializer(roles, many=True).data)

    def create(self, request, *args, **kwargs):
        serializer = RoleWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = DynamicAccessService().roles.create_role(**serializer.validated_data)
        return api_response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None, *args, **kwargs):
        DynamicAccessService().roles.delete_role(_pk(pk))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"])
    def permissions(self, request, pk=None):
        return api_response(DynamicAccessService().roles.role_permissions(_pk(pk)))

    @permissions.mapping.post
    def update_permissions(self, request, pk=None):
        """Assign permissions to the role, or replace them with ``replace``."""
        serializer = MemberRefsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        roles = DynamicAccessService().roles
        refs = serializer.validated_data.get("permissions", [])
        if serializer.validated_data["replace"]:
            role = roles.sync_role_permissions(_pk(pk), refs)
        else:
            role = roles.assign_permissions_to_role(_pk(pk), refs)
        return api_response(RoleSerializer(role).data)

    @permissions.mapping.delete
    def delete_permissions(self, request, pk=None):
        serializer = MemberRefsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = DynamicAccessService().roles.remove_permissions_from_role(
            _pk(pk), serializer.validated_data.get("permissions", [])
        )
        return api_response(RoleSerializer(role).data)


class PermissionViewSet(BaseViewSet):
    """List, create and delete permissions."""

    serializer_class = PermissionSerializer
    permission_classes = [DynamicAccessPermission]
    queryset = Permission.objects.all()
    http_method_names = ["get", "post", "delete", "head", "options"]

    def list(self, request, *args, **kwargs):
        permissions = DynamicAccessService().roles.list_permissions(request.query_params.dict())
        return api_response(PermissionSerializer(permissions, many=True).data)

    def create(self, request, *args, **kwargs):
        serializer = PermissionWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        permission = DynamicAccessService().roles.create_permission(**serializer.validated_data)
        return api_response(PermissionSerializer(permission).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None, *args, **kwargs):
        DynamicAccessService().roles.delete_permission(_pk(pk))
        return Response(status=status.HTTP_204_NO_CONTENT)


class UserAccessViewSet(BaseActionViewSet):
    """Role membership and direct permissions of individual users."""

    permission_classes = [DynamicAccessPermission]

    @action(detail=False, methods=["post"], url_path="assign-role")
    def create_role_assignment(self, request):
        data = self._user_role(request)
        DynamicAccessService().roles.assign_role_to_user(data["user_id"], data["role"])
        return api_response({"user_id": str(data["user_id"]), "role": data["role"]})

    @action(detail=False, methods=["post"], url_path="remove-role")
    def delete_role_assignment(self, request):
        data = self._user_role(request)
        DynamicAccessService().roles.remove_role_from_user(data["user_id"], data["role"])
        return api_response({"user_id": str(data["user_id"]), "role": data["role"]})

    @action(detail=True, methods=["get"])
    def permissions(self, request, pk=None):
        """Effective permission names: direct grants plus role-inherited."""
        return api_response(DynamicAccessService().roles.user_permissions(pk))

    @permissions.mapping.post
    def update_permissions(self, request, pk=None):
        roles = DynamicAccessService().roles
        roles.give_permission_to_user(pk, self._permission_refs(request))
        return api_response(roles.user_permissions(pk))

    @permissions.mapping.delete
    def delete_permissions(self, request, pk=None):
        roles = DynamicAccessService().roles
        roles.revoke_permission_from_user(pk, self._permission_refs(request))
        return api_response(roles.user_permissions(pk))

    @staticmethod
    def _user_role(request) -> dict:
        serializer = UserRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    @staticmethod
    def _permission_refs(request) -> list:
        serializer = MemberRefsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data.get("permissions", [])


class AccessAdminViewSet(BaseActionViewSet):
    """Bulk assignment, statistics, configuration transfer and cleanup."""

    permission_classes = [DynamicAccessPermission]

    @action(detail=False, methods=["post"], url_path="bulk/assign-permissions")
    def update_role_permissions(self, request):
        serializer = BulkRolePermissionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role_permissions = serializer.validated_data["role_permissions"]
        DynamicAccessService().roles.bulk_assign_permissions(role_permissions)
        return api_response({"roles": sorted(role_permissions)})

    @action(detail=False, methods=["post"], url_path="bulk/assign-roles")
    def update_user_roles(self, request):
        serializer = BulkUserRolesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user_roles = serializer.validated_data["user_roles"]
        DynamicAccessService().roles.bulk_assign_roles(user_roles)
        return api_response({"users": sorted(user_roles)})

    @action(detail=False, methods=["get"])
    def stats(self, request):
        return api_response(DynamicAccessService().roles.stats())

    @action(detail=False, methods=["get"])
    def export(self, request):
        return api_response(DynamicAccessService().roles.export_configuration())

    @action(detail=False, methods=["post"], url_path="import")
    def update_configuration(self, request):
        serializer = ConfigurationImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        config = serializer.validated_data["config"]
        DynamicAccessService().roles.import_configuration(config)
        return api_response(
            {"roles": len(config.get("roles") or []), "resources": len(config.get("resources") or [])}
        )

    @action(detail=False, methods=["post"], url_path="cleanup")
    def delete_orphaned(self, request):
        return api_response(DynamicAccessService().roles.cleanup_orphaned())


class AccessCheckView(BaseAPIView):
    """Evaluate an access decision for the caller or another user."""

    permission_classes = [DynamicAccessPermission]

    # noinspection PyMethodMayBeStatic
    def post(self, request):
        serializer = AccessCheckRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        subject = data["user_id"] if "user_id" in data else request.user
        decision = DynamicAccessService().check_access(subject, data["url"], data["method"])
        return api_response(decision.to_dict())


class ResolveView(BaseAPIView):
    """Show which resource a url and method resolve to."""

    permission_classes = [DynamicAccessPermission]

    # noinspection PyMethodMayBeStatic
    def get(self, request):
        serializer = ResolveRequestSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        resource = DynamicAccessService().resolve_resource(data["url"], data["method"])
        return api_response(ResourceSerializer(resource).data if resource else None)


class CacheView(BaseAPIView):
    """Decision cache status (GET) and invalidation (POST)."""

    permission_classes = [DynamicAccessPermission]

    # noinspection PyMethodMayBeStatic
    def get(self, request):
        return api_response(DynamicAccessService().cache.stats())

    # noinspection PyMethodMayBeStatic
    def post(self, request):
        serializer = CacheInvalidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        DynamicAccessService().invalidate_cache(data["scope"], data.get("ident"))
        return api_response({"invalidated": data["scope"]})


__all__ = [
    "ResourceViewSet",
    "MenuItemViewSet",
    "RoleViewSet",
    "PermissionViewSet",
    "UserAccessViewSet",
    "AccessAdminViewSet",
    "AccessCheckView",
    "ResolveView",
    "CacheView",
]
