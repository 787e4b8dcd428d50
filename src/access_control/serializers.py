"""Serializers for the access-control admin API.

Read serializers expose related permissions and roles by name. Write
serializers only check shapes; the registry and services enforce the
domain rules and report per-field errors of their own.
"""

from rest_framework import serializers

from .models import MenuItem, Permission, Resource, Role
from .patterns import SUPPORTED_METHODS
from .service import CACHE_SCOPES


class RefField(serializers.Field):
    """A permission or role reference: an integer id or a name."""

    default_error_messages = {"invalid": "Expected an id or a name."}

    def to_internal_value(self, data):
        if isinstance(data, bool):
            self.fail("invalid")
        if isinstance(data, int):
            return data
        if isinstance(data, str) and data.strip():
            return data.strip()
        self.fail("invalid")

    def to_representation(self, value):
        return value


def ref_list(**kwargs) -> serializers.ListField:
    return serializers.ListField(child=RefField(), **kwargs)


class ResourceSerializer(serializers.ModelSerializer):
    """Expose a resource with its permission and role names."""

    permissions = serializers.SlugRelatedField(slug_field="name", many=True, read_only=True)
    roles = serializers.SlugRelatedField(slug_field="name", many=True, read_only=True)

    class Meta:
        model = Resource
        fields = [
            "id",
            "pattern",
            "method",
            "name",
            "description",
            "controller",
            "action",
            "middleware",
            "category",
            "priority",
            "is_active",
            "is_public",
            "is_auto_discovered",
            "metadata",
            "permissions",
            "roles",
            "created_at",
            "updated_at",
        ]


class ResourceWriteSerializer(serializers.Serializer):
    pattern = serializers.CharField(trim_whitespace=False)
    method = serializers.ChoiceField(choices=SUPPORTED_METHODS, default="GET")
    name = serializers.CharField(required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(required=False)
    priority = serializers.IntegerField(required=False)
    is_active = serializers.BooleanField(required=False)
    is_public = serializers.BooleanField(required=False)
    metadata = serializers.DictField(required=False)
    permissions = ref_list(required=False)
    roles = ref_list(required=False)
    replace = serializers.BooleanField(required=False, default=False)


class ResourceUpdateItemSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    category = serializers.CharField(required=False)
    priority = serializers.IntegerField(required=False)
    is_active = serializers.BooleanField(required=False)
    is_public = serializers.BooleanField(required=False)
    permissions = ref_list(required=False)
    roles = ref_list(required=False)
    replace = serializers.BooleanField(required=False, default=True)


class ResourceBulkUpdateSerializer(serializers.Serializer):
    resources = ResourceUpdateItemSerializer(many=True, allow_empty=False)


class MenuItemSerializer(serializers.ModelSerializer):
    permissions = serializers.SlugRelatedField(slug_field="name", many=True, read_only=True)
    roles = serializers.SlugRelatedField(slug_field="name", many=True, read_only=True)

    class Meta:
        model = MenuItem
        fields = [
            "id",
            "name",
            "label",
            "url",
            "icon",
            "route_name",
            "route_params",
            "parent_id",
            "sort_order",
            "is_active",
            "is_visible",
            "description",
            "metadata",
            "conditions",
            "permissions",
            "roles",
            "created_at",
            "updated_at",
        ]


class MemberRefsSerializer(serializers.Serializer):
    """Body of the ``{id}/permissions/`` and ``{id}/roles/`` actions."""

    permissions = ref_list(required=False)
    roles = ref_list(required=False)
    replace = serializers.BooleanField(required=False, default=False)


class ReorderSerializer(serializers.Serializer):
    order = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class BulkMenuSerializer(serializers.Serializer):
    items = serializers.ListField(child=serializers.DictField(), allow_empty=False)


class RoleSerializer(serializers.ModelSerializer):
    permissions = serializers.SlugRelatedField(slug_field="name", many=True, read_only=True)
    user_count = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = Role
        fields = ["id", "name", "guard_name", "description", "permissions", "user_count", "created_at"]


class RoleWriteSerializer(serializers.Serializer):
    name = serializers.CharField()
    description = serializers.CharField(required=False, allow_blank=True, default="")
    guard_name = serializers.CharField(required=False)
    permissions = ref_list(required=False, default=list)


class PermissionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Permission
        fields = ["id", "name", "guard_name", "created_at"]


class PermissionWriteSerializer(serializers.Serializer):
    name = serializers.CharField()
    guard_name = serializers.CharField(required=False)


class UserRoleSerializer(serializers.Serializer):
    """Body of ``users/assign-role/`` and ``users/remove-role/``."""

    user_id = serializers.UUIDField()
    role = RefField()


class BulkRolePermissionsSerializer(serializers.Serializer):
    """``{"role_permissions": {"<role name>": [<permission ref>, ...]}}``"""

    role_permissions = serializers.DictField(child=ref_list(), allow_empty=False)


class BulkUserRolesSerializer(serializers.Serializer):
    """``{"user_roles": {"<user id>": [<role ref>, ...]}}``"""

    user_roles = serializers.DictField(child=ref_list(), allow_empty=False)


class ConfigurationImportSerializer(serializers.Serializer):
    config = serializers.DictField()

    def validate_config(self, value):
        for key in ("roles", "resources"):
            if not isinstance(value.get(key) or [], list):
                raise serializers.ValidationError(f"'{key}' must be a list.")
        return value


class AccessCheckRequestSerializer(serializers.Serializer):
    url = serializers.CharField()
    method = serializers.CharField(default="GET")
    user_id = serializers.UUIDField(required=False)


class ResolveRequestSerializer(serializers.Serializer):
    url = serializers.CharField()
    method = serializers.ChoiceField(choices=SUPPORTED_METHODS, default="GET")


class CacheInvalidateSerializer(serializers.Serializer):
    scope = serializers.ChoiceField(choices=CACHE_SCOPES, default="all")
    ident = serializers.CharField(required=False, allow_blank=False)


class RouteSerializer(serializers.Serializer):
    pattern = serializers.CharField()
    methods = serializers.ListField(child=serializers.CharField(), allow_empty=False)
    action = serializers.CharField(required=False, allow_blank=True, default="")
    controller = serializers.CharField(required=False, allow_blank=True, default="")
    middleware = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    name = serializers.CharField(required=False, allow_blank=True, default="")


class DiscoverSerializer(serializers.Serializer):
    """Routes to import; omitted means the project's own URL configuration."""

    routes = RouteSerializer(many=True, required=False)


__all__ = [
    "RefField",
    "ResourceSerializer",
    "ResourceWriteSerializer",
    "ResourceUpdateItemSerializer",
    "ResourceBulkUpdateSerializer",
    "MenuItemSerializer",
    "MemberRefsSerializer",
    "ReorderSerializer",
    "BulkMenuSerializer",
    "RoleSerializer",
    "RoleWriteSerializer",
    "PermissionSerializer",
    "PermissionWriteSerializer",
    "UserRoleSerializer",
    "BulkRolePermissionsSerializer",
    "BulkUserRolesSerializer",
    "ConfigurationImportSerializer",
    "AccessCheckRequestSerializer",
    "ResolveRequestSerializer",
    "CacheInvalidateSerializer",
    "RouteSerializer",
    "DiscoverSerializer",
]
