"""Access-control models: Role, Permission, Resource, MenuItem, AccessCheck."""

from django.db import models


class Permission(models.Model):
    """Named capability, unique per guard."""

    name = models.CharField(max_length=150)
    guard_name = models.CharField(max_length=50, default="web")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("name", "guard_name")
        ordering = ["name"]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name


class Role(models.Model):
    """Represents a user's role; grants its permissions to every holder."""

    name = models.CharField(max_length=100)
    guard_name = models.CharField(max_length=50, default="web")
    description = models.TextField(blank=True)
    permissions = models.ManyToManyField(Permission, blank=True, related_name="roles")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("name", "guard_name")
        ordering = ["name"]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name


class Resource(models.Model):
    """URL pattern + HTTP method guarded by permission and role requirements.

    Required permissions and roles are OR'd: holding any one grants access.
    A resource with neither is open to any authenticated principal, or to
    everyone when ``is_public`` is set.
    """

    METHOD_CHOICES = [
        ("GET", "GET"),
        ("POST", "POST"),
        ("PUT", "PUT"),
        ("PATCH", "PATCH"),
        ("DELETE", "DELETE"),
        ("HEAD", "HEAD"),
        ("OPTIONS", "OPTIONS"),
    ]

    pattern = models.CharField(max_length=255)
    method = models.CharField(max_length=10, choices=METHOD_CHOICES, default="GET")
    name = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    controller = models.CharField(max_length=255, blank=True)
    action = models.CharField(max_length=150, blank=True)
    middleware = models.JSONField(default=list, blank=True)
    category = models.CharField(max_length=100, default="api")
    priority = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_public = models.BooleanField(default=False)
    is_auto_discovered = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True)
    permissions = models.ManyToManyField(Permission, blank=True, related_name="resources")
    roles = models.ManyToManyField(Role, blank=True, related_name="resources")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("pattern", "method")
        indexes = [
            models.Index(fields=["method", "is_active"], name="resource_method_active_idx"),
            models.Index(fields=["category"], name="resource_category_idx"),
            models.Index(fields=["is_auto_discovered"], name="resource_auto_discovered_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.method} {self.pattern}"

    @property
    def cache_key(self) -> str:
        return f"{self.method}:{self.pattern}"


class MenuItem(models.Model):
    """Node of the navigation tree with its own access requirements.

    ``conditions`` is an ordered list of ``{"type", "operator", ...}`` dicts
    evaluated after the permission/role check; all of them must pass.
    """

    name = models.CharField(max_length=150, unique=True)
    label = models.CharField(max_length=255)
    url = models.CharField(max_length=255, blank=True, null=True)
    icon = models.CharField(max_length=100, blank=True, null=True)
    route_name = models.CharField(max_length=150, blank=True, null=True)
    route_params = models.JSONField(default=dict, blank=True)
    parent = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.CASCADE, related_name="children"
    )
    sort_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_visible = models.BooleanField(default=True)
    description = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    conditions = models.JSONField(default=list, blank=True)
    permissions = models.ManyToManyField(Permission, blank=True, related_name="menu_items")
    roles = models.ManyToManyField(Role, blank=True, related_name="menu_items")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["sort_order", "name"]
        indexes = [
            models.Index(fields=["parent", "sort_order"], name="menuitem_parent_order_idx"),
            models.Index(fields=["is_active", "is_visible"], name="menuitem_active_visible_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name


class AccessCheck(models.Model):
    """Append-only audit record of one access decision."""

    principal_id = models.CharField(max_length=64, blank=True, db_index=True)
    resource = models.ForeignKey(
        Resource, null=True, blank=True, on_delete=models.SET_NULL, related_name="checks"
    )
    resource_key = models.CharField(max_length=300, blank=True)
    method = models.CharField(max_length=10)
    url = models.CharField(max_length=2048)
    granted = models.BooleanField(default=False, db_index=True)
    reason = models.CharField(max_length=50)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    checked_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-checked_at"]
        indexes = [models.Index(fields=["principal_id", "checked_at"], name="accesscheck_principal_idx")]

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise RuntimeError("AccessCheck entries are append-only.")
        super().save(*args, **kwargs)


__all__ = ["Permission", "Role", "Resource", "MenuItem", "AccessCheck"]
