import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Permission",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=150)),
                ("guard_name", models.CharField(default="web", max_length=50)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "unique_together": {("name", "guard_name")},
            },
        ),
        migrations.CreateModel(
            name="Role",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("guard_name", models.CharField(default="web", max_length=50)),
                ("description", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "permissions",
                    models.ManyToManyField(blank=True, related_name="roles", to="access_control.permission"),
                ),
            ],
            options={
                "ordering": ["name"],
                "unique_together": {("name", "guard_name")},
            },
        ),
        migrations.CreateModel(
            name="Resource",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("pattern", models.CharField(max_length=255)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("GET", "GET"),
                            ("POST", "POST"),
                            ("PUT", "PUT"),
                            ("PATCH", "PATCH"),
                            ("DELETE", "DELETE"),
                            ("HEAD", "HEAD"),
                            ("OPTIONS", "OPTIONS"),
                        ],
                        default="GET",
                        max_length=10,
                    ),
                ),
                ("name", models.CharField(blank=True, max_length=255)),
                ("description", models.TextField(blank=True)),
                ("controller", models.CharField(blank=True, max_length=255)),
                ("action", models.CharField(blank=True, max_length=150)),
                ("middleware", models.JSONField(blank=True, default=list)),
                ("category", models.CharField(default="api", max_length=100)),
                ("priority", models.IntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("is_public", models.BooleanField(default=False)),
                ("is_auto_discovered", models.BooleanField(default=False)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "permissions",
                    models.ManyToManyField(blank=True, related_name="resources", to="access_control.permission"),
                ),
                (
                    "roles",
                    models.ManyToManyField(blank=True, related_name="resources", to="access_control.role"),
                ),
            ],
            options={
                "unique_together": {("pattern", "method")},
                "indexes": [
                    models.Index(fields=["method", "is_active"], name="resource_method_active_idx"),
                    models.Index(fields=["category"], name="resource_category_idx"),
                    models.Index(fields=["is_auto_discovered"], name="resource_auto_discovered_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="MenuItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=150, unique=True)),
                ("label", models.CharField(max_length=255)),
                ("url", models.CharField(blank=True, max_length=255, null=True)),
                ("icon", models.CharField(blank=True, max_length=100, null=True)),
                ("route_name", models.CharField(blank=True, max_length=150, null=True)),
                ("route_params", models.JSONField(blank=True, default=dict)),
                ("sort_order", models.IntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("is_visible", models.BooleanField(default=True)),
                ("description", models.TextField(blank=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("conditions", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="children",
                        to="access_control.menuitem",
                    ),
                ),
                (
                    "permissions",
                    models.ManyToManyField(blank=True, related_name="menu_items", to="access_control.permission"),
                ),
                (
                    "roles",
                    models.ManyToManyField(blank=True, related_name="menu_items", to="access_control.role"),
                ),
            ],
            options={
                "ordering": ["sort_order", "name"],
                "indexes": [
                    models.Index(fields=["parent", "sort_order"], name="menuitem_parent_order_idx"),
                    models.Index(fields=["is_active", "is_visible"], name="menuitem_active_visible_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AccessCheck",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("principal_id", models.CharField(blank=True, db_index=True, max_length=64)),
                ("resource_key", models.CharField(blank=True, max_length=300)),
                ("method", models.CharField(max_length=10)),
                ("url", models.CharField(max_length=2048)),
                ("granted", models.BooleanField(db_index=True, default=False)),
                ("reason", models.CharField(max_length=50)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True)),
                ("checked_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "resource",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="checks",
                        to="access_control.resource",
                    ),
                ),
            ],
            options={
                "ordering": ["-checked_at"],
                "indexes": [
                    models.Index(fields=["principal_id", "checked_at"], name="accesscheck_principal_idx"),
                ],
            },
        ),
    ]
