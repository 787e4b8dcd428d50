"""Seed roles, permissions, the admin API resources, a demo menu and users."""

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from access_control.conf import access_settings
from access_control.discovery import collect_django_routes
from access_control.models import MenuItem, Permission, Role
from access_control.service import DynamicAccessService
from authentication.services import TokenService

DEMO_EMAILS = ["admin@example.com", "editor@example.com", "user@example.com"]
DEMO_MENU = [
    {"name": "dashboard", "label": "Dashboard", "url": "/dashboard", "icon": "home", "sort_order": 0},
    {"name": "administration", "label": "Administration", "icon": "settings", "sort_order": 10,
     "roles": ["admin"]},
    {"name": "administration.resources", "label": "Resources", "url": "/resources", "parent": "administration",
     "sort_order": 0, "permissions": ["read"]},
    {"name": "administration.menus", "label": "Menus", "url": "/menus", "parent": "administration",
     "sort_order": 1, "permissions": ["read"]},
    {"name": "administration.roles", "label": "Roles", "url": "/roles", "parent": "administration",
     "sort_order": 2, "roles": ["admin"]},
]


class Command(BaseCommand):
    """Management command to seed a working access-control setup."""

    help = (
        "Seed roles and permissions, register this project's API routes, create a "
        "demo menu and demo users. Use --reset to clear previously seeded data first."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--reset",
            action="store_true",
            help="Remove the demo users, roles and menu items before seeding.",
        )
        parser.add_argument(
            "--tokens",
            action="store_true",
            help="Print an access token for each demo user.",
        )

    def handle(self, *args, **options):
        """Entrypoint for the management command."""
        service = DynamicAccessService()
        if options.get("reset"):
            self._reset_seeded_data(service)

        self.stdout.write("Seeding access-control data...")
        with transaction.atomic():
            roles = self._create_roles(service)
            touched = service.import_discovered_routes(collect_django_routes())
            self.stdout.write(f"Registered {len(touched)} API resources.")
            self._create_menu(service)
            users = self._create_users(roles)
        service.invalidate_cache("all")
        self.stdout.write(self.style.SUCCESS("Access-control seed completed."))

        if options.get("tokens"):
            for user in users:
                self.stdout.write(f"{user.email}: {TokenService.generate_access_token(user)}")

    def _reset_seeded_data(self, service) -> None:
        self.stdout.write("Resetting previously seeded data...")
        with transaction.atomic():
            get_user_model().objects.filter(email__in=DEMO_EMAILS).delete()
            MenuItem.objects.filter(name__in=[entry["name"] for entry in DEMO_MENU]).delete()
            Role.objects.filter(name__in=["admin", "editor", "user"]).delete()
        # Bulk deletes bypass the per-object invalidation hooks.
        service.invalidate_cache("all")
        self.stdout.write(self.style.WARNING("Seeded data cleared."))

    @staticmethod
    def _create_roles(service):
        """Create base roles if missing and return a name->Role map."""
        grants = {
            "super-admin": [],
            "admin": ["create", "read", "update", "delete", "view", access_settings.MENU_ADMIN_PERMISSION],
            "editor": ["read", "update"],
            "user": ["view"],
        }
        roles = {}
        for name, permissions in grants.items():
            role = Role.objects.filter(name=name).first()
            if role is None:
                role = service.roles.create_role(name)
            if permissions:
                service.roles.assign_permissions_to_role(role, permissions)
            roles[name] = role
        return roles

    @staticmethod
    def _create_menu(service):
        ids = {}
        for entry in DEMO_MENU:
            data = dict(entry)
            parent = data.pop("parent", None)
            data["parent_id"] = ids.get(parent)
            existing = MenuItem.objects.filter(name=data["name"]).first()
            if existing is None:
                item = service.menus.create(data)
            else:
                item = service.menus.update(existing.pk, data)
            ids[item.name] = item.pk
        # Auto-created menu permissions go to admins.
        menu_permissions = Permission.objects.filter(name__startswith="menu.")
        service.roles.assign_permissions_to_role("admin", list(menu_permissions))

    @staticmethod
    def _create_users(roles):
        User = get_user_model()
        users = []
        for email, role in zip(DEMO_EMAILS, ["super-admin", "editor", "user"]):
            user = User.objects.filter(email=email).first()
            if user is None:
                user = User.objects.create_user(email, first_name=role.replace("-", " ").title())
            user.roles.add(roles[role])
            users.append(user)
        return users
