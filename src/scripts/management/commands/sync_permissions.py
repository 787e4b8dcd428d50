"""Reconcile registered resources with the project's URL configuration."""

from django.core.management.base import BaseCommand, CommandError

from access_control.discovery import collect_django_routes
from access_control.exceptions import AccessControlError
from access_control.service import DynamicAccessService


class Command(BaseCommand):
    help = "Sync permissions with routes; optionally auto-discover routes and clear the cache."

    def add_arguments(self, parser):
        parser.add_argument(
            "--auto-discover",
            action="store_true",
            help="Register every route of the URL configuration as a resource.",
        )
        parser.add_argument(
            "--clear-cache",
            action="store_true",
            help="Flush the access decision cache afterwards.",
        )
        parser.add_argument("--urlconf", default=None, help="URL configuration module to scan.")

    def handle(self, *args, **options):
        service = DynamicAccessService()
        self.stdout.write("Starting permission synchronization...")
        try:
            if options["auto_discover"]:
                self.stdout.write("Auto-discovering routes...")
                touched = service.import_discovered_routes(collect_django_routes(options["urlconf"]))
                self.stdout.write(f"Discovered and registered {len(touched)} routes.")
            if options["clear_cache"]:
                self.stdout.write("Clearing access cache...")
                service.invalidate_cache("all")
                self.stdout.write("Cache cleared.")
        except AccessControlError as exc:
            raise CommandError(f"Failed to sync permissions: {exc.message}") from exc
        self.stdout.write(self.style.SUCCESS("Permission synchronization completed."))
