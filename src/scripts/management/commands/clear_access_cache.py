"""Flush cached access decisions and menu trees."""

from django.core.management.base import BaseCommand, CommandError

from access_control.exceptions import ValidationError
from access_control.service import CACHE_SCOPES, DynamicAccessService


class Command(BaseCommand):
    help = "Clear the access decision cache, entirely or for one user, role, resource or the menus."

    def add_arguments(self, parser):
        parser.add_argument("--scope", choices=CACHE_SCOPES, default="all")
        parser.add_argument(
            "--ident",
            default=None,
            help="User id, role id or resource key (METHOD:pattern) for targeted scopes.",
        )

    def handle(self, *args, **options):
        try:
            DynamicAccessService().invalidate_cache(options["scope"], options["ident"])
        except ValidationError as exc:
            raise CommandError(exc.message) from exc
        self.stdout.write(self.style.SUCCESS(f"Access cache cleared (scope={options['scope']})."))
