"""
manage.py import_config FILE [--created-by NAME] [--reason TEXT]

Applies an export document in one transaction.  Validation problems are
listed one per line and nothing is written.
"""
import json
import sys

from django.core.management.base import BaseCommand, CommandError

from apps.config_core.services.engine import get_engine
from common.exceptions import ImportValidationError


class Command(BaseCommand):
    help = "Import a JSON document produced by export_config."

    def add_arguments(self, parser):
        parser.add_argument("path", help="Path to the export document ('-' for stdin).")
        parser.add_argument("--created-by", dest="created_by", default="import_config")
        parser.add_argument("--reason", default="")

    def handle(self, *args, **options):
        path = options["path"]
        try:
            if path == "-":
                document = json.load(sys.stdin)
            else:
                with open(path, encoding="utf-8") as fh:
                    document = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise CommandError(f"Cannot read import document: {exc}") from exc

        try:
            records = get_engine().import_document(
                document, created_by=options["created_by"], reason=options["reason"],
            )
        except ImportValidationError as exc:
            for problem in exc.errors:
                self.stderr.write(f"{problem['path']}: [{problem['code']}] {problem['message']}")
            raise CommandError(exc.detail) from exc

        self.stdout.write(self.style.SUCCESS(f"Imported {len(records)} value(s)."))
