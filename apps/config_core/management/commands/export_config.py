"""
manage.py export_config [--category CAT] [--persona P | --agent-id A | --workflow-id W] [--output FILE]

Writes the export document as JSON to stdout or to ``--output``.
"""
import json

from django.core.management.base import BaseCommand, CommandError
from django.core.serializers.json import DjangoJSONEncoder

from apps.config_core.scope import Scope
from apps.config_core.services.engine import get_engine


class Command(BaseCommand):
    help = "Export configuration keys and their current values as a JSON document."

    def add_arguments(self, parser):
        parser.add_argument("--category", help="Only export keys of this category.")
        parser.add_argument("--persona")
        parser.add_argument("--agent-id", dest="agent_id")
        parser.add_argument("--workflow-id", dest="workflow_id")
        parser.add_argument("--output", "-o", help="File to write; stdout when omitted.")

    def handle(self, *args, **options):
        scope = Scope(
            persona=options.get("persona"),
            agent_id=options.get("agent_id"),
            workflow_id=options.get("workflow_id"),
        )
        if not scope.is_single_dimension:
            raise CommandError("Pass at most one of --persona, --agent-id and --workflow-id.")

        document = get_engine().export(
            category=options.get("category"),
            scope=None if scope.is_global else scope,
        )
        payload = json.dumps(document, cls=DjangoJSONEncoder, indent=2, sort_keys=True)

        output = options.get("output")
        if output:
            with open(output, "w", encoding="utf-8") as fh:
                fh.write(payload + "\n")
            self.stdout.write(self.style.SUCCESS(
                f"Exported {len(document['keys'])} key(s) to {output}."
            ))
        else:
            self.stdout.write(payload)
