"""
tests.test_commands
~~~~~~~~~~~~~~~~~~~~
The export_config / import_config management commands.
"""
from __future__ import annotations

import io
import json

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.config_core.models import ConfigValueRecord
from apps.config_core.scope import Scope
from apps.key_registry.models import ConfigKeyDefinition

THEME = "ui.theme.primaryColor"


@pytest.mark.django_db
class TestExportCommand:

    def test_writes_document_to_file(self, theme_key, engine, tmp_path):
        engine.put_value(THEME, Scope(persona="rachel"), "#1E40AF")
        target = tmp_path / "config.json"
        out = io.StringIO()

        call_command("export_config", "--output", str(target), stdout=out)

        document = json.loads(target.read_text(encoding="utf-8"))
        assert document["keys"][0]["key"] == THEME
        assert document["keys"][0]["values"][0]["value"] == "#1E40AF"
        assert "Exported 1 key(s)" in out.getvalue()

    def test_writes_document_to_stdout(self, theme_key, engine):
        out = io.StringIO()
        call_command("export_config", "--category", "ui", stdout=out)
        document = json.loads(out.getvalue())
        assert document["filter"] == {"category": "ui", "scope": None}

    def test_rejects_more_than_one_dimension(self, db, engine):
        with pytest.raises(CommandError):
            call_command("export_config", "--persona", "rachel", "--agent-id", "a1")


@pytest.mark.django_db
class TestImportCommand:

    def test_round_trip_through_a_file(self, theme_key, timeout_key, engine, tmp_path):
        engine.put_value(THEME, Scope(persona="rachel"), "#1E40AF")
        engine.put_value("agent.timeoutSeconds", Scope(agent_id="a1"), 45)
        target = tmp_path / "config.json"
        call_command("export_config", "-o", str(target), stdout=io.StringIO())

        ConfigValueRecord.objects.all().delete()
        ConfigKeyDefinition.objects.all().delete()
        engine.clear_cache()

        out = io.StringIO()
        call_command("import_config", str(target), "--created-by", "ops", stdout=out)

        assert "Imported 2 value(s)." in out.getvalue()
        assert engine.get_value(THEME, Scope(persona="rachel")).value == "#1E40AF"
        assert engine.get_value("agent.timeoutSeconds", Scope(agent_id="a1")).value == 45
        assert set(ConfigValueRecord.objects.values_list("created_by", flat=True)) == {"ops"}

    def test_invalid_document_lists_problems(self, db, engine, tmp_path):
        target = tmp_path / "bad.json"
        target.write_text(json.dumps({"format_version": 7, "keys": []}), encoding="utf-8")
        err = io.StringIO()

        with pytest.raises(CommandError):
            call_command("import_config", str(target), stderr=err)
        assert "format_version: [unsupported_format]" in err.getvalue()

    def test_unreadable_file(self, db, engine, tmp_path):
        with pytest.raises(CommandError):
            call_command("import_config", str(tmp_path / "missing.json"))
