"""
tests.test_value_store
~~~~~~~~~~~~~~~~~~~~~~~
Integration tests for the scoped value store: versioning, validation,
deactivation and the read helpers used by the resolver.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from apps.config_core.models import ConfigValueRecord
from apps.config_core.scope import Scope
from apps.config_core.services import value_store
from common.exceptions import (
    RecordNotFoundError,
    ScopeNotAllowedError,
    TypeValidationError,
    UnknownKeyError,
    VersionNotFoundError,
)

RACHEL = Scope(persona="rachel")


@pytest.mark.django_db
class TestAppendValue:

    def test_versions_are_gapless_per_tuple(self, theme_key):
        """Writing N times sequentially yields versions 1..N."""
        for colour in ("#111111", "#222222", "#333333", "#444444"):
            value_store.append_value("ui.theme.primaryColor", RACHEL, colour)
        versions = list(
            value_store.get_history("ui.theme.primaryColor", RACHEL).values_list("version", flat=True)
        )
        assert versions == [4, 3, 2, 1]

    def test_tuples_are_versioned_independently(self, theme_key):
        value_store.append_value("ui.theme.primaryColor", RACHEL, "#111111")
        value_store.append_value("ui.theme.primaryColor", RACHEL, "#222222")
        record = value_store.append_value("ui.theme.primaryColor", Scope(), "#333333")
        other = value_store.append_value("ui.theme.primaryColor", Scope(persona="john"), "#444444")
        assert record.version == 1
        assert other.version == 1

    def test_global_records_stored_with_empty_scope_value(self, theme_key):
        record = value_store.append_value("ui.theme.primaryColor", Scope(), "#3B82F6")
        assert (record.scope_dimension, record.scope_value) == ("global", "")
        assert record.scope == Scope()

    def test_effective_from_defaults_to_now(self, theme_key, clock):
        record = value_store.append_value("ui.theme.primaryColor", Scope(), "#3B82F6")
        assert record.effective_from == clock()
        assert record.is_active

    def test_text_values_are_stored_parsed(self, timeout_key):
        record = value_store.append_value("agent.timeoutSeconds", Scope(agent_id="a1"), "45")
        record.refresh_from_db()
        assert record.value == 45

    def test_unknown_key(self, db):
        with pytest.raises(UnknownKeyError):
            value_store.append_value("does.not.exist", Scope(), "x")

    def test_type_mismatch_writes_nothing(self, timeout_key):
        with pytest.raises(TypeValidationError):
            value_store.append_value("agent.timeoutSeconds", Scope(), "soon")
        assert not ConfigValueRecord.objects.exists()

    def test_disallowed_dimension(self, theme_key):
        with pytest.raises(ScopeNotAllowedError):
            value_store.append_value("ui.theme.primaryColor", Scope(agent_id="a1"), "#3B82F6")

    def test_global_only_key_rejects_scoped_write(self, flags_key):
        with pytest.raises(ScopeNotAllowedError):
            value_store.append_value("features.enabled", RACHEL, ["beta"])
        assert value_store.append_value("features.enabled", Scope(), ["beta"]).version == 1

    def test_multi_dimension_record_rejected(self, timeout_key):
        with pytest.raises(ScopeNotAllowedError):
            value_store.append_value(
                "agent.timeoutSeconds", Scope(persona="rachel", agent_id="a1"), 30,
            )


@pytest.mark.django_db
class TestDeactivate:

    def test_deactivate_keeps_the_row(self, theme_key):
        record = value_store.append_value("ui.theme.primaryColor", RACHEL, "#1E40AF")
        value_store.deactivate_record(record.pk)
        record.refresh_from_db()
        assert record.is_active is False

    def test_deactivate_twice_is_a_no_op(self, theme_key):
        record = value_store.append_value("ui.theme.primaryColor", RACHEL, "#1E40AF")
        value_store.deactivate_record(record.pk)
        assert value_store.deactivate_record(record.pk).is_active is False

    def test_unknown_record(self, db):
        with pytest.raises(RecordNotFoundError):
            value_store.deactivate_record(999_999)

    def test_history_includes_retired_versions(self, theme_key):
        first = value_store.append_value("ui.theme.primaryColor", RACHEL, "#111111")
        value_store.append_value("ui.theme.primaryColor", RACHEL, "#222222")
        value_store.deactivate_record(first.pk)
        history = list(value_store.get_history("ui.theme.primaryColor", RACHEL))
        assert [(r.version, r.is_active) for r in history] == [(2, True), (1, False)]


@pytest.mark.django_db
class TestReads:

    def test_current_candidate_skips_future_and_retired(self, theme_key, clock):
        now = clock()
        v1 = value_store.append_value("ui.theme.primaryColor", RACHEL, "#111111")
        v2 = value_store.append_value("ui.theme.primaryColor", RACHEL, "#222222")
        value_store.append_value(
            "ui.theme.primaryColor", RACHEL, "#333333", effective_from=now + timedelta(hours=1),
        )
        assert value_store.current_candidate("ui.theme.primaryColor", RACHEL, now) == v2
        value_store.deactivate_record(v2.pk)
        assert value_store.current_candidate("ui.theme.primaryColor", RACHEL, now) == v1

    def test_next_scheduled_change(self, theme_key, clock):
        now = clock()
        later = now + timedelta(hours=2)
        sooner = now + timedelta(hours=1)
        value_store.append_value("ui.theme.primaryColor", Scope(), "#111111", effective_from=later)
        value_store.append_value("ui.theme.primaryColor", RACHEL, "#222222", effective_from=sooner)
        assert value_store.next_scheduled_change("ui.theme.primaryColor", [RACHEL, Scope()], now) == sooner
        assert value_store.next_scheduled_change("ui.theme.primaryColor", [Scope()], now) == later
        assert value_store.next_scheduled_change("ui.theme.primaryColor", [Scope()], later) is None

    def test_get_record_version(self, theme_key):
        value_store.append_value("ui.theme.primaryColor", RACHEL, "#111111")
        assert value_store.get_record_version("ui.theme.primaryColor", RACHEL, 1).value == "#111111"
        with pytest.raises(VersionNotFoundError):
            value_store.get_record_version("ui.theme.primaryColor", RACHEL, 2)

    def test_history_limit(self, theme_key):
        for colour in ("#111111", "#222222", "#333333"):
            value_store.append_value("ui.theme.primaryColor", RACHEL, colour)
        history = value_store.get_history("ui.theme.primaryColor", RACHEL, limit=2)
        assert [r.version for r in history] == [3, 2]

    def test_history_of_unknown_key(self, db):
        with pytest.raises(UnknownKeyError):
            value_store.get_history("does.not.exist", Scope())

    def test_scopes_with_values(self, theme_key):
        value_store.append_value("ui.theme.primaryColor", RACHEL, "#111111")
        value_store.append_value("ui.theme.primaryColor", RACHEL, "#121212")
        value_store.append_value("ui.theme.primaryColor", Scope(), "#222222")
        assert value_store.scopes_with_values("ui.theme.primaryColor") == [Scope(), RACHEL]
