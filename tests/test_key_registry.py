"""
tests.test_key_registry
~~~~~~~~~~~~~~~~~~~~~~~~
Integration tests for the key registry services.
"""
from __future__ import annotations

import pytest

from apps.config_core.scope import Scope
from apps.key_registry import services as registry
from apps.key_registry.models import ConfigKeyDefinition
from common.exceptions import (
    DuplicateKeyError,
    InvalidTypeError,
    KeyInUseError,
    UnknownKeyError,
    ValidationError,
)


@pytest.mark.django_db
class TestDefineKey:

    def test_define_and_get(self, theme_key):
        definition = registry.get_key("ui.theme.primaryColor")
        assert definition.declared_type == "string"
        assert definition.allowed_scope_dimensions == frozenset({"persona"})
        assert definition.default_value == "#000000"
        assert definition.has_default

    def test_duplicate_key_rejected(self, theme_key):
        with pytest.raises(DuplicateKeyError):
            registry.define_key(key="ui.theme.primaryColor", declared_type="string")

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidTypeError):
            registry.define_key(key="ui.launchDate", declared_type="date")
        assert not ConfigKeyDefinition.objects.filter(key="ui.launchDate").exists()

    def test_default_is_stored_coerced(self):
        definition = registry.define_key(key="agent.retries", declared_type="number", default_value="3")
        definition.refresh_from_db()
        assert definition.default_value == 3

    def test_mistyped_default_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            registry.define_key(key="agent.retries", declared_type="number", default_value="many")
        assert exc_info.value.errors[0]["field"] == "default_value"

    def test_no_dimensions_means_global_only(self, flags_key):
        assert flags_key.allowed_scope_dimensions == frozenset()
        assert not flags_key.allows("persona")

    def test_unknown_key_lookup(self):
        with pytest.raises(UnknownKeyError):
            registry.get_key("does.not.exist")


@pytest.mark.django_db
class TestListKeys:

    def test_ordered_by_key(self, theme_key, timeout_key, flags_key):
        keys = [d.key for d in registry.list_keys()]
        assert keys == ["agent.timeoutSeconds", "features.enabled", "ui.theme.primaryColor"]

    def test_filter_by_category(self, theme_key, timeout_key):
        assert [d.key for d in registry.list_keys(category="ui")] == ["ui.theme.primaryColor"]

    def test_filter_by_scope_dimension(self, theme_key, timeout_key, flags_key):
        assert [d.key for d in registry.list_keys(scope_dimension="agent")] == ["agent.timeoutSeconds"]
        assert len(registry.list_keys(scope_dimension="persona")) == 2

    def test_unknown_dimension_matches_nothing(self, theme_key):
        assert list(registry.list_keys(scope_dimension="tenant")) == []

    def test_sequence_is_restartable(self, theme_key, timeout_key):
        keys = registry.list_keys()
        assert [d.key for d in keys] == [d.key for d in keys.all()]


@pytest.mark.django_db
class TestUpdateAndRemoveKey:

    def test_update_description_and_default(self, theme_key):
        registry.update_key("ui.theme.primaryColor", data={
            "description": "Brand colour",
            "default_value": "#111111",
        })
        definition = registry.get_key("ui.theme.primaryColor")
        assert definition.description == "Brand colour"
        assert definition.default_value == "#111111"

    def test_type_change_allowed_while_unused(self, flags_key):
        definition = registry.update_key("features.enabled", data={"declared_type": "json"})
        assert definition.declared_type == "json"

    def test_type_change_refused_once_history_exists(self, theme_key, engine):
        engine.put_value("ui.theme.primaryColor", Scope(), "#3B82F6")
        with pytest.raises(KeyInUseError):
            registry.update_key("ui.theme.primaryColor", data={"declared_type": "json"})

    def test_type_change_with_incompatible_default_reported(self, theme_key):
        with pytest.raises(ValidationError):
            registry.update_key("ui.theme.primaryColor", data={"declared_type": "number"})

    def test_remove_unused_key(self, flags_key):
        registry.remove_key("features.enabled")
        with pytest.raises(UnknownKeyError):
            registry.get_key("features.enabled")

    def test_remove_refused_while_history_exists(self, theme_key, engine):
        record = engine.put_value("ui.theme.primaryColor", Scope(), "#3B82F6")
        engine.deactivate_value(record.pk)
        with pytest.raises(KeyInUseError):
            registry.remove_key("ui.theme.primaryColor")
        assert ConfigKeyDefinition.objects.filter(key="ui.theme.primaryColor").exists()

    def test_remove_unknown_key(self):
        with pytest.raises(UnknownKeyError):
            registry.remove_key("does.not.exist")
