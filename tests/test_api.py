"""
tests.test_api
~~~~~~~~~~~~~~~
Integration tests for the REST endpoints using the DRF APIClient.
"""
from __future__ import annotations

import pytest
from rest_framework import status

from apps.config_core.models import ConfigValueRecord
from apps.config_core.scope import Scope

KEYS_URL = "/api/v1/keys/"
BULK_URL = "/api/v1/bulk/"
EXPORT_URL = "/api/v1/export/"
IMPORT_URL = "/api/v1/import/"
CACHE_URL = "/api/v1/cache/"
THEME = "ui.theme.primaryColor"


def key_url(key):
    return f"/api/v1/keys/{key}/"


def value_url(key, suffix=""):
    return f"/api/v1/values/{key}/{suffix}"


# ===========================================================================
# Key registry endpoints
# ===========================================================================

@pytest.mark.django_db
class TestKeyEndpoints:

    def test_define_key_201(self, api_client):
        resp = api_client.post(KEYS_URL, data={
            "key": "voice.settings",
            "declared_type": "json",
            "category": "voice",
            "allowed_scope_dimensions": ["agent", "persona"],
            "default_value": {"speed": 1.0},
        }, format="json")
        assert resp.status_code == status.HTTP_201_CREATED
        body = resp.json()
        assert body["allowed_scope_dimensions"] == ["agent", "persona"]
        assert body["default_value"] == {"speed": 1.0}

    def test_define_duplicate_409(self, api_client, theme_key):
        resp = api_client.post(KEYS_URL, data={"key": THEME, "declared_type": "string"}, format="json")
        assert resp.status_code == status.HTTP_409_CONFLICT
        assert resp.json()["code"] == "duplicate_key"

    def test_define_unknown_type_422(self, api_client):
        resp = api_client.post(KEYS_URL, data={"key": "a.b", "declared_type": "date"}, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = resp.json()
        assert body["code"] == "invalid_type"
        assert body["errors"][0]["field"] == "declared_type"

    def test_list_keys_filtered(self, api_client, theme_key, timeout_key):
        resp = api_client.get(KEYS_URL, {"scope_dimension": "agent"})
        assert resp.status_code == status.HTTP_200_OK
        assert [d["key"] for d in resp.json()] == ["agent.timeoutSeconds"]

    def test_get_unknown_key_404(self, api_client):
        resp = api_client.get(key_url("does.not.exist"))
        assert resp.status_code == status.HTTP_404_NOT_FOUND
        assert resp.json()["code"] == "unknown_key"

    def test_patch_type_refused_once_used_409(self, api_client, theme_key, engine):
        engine.put_value(THEME, Scope(), "#3B82F6")
        resp = api_client.patch(key_url(THEME), data={
            "declared_type": "json",
            "default_value": {"primary": "#000000"},
        }, format="json")
        assert resp.status_code == status.HTTP_409_CONFLICT
        assert resp.json()["code"] == "key_in_use"

    def test_delete_unused_key_204(self, api_client, flags_key):
        assert api_client.delete(key_url("features.enabled")).status_code == status.HTTP_204_NO_CONTENT
        assert api_client.get(key_url("features.enabled")).status_code == status.HTTP_404_NOT_FOUND

    def test_delete_key_with_history_409(self, api_client, theme_key, engine):
        engine.put_value(THEME, Scope(), "#3B82F6")
        resp = api_client.delete(key_url(THEME))
        assert resp.status_code == status.HTTP_409_CONFLICT


# ===========================================================================
# Value endpoints
# ===========================================================================

@pytest.mark.django_db
class TestValueEndpoints:

    def test_get_value_resolves_default(self, api_client, theme_key):
        resp = api_client.get(value_url(THEME))
        assert resp.status_code == status.HTTP_200_OK
        body = resp.json()
        assert (body["value"], body["source"], body["found"]) == ("#000000", "default", True)
        assert body["context"] == {}

    def test_get_value_empty_is_not_an_error(self, api_client, timeout_key):
        resp = api_client.get(value_url("agent.timeoutSeconds"), {"agentId": "a1"})
        assert resp.status_code == status.HTTP_200_OK
        body = resp.json()
        assert body["found"] is False
        assert body["value"] is None
        assert body["context"] == {"agent_id": "a1"}

    def test_get_unknown_key_404(self, api_client):
        resp = api_client.get(value_url("does.not.exist"))
        assert resp.status_code == status.HTTP_404_NOT_FOUND

    def test_put_then_get_returns_new_value(self, api_client, theme_key):
        assert api_client.get(value_url(THEME), {"persona": "rachel"}).json()["value"] == "#000000"

        resp = api_client.post(value_url(THEME), data={
            "scope": {"persona": "rachel"},
            "value": "#1E40AF",
            "created_by": "alice",
        }, format="json")
        assert resp.status_code == status.HTTP_201_CREATED
        record = resp.json()
        assert (record["version"], record["scope"], record["created_by"]) == (1, {"persona": "rachel"}, "alice")

        body = api_client.get(value_url(THEME), {"persona": "rachel"}).json()
        assert (body["value"], body["source"], body["version"]) == ("#1E40AF", "persona", 1)

    def test_put_without_actor_is_attributed_to_system(self, api_client, theme_key):
        resp = api_client.post(value_url(THEME), data={"value": "#1E40AF"}, format="json")
        assert resp.json()["created_by"] == "system"

    def test_put_wrong_type_422(self, api_client, theme_key):
        resp = api_client.post(value_url(THEME), data={"value": 42}, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert resp.json()["code"] == "type_mismatch"

    def test_put_null_value_422(self, api_client, theme_key):
        resp = api_client.post(value_url(THEME), data={"value": None}, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_put_disallowed_scope_422(self, api_client, theme_key):
        resp = api_client.post(value_url(THEME), data={
            "scope": {"workflow_id": "w1"},
            "value": "#1E40AF",
        }, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert resp.json()["code"] == "scope_not_allowed"

    def test_put_misspelled_scope_field_422(self, api_client, theme_key):
        """``persona_id`` is not a dimension; the write must not land on the global scope."""
        resp = api_client.post(value_url(THEME), data={
            "scope": {"persona_id": "rachel"},
            "value": "#FFFFFF",
        }, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert resp.json()["code"] == "scope_not_allowed"
        assert not ConfigValueRecord.objects.exists()
        assert api_client.get(value_url(THEME), {"persona": "john"}).json()["value"] == "#000000"

    def test_put_missing_value_400(self, api_client, theme_key):
        resp = api_client.post(value_url(THEME), data={"scope": {}}, format="json")
        assert resp.status_code == status.HTTP_400_BAD_REQUEST

    def test_scheduled_value_and_as_of(self, api_client, theme_key, clock):
        api_client.post(value_url(THEME), data={"value": "#111111"}, format="json")
        api_client.post(value_url(THEME), data={
            "value": "#222222",
            "effective_from": "2026-01-01T13:00:00Z",
        }, format="json")

        now = api_client.get(value_url(THEME)).json()
        assert now["value"] == "#111111"
        assert now["next_change_at"].startswith("2026-01-01T13:00:00")
        later = api_client.get(value_url(THEME), {"as_of": "2026-01-01T13:30:00Z"}).json()
        assert later["value"] == "#222222"

    def test_history_newest_first(self, api_client, theme_key, engine):
        for colour in ("#111111", "#222222", "#333333"):
            engine.put_value(THEME, Scope(persona="rachel"), colour)
        resp = api_client.get(value_url(THEME, "history/"), {"persona": "rachel", "limit": 2})
        assert resp.status_code == status.HTTP_200_OK
        assert [r["version"] for r in resp.json()] == [3, 2]

    def test_deactivate_record(self, api_client, theme_key, engine):
        record = engine.put_value(THEME, Scope(persona="rachel"), "#1E40AF")
        resp = api_client.post(f"/api/v1/records/{record.pk}/deactivate/", data={}, format="json")
        assert resp.status_code == status.HTTP_200_OK
        assert resp.json()["is_active"] is False
        assert api_client.get(value_url(THEME), {"persona": "rachel"}).json()["value"] == "#000000"

    def test_deactivate_unknown_record_404(self, api_client, db):
        resp = api_client.post("/api/v1/records/999999/deactivate/", data={}, format="json")
        assert resp.status_code == status.HTTP_404_NOT_FOUND
        assert resp.json()["code"] == "record_not_found"

    def test_rollback_and_change_log(self, api_client, theme_key, engine):
        engine.put_value(THEME, Scope(), "#111111")
        engine.put_value(THEME, Scope(), "#222222")
        resp = api_client.post(value_url(THEME, "rollback/"), data={"version": 1}, format="json")
        assert resp.status_code == status.HTTP_201_CREATED
        assert (resp.json()["version"], resp.json()["value"]) == (3, "#111111")

        changes = api_client.get(value_url(THEME, "changes/")).json()
        assert [c["operation"] for c in changes] == ["rollback", "set", "set"]

    def test_rollback_unknown_version_404(self, api_client, theme_key):
        resp = api_client.post(value_url(THEME, "rollback/"), data={"version": 4}, format="json")
        assert resp.status_code == status.HTTP_404_NOT_FOUND
        assert resp.json()["code"] == "version_not_found"


# ===========================================================================
# Bulk, export / import and cache endpoints
# ===========================================================================

@pytest.mark.django_db
class TestBulkAndCacheEndpoints:

    def test_bulk_put_201(self, api_client, theme_key, timeout_key):
        resp = api_client.post(BULK_URL, data={"items": [
            {"key": THEME, "value": "#3B82F6"},
            {"key": "agent.timeoutSeconds", "scope": {"agent_id": "a1"}, "value": 45},
        ]}, format="json")
        assert resp.status_code == status.HTTP_201_CREATED
        assert resp.json()["applied"] == 2

    def test_bulk_put_aggregate_error_422(self, api_client, theme_key, timeout_key):
        resp = api_client.post(BULK_URL, data={"items": [
            {"key": THEME, "value": "#3B82F6"},
            {"key": "agent.timeoutSeconds", "value": "soon"},
            {"key": THEME, "scope": {"persona": "rachel"}, "value": "#1E40AF"},
        ]}, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = resp.json()
        assert body["code"] == "bulk_validation_error"
        assert [e["index"] for e in body["errors"]] == [1]
        assert not ConfigValueRecord.objects.exists()

    def test_bulk_put_misspelled_scope_field_listed_with_other_failures(self, api_client, theme_key, timeout_key):
        resp = api_client.post(BULK_URL, data={"items": [
            {"key": THEME, "value": "#3B82F6"},
            {"key": "agent.timeoutSeconds", "value": "soon"},
            {"key": THEME, "scope": {"persona_id": "rachel"}, "value": "#1E40AF"},
        ]}, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = resp.json()
        assert body["code"] == "bulk_validation_error"
        assert [(e["index"], e["code"]) for e in body["errors"]] == [
            (1, "type_mismatch"),
            (2, "scope_not_allowed"),
        ]
        assert not ConfigValueRecord.objects.exists()

    def test_bulk_put_requires_items_400(self, api_client, db):
        resp = api_client.post(BULK_URL, data={"items": []}, format="json")
        assert resp.status_code == status.HTTP_400_BAD_REQUEST

    def test_export_then_import(self, api_client, theme_key, engine):
        engine.put_value(THEME, Scope(persona="rachel"), "#1E40AF")
        document = api_client.get(EXPORT_URL, {"category": "ui"}).json()
        assert document["keys"][0]["values"][0]["value"] == "#1E40AF"

        resp = api_client.post(IMPORT_URL, data={"document": document}, format="json")
        assert resp.status_code == status.HTTP_201_CREATED
        assert resp.json()["applied"] == 1
        assert resp.json()["records"][0]["version"] == 2

    def test_export_filtered_by_scope(self, api_client, theme_key, engine):
        engine.put_value(THEME, Scope(), "#3B82F6")
        engine.put_value(THEME, Scope(persona="rachel"), "#1E40AF")
        document = api_client.get(EXPORT_URL, {"persona": "rachel"}).json()
        assert [v["scope"] for v in document["keys"][0]["values"]] == [{"persona": "rachel"}]

    def test_import_invalid_document_422(self, api_client, db):
        resp = api_client.post(IMPORT_URL, data={"document": {"format_version": 2, "keys": []}}, format="json")
        assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert resp.json()["errors"][0]["code"] == "unsupported_format"

    def test_cache_stats_and_clear(self, api_client, theme_key):
        api_client.get(value_url(THEME))
        api_client.get(value_url(THEME))
        stats = api_client.get(CACHE_URL).json()
        assert (stats["hits"], stats["misses"]) == (1, 1)

        assert api_client.delete(CACHE_URL).status_code == status.HTTP_204_NO_CONTENT
        api_client.get(value_url(THEME))
        assert api_client.get(CACHE_URL).json()["misses"] == 2


# ===========================================================================
# Health and request correlation
# ===========================================================================

@pytest.mark.django_db
class TestHealthAndMiddleware:

    def test_health_ok(self, client):
        resp = client.get("/health/")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "db": "ok", "cache": "ok"}

    def test_request_id_echoed(self, api_client, theme_key):
        resp = api_client.get(value_url(THEME), HTTP_X_REQUEST_ID="req-123")
        assert resp["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, api_client, theme_key):
        resp = api_client.get(value_url(THEME))
        assert len(resp["X-Request-ID"]) == 32
