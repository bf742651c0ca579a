"""
apps.config_core.serializers
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
I/O-only serializers for the value, history, bulk and import endpoints.
No business logic; shape validation only.

Scopes travel as ``{"persona": ..., "agent_id": ..., "workflow_id": ...}``
objects (absent or empty fields mean "not scoped on that dimension"); the
views turn them into :class:`~apps.config_core.scope.Scope` values.
"""
from rest_framework import serializers

from .models import ConfigChangeLog, ConfigValueRecord


def _scope_field(**kwargs) -> serializers.DictField:
    return serializers.DictField(
        child=serializers.CharField(allow_null=True, allow_blank=True),
        required=False,
        default=dict,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Value records
# ---------------------------------------------------------------------------

class ConfigValueRecordSerializer(serializers.ModelSerializer):
    """Read serializer for one stored version."""

    config_key = serializers.CharField(source="config_key_id", read_only=True)
    scope = serializers.SerializerMethodField()

    class Meta:
        model = ConfigValueRecord
        fields = [
            "id",
            "config_key",
            "scope",
            "value",
            "version",
            "effective_from",
            "is_active",
            "created_at",
            "created_by",
        ]
        read_only_fields = fields

    def get_scope(self, obj: ConfigValueRecord) -> dict:
        return obj.scope.to_dict()


class ConfigChangeLogSerializer(serializers.ModelSerializer):
    scope = serializers.SerializerMethodField()

    class Meta:
        model = ConfigChangeLog
        fields = [
            "id",
            "operation",
            "config_key",
            "scope",
            "previous_state",
            "new_state",
            "performed_by",
            "reason",
            "affected_count",
            "timestamp",
        ]
        read_only_fields = fields

    def get_scope(self, obj: ConfigChangeLog) -> dict:
        return obj.scope.to_dict()


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class ResolutionSerializer(serializers.Serializer):
    """Response shape of GET /values/{key}/."""

    key = serializers.CharField()
    value = serializers.JSONField(allow_null=True)
    source = serializers.CharField()
    found = serializers.BooleanField()
    record_id = serializers.IntegerField(allow_null=True)
    version = serializers.IntegerField(allow_null=True)
    next_change_at = serializers.DateTimeField(allow_null=True)


class ValueQuerySerializer(serializers.Serializer):
    as_of = serializers.DateTimeField(required=False)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class PutValueSerializer(serializers.Serializer):
    """Validates POST /values/{key}/ request body."""

    scope = _scope_field()
    # Nulls reach the service layer and are reported as type mismatches.
    value = serializers.JSONField(allow_null=True)
    effective_from = serializers.DateTimeField(required=False, allow_null=True, default=None)
    created_by = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class DeactivateSerializer(serializers.Serializer):
    performed_by = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RollbackSerializer(serializers.Serializer):
    scope = _scope_field()
    version = serializers.IntegerField(min_value=1)
    performed_by = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class BulkItemSerializer(serializers.Serializer):
    key = serializers.CharField(max_length=255)
    scope = _scope_field()
    value = serializers.JSONField(allow_null=True)
    effective_from = serializers.DateTimeField(required=False, allow_null=True, default=None)


class BulkPutSerializer(serializers.Serializer):
    """Validates POST /bulk/ request body."""

    items = BulkItemSerializer(many=True, allow_empty=False)
    created_by = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ImportSerializer(serializers.Serializer):
    """Validates POST /import/ request body; the document itself is checked by the service."""

    document = serializers.JSONField()
    created_by = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


# ---------------------------------------------------------------------------
# Queries and summaries
# ---------------------------------------------------------------------------

class HistoryQuerySerializer(serializers.Serializer):
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000)


class ChangeQuerySerializer(serializers.Serializer):
    since = serializers.DateTimeField(required=False)
    until = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000)


class ExportQuerySerializer(serializers.Serializer):
    category = serializers.CharField(required=False)


class BatchResultSerializer(serializers.Serializer):
    """Response shape of POST /bulk/ and POST /import/."""

    applied = serializers.IntegerField()
    records = ConfigValueRecordSerializer(many=True)


class CacheStatsSerializer(serializers.Serializer):
    alias = serializers.CharField()
    soft_ttl = serializers.IntegerField()
    hard_ttl = serializers.IntegerField()
    hits = serializers.IntegerField()
    misses = serializers.IntegerField()
    refreshes = serializers.IntegerField()
    stale_served = serializers.IntegerField()
    invalidations = serializers.IntegerField()
    clears = serializers.IntegerField()


class ErrorResponseSerializer(serializers.Serializer):
    """Body rendered by ``common.exceptions.custom_exception_handler``."""

    code = serializers.CharField()
    detail = serializers.CharField()
    errors = serializers.ListField(child=serializers.DictField(), required=False)
