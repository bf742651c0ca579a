"""
apps.key_registry.serializers
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
I/O serializers for key definitions – no business logic.

``declared_type`` is accepted as free text so that an unknown type reaches
the service layer and is reported as ``invalid_type`` rather than as a
generic field error.
"""
from rest_framework import serializers

from .models import ConfigKeyDefinition


class ConfigKeyDefinitionSerializer(serializers.ModelSerializer):
    allowed_scope_dimensions = serializers.SerializerMethodField()

    class Meta:
        model = ConfigKeyDefinition
        fields = [
            "key",
            "description",
            "declared_type",
            "category",
            "allowed_scope_dimensions",
            "default_value",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_allowed_scope_dimensions(self, obj: ConfigKeyDefinition) -> list[str]:
        return sorted(obj.allowed_scope_dimensions)


class ConfigKeyCreateSerializer(serializers.Serializer):
    key = serializers.CharField(max_length=255)
    declared_type = serializers.CharField(max_length=20)
    description = serializers.CharField(required=False, default="", allow_blank=True)
    category = serializers.CharField(max_length=100, required=False, default="general")
    allowed_scope_dimensions = serializers.ListField(
        child=serializers.CharField(), required=False, default=list
    )
    default_value = serializers.JSONField(required=False, allow_null=True, default=None)


class ConfigKeyUpdateSerializer(serializers.Serializer):
    description = serializers.CharField(required=False, allow_blank=True)
    declared_type = serializers.CharField(max_length=20, required=False)
    category = serializers.CharField(max_length=100, required=False)
    allowed_scope_dimensions = serializers.ListField(
        child=serializers.CharField(), required=False
    )
    default_value = serializers.JSONField(required=False, allow_null=True)
