"""
apps.key_registry.admin
~~~~~~~~~~~~~~~~~~~~~~~~
Django admin registration for key definitions.
"""
from django.contrib import admin

from .models import ConfigKeyDefinition


@admin.register(ConfigKeyDefinition)
class ConfigKeyDefinitionAdmin(admin.ModelAdmin):
    """
    Admin interface for the key registry.

    ``key`` is read-only on existing rows; the type may still be edited
    here, so prefer the API, which refuses type changes once history exists.
    """

    list_display = [
        "key", "declared_type", "category",
        "allow_persona", "allow_agent", "allow_workflow", "updated_at",
    ]
    list_filter = ["declared_type", "category", "allow_persona", "allow_agent", "allow_workflow"]
    search_fields = ["key", "description", "category"]
    readonly_fields = ["created_at", "updated_at"]
    ordering = ["key"]

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return list(self.readonly_fields) + ["key"]
        return self.readonly_fields
