"""
apps.config_core.admin
~~~~~~~~~~~~~~~~~~~~~~~
Read-mostly admin for value records and the change log.  Values are
written through the API so that versions, the change log and the cache
stay consistent; the admin never adds or deletes rows.
"""
from django.contrib import admin

from .models import ConfigChangeLog, ConfigValueRecord


@admin.register(ConfigValueRecord)
class ConfigValueRecordAdmin(admin.ModelAdmin):
    list_display = [
        "config_key", "scope_dimension", "scope_value", "version",
        "effective_from", "is_active", "created_by", "created_at",
    ]
    list_filter = ["is_active", "scope_dimension"]
    search_fields = ["config_key__key", "scope_value", "created_by"]
    readonly_fields = [
        "config_key", "scope_dimension", "scope_value", "value", "version",
        "effective_from", "is_active", "created_at", "created_by",
    ]
    ordering = ["config_key", "scope_dimension", "scope_value", "-version"]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ConfigChangeLog)
class ConfigChangeLogAdmin(admin.ModelAdmin):
    list_display = [
        "timestamp", "operation", "config_key", "scope_dimension",
        "scope_value", "performed_by", "affected_count",
    ]
    list_filter = ["operation", "scope_dimension"]
    search_fields = ["config_key", "scope_value", "performed_by", "reason"]
    readonly_fields = [
        "operation", "config_key", "scope_dimension", "scope_value",
        "previous_state", "new_state", "performed_by", "reason",
        "affected_count", "timestamp",
    ]
    ordering = ["-timestamp", "-id"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
