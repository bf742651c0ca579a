"""
apps.config_core.models
~~~~~~~~~~~~~~~~~~~~~~~~
Scoped, versioned configuration values and their change log.

Models
------
ConfigValueRecord
    One immutable version of a key's value at one scope.  Retired with
    ``is_active=False``; never updated otherwise, never deleted.

ConfigChangeLog
    Append-only audit row written for every successful mutating operation.
"""
from django.db import models

from apps.key_registry.models import ConfigKeyDefinition
from .scope import Scope


class ScopeColumn(models.TextChoices):
    GLOBAL = "global", "Global"
    PERSONA = "persona", "Persona"
    AGENT = "agent", "Agent"
    WORKFLOW = "workflow", "Workflow"


class ConfigValueRecord(models.Model):
    """
    A single version of a configuration value.

    The scope descriptor is stored as ``(scope_dimension, scope_value)`` with
    ``scope_value=""`` for the global scope.  Keeping both columns non-null
    lets the ``unique_config_value_version`` constraint cover global records
    too, so two writers can never commit the same version for a tuple.

    ``value`` holds the already-coerced payload (parsed JSON for ``json`` and
    ``array`` keys).
    """

    config_key = models.ForeignKey(
        ConfigKeyDefinition,
        to_field="key",
        db_column="config_key",
        on_delete=models.PROTECT,
        related_name="value_records",
    )
    scope_dimension = models.CharField(
        max_length=20,
        choices=ScopeColumn.choices,
        default=ScopeColumn.GLOBAL,
    )
    scope_value = models.CharField(max_length=255, blank=True, default="")
    value = models.JSONField()
    version = models.PositiveIntegerField()
    effective_from = models.DateTimeField(db_index=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    created_by = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["config_key", "scope_dimension", "scope_value", "-version"]
        verbose_name = "Config Value Record"
        verbose_name_plural = "Config Value Records"
        constraints = [
            models.UniqueConstraint(
                fields=["config_key", "scope_dimension", "scope_value", "version"],
                name="unique_config_value_version",
            ),
        ]
        indexes = [
            models.Index(
                fields=["config_key", "scope_dimension", "scope_value", "is_active", "effective_from"],
                name="config_value_current_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.config_key_id} [{self.scope}] v{self.version}"

    @property
    def scope(self) -> Scope:
        return Scope.for_dimension(self.scope_dimension, self.scope_value)


class ConfigChangeLog(models.Model):
    """
    Audit trail answering "what changed and when".

    ``config_key`` is plain text rather than a foreign key so the log is
    independent of the registry's lifecycle.
    """

    class Operation(models.TextChoices):
        SET = "set", "Set"
        DEACTIVATE = "deactivate", "Deactivate"
        ROLLBACK = "rollback", "Rollback"
        BULK_UPDATE = "bulk_update", "Bulk update"
        IMPORT = "import", "Import"

    operation = models.CharField(max_length=20, choices=Operation.choices)
    config_key = models.CharField(max_length=255, db_index=True)
    scope_dimension = models.CharField(
        max_length=20,
        choices=ScopeColumn.choices,
        default=ScopeColumn.GLOBAL,
    )
    scope_value = models.CharField(max_length=255, blank=True, default="")
    previous_state = models.JSONField(null=True, blank=True)
    new_state = models.JSONField(null=True, blank=True)
    performed_by = models.CharField(max_length=255, blank=True, default="")
    reason = models.TextField(blank=True, default="")
    affected_count = models.PositiveIntegerField(default=1)
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-timestamp", "-id"]
        verbose_name = "Config Change Log"
        verbose_name_plural = "Config Change Logs"

    def __str__(self) -> str:
        return f"{self.operation} {self.config_key} [{self.scope}]"

    @property
    def scope(self) -> Scope:
        return Scope.for_dimension(self.scope_dimension, self.scope_value)
