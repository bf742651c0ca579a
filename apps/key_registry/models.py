"""
apps.key_registry.models
~~~~~~~~~~~~~~~~~~~~~~~~~
Durable catalogue of configuration key definitions.

Models
------
ConfigKeyDefinition
    One row per configuration key: its declared value type, optional
    default, the scope dimensions it may be overridden on, and a free-form
    category used only for filtering.
"""
from django.core.validators import RegexValidator
from django.db import models

#: Keys are dot-notation identifiers, e.g. ``ui.theme.primaryColor``.
_key_validator = RegexValidator(
    regex=r"^[A-Za-z0-9_.-]+$",
    message=(
        "Configuration keys may contain only letters, digits, dots, dashes "
        "and underscores."
    ),
    code="invalid_key",
)


class ScopeDimension(models.TextChoices):
    """Axes along which a key may be overridden."""

    PERSONA = "persona", "Persona"
    AGENT = "agent", "Agent"
    WORKFLOW = "workflow", "Workflow"


class DeclaredType(models.TextChoices):
    STRING = "string", "String"
    NUMBER = "number", "Number"
    BOOLEAN = "boolean", "Boolean"
    JSON = "json", "JSON"
    ARRAY = "array", "Array"


#: Column holding the "allowed" flag for each scope dimension.
DIMENSION_FLAG_FIELDS: dict[str, str] = {
    ScopeDimension.PERSONA: "allow_persona",
    ScopeDimension.AGENT: "allow_agent",
    ScopeDimension.WORKFLOW: "allow_workflow",
}


class ConfigKeyDefinition(models.Model):
    """
    Definition of a single configuration key.

    ``key`` and ``declared_type`` are effectively immutable once a value
    record references the key; that rule is enforced by
    :mod:`apps.key_registry.services` rather than here because it depends on
    the value store.

    Allowed scope dimensions are stored as one boolean per dimension so that
    ``list_keys(scope_dimension=...)`` is a plain indexed filter on every
    database backend.  An empty set (all flags false) means global-only.

    ``default_value`` is ``NULL`` when the key has no default; configuration
    values themselves can never be JSON ``null``, so the two cannot be
    confused.
    """

    key = models.CharField(
        max_length=255,
        unique=True,
        validators=[_key_validator],
        help_text="Hierarchical dot-notation identifier, e.g. 'ui.theme.primaryColor'.",
    )
    description = models.TextField(blank=True, default="")
    declared_type = models.CharField(max_length=20, choices=DeclaredType.choices)
    category = models.CharField(max_length=100, default="general", db_index=True)
    allow_persona = models.BooleanField(default=False)
    allow_agent = models.BooleanField(default=False)
    allow_workflow = models.BooleanField(default=False)
    default_value = models.JSONField(
        null=True,
        blank=True,
        help_text="Fallback returned when no scoped value applies. NULL means no default.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["key"]
        verbose_name = "Config Key Definition"
        verbose_name_plural = "Config Key Definitions"

    def __str__(self) -> str:
        return f"{self.key} ({self.declared_type})"

    @property
    def allowed_scope_dimensions(self) -> frozenset[str]:
        return frozenset(
            str(dimension)
            for dimension, flag in DIMENSION_FLAG_FIELDS.items()
            if getattr(self, flag)
        )

    @property
    def has_default(self) -> bool:
        return self.default_value is not None

    def allows(self, dimension: str) -> bool:
        """Return True if values may be scoped on *dimension*."""
        flag = DIMENSION_FLAG_FIELDS.get(dimension)
        return bool(flag and getattr(self, flag))
