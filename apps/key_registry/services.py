"""
apps.key_registry.services
~~~~~~~~~~~~~~~~~~~~~~~~~~~
Business logic for the key registry.

Definitions change far less often than values, so :func:`get_key` serves
them from the engine's cache alias; every mutation here drops the cached
copy before returning, and again when an enclosing transaction commits.
Definitions read inside a transaction are never cached.
"""
from __future__ import annotations

import structlog
from django.core.cache import caches
from django.db import IntegrityError, transaction
from django.db.models import ProtectedError, QuerySet

from common.conf import engine_setting
from common.exceptions import DuplicateKeyError, KeyInUseError, UnknownKeyError
from .models import DIMENSION_FLAG_FIELDS, ConfigKeyDefinition
from .validators import KeyDefinitionValidator, coerce_value

logger = structlog.get_logger(__name__)

#: Fields that :func:`update_key` may change.  ``key`` is never editable.
_UPDATABLE_FIELDS = frozenset({
    "description",
    "category",
    "declared_type",
    "default_value",
    "allowed_scope_dimensions",
})


def _cache():
    return caches[engine_setting("CACHE_ALIAS")]


def _cache_key(key: str) -> str:
    return f"config-key-definition:{key}"


def _forget(key: str) -> None:
    _cache().delete(_cache_key(key))
    if transaction.get_connection().in_atomic_block:
        transaction.on_commit(lambda: _cache().delete(_cache_key(key)))


def _apply_dimensions(definition: ConfigKeyDefinition, dimensions) -> None:
    wanted = set(dimensions or ())
    for dimension, flag in DIMENSION_FLAG_FIELDS.items():
        setattr(definition, flag, dimension in wanted)


def key_in_use(definition: ConfigKeyDefinition) -> bool:
    """True if any value record, active or retired, references *definition*."""
    return definition.value_records.exists()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_keys(
    *,
    category: str | None = None,
    scope_dimension: str | None = None,
) -> QuerySet[ConfigKeyDefinition]:
    """
    Return definitions matching the filter, ordered by ``key``.

    The result is a lazy QuerySet; iterating it again re-runs the query, so
    callers can restart the sequence at will.  An unknown *scope_dimension*
    matches nothing.
    """
    qs = ConfigKeyDefinition.objects.order_by("key")
    if category:
        qs = qs.filter(category=category)
    if scope_dimension:
        flag = DIMENSION_FLAG_FIELDS.get(scope_dimension)
        if flag is None:
            return qs.none()
        qs = qs.filter(**{flag: True})
    return qs


def get_key(key: str) -> ConfigKeyDefinition:
    """Fetch a definition by key, raising :class:`UnknownKeyError` if absent."""
    cache = _cache()
    definition = cache.get(_cache_key(key))
    if definition is not None:
        return definition
    try:
        definition = ConfigKeyDefinition.objects.get(key=key)
    except ConfigKeyDefinition.DoesNotExist:
        raise UnknownKeyError(f"Configuration key '{key}' is not registered.")
    # Only committed rows are cached; this one may still be rolled back.
    if not transaction.get_connection().in_atomic_block:
        cache.set(_cache_key(key), definition, engine_setting("REGISTRY_CACHE_TTL"))
    return definition


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def define_key(
    *,
    key: str,
    declared_type: str,
    description: str = "",
    category: str = "general",
    allowed_scope_dimensions=(),
    default_value: object = None,
) -> ConfigKeyDefinition:
    """
    Register a new configuration key.

    Raises:
        InvalidTypeError: *declared_type* is not recognised.
        ValidationError: Key syntax, dimensions or default are invalid.
        DuplicateKeyError: *key* is already registered.
    """
    KeyDefinitionValidator.validate({
        "key": key,
        "declared_type": declared_type,
        "allowed_scope_dimensions": allowed_scope_dimensions,
        "default_value": default_value,
    })
    if ConfigKeyDefinition.objects.filter(key=key).exists():
        raise DuplicateKeyError(f"Configuration key '{key}' is already registered.")

    definition = ConfigKeyDefinition(
        key=key,
        declared_type=declared_type,
        description=description,
        category=category,
        default_value=(
            None if default_value is None else coerce_value(declared_type, default_value)
        ),
    )
    _apply_dimensions(definition, allowed_scope_dimensions)
    try:
        with transaction.atomic():
            definition.save()
    except IntegrityError as exc:
        raise DuplicateKeyError(
            f"Configuration key '{key}' is already registered."
        ) from exc

    _forget(key)
    logger.info(
        "config_key_defined",
        key=key,
        declared_type=declared_type,
        category=category,
        allowed_scope_dimensions=sorted(definition.allowed_scope_dimensions),
    )
    return definition


def update_key(key: str, *, data: dict) -> ConfigKeyDefinition:
    """
    Partial-update a definition.

    ``declared_type`` may only change while no value record references the
    key, because existing history was validated against the old type.  When
    the type changes without a new default, an existing default that no
    longer fits is reported as a validation error.

    Raises:
        UnknownKeyError, InvalidTypeError, ValidationError, KeyInUseError
    """
    definition = ConfigKeyDefinition.objects.filter(key=key).first()
    if definition is None:
        raise UnknownKeyError(f"Configuration key '{key}' is not registered.")

    changes = {field: value for field, value in data.items() if field in _UPDATABLE_FIELDS}
    declared_type = changes.get("declared_type", definition.declared_type)
    default_value = changes.get("default_value", definition.default_value)
    KeyDefinitionValidator.validate({
        "declared_type": declared_type,
        "allowed_scope_dimensions": changes.get("allowed_scope_dimensions"),
        "default_value": default_value,
    })

    if declared_type != definition.declared_type and key_in_use(definition):
        raise KeyInUseError(
            f"Cannot change the type of '{key}': value history already exists."
        )

    definition.declared_type = declared_type
    definition.default_value = (
        None if default_value is None else coerce_value(declared_type, default_value)
    )
    if "description" in changes:
        definition.description = changes["description"]
    if "category" in changes:
        definition.category = changes["category"]
    if "allowed_scope_dimensions" in changes:
        _apply_dimensions(definition, changes["allowed_scope_dimensions"])
    definition.save()

    _forget(key)
    logger.info("config_key_updated", key=key, fields=sorted(changes))
    return definition


def remove_key(key: str) -> None:
    """
    Delete a definition that no value record references.

    Raises:
        UnknownKeyError: *key* is not registered.
        KeyInUseError: value history (including retired records) exists.
    """
    definition = ConfigKeyDefinition.objects.filter(key=key).first()
    if definition is None:
        raise UnknownKeyError(f"Configuration key '{key}' is not registered.")
    if key_in_use(definition):
        raise KeyInUseError(
            f"Configuration key '{key}' is referenced by value history and cannot be removed."
        )
    try:
        definition.delete()
    except ProtectedError as exc:
        raise KeyInUseError(
            f"Configuration key '{key}' is referenced by value history and cannot be removed."
        ) from exc
    _forget(key)
    logger.info("config_key_removed", key=key)
