"""
apps.config_core.services.value_store
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The scoped value store: the single mutable source of truth for
configuration values.

Records are append-only.  A new value is a new version of its
``(config_key, scope)`` tuple; retiring a value flips ``is_active`` and
keeps the row for audit.  Versions are assigned as ``max + 1`` under a row
lock, and the ``unique_config_value_version`` constraint turns any race the
lock cannot see (e.g. the very first version of a tuple written by two
processes) into :class:`~common.exceptions.ConcurrencyConflictError`.

Callers wanting serialisation, retries, audit rows and cache invalidation
should go through
:class:`~apps.config_core.services.write_coordinator.WriteCoordinator`
rather than calling :func:`append_value` directly.
"""
from __future__ import annotations

from datetime import datetime
from functools import reduce
from operator import or_

from django.db import IntegrityError, transaction
from django.db.models import Min, Q, QuerySet
from django.utils import timezone

from apps.config_core.models import ConfigChangeLog, ConfigValueRecord
from apps.config_core.scope import Scope
from apps.key_registry import services as registry
from apps.key_registry.models import ConfigKeyDefinition
from apps.key_registry.validators import coerce_value
from common.exceptions import (
    ConcurrencyConflictError,
    RecordNotFoundError,
    ScopeNotAllowedError,
    VersionNotFoundError,
)


def _tuple_q(config_key: str, scope: Scope) -> Q:
    return Q(
        config_key_id=config_key,
        scope_dimension=scope.dimension,
        scope_value=scope.value,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_write(definition: ConfigKeyDefinition, scope: Scope, value: object) -> object:
    """
    Check that *value* may be stored for *definition* at *scope*.

    Returns the coerced value to persist.

    Raises:
        ScopeNotAllowedError: *scope* names more than one dimension, or a
            dimension the key does not allow.
        TypeValidationError: *value* does not match the declared type.
    """
    if not scope.is_single_dimension:
        raise ScopeNotAllowedError(
            f"Values are scoped to at most one dimension; got '{scope}'."
        )
    if not scope.is_global and not definition.allows(scope.dimension):
        allowed = sorted(definition.allowed_scope_dimensions) or ["global only"]
        raise ScopeNotAllowedError(
            f"Key '{definition.key}' cannot be overridden per {scope.dimension} "
            f"(allowed: {', '.join(allowed)})."
        )
    return coerce_value(definition.declared_type, value)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def latest_record(config_key: str, scope: Scope, *, lock: bool = False) -> ConfigValueRecord | None:
    """Highest version of the tuple regardless of activity or effective date."""
    qs = ConfigValueRecord.objects.filter(_tuple_q(config_key, scope)).order_by("-version")
    if lock:
        qs = qs.select_for_update()
    return qs.first()


def append_value(
    config_key: str,
    scope: Scope,
    value: object,
    *,
    effective_from: datetime | None = None,
    created_by: str = "",
) -> ConfigValueRecord:
    """
    Validate and persist the next version of ``(config_key, scope)``.

    Args:
        config_key: A registered key.
        scope: Single-dimension scope descriptor (``Scope()`` for global).
        value: Payload; text forms are coerced to the declared type.
        effective_from: When the version becomes eligible for resolution.
            Defaults to now; future instants schedule the change.
        created_by: Audit attribution.

    Returns:
        The persisted record.

    Raises:
        UnknownKeyError, TypeValidationError, ScopeNotAllowedError,
        ConcurrencyConflictError (another writer committed the same version).
    """
    definition = registry.get_key(config_key)
    stored_value = validate_write(definition, scope, value)
    effective_from = effective_from or timezone.now()

    with transaction.atomic():
        latest = latest_record(config_key, scope, lock=True)
        version = (latest.version if latest else 0) + 1
        try:
            with transaction.atomic():
                return ConfigValueRecord.objects.create(
                    config_key_id=config_key,
                    scope_dimension=scope.dimension,
                    scope_value=scope.value,
                    value=stored_value,
                    version=version,
                    effective_from=effective_from,
                    is_active=True,
                    created_by=created_by or "",
                )
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                f"Version {version} of '{config_key}' [{scope}] was claimed by a concurrent write."
            ) from exc


def get_record(record_id: int) -> ConfigValueRecord:
    try:
        return ConfigValueRecord.objects.get(pk=record_id)
    except (ConfigValueRecord.DoesNotExist, ValueError, TypeError):
        raise RecordNotFoundError(f"Config value record '{record_id}' not found.")


def deactivate_record(record_id: int) -> ConfigValueRecord:
    """
    Retire a record.  The row is kept; deactivating twice is a no-op.

    Raises:
        RecordNotFoundError: no record has *record_id*.
    """
    with transaction.atomic():
        record = (
            ConfigValueRecord.objects.select_for_update()
            .filter(pk=record_id)
            .first()
        )
        if record is None:
            raise RecordNotFoundError(f"Config value record '{record_id}' not found.")
        if record.is_active:
            record.is_active = False
            record.save(update_fields=["is_active"])
    return record


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_history(config_key: str, scope: Scope, *, limit: int | None = None) -> QuerySet[ConfigValueRecord]:
    """Every version of the tuple, newest first, including retired ones."""
    registry.get_key(config_key)
    qs = ConfigValueRecord.objects.filter(_tuple_q(config_key, scope)).order_by("-version")
    if limit is not None:
        qs = qs[:limit]
    return qs


def get_record_version(config_key: str, scope: Scope, version: int) -> ConfigValueRecord:
    record = ConfigValueRecord.objects.filter(_tuple_q(config_key, scope), version=version).first()
    if record is None:
        raise VersionNotFoundError(
            f"Version {version} does not exist for '{config_key}' [{scope}]."
        )
    return record


def current_candidate(config_key: str, scope: Scope, as_of: datetime) -> ConfigValueRecord | None:
    """
    The record in force for exactly ``(config_key, scope)`` at *as_of*:
    highest version that is active and already effective.
    """
    return (
        ConfigValueRecord.objects.filter(
            _tuple_q(config_key, scope),
            is_active=True,
            effective_from__lte=as_of,
        )
        .order_by("-version")
        .first()
    )


def next_scheduled_change(config_key: str, scopes: list[Scope], as_of: datetime) -> datetime | None:
    """Earliest future ``effective_from`` among active records of *scopes*."""
    if not scopes:
        return None
    result = ConfigValueRecord.objects.filter(
        reduce(or_, (_tuple_q(config_key, scope) for scope in scopes)),
        is_active=True,
        effective_from__gt=as_of,
    ).aggregate(next_change=Min("effective_from"))
    return result["next_change"]


def scopes_with_values(config_key: str) -> list[Scope]:
    """Distinct scopes holding at least one active record for the key."""
    rows = (
        ConfigValueRecord.objects.filter(config_key_id=config_key, is_active=True)
        .values_list("scope_dimension", "scope_value")
        .distinct()
        .order_by("scope_dimension", "scope_value")
    )
    return [Scope.for_dimension(dimension, value) for dimension, value in rows]


def change_history(
    config_key: str,
    *,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = None,
) -> QuerySet[ConfigChangeLog]:
    """Change-log rows for the key, newest first, optionally bounded in time."""
    qs = ConfigChangeLog.objects.filter(config_key=config_key).order_by("-timestamp", "-id")
    if since is not None:
        qs = qs.filter(timestamp__gte=since)
    if until is not None:
        qs = qs.filter(timestamp__lte=until)
    if limit is not None:
        qs = qs[:limit]
    return qs
