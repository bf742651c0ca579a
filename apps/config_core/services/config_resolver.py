"""
apps.config_core.services.config_resolver
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Deterministic precedence resolver.

Resolution order (most specific first):
    1. **Workflow** override, if the context names a workflow.
    2. **Agent** override, if the context names an agent.
    3. **Persona** override, if the context names a persona.
    4. **Global** value.
    5. The key's registry **default**.
    6. **Empty** – not an error; callers apply their own fallback.

Each step asks the value store for the current candidate of exactly one
``(key, scope)`` tuple, so a context never composes several dimensions:
the first tuple with a record in force wins outright.

The resolver holds no state and performs no writes.  It does not cache;
see :mod:`apps.config_core.services.config_cache`.

Public API
----------
ConfigResolver.resolve(key, context, as_of) -> Resolution
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime

from django.utils import timezone

from apps.config_core.scope import Scope
from apps.config_core.services import value_store
from apps.key_registry import services as registry

#: ``Resolution.source`` when the registry default was used.
SOURCE_DEFAULT = "default"
#: ``Resolution.source`` when nothing applied.
SOURCE_EMPTY = "empty"


@dataclass(frozen=True)
class Resolution:
    """
    Outcome of resolving one key under one context.

    Attributes:
        key: The resolved key.
        value: The effective value, or ``None`` when empty.
        source: ``"workflow"``, ``"agent"``, ``"persona"``, ``"global"``,
            ``"default"`` or ``"empty"``.
        record_id / version: The winning value record, if any.
        next_change_at: Earliest future ``effective_from`` among the
            context's tuples; the result may differ from that instant on.
    """

    key: str
    value: object = None
    source: str = SOURCE_EMPTY
    record_id: int | None = None
    version: int | None = None
    next_change_at: datetime | None = None

    @property
    def found(self) -> bool:
        return self.source != SOURCE_EMPTY


class ConfigResolver:
    """
    Resolves a key's effective value for a request context.

    Example::

        ConfigResolver.resolve("ui.theme.primaryColor", Scope(persona="rachel"))
        # → Resolution(value="#1E40AF", source="persona", version=1, ...)
    """

    @staticmethod
    def resolve(key: str, context: Scope | None = None, as_of: datetime | None = None) -> Resolution:
        """
        Resolve *key* for *context* as of *as_of* (default: now).

        Raises:
            UnknownKeyError: *key* is not registered.  This is the only
                failure; a missing override is never an error.
        """
        definition = registry.get_key(key)
        context = context or Scope()
        as_of = as_of or timezone.now()
        chain = context.precedence_chain()

        next_change_at = value_store.next_scheduled_change(key, chain, as_of)

        for scope in chain:
            record = value_store.current_candidate(key, scope, as_of)
            if record is not None:
                return Resolution(
                    key=key,
                    value=record.value,
                    source=scope.dimension,
                    record_id=record.pk,
                    version=record.version,
                    next_change_at=next_change_at,
                )

        if definition.has_default:
            return Resolution(
                key=key,
                value=copy.deepcopy(definition.default_value),
                source=SOURCE_DEFAULT,
                next_change_at=next_change_at,
            )
        return Resolution(key=key, next_change_at=next_change_at)
