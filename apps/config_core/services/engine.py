"""
apps.config_core.services.engine
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The :class:`ConfigEngine` facade wires the registry, value store, resolver,
cache, write coordinator and bulk operations together.

One engine is built per process by
:meth:`apps.config_core.apps.ConfigCoreConfig.ready` and handed to the
request layer through :func:`get_engine`.  Nothing else keeps state at
module level, so tests construct their own engine (and cache) freely.

Views and management commands must call only this facade.
"""
from __future__ import annotations

from datetime import datetime

import structlog
from django.db.models import QuerySet

from apps.config_core.models import ConfigChangeLog, ConfigValueRecord
from apps.config_core.scope import Scope
from apps.config_core.services import value_store
from apps.key_registry import services as registry
from apps.key_registry.models import ConfigKeyDefinition
from common.conf import engine_setting
from .bulk import BulkItem, BulkOperations
from .config_cache import ConfigCache
from .config_resolver import ConfigResolver, Resolution
from .write_coordinator import WriteCoordinator

logger = structlog.get_logger(__name__)

_engine: ConfigEngine | None = None


class ConfigEngine:
    """
    Args:
        cache: Cache layer; a default :class:`ConfigCache` if omitted.
        coordinator: Write coordinator; built around *cache* if omitted.
    """

    def __init__(
        self,
        cache: ConfigCache | None = None,
        coordinator: WriteCoordinator | None = None,
    ) -> None:
        self.cache = cache or ConfigCache(ConfigResolver.resolve)
        self.coordinator = coordinator or WriteCoordinator(self.cache)
        self.bulk = BulkOperations(self.coordinator)

    # ------------------------------------------------------------------
    # Key registry
    # ------------------------------------------------------------------

    def list_keys(self, *, category: str | None = None, scope_dimension: str | None = None) -> QuerySet[ConfigKeyDefinition]:
        return registry.list_keys(category=category, scope_dimension=scope_dimension)

    def get_key(self, key: str) -> ConfigKeyDefinition:
        return registry.get_key(key)

    def define_key(self, **fields) -> ConfigKeyDefinition:
        return registry.define_key(**fields)

    def update_key(self, key: str, data: dict) -> ConfigKeyDefinition:
        # A new default or type changes what cached reads resolve to.
        definition = registry.update_key(key, data=data)
        self.cache.invalidate(key)
        return definition

    def remove_key(self, key: str) -> None:
        registry.remove_key(key)
        self.cache.invalidate(key)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_value(self, key: str, context: Scope | None = None, as_of: datetime | None = None) -> Resolution:
        """
        Resolve *key* for *context*.

        Current reads are served through the cache; a read with an explicit
        *as_of* (historical or future) always goes to the resolver.
        """
        context = context or Scope()
        if as_of is not None:
            return ConfigResolver.resolve(key, context, as_of)
        return self.cache.resolve(key, context)

    def get_history(self, key: str, scope: Scope, *, limit: int | None = None) -> QuerySet[ConfigValueRecord]:
        return value_store.get_history(key, scope, limit=limit or engine_setting("HISTORY_LIMIT"))

    def get_change_history(
        self,
        key: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> QuerySet[ConfigChangeLog]:
        registry.get_key(key)
        return value_store.change_history(
            key, since=since, until=until, limit=limit or engine_setting("HISTORY_LIMIT"),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put_value(
        self,
        key: str,
        scope: Scope,
        value: object,
        *,
        effective_from: datetime | None = None,
        created_by: str = "",
        reason: str = "",
    ) -> ConfigValueRecord:
        return self.coordinator.write(
            key, scope, value,
            effective_from=effective_from,
            created_by=created_by,
            reason=reason,
        )

    def deactivate_value(self, record_id: int, *, performed_by: str = "", reason: str = "") -> ConfigValueRecord:
        return self.coordinator.deactivate(record_id, performed_by=performed_by, reason=reason)

    def rollback(
        self,
        key: str,
        scope: Scope,
        target_version: int,
        *,
        performed_by: str = "",
        reason: str = "",
    ) -> ConfigValueRecord:
        return self.coordinator.rollback(
            key, scope, target_version, performed_by=performed_by, reason=reason,
        )

    def bulk_put(self, items: list[BulkItem], *, created_by: str = "", reason: str = "") -> list[ConfigValueRecord]:
        return self.bulk.bulk_write(items, created_by=created_by, reason=reason)

    def bulk_items(self, payloads: list[dict]) -> list[BulkItem]:
        return self.bulk.items_from_payloads(payloads)

    def export(self, *, category: str | None = None, scope: Scope | None = None) -> dict:
        return self.bulk.export_document(category=category, scope=scope)

    def import_document(self, document: dict, *, created_by: str = "", reason: str = "") -> list[ConfigValueRecord]:
        return self.bulk.import_document(document, created_by=created_by, reason=reason)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()


def configure_engine(engine: ConfigEngine | None = None) -> ConfigEngine:
    """Install *engine* (or a default one) as the process-wide engine."""
    global _engine
    _engine = engine or ConfigEngine()
    logger.debug(
        "config_engine_configured",
        cache_alias=_engine.cache.alias,
        retry_limit=_engine.coordinator.retry_limit,
    )
    return _engine


def get_engine() -> ConfigEngine:
    """The process-wide engine; built on first use if the app registry has not."""
    if _engine is None:
        return configure_engine()
    return _engine
