"""
apps.config_core.services.write_coordinator
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Serialises writes per ``(config_key, scope)`` tuple and keeps the change
log and the cache in step with the value store.

Every mutating operation follows the same discipline:

1. Take the in-process lock of each affected tuple (sorted order, so two
   batches touching the same tuples can never deadlock).  Writes to
   different tuples proceed in parallel; there is no global lock.
2. Open a transaction; the value store takes the row lock and the unique
   constraint catches any race between processes.
3. Write one :class:`~apps.config_core.models.ConfigChangeLog` row per
   affected tuple in the same transaction.
4. After the transaction block exits, invalidate every affected key in the
   cache, and again when an enclosing transaction commits.

A lost version race (:class:`~common.exceptions.ConcurrencyConflictError`)
rolls the attempt back and is retried up to ``WRITE_RETRY_LIMIT`` times.
Every other error propagates untouched.
"""
from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from datetime import datetime
from functools import partial
from typing import Iterable

import structlog
from django.db import transaction
from django.utils import timezone

from apps.config_core.models import ConfigChangeLog, ConfigValueRecord
from apps.config_core.scope import Scope
from apps.config_core.services import value_store
from apps.key_registry import services as registry
from common.conf import engine_setting
from common.exceptions import ConcurrencyConflictError
from .config_cache import ConfigCache

logger = structlog.get_logger(__name__)

Operation = ConfigChangeLog.Operation


def snapshot(record: ConfigValueRecord | None) -> dict | None:
    """JSON-safe view of a record for the change log."""
    if record is None:
        return None
    return {
        "record_id": record.pk,
        "version": record.version,
        "value": record.value,
        "effective_from": record.effective_from.isoformat(),
        "is_active": record.is_active,
    }


class WriteCoordinator:
    """
    Entry point for every mutation of configuration values.

    Args:
        cache: The cache to invalidate after each commit.  ``None`` skips
            invalidation (useful for tooling that runs without a cache).
        retry_limit: Attempts per operation; defaults to
            ``CONFIG_ENGINE["WRITE_RETRY_LIMIT"]``.
    """

    def __init__(self, cache: ConfigCache | None = None, *, retry_limit: int | None = None) -> None:
        self.cache = cache
        self.retry_limit = retry_limit or engine_setting("WRITE_RETRY_LIMIT")
        # Locks disappear once no writer holds a reference to them.
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @staticmethod
    def _tuple_id(config_key: str, scope: Scope) -> tuple[str, str, str]:
        return (config_key, scope.dimension, scope.value)

    def _lock_for(self, tuple_id: tuple[str, str, str]) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(tuple_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[tuple_id] = lock
            return lock

    @contextmanager
    def _hold(self, tuple_ids: Iterable[tuple[str, str, str]]):
        locks = [self._lock_for(tuple_id) for tuple_id in sorted(set(tuple_ids))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(
        self,
        config_key: str,
        scope: Scope,
        value: object,
        *,
        effective_from: datetime | None = None,
        created_by: str = "",
        reason: str = "",
        operation: str = Operation.SET,
    ) -> ConfigValueRecord:
        """
        Append the next version of ``(config_key, scope)``.

        Raises:
            UnknownKeyError, TypeValidationError, ScopeNotAllowedError:
                the value was rejected; nothing was written.
            ConcurrencyConflictError: the version race was lost
                ``retry_limit`` times in a row.
        """
        # Validate before locking so that bad input fails fast.
        definition = registry.get_key(config_key)
        value_store.validate_write(definition, scope, value)

        with self._hold([self._tuple_id(config_key, scope)]):
            record = self._with_retries(
                "write",
                config_key,
                lambda: self._append(
                    config_key, scope, value,
                    effective_from=effective_from,
                    created_by=created_by,
                    reason=reason,
                    operation=operation,
                ),
            )
        self._invalidate([config_key])

        logger.info(
            "config_value_written",
            key=config_key,
            scope=str(scope),
            version=record.version,
            record_id=record.pk,
            effective_from=record.effective_from.isoformat(),
            operation=str(operation),
            created_by=created_by,
        )
        return record

    def deactivate(self, record_id: int, *, performed_by: str = "", reason: str = "") -> ConfigValueRecord:
        """
        Retire one record.  Deactivating an inactive record is a no-op and
        writes no change-log row.

        Raises:
            RecordNotFoundError: no record has *record_id*.
        """
        record = value_store.get_record(record_id)
        scope = record.scope
        with self._hold([self._tuple_id(record.config_key_id, scope)]):
            with transaction.atomic():
                previous = snapshot(value_store.get_record(record_id))
                record = value_store.deactivate_record(record_id)
                if previous["is_active"]:
                    self._log(
                        Operation.DEACTIVATE, record.config_key_id, scope,
                        previous=previous, new=snapshot(record),
                        performed_by=performed_by, reason=reason,
                    )
        self._invalidate([record.config_key_id])

        logger.info(
            "config_value_deactivated",
            key=record.config_key_id,
            scope=str(scope),
            record_id=record.pk,
            version=record.version,
            performed_by=performed_by,
        )
        return record

    def rollback(
        self,
        config_key: str,
        scope: Scope,
        target_version: int,
        *,
        performed_by: str = "",
        reason: str = "",
    ) -> ConfigValueRecord:
        """
        Re-publish the value of *target_version* as a new version effective
        now.  History is never rewritten.

        Raises:
            UnknownKeyError: *config_key* is not registered.
            VersionNotFoundError: the tuple has no such version.
        """
        registry.get_key(config_key)
        target = value_store.get_record_version(config_key, scope, target_version)
        return self.write(
            config_key,
            scope,
            target.value,
            created_by=performed_by,
            reason=reason or f"Rollback to version {target_version}",
            operation=Operation.ROLLBACK,
        )

    def apply_batch(
        self,
        items: list,
        *,
        created_by: str = "",
        reason: str = "",
        operation: str = Operation.BULK_UPDATE,
    ) -> list[ConfigValueRecord]:
        """
        Append every item in a single transaction: either all items are
        written or none are.

        *items* are objects with ``config_key``, ``scope``, ``value`` and
        ``effective_from`` attributes (see
        :class:`~apps.config_core.services.bulk.BulkItem`).  Callers are
        expected to have validated them; a failing item aborts the batch.
        """
        if not items:
            return []

        def attempt() -> list[ConfigValueRecord]:
            with transaction.atomic():
                return [
                    self._append(
                        item.config_key, item.scope, item.value,
                        effective_from=item.effective_from,
                        created_by=created_by,
                        reason=reason,
                        operation=operation,
                        affected_count=len(items),
                    )
                    for item in items
                ]

        tuple_ids = [self._tuple_id(item.config_key, item.scope) for item in items]
        with self._hold(tuple_ids):
            records = self._with_retries("batch", None, attempt)
        keys = sorted({item.config_key for item in items})
        self._invalidate(keys)

        logger.info(
            "config_batch_applied",
            operation=str(operation),
            item_count=len(records),
            key_count=len(keys),
            created_by=created_by,
        )
        return records

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _append(
        self,
        config_key: str,
        scope: Scope,
        value: object,
        *,
        effective_from: datetime | None,
        created_by: str,
        reason: str,
        operation: str,
        affected_count: int = 1,
    ) -> ConfigValueRecord:
        with transaction.atomic():
            previous = snapshot(value_store.latest_record(config_key, scope, lock=True))
            record = value_store.append_value(
                config_key, scope, value,
                effective_from=effective_from or timezone.now(),
                created_by=created_by,
            )
            self._log(
                operation, config_key, scope,
                previous=previous, new=snapshot(record),
                performed_by=created_by, reason=reason,
                affected_count=affected_count,
            )
        return record

    def _with_retries(self, action: str, config_key: str | None, fn):
        for attempt in range(1, self.retry_limit + 1):
            try:
                return fn()
            except ConcurrencyConflictError:
                logger.warning(
                    "config_write_conflict",
                    action=action,
                    key=config_key,
                    attempt=attempt,
                    retry_limit=self.retry_limit,
                )
                if attempt == self.retry_limit:
                    raise

    @staticmethod
    def _log(
        operation: str,
        config_key: str,
        scope: Scope,
        *,
        previous: dict | None,
        new: dict | None,
        performed_by: str,
        reason: str,
        affected_count: int = 1,
    ) -> ConfigChangeLog:
        return ConfigChangeLog.objects.create(
            operation=operation,
            config_key=config_key,
            scope_dimension=scope.dimension,
            scope_value=scope.value,
            previous_state=previous,
            new_state=new,
            performed_by=performed_by or "",
            reason=reason or "",
            affected_count=affected_count,
        )

    def _invalidate(self, keys: Iterable[str]) -> None:
        """
        Invalidate *keys* now and, inside an enclosing transaction, again
        once it commits: a reader on another connection may cache the
        pre-commit row under the fresh token in between.
        """
        if self.cache is None:
            return
        keys = list(keys)
        for key in keys:
            self.cache.invalidate(key)
        if transaction.get_connection().in_atomic_block:
            for key in keys:
                transaction.on_commit(partial(self.cache.invalidate, key))
