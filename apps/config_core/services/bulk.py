"""
apps.config_core.services.bulk
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Bulk writes and the export / import document.

All three operations validate everything before anything is written and
report every problem at once:

* :meth:`BulkOperations.bulk_write` raises
  :class:`~common.exceptions.BulkValidationError`;
* :meth:`BulkOperations.import_document` raises
  :class:`~common.exceptions.ImportValidationError`.

Writes go through
:meth:`~apps.config_core.services.write_coordinator.WriteCoordinator.apply_batch`,
so a batch is one transaction.

Document format (``format_version`` 1)::

    {
        "format_version": 1,
        "exported_at": "2026-01-01T00:00:00+00:00",
        "filter": {"category": null, "scope": null},
        "keys": [
            {
                "key": "ui.theme.primaryColor",
                "declared_type": "string",
                "description": "...",
                "category": "ui",
                "allowed_scope_dimensions": ["persona"],
                "default_value": "#000000",
                "values": [
                    {"scope": {}, "value": "#3B82F6", "version": 2,
                     "effective_from": "..."},
                    {"scope": {"persona": "rachel"}, "value": "#1E40AF", ...}
                ]
            }
        ]
    }
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from django.db import transaction
from django.utils import timezone

from apps.config_core.models import ConfigChangeLog, ConfigValueRecord
from apps.config_core.scope import Scope
from apps.config_core.services import value_store
from apps.key_registry import services as registry
from apps.key_registry.models import DIMENSION_FLAG_FIELDS, ConfigKeyDefinition
from apps.key_registry.validators import KeyDefinitionValidator
from common.exceptions import (
    AppError,
    BulkValidationError,
    ImportValidationError,
    UnknownKeyError,
)
from .write_coordinator import WriteCoordinator

logger = structlog.get_logger(__name__)

FORMAT_VERSION = 1


def _is_scope_object(raw) -> bool:
    """A dict whose values are identifiers (text or integers) or null."""
    return isinstance(raw, dict) and all(
        value is None or (isinstance(value, (str, int)) and not isinstance(value, bool))
        for value in raw.values()
    )


@dataclass(frozen=True)
class BulkItem:
    config_key: str
    scope: Scope
    value: object
    effective_from: datetime | None = None


class BulkOperations:
    """Bulk write, export and import on top of a :class:`WriteCoordinator`."""

    def __init__(self, coordinator: WriteCoordinator) -> None:
        self.coordinator = coordinator

    # ------------------------------------------------------------------
    # Bulk write
    # ------------------------------------------------------------------

    def bulk_write(self, items: list[BulkItem], *, created_by: str = "", reason: str = "") -> list[ConfigValueRecord]:
        """
        Apply every item atomically, or none of them.

        Raises:
            BulkValidationError: one or more items were rejected; ``errors``
                holds ``{"index", "config_key", "code", "message"}`` for
                each of them.
        """
        errors = [
            {"index": index, **problem}
            for index, item in enumerate(items)
            for problem in self._check_item(item)
        ]
        if errors:
            self._reject_bulk(errors, len(items))
        return self.coordinator.apply_batch(
            items,
            created_by=created_by,
            reason=reason,
            operation=ConfigChangeLog.Operation.BULK_UPDATE,
        )

    def items_from_payloads(self, payloads: list[dict]) -> list[BulkItem]:
        """
        Build :class:`BulkItem` objects from request payloads
        (``{"key", "scope", "value", "effective_from"}``).

        Scopes are parsed strictly.  If any scope names an unknown field,
        :class:`~common.exceptions.BulkValidationError` lists it together
        with every other failing item.
        """
        built: list[tuple[int, BulkItem]] = []
        scope_errors: list[dict] = []
        for index, payload in enumerate(payloads):
            try:
                scope = Scope.from_mapping(payload.get("scope") or {}, strict=True)
            except AppError as exc:
                scope_errors.append({
                    "index": index,
                    "config_key": payload.get("key"),
                    "code": exc.code,
                    "message": exc.detail,
                })
                continue
            built.append((
                index,
                BulkItem(payload.get("key"), scope, payload.get("value"), payload.get("effective_from")),
            ))

        if scope_errors:
            errors = scope_errors + [
                {"index": index, **problem}
                for index, item in built
                for problem in self._check_item(item)
            ]
            self._reject_bulk(sorted(errors, key=lambda err: err["index"]), len(payloads))
        return [item for _, item in built]

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_document(self, *, category: str | None = None, scope: Scope | None = None) -> dict:
        """
        Serialise keys and the current value of each of their scopes.

        Keys are listed in ascending order and each key's values are sorted
        by scope, so exporting an unchanged store twice yields equal
        ``keys`` sections.

        Args:
            category: Only export keys of this category.
            scope: Only export values stored at exactly this scope.
        """
        now = timezone.now()
        entries = []
        for definition in registry.list_keys(category=category):
            values = []
            for stored_scope in value_store.scopes_with_values(definition.key):
                if scope is not None and stored_scope != scope:
                    continue
                record = value_store.current_candidate(definition.key, stored_scope, now)
                if record is None:
                    continue
                values.append({
                    "scope": stored_scope.to_dict(),
                    "value": record.value,
                    "version": record.version,
                    "effective_from": record.effective_from.isoformat(),
                })
            entries.append({
                "key": definition.key,
                "declared_type": definition.declared_type,
                "description": definition.description,
                "category": definition.category,
                "allowed_scope_dimensions": sorted(definition.allowed_scope_dimensions),
                "default_value": definition.default_value,
                "values": values,
            })

        logger.info("config_exported", key_count=len(entries), category=category)
        return {
            "format_version": FORMAT_VERSION,
            "exported_at": now.isoformat(),
            "filter": {
                "category": category,
                "scope": scope.to_dict() if scope is not None else None,
            },
            "keys": entries,
        }

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_document(self, document: dict, *, created_by: str = "", reason: str = "") -> list[ConfigValueRecord]:
        """
        Write every value of an exported document as a new version,
        effective now.

        Keys already registered must carry the same declared type in the
        document.  Keys that are not registered are defined from the
        document's metadata first, in the same transaction, so a document
        can be imported into an empty store.

        Raises:
            ImportValidationError: the document is malformed or any entry is
                rejected; ``errors`` holds ``{"path", "config_key", "code",
                "message"}`` for each problem.  Nothing was written.
        """
        new_keys, items, errors = self._parse_document(document)
        if errors:
            logger.warning("config_import_rejected", error_count=len(errors))
            raise ImportValidationError(
                f"Import document has {len(errors)} problem(s); nothing was applied.",
                errors=errors,
            )

        with transaction.atomic():
            for fields in new_keys:
                registry.define_key(**fields)
            records = self.coordinator.apply_batch(
                items,
                created_by=created_by,
                reason=reason,
                operation=ConfigChangeLog.Operation.IMPORT,
            )
        logger.info(
            "config_imported",
            record_count=len(records),
            defined_key_count=len(new_keys),
            created_by=created_by,
        )
        return records

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reject_bulk(errors: list[dict], item_count: int) -> None:
        logger.warning("config_bulk_rejected", item_count=item_count, error_count=len(errors))
        raise BulkValidationError(
            f"{len(errors)} of {item_count} item(s) failed validation; no items were applied.",
            errors=errors,
        )

    @staticmethod
    def _check_item(item: BulkItem) -> list[dict]:
        try:
            definition = registry.get_key(item.config_key)
            value_store.validate_write(definition, item.scope, item.value)
        except AppError as exc:
            return [{"config_key": item.config_key, "code": exc.code, "message": exc.detail}]
        return []

    @staticmethod
    def _definition_from_entry(entry: dict) -> tuple[dict, ConfigKeyDefinition]:
        """Validated ``define_key`` arguments plus an unsaved definition to check values against."""
        fields = {
            "key": entry["key"],
            "declared_type": entry.get("declared_type"),
            "description": entry.get("description") or "",
            "category": entry.get("category") or "general",
            "allowed_scope_dimensions": entry.get("allowed_scope_dimensions") or [],
            "default_value": entry.get("default_value"),
        }
        KeyDefinitionValidator.validate(fields)
        definition = ConfigKeyDefinition(
            key=fields["key"],
            declared_type=fields["declared_type"],
            **{
                flag: dimension in fields["allowed_scope_dimensions"]
                for dimension, flag in DIMENSION_FLAG_FIELDS.items()
            },
        )
        return fields, definition

    def _parse_document(self, document) -> tuple[list[dict], list[BulkItem], list[dict]]:
        def problem(path, code, message, config_key=None):
            return {"path": path, "config_key": config_key, "code": code, "message": message}

        if not isinstance(document, dict):
            return [], [], [problem("", "invalid_document", "Import document must be a JSON object.")]

        errors: list[dict] = []
        if document.get("format_version") != FORMAT_VERSION:
            errors.append(problem(
                "format_version", "unsupported_format",
                f"Unsupported format_version {document.get('format_version')!r}; expected {FORMAT_VERSION}.",
            ))
        entries = document.get("keys")
        if not isinstance(entries, list):
            errors.append(problem("keys", "invalid_document", "'keys' must be a list."))
            return [], [], errors

        now = timezone.now()
        new_keys: list[dict] = []
        items: list[BulkItem] = []
        seen: set[str] = set()
        for i, entry in enumerate(entries):
            path = f"keys[{i}]"
            if not isinstance(entry, dict) or not isinstance(entry.get("key"), str):
                errors.append(problem(path, "invalid_entry", "Each entry must be an object with a 'key'."))
                continue
            key = entry["key"]
            if key in seen:
                errors.append(problem(path, "duplicate_key", f"'{key}' appears more than once.", key))
                continue
            seen.add(key)

            try:
                definition = registry.get_key(key)
            except UnknownKeyError:
                shape_errors = [
                    problem(f"{path}.{field}", "invalid_entry", f"'{field}' must be a string.", key)
                    for field in ("declared_type", "description", "category")
                    if entry.get(field) is not None and not isinstance(entry[field], str)
                ]
                if shape_errors:
                    errors.extend(shape_errors)
                    continue
                try:
                    fields, definition = self._definition_from_entry(entry)
                except AppError as exc:
                    errors.extend(
                        problem(f"{path}.{err['field']}", err["code"], err["message"], key)
                        for err in exc.errors
                    )
                    continue
                new_keys.append(fields)
            else:
                if entry.get("declared_type", definition.declared_type) != definition.declared_type:
                    errors.append(problem(
                        f"{path}.declared_type", "type_conflict",
                        f"Document declares '{entry.get('declared_type')}' but '{key}' is "
                        f"registered as '{definition.declared_type}'.",
                        key,
                    ))
                    continue

            values = entry.get("values", [])
            if not isinstance(values, list):
                errors.append(problem(f"{path}.values", "invalid_entry", "'values' must be a list.", key))
                continue
            for j, item in enumerate(values):
                value_path = f"{path}.values[{j}]"
                if not isinstance(item, dict) or "value" not in item:
                    errors.append(problem(value_path, "invalid_entry", "Each value must be an object with a 'value'.", key))
                    continue
                raw_scope = item.get("scope") or {}
                if not _is_scope_object(raw_scope):
                    errors.append(problem(
                        f"{value_path}.scope", "invalid_entry",
                        "'scope' must be an object mapping dimensions to identifiers.", key,
                    ))
                    continue
                try:
                    scope = Scope.from_mapping(raw_scope, strict=True)
                    value_store.validate_write(definition, scope, item["value"])
                except AppError as exc:
                    errors.append(problem(value_path, exc.code, exc.detail, key))
                    continue
                items.append(BulkItem(key, scope, item["value"], effective_from=now))
        return new_keys, items, errors
