"""
apps.key_registry.validators
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Value coercion and key-definition validation.

No Django model, view or serializer imports are allowed here so that this
module can be tested without a database.

Public API:
    coerce_value(declared_type, value)   – typed value or TypeValidationError
    KeyDefinitionValidator.validate(data) – checks a proposed key definition
"""
from __future__ import annotations

import json
import math
import re

from common.exceptions import InvalidTypeError, TypeValidationError, ValidationError

#: Complete set of declared type names, mirrored by ``DeclaredType``.
VALID_TYPES: tuple[str, ...] = ("string", "number", "boolean", "json", "array")

#: Complete set of scope dimension names, mirrored by ``ScopeDimension``.
VALID_DIMENSIONS: tuple[str, ...] = ("persona", "agent", "workflow")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]{1,255}$")


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def _mismatch(declared_type: str, value: object, expected: str) -> TypeValidationError:
    return TypeValidationError(
        f'Value for type "{declared_type}" must be {expected}; '
        f"got {type(value).__name__} {value!r:.80}."
    )


def _parse_json_text(declared_type: str, text: str) -> object:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise TypeValidationError(
            f'Value for type "{declared_type}" is not valid JSON text: {exc}.'
        ) from exc


def _ensure_serialisable(declared_type: str, value: object) -> None:
    # Values must round-trip through JSON storage unchanged.
    try:
        json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise TypeValidationError(
            f'Value for type "{declared_type}" is not JSON-serialisable: {exc}.'
        ) from exc


def _coerce_string(value: object) -> str:
    if not isinstance(value, str):
        raise _mismatch("string", value, "a string")
    return value


def _coerce_number(value: object) -> int | float:
    # bool is a subclass of int; it is never a number here.
    if isinstance(value, bool):
        raise _mismatch("number", value, "numeric")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise _mismatch("number", value, "a finite number")
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            raise _mismatch("number", value, "numeric") from None
        if not math.isfinite(number):
            raise _mismatch("number", value, "a finite number")
        return number
    raise _mismatch("number", value, "numeric")


def _coerce_boolean(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise _mismatch("boolean", value, 'a boolean or the text "true"/"false"')


def _coerce_json(value: object) -> dict | list:
    if isinstance(value, str):
        value = _parse_json_text("json", value)
    if not isinstance(value, (dict, list)):
        raise _mismatch("json", value, "a JSON object or array")
    _ensure_serialisable("json", value)
    return value


def _coerce_array(value: object) -> list:
    if isinstance(value, str):
        value = _parse_json_text("array", value)
    if not isinstance(value, list):
        raise _mismatch("array", value, "an array")
    _ensure_serialisable("array", value)
    return value


_COERCERS = {
    "string": _coerce_string,
    "number": _coerce_number,
    "boolean": _coerce_boolean,
    "json": _coerce_json,
    "array": _coerce_array,
}


def coerce_value(declared_type: str, value: object) -> object:
    """
    Validate *value* against *declared_type* and return its stored form.

    Text input is accepted where it unambiguously encodes the type
    (``"42"`` for ``number``, ``"true"`` for ``boolean``, JSON text for
    ``json`` / ``array``) and is returned as the parsed structure, so that
    callers never re-parse stored values.

    Raises:
        TypeValidationError: If the value cannot represent the type, or is
            ``None`` (configuration values are never null).
        InvalidTypeError: If *declared_type* itself is unknown.
    """
    coercer = _COERCERS.get(declared_type)
    if coercer is None:
        raise InvalidTypeError(
            f'"{declared_type}" is not a recognised type; expected one of {list(VALID_TYPES)}.'
        )
    if value is None:
        raise TypeValidationError("Configuration values cannot be null.")
    return coercer(value)


# ---------------------------------------------------------------------------
# Key definition validation
# ---------------------------------------------------------------------------

class KeyDefinitionValidator:
    """
    Stateless validator for a proposed key definition.

    Like the rest of the engine's validators it collects **all** problems
    before raising so that administrative tooling can show one complete
    report.

    Usage::

        KeyDefinitionValidator.validate({
            "key": "ui.theme.primaryColor",
            "declared_type": "string",
            "allowed_scope_dimensions": ["persona"],
            "default_value": "#000000",
        })
    """

    @staticmethod
    def validate(data: dict) -> None:
        """
        Validate the fields of *data* that are present.

        Raises:
            InvalidTypeError: If ``declared_type`` is not recognised (the
                exception's ``errors`` lists every other problem too).
            ValidationError: For any other problem, with ``errors`` listing
                each as ``{"field", "code", "message"}``.
        """
        errors: list[dict] = []

        # ── Rule 1: key syntax ───────────────────────────────────────────
        if "key" in data:
            key = data["key"]
            if not isinstance(key, str) or not _KEY_RE.match(key):
                errors.append({
                    "field": "key",
                    "code": "invalid_key",
                    "message": (
                        "Key must be 1-255 characters of letters, digits, "
                        "dots, dashes and underscores."
                    ),
                })

        # ── Rule 2: declared type ────────────────────────────────────────
        declared_type = data.get("declared_type")
        type_valid = declared_type in VALID_TYPES
        if "declared_type" in data and not type_valid:
            errors.append({
                "field": "declared_type",
                "code": "invalid_type",
                "message": (
                    f'"declared_type" must be one of {list(VALID_TYPES)}; '
                    f'got "{declared_type}".'
                ),
            })

        # ── Rule 3: scope dimensions ─────────────────────────────────────
        dimensions = data.get("allowed_scope_dimensions")
        if dimensions is not None:
            if (
                not isinstance(dimensions, (list, tuple, set, frozenset))
                or not all(isinstance(dimension, str) for dimension in dimensions)
            ):
                errors.append({
                    "field": "allowed_scope_dimensions",
                    "code": "invalid_dimensions",
                    "message": '"allowed_scope_dimensions" must be a list of dimension names.',
                })
            else:
                unknown = sorted(set(dimensions) - set(VALID_DIMENSIONS))
                if unknown:
                    errors.append({
                        "field": "allowed_scope_dimensions",
                        "code": "invalid_dimensions",
                        "message": (
                            f"Unknown scope dimension(s): {unknown}. "
                            f"Allowed: {list(VALID_DIMENSIONS)}."
                        ),
                    })

        # ── Rule 4: default must match declared type ─────────────────────
        default_value = data.get("default_value")
        if default_value is not None and type_valid:
            try:
                coerce_value(declared_type, default_value)
            except TypeValidationError as exc:
                errors.append({
                    "field": "default_value",
                    "code": "type_mismatch",
                    "message": exc.detail,
                })

        if not errors:
            return
        if any(err["code"] == "invalid_type" for err in errors):
            raise InvalidTypeError(
                f'"{declared_type}" is not a recognised type.', errors=errors
            )
        raise ValidationError("Key definition failed validation.", errors=errors)
