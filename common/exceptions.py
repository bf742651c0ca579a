"""
common.exceptions
~~~~~~~~~~~~~~~~~
Centralised DRF exception handler and the engine's error taxonomy.

Every error the engine raises is an :class:`AppError` subclass so that the
HTTP layer can render it without knowing which component produced it.
"""
import structlog
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base application error.  Subclass to define domain-specific errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"
    default_detail: str = "An error occurred."

    def __init__(
        self,
        detail: str | None = None,
        code: str | None = None,
        errors: list[dict] | None = None,
    ) -> None:
        self.detail = detail or self.default_detail
        self.code = code or self.default_code
        self.errors: list[dict] = errors or []
        super().__init__(self.detail)

    def __str__(self) -> str:
        return self.detail


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"
    default_detail = "The requested resource was not found."


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"
    default_detail = "A resource conflict occurred."


class ValidationError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "validation_error"
    default_detail = "Validation failed."


# ---------------------------------------------------------------------------
# Key registry
# ---------------------------------------------------------------------------

class UnknownKeyError(NotFoundError):
    default_code = "unknown_key"
    default_detail = "The configuration key is not registered."


class DuplicateKeyError(ConflictError):
    default_code = "duplicate_key"
    default_detail = "The configuration key is already registered."


class InvalidTypeError(ValidationError):
    default_code = "invalid_type"
    default_detail = "The declared type is not recognised."


class KeyInUseError(ConflictError):
    default_code = "key_in_use"
    default_detail = "The configuration key is referenced by value history."


# ---------------------------------------------------------------------------
# Value store / write coordinator
# ---------------------------------------------------------------------------

class TypeValidationError(ValidationError):
    default_code = "type_mismatch"
    default_detail = "The value does not match the key's declared type."


class ScopeNotAllowedError(ValidationError):
    default_code = "scope_not_allowed"
    default_detail = "The scope dimension is not allowed for this key."


class RecordNotFoundError(NotFoundError):
    default_code = "record_not_found"
    default_detail = "The configuration value record was not found."


class VersionNotFoundError(NotFoundError):
    default_code = "version_not_found"
    default_detail = "The requested version does not exist for this scope."


class ConcurrencyConflictError(ConflictError):
    """Version assignment lost a race it could not resolve; safe to retry."""

    default_code = "concurrency_conflict"
    default_detail = "A concurrent write claimed the same version. Retry the request."


# ---------------------------------------------------------------------------
# Aggregate (pre-commit) validation failures
# ---------------------------------------------------------------------------

class BulkValidationError(ValidationError):
    """
    Raised when one or more items of a bulk write fail validation.

    ``errors`` lists every failing item as
    ``{"index", "config_key", "code", "message"}``; nothing was persisted.
    """

    default_code = "bulk_validation_error"
    default_detail = "Bulk operation failed validation; no items were applied."


class ImportValidationError(ValidationError):
    """Raised when an import document fails validation; nothing was persisted."""

    default_code = "import_validation_error"
    default_detail = "Import document failed validation; nothing was applied."


def custom_exception_handler(exc: Exception, context: dict) -> Response | None:
    """
    Global DRF exception handler.
    Converts AppError subclasses to JSON responses and delegates everything
    else to the default DRF handler so standard DRF exceptions still work.
    """
    if isinstance(exc, AppError):
        logger.warning(
            "app_error",
            code=exc.code,
            detail=exc.detail,
            status_code=exc.status_code,
            error_count=len(exc.errors),
        )
        body = {"code": exc.code, "detail": exc.detail}
        if exc.errors:
            body["errors"] = exc.errors
        return Response(body, status=exc.status_code)

    response = drf_exception_handler(exc, context)
    if response is not None:
        logger.warning(
            "drf_error",
            detail=response.data,
            status_code=response.status_code,
        )
    else:
        logger.exception("unhandled_exception", exc_info=exc)

    return response
