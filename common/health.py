"""
common.health
~~~~~~~~~~~~~
GET /health/ – lightweight liveness + readiness probe.

Returns:
    200  {"status": "ok", "db": "ok", "cache": "ok"}   – everything healthy
    503  {"status": "degraded", "db": "error: <msg>", ...} – DB unreachable

The value cache is reported but never makes the service unhealthy on its
own: every cached value can be recomputed from the database.
"""
import structlog
from django.core.cache import caches
from django.db import connection, OperationalError
from django.http import JsonResponse

from common.conf import engine_setting

logger = structlog.get_logger(__name__)

_PROBE_KEY = "config-engine-health-probe"


def _cache_status() -> str:
    try:
        cache = caches[engine_setting("CACHE_ALIAS")]
        cache.set(_PROBE_KEY, "ok", 5)
        return "ok" if cache.get(_PROBE_KEY) == "ok" else "error: probe value lost"
    except Exception as exc:  # noqa: BLE001 – any backend failure is reported, not raised
        logger.warning("health_check_cache_failure", error=str(exc))
        return f"error: {exc}"


def health_check(request):
    """Return service health including database and cache status."""
    db_status: str
    http_status: int

    try:
        connection.ensure_connection()
        db_status = "ok"
        http_status = 200
    except OperationalError as exc:
        db_status = f"error: {exc}"
        http_status = 503
        logger.error("health_check_db_failure", error=str(exc))

    payload = {
        "status": "ok" if http_status == 200 else "degraded",
        "db": db_status,
        "cache": _cache_status(),
    }
    return JsonResponse(payload, status=http_status)
