"""
common.conf
~~~~~~~~~~~
Access to the ``CONFIG_ENGINE`` settings block with built-in defaults, so
that a deployment only has to declare the values it changes.
"""
from django.conf import settings

DEFAULTS: dict[str, object] = {
    # Django cache alias holding resolved values and key definitions.
    "CACHE_ALIAS": "config_values",
    # Serve cached values younger than this without touching the database.
    "CACHE_SOFT_TTL": 300,
    # Never serve cached values older than this.
    "CACHE_HARD_TTL": 600,
    "REGISTRY_CACHE_TTL": 3600,
    # Attempts at version assignment before ConcurrencyConflictError.
    "WRITE_RETRY_LIMIT": 3,
    "HISTORY_LIMIT": 50,
}


def engine_setting(name: str):
    """Return ``settings.CONFIG_ENGINE[name]``, falling back to :data:`DEFAULTS`."""
    overrides = getattr(settings, "CONFIG_ENGINE", {})
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
