"""
Production settings – security-hardened overrides over base settings.
All sensitive values come from environment variables.

Run more than one worker process only with ``CONFIG_CACHE_BACKEND`` pointing
at a shared cache (Redis, Memcached): invalidation tokens live in the cache,
so a per-process LocMem cache would let workers serve each other's stale
values until the soft TTL elapses.
"""
from decouple import Csv, config

from .base import *  # noqa: F401, F403

DEBUG = False

ALLOWED_HOSTS = config("ALLOWED_HOSTS", cast=Csv())

# ---------------------------------------------------------------------------
# HTTPS / security hardening
# ---------------------------------------------------------------------------
SECURE_SSL_REDIRECT = config("SECURE_SSL_REDIRECT", default=True, cast=bool)
SECURE_HSTS_SECONDS = 31536000
SECURE_HSTS_INCLUDE_SUBDOMAINS = True
SECURE_HSTS_PRELOAD = True
SECURE_CONTENT_TYPE_NOSNIFF = True
SESSION_COOKIE_SECURE = True
SESSION_COOKIE_HTTPONLY = True
CSRF_COOKIE_SECURE = True
X_FRAME_OPTIONS = "DENY"

# ---------------------------------------------------------------------------
# Writes are attributed to the authenticated user
# ---------------------------------------------------------------------------
REST_FRAMEWORK["DEFAULT_PERMISSION_CLASSES"] = [  # noqa: F405
    "rest_framework.permissions.IsAuthenticated",
]

LOGGING["root"]["level"] = "INFO"  # noqa: F405
