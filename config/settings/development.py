"""
Development settings – debug-friendly overrides with short cache lifetimes,
so edits made through the admin or the API show up almost immediately.
"""
from decouple import config

from .base import *  # noqa: F401, F403

DEBUG = config("DEBUG", default=True, cast=bool)

if DEBUG:
    ALLOWED_HOSTS = ["*"]

SECURE_SSL_REDIRECT = False
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False

CONFIG_ENGINE.update({  # noqa: F405
    "CACHE_SOFT_TTL": config("CONFIG_CACHE_SOFT_TTL", default=5, cast=int),
    "CACHE_HARD_TTL": config("CONFIG_CACHE_HARD_TTL", default=30, cast=int),
    "REGISTRY_CACHE_TTL": config("CONFIG_REGISTRY_CACHE_TTL", default=30, cast=int),
})

LOGGING["root"]["level"] = "DEBUG"  # noqa: F405

REST_FRAMEWORK["DEFAULT_RENDERER_CLASSES"] = [  # noqa: F405
    "rest_framework.renderers.JSONRenderer",
    "rest_framework.renderers.BrowsableAPIRenderer",
]
