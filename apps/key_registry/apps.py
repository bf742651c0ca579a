"""
apps.key_registry.apps
"""
from django.apps import AppConfig


class KeyRegistryConfig(AppConfig):
    name = "apps.key_registry"
    label = "key_registry"
    verbose_name = "Key Registry"
