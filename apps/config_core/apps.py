"""
apps.config_core.apps
"""
from django.apps import AppConfig


class ConfigCoreConfig(AppConfig):
    name = "apps.config_core"
    label = "config_core"
    verbose_name = "Config Core"

    def ready(self) -> None:
        # One engine per process; views reach it through get_engine().
        from apps.config_core.services.engine import configure_engine  # noqa: PLC0415

        configure_engine()
