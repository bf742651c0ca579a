"""
Shared fixtures for the configuration engine test suite.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.core.cache import caches
from django.utils import timezone
from rest_framework.test import APIClient

from apps.config_core.services.engine import ConfigEngine, configure_engine
from apps.key_registry import services as registry
from apps.key_registry.models import ConfigKeyDefinition

START = datetime(2026, 1, 1, 12, 0, tzinfo=dt_timezone.utc)


class Clock:
    """Stand-in for ``django.utils.timezone.now`` that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    """Resolved values and key definitions never leak between tests."""
    caches["config_values"].clear()
    yield
    caches["config_values"].clear()


@pytest.fixture
def clock(monkeypatch) -> Clock:
    """Simulated clock starting at :data:`START`; model timestamps follow it too."""
    clock = Clock(START)
    monkeypatch.setattr(timezone, "now", clock)
    return clock


@pytest.fixture
def engine() -> ConfigEngine:
    """A fresh engine, also installed as the one the API views use."""
    return configure_engine(ConfigEngine())


@pytest.fixture
def api_client(engine) -> APIClient:
    """Return an unauthenticated DRF APIClient bound to the fresh engine."""
    return APIClient()


@pytest.fixture
def theme_key(db) -> ConfigKeyDefinition:
    """``ui.theme.primaryColor``: string, persona overrides, default ``#000000``."""
    return registry.define_key(
        key="ui.theme.primaryColor",
        declared_type="string",
        description="Primary brand colour of the UI theme.",
        category="ui",
        allowed_scope_dimensions=["persona"],
        default_value="#000000",
    )


@pytest.fixture
def timeout_key(db) -> ConfigKeyDefinition:
    """``agent.timeoutSeconds``: number, every dimension, no default."""
    return registry.define_key(
        key="agent.timeoutSeconds",
        declared_type="number",
        category="agents",
        allowed_scope_dimensions=["persona", "agent", "workflow"],
    )


@pytest.fixture
def flags_key(db) -> ConfigKeyDefinition:
    """``features.enabled``: array, global only, no default."""
    return registry.define_key(
        key="features.enabled",
        declared_type="array",
        category="features",
    )
