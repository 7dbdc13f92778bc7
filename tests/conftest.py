"""
Shared fixtures: an in-memory store, a simulated push provider and a
fully wired service container on top of them.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from crowdwatch.app.alerts.channels.push import SimulatedPushBroadcaster
from crowdwatch.app.core.config import Settings
from crowdwatch.app.core.thresholds import EngineConfig
from crowdwatch.app.services import build_services
from crowdwatch.app.store.memory import InMemoryDocumentStore

NOW = datetime(2026, 6, 14, 18, 30, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def push() -> SimulatedPushBroadcaster:
    return SimulatedPushBroadcaster()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        STORE_BACKEND="memory",
        PUSH_PROVIDER="simulation",
        ALERT_DEDUP_DISTRIBUTED=False,
        SCHEDULER_ENABLED=False,
    )


@pytest.fixture
def services(test_settings, store, push, config):
    return build_services(test_settings, store=store, push=push, config=config)
