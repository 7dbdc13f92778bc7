"""
services.py — Wires the engine's components together.

One ``ServiceContainer`` per process, built from ``Settings`` at startup:

    store ──┬── AlertDeduplicator ──┐
            ├── NotificationDispatcher ── push provider
            │                       │
            ├── AlertService ◄──────┘
            ├── IncidentNotifier
            ├── OnboardingService
            └── AggregationOrchestrator ── ScheduledJobRunner

API routes receive the container through ``Depends(get_services)``;
tests override that dependency with a container built on an in-memory
store and a simulated push provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from crowdwatch.app.accounts.onboarding import OnboardingService
from crowdwatch.app.aggregation.orchestrator import AggregationOrchestrator
from crowdwatch.app.aggregation.scheduler import ScheduledJobRunner
from crowdwatch.app.alerts.alert_service import AlertService
from crowdwatch.app.alerts.channels import PushBroadcaster, build_push_broadcaster
from crowdwatch.app.alerts.deduplicator import AlertDeduplicator
from crowdwatch.app.alerts.dispatcher import NotificationDispatcher
from crowdwatch.app.alerts.incidents import IncidentNotifier
from crowdwatch.app.core.thresholds import EngineConfig
from crowdwatch.app.store.base import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    config: EngineConfig
    store: DocumentStore
    push: PushBroadcaster
    deduplicator: AlertDeduplicator
    dispatcher: NotificationDispatcher
    alerts: AlertService
    incidents: IncidentNotifier
    onboarding: OnboardingService
    orchestrator: AggregationOrchestrator
    scheduler: ScheduledJobRunner

    async def start(self, *, run_scheduler: bool = True) -> None:
        initialise = getattr(self.store, "initialise", None)
        if initialise is not None:
            await initialise()
        if run_scheduler:
            await self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.push.close()
        await self.store.close()


def build_store(settings) -> DocumentStore:
    """Store selected by ``STORE_BACKEND``."""
    if settings.STORE_BACKEND.lower() == "memory":
        from crowdwatch.app.store.memory import InMemoryDocumentStore

        return InMemoryDocumentStore()

    from crowdwatch.app.core.database import create_engine
    from crowdwatch.app.store.sql import SqlDocumentStore

    return SqlDocumentStore(create_engine(settings.DATABASE_URL))


def build_services(
    settings,
    *,
    store: Optional[DocumentStore] = None,
    push: Optional[PushBroadcaster] = None,
    config: Optional[EngineConfig] = None,
) -> ServiceContainer:
    """Assemble every component from ``settings``; collaborators may be injected."""
    config = config or EngineConfig.from_settings(settings)
    store = store or build_store(settings)
    push = push or build_push_broadcaster(settings)

    claim = release = None
    if settings.ALERT_DEDUP_DISTRIBUTED:
        from crowdwatch.app.core.cache import cache_claim, cache_release

        claim, release = cache_claim, cache_release

    deduplicator = AlertDeduplicator(store, config.dedup_window, claim=claim, release=release)
    dispatcher = NotificationDispatcher(
        store, push,
        send_timeout=config.push_send_timeout,
        click_action=config.click_action,
    )
    alerts = AlertService(store, deduplicator, dispatcher, config)
    orchestrator = AggregationOrchestrator(store, alerts, config)

    scheduler = ScheduledJobRunner()
    scheduler.add_job("aggregation", settings.AGGREGATION_INTERVAL_SECONDS, orchestrator.run_cycle)
    scheduler.add_job(
        "alert_expiry", settings.EXPIRY_SWEEP_INTERVAL_SECONDS, alerts.deactivate_expired_alerts,
    )

    logger.info(
        "Services built: store=%s push=%s basis=%s",
        type(store).__name__, push.name, config.alert_basis.value,
    )
    return ServiceContainer(
        config=config,
        store=store,
        push=push,
        deduplicator=deduplicator,
        dispatcher=dispatcher,
        alerts=alerts,
        incidents=IncidentNotifier(store, dispatcher, config),
        onboarding=OnboardingService(store, push, config),
        orchestrator=orchestrator,
        scheduler=scheduler,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Global Instance
# ═══════════════════════════════════════════════════════════════════════════

_services: Optional[ServiceContainer] = None


def set_services(container: Optional[ServiceContainer]) -> None:
    global _services
    _services = container


def get_services() -> ServiceContainer:
    """Get or create the process-wide container."""
    global _services
    if _services is None:
        from crowdwatch.app.core.config import settings

        _services = build_services(settings)
    return _services
