"""
alert_service.py — Alert lifecycle: admission, persistence, dispatch, expiry.

This is the coordinator that:
    1. Receives a zone reading and its evaluation from the aggregation cycle
    2. Decides the alert severity under the configured basis
    3. Gates the alert through the deduplicator
    4. Persists the alert record
    5. Fans it out to role topics and per-user notification records
    6. Relays operator-created alerts the same way
    7. Deactivates alerts whose lifetime has passed

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  Aggregation cycle  │
    │  zone evaluated     │
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Severity        │  occupancy or density basis
    │                     │  None → stop, nothing is queried
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Dedup gate      │  per-zone lock held from here …
    │                     │  active alert in last 30 min → stop
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Persist alert   │  … to here
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Dispatch        │  topics (concurrent, best effort)
    │                     │  then per-user records
    └─────────────────────┘

Alerts are always persisted before any notification for them is sent.

═══════════════════════════════════════════════════════════════════════════
OPERATOR ALERTS
═══════════════════════════════════════════════════════════════════════════

Alerts written by people (not ``createdBy == "system"``) arrive through
the alert-created trigger. System alerts are skipped there because the
cycle already dispatched them. An alert without target roles has no one
to notify and is skipped with a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from crowdwatch.app.alerts.alert_factory import alert_push_title, build_density_alert
from crowdwatch.app.alerts.deduplicator import AlertDeduplicator
from crowdwatch.app.alerts.dispatcher import NotificationDispatcher
from crowdwatch.app.alerts.models import (
    ALERT_TYPE_CONGESTION,
    AlertRecord,
    DensityReading,
    DispatchReport,
    SYSTEM_CREATOR,
)
from crowdwatch.app.core.errors import NotFoundError
from crowdwatch.app.core.thresholds import EngineConfig
from crowdwatch.app.density.evaluator import DensityEvaluation, alert_severity
from crowdwatch.app.store.base import ALERTS, DEFAULT_BATCH_SIZE, DocumentStore, chunked, where

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE_ALERT = "alert"


@dataclass
class RaisedAlert:
    """An alert admitted by the dedup gate, with its fan-out result."""
    alert: AlertRecord
    report: DispatchReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert.id,
            "zone_id": self.alert.zone_id,
            "severity": self.alert.severity,
            "message": self.alert.message,
            "dispatch": self.report.to_dict(),
        }


def _alert_data(alert: AlertRecord) -> Dict[str, str]:
    data = {"type": NOTIFICATION_TYPE_ALERT, "alertId": alert.id, "severity": alert.severity}
    if alert.zone_id:
        data["zoneId"] = alert.zone_id
    if alert.event_id:
        data["eventId"] = alert.event_id
    return data


class AlertService:
    """
    Usage:
        service = AlertService(store, dedup, dispatcher, config)
        raised = await service.handle_density_reading(reading, evaluation, now)
    """

    def __init__(
        self,
        store: DocumentStore,
        deduplicator: AlertDeduplicator,
        dispatcher: NotificationDispatcher,
        config: EngineConfig,
    ):
        self._store = store
        self._dedup = deduplicator
        self._dispatcher = dispatcher
        self._config = config

    async def _dispatch_alert(self, alert: AlertRecord, now: Optional[datetime] = None) -> DispatchReport:
        report = await self._dispatcher.dispatch(
            reference_id=alert.id,
            notification_type=NOTIFICATION_TYPE_ALERT,
            title=alert_push_title(alert.severity),
            body=alert.message,
            topics=alert.target_roles,
            record_roles=alert.target_roles,
            data=_alert_data(alert),
            severity=alert.severity,
            now=now,
        )
        if report.failed_topics:
            logger.warning(
                "Alert %s: push failed for topics %s",
                alert.id, report.failed_topics,
                extra={"alert_id": alert.id},
            )
        return report

    # ═══════════════════════════════════════════════════════════════════════
    # Congestion alerts from the aggregation cycle
    # ═══════════════════════════════════════════════════════════════════════

    async def handle_density_reading(
        self,
        reading: DensityReading,
        evaluation: DensityEvaluation,
        now: datetime,
    ) -> Optional[RaisedAlert]:
        """
        Raise, persist and dispatch a congestion alert if one is due.

        Returns
        -------
        RaisedAlert or None
            None when the zone is below every threshold or a recent alert
            for the zone is still active.
        """
        severity = alert_severity(evaluation, self._config)
        if severity is None:
            return None

        zone_id, event_id = reading.zone_id, reading.event_id
        async with self._dedup.guard(zone_id, event_id, ALERT_TYPE_CONGESTION):
            if not await self._dedup.should_create(zone_id, event_id, ALERT_TYPE_CONGESTION, now):
                return None

            alert = build_density_alert(reading, severity, self._config.alert_basis, self._config, now)
            try:
                await self._store.add(ALERTS, alert.to_dict(), doc_id=alert.id)
            except Exception:
                await self._dedup.release(zone_id, event_id, ALERT_TYPE_CONGESTION)
                raise

        logger.info(
            "Alert %s created: %s [%s]",
            alert.id, alert.message, alert.severity,
            extra={"alert_id": alert.id, "zone_id": zone_id, "event_id": event_id,
                   "severity": alert.severity},
        )
        report = await self._dispatch_alert(alert, now)
        return RaisedAlert(alert=alert, report=report)

    # ═══════════════════════════════════════════════════════════════════════
    # Operator-created alerts
    # ═══════════════════════════════════════════════════════════════════════

    async def on_alert_created(self, alert_id: str) -> Optional[DispatchReport]:
        """
        Fan out an alert created outside the aggregation cycle.

        Raises
        ------
        NotFoundError
            If the alert document does not exist.
        """
        doc = await self._store.get(ALERTS, alert_id)
        if doc is None:
            raise NotFoundError("Alert", id=alert_id)
        alert = AlertRecord.from_document(doc.id, doc.data)

        if alert.created_by == SYSTEM_CREATOR:
            logger.debug("Alert %s is system-generated; already dispatched", alert_id)
            return None
        if not alert.target_roles:
            logger.warning(
                "Alert %s has no target roles; nothing to notify", alert_id,
                extra={"alert_id": alert_id},
            )
            return None

        return await self._dispatch_alert(alert)

    # ═══════════════════════════════════════════════════════════════════════
    # Expiry
    # ═══════════════════════════════════════════════════════════════════════

    async def deactivate_expired_alerts(self, now: Optional[datetime] = None) -> int:
        """Set ``isActive`` to False on active alerts past ``expiresAt``."""
        now = now or datetime.now(timezone.utc)
        expired = await self._store.query(
            ALERTS,
            [where("isActive", "==", True), where("expiresAt", "<=", now)],
        )
        if not expired:
            return 0

        updated = 0
        for page in chunked(expired, DEFAULT_BATCH_SIZE):
            batch = self._store.batch()
            for doc in page:
                batch.update(ALERTS, doc.id, {"isActive": False})
            updated += await batch.commit()

        logger.info("Deactivated %d expired alerts", updated)
        return updated
