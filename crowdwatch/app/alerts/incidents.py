"""
incidents.py — Notifications for incidents created and updated elsewhere.

Incidents are owned by another part of the platform; this module only
reacts to their change events.

    created    title / body / topics from alert_factory; records for the
               topics that are also user roles
    updated    only when the status changed to dispatched, on_site or
               resolved; sent to security and emergency
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from crowdwatch.app.alerts.alert_factory import (
    INCIDENT_UPDATE_TOPICS,
    incident_body,
    incident_title,
    incident_topics,
    incident_update_body,
    incident_update_title,
)
from crowdwatch.app.alerts.dispatcher import NotificationDispatcher
from crowdwatch.app.alerts.models import DispatchReport, Incident
from crowdwatch.app.core.errors import NotFoundError
from crowdwatch.app.core.thresholds import KNOWN_ROLES, EngineConfig
from crowdwatch.app.store.base import INCIDENTS, DocumentStore

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE_INCIDENT = "incident"


class IncidentNotifier:
    """Turns incident change events into dispatches."""

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        config: EngineConfig,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._config = config

    async def _load(self, incident_id: str) -> Incident:
        doc = await self._store.get(INCIDENTS, incident_id)
        if doc is None:
            raise NotFoundError("Incident", id=incident_id)
        return Incident.from_document(doc.id, doc.data)

    async def on_incident_created(self, incident_id: str) -> DispatchReport:
        incident = await self._load(incident_id)
        topics = incident_topics(incident.type, incident.severity)
        data: Dict[str, str] = {
            "type": NOTIFICATION_TYPE_INCIDENT,
            "incidentId": incident.id,
            "incidentType": incident.type,
            "severity": incident.severity,
        }
        report = await self._dispatcher.dispatch(
            reference_id=incident.id,
            notification_type=NOTIFICATION_TYPE_INCIDENT,
            title=incident_title(incident.type, incident.severity),
            body=incident_body(incident.description, self._config.incident_body_max_chars),
            topics=topics,
            record_roles=[t for t in topics if t in KNOWN_ROLES],
            data=data,
            severity=incident.severity,
            channel="incidents",
        )
        logger.info(
            "Incident %s (%s/%s) sent to %s",
            incident.id, incident.type, incident.severity, report.delivered_topics,
            extra={"incident_id": incident.id},
        )
        return report

    async def on_incident_updated(
        self,
        incident_id: str,
        previous_status: Optional[str],
    ) -> Optional[DispatchReport]:
        """
        Notify responders of a status transition.

        Returns None when the status did not change or the new status is
        not one that is announced.
        """
        incident = await self._load(incident_id)
        status = incident.status
        if not status or status == previous_status:
            return None

        title = incident_update_title(status)
        if title is None:
            logger.debug("Incident %s status %s is not announced", incident_id, status)
            return None

        return await self._dispatcher.dispatch(
            reference_id=incident.id,
            notification_type=NOTIFICATION_TYPE_INCIDENT,
            title=title,
            body=incident_update_body(incident.type, status),
            topics=INCIDENT_UPDATE_TOPICS,
            record_roles=INCIDENT_UPDATE_TOPICS,
            data={
                "type": "incident_update",
                "incidentId": incident.id,
                "status": status,
            },
            channel="incidents",
        )
