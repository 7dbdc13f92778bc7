"""
alert_factory.py — Builds alert records and notification text.

Pure functions: no I/O, no clock reads (``now`` is always passed in).

═══════════════════════════════════════════════════════════════════════════
CONGESTION ALERT MESSAGES
═══════════════════════════════════════════════════════════════════════════

    Occupancy basis (percentage of capacity, rounded):

        critical   CRITICAL: <zone> is at <pct>% capacity! Immediate crowd
                   control required.
        warning    Warning: <zone> is experiencing high congestion (<pct>%
                   capacity). Consider alternate routes.
        info       <zone> is filling up (<pct>% capacity). Please be aware of
                   crowd levels.

    Density basis (people per m², one decimal):

        critical   CRITICAL: <zone> density is <d> p/m2. Immediate crowd
                   control required.
        warning    Warning: <zone> density is <d> p/m2. Consider redirecting
                   foot traffic.

═══════════════════════════════════════════════════════════════════════════
INCIDENT ROUTING
═══════════════════════════════════════════════════════════════════════════

    Always                                 security, organizer
    medical, or severity high / critical   + emergency, incidents_critical
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, List, Optional

from crowdwatch.app.alerts.models import (
    ALERT_TYPE_CONGESTION,
    AlertRecord,
    AlertSeverity,
    DensityReading,
    SYSTEM_CREATOR,
    SYSTEM_CREATOR_NAME,
)
from crowdwatch.app.core.thresholds import (
    AlertBasis,
    EngineConfig,
    ROLE_EMERGENCY,
    ROLE_ORGANIZER,
    ROLE_SECURITY,
)


# ═══════════════════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════════════════

_OCCUPANCY_MESSAGES: Dict[str, str] = {
    "critical": "CRITICAL: {zone} is at {pct}% capacity! Immediate crowd control required.",
    "warning": (
        "Warning: {zone} is experiencing high congestion ({pct}% capacity). "
        "Consider alternate routes."
    ),
    "info": "{zone} is filling up ({pct}% capacity). Please be aware of crowd levels.",
}

_DENSITY_MESSAGES: Dict[str, str] = {
    "critical": "CRITICAL: {zone} density is {density} p/m2. Immediate crowd control required.",
    "warning": "Warning: {zone} density is {density} p/m2. Consider redirecting foot traffic.",
}

_PUSH_TITLES: Dict[str, str] = {
    "critical": "CRITICAL ALERT",
    "warning": "Warning Alert",
}

INCIDENT_LABELS: Dict[str, str] = {
    "medical": "Medical Emergency",
    "security": "Security Incident",
    "overcrowding": "Overcrowding Alert",
    "facility": "Facility Issue",
    "other": "Incident Report",
}

INCIDENT_STATUS_MESSAGES: Dict[str, str] = {
    "dispatched": "Help is on the way",
    "on_site": "Responders have arrived",
    "resolved": "Incident has been resolved",
}

INCIDENT_UPDATE_TOPICS: List[str] = [ROLE_SECURITY, ROLE_EMERGENCY]
INCIDENTS_CRITICAL_TOPIC = "incidents_critical"


def _half_up(value: float) -> int:
    """Round half away from zero for non-negative values (85.5 → 86)."""
    return int(math.floor(value + 0.5))


# ═══════════════════════════════════════════════════════════════════════════
# Congestion Alerts
# ═══════════════════════════════════════════════════════════════════════════

def density_alert_message(
    zone_name: str,
    severity: str,
    basis: AlertBasis,
    *,
    density: float,
    occupancy: float,
) -> str:
    if basis == AlertBasis.DENSITY:
        template = _DENSITY_MESSAGES.get(severity, _DENSITY_MESSAGES["warning"])
        return template.format(zone=zone_name, density=f"{density:.1f}")
    template = _OCCUPANCY_MESSAGES.get(severity, _OCCUPANCY_MESSAGES["info"])
    return template.format(zone=zone_name, pct=_half_up(occupancy * 100))


def build_density_alert(
    reading: DensityReading,
    severity: AlertSeverity,
    basis: AlertBasis,
    config: EngineConfig,
    now: datetime,
) -> AlertRecord:
    """
    Create the congestion AlertRecord for a zone reading.

    Parameters
    ----------
    reading : DensityReading
        The reading that crossed an alert threshold.
    severity : AlertSeverity
        Severity already decided by the evaluator.
    basis : AlertBasis
        Selects message wording.
    config : EngineConfig
        Provides the role table and alert lifetime.
    now : datetime
        Creation time; expiry is ``now + config.alert_ttl``.

    Returns
    -------
    AlertRecord
    """
    message = density_alert_message(
        reading.zone_name,
        severity.value,
        basis,
        density=reading.density_per_sq_meter,
        occupancy=reading.occupancy,
    )
    return AlertRecord(
        type=ALERT_TYPE_CONGESTION,
        message=message,
        severity=severity.value,
        target_roles=list(config.roles_for_severity(severity.value)),
        event_id=reading.event_id,
        zone_id=reading.zone_id,
        zone_name=reading.zone_name,
        is_active=True,
        created_by=SYSTEM_CREATOR,
        created_by_name=SYSTEM_CREATOR_NAME,
        created_at=now,
        expires_at=now + config.alert_ttl,
    )


def alert_push_title(severity: Optional[str]) -> str:
    return _PUSH_TITLES.get(severity or "", "Alert")


# ═══════════════════════════════════════════════════════════════════════════
# Incidents
# ═══════════════════════════════════════════════════════════════════════════

def incident_title(incident_type: Optional[str], severity: Optional[str]) -> str:
    """Human title for an incident; critical ones get a suffix."""
    title = INCIDENT_LABELS.get(incident_type or "", "Incident")
    if severity == "critical":
        title += " - CRITICAL"
    return title


def incident_body(description: Optional[str], limit: int = 120) -> str:
    """``description`` cut to ``limit`` characters, with "..." when cut."""
    if not description:
        return ""
    if len(description) <= limit:
        return description
    return description[:limit] + "..."


def is_urgent_incident(incident_type: Optional[str], severity: Optional[str]) -> bool:
    return incident_type == "medical" or severity in ("high", "critical")


def incident_topics(incident_type: Optional[str], severity: Optional[str]) -> List[str]:
    topics = [ROLE_SECURITY, ROLE_ORGANIZER]
    if is_urgent_incident(incident_type, severity):
        topics += [ROLE_EMERGENCY, INCIDENTS_CRITICAL_TOPIC]
    return topics


def incident_update_message(status: Optional[str]) -> Optional[str]:
    """Notification text for a status transition, or None if not notified."""
    return INCIDENT_STATUS_MESSAGES.get(status or "")


def incident_update_title(status: str) -> Optional[str]:
    message = incident_update_message(status)
    if message is None:
        return None
    return f"Incident Update: {message}"


def incident_update_body(incident_type: Optional[str], status: str) -> str:
    return f"{incident_type or 'other'} incident status changed to {status}"
