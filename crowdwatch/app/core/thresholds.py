"""
thresholds.py — Immutable engine configuration injected at startup.

Every breakpoint, role table and time horizon the density / alerting /
dispatch components consume lives in one frozen ``EngineConfig``.
Components never read ``settings`` directly; they receive an
``EngineConfig`` so a deployment (or a test) can tune thresholds per
event without touching code.

═══════════════════════════════════════════════════════════════════════════
DENSITY STATUS BANDS (people / m²)
═══════════════════════════════════════════════════════════════════════════

    density < 1.6          safe
    1.6 ≤ density < 3.1    moderate
    3.1 ≤ density < 4.6    high
    4.6 ≤ density          critical

═══════════════════════════════════════════════════════════════════════════
ALERT BASIS
═══════════════════════════════════════════════════════════════════════════

Two distinct notions of "too crowded" can drive alerting:

    Basis       Measure                  info     warning   critical
    ─────────   ──────────────────────   ──────   ───────   ────────
    occupancy   count / capacity          ≥0.70    ≥0.85     ≥0.95
    density     count / area (p/m²)         —      ≥3.0      ≥4.5

The basis also selects which severity → role table applies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, Mapping, Tuple


class AlertBasis(str, Enum):
    """Which measure decides alert-worthiness."""
    OCCUPANCY = "occupancy"
    DENSITY = "density"


# ═══════════════════════════════════════════════════════════════════════════
# Role Tables
# ═══════════════════════════════════════════════════════════════════════════

ROLE_FAN = "fan"
ROLE_ORGANIZER = "organizer"
ROLE_SECURITY = "security"
ROLE_EMERGENCY = "emergency"

KNOWN_ROLES: Tuple[str, ...] = (ROLE_FAN, ROLE_ORGANIZER, ROLE_SECURITY, ROLE_EMERGENCY)

# Severity → roles notified, per alert basis
SEVERITY_ROLES: Dict[AlertBasis, Dict[str, Tuple[str, ...]]] = {
    AlertBasis.OCCUPANCY: {
        "critical": (ROLE_FAN, ROLE_ORGANIZER, ROLE_SECURITY, ROLE_EMERGENCY),
        "warning": (ROLE_FAN, ROLE_SECURITY, ROLE_ORGANIZER),
        "info": (ROLE_FAN,),
    },
    AlertBasis.DENSITY: {
        "critical": (ROLE_FAN, ROLE_ORGANIZER, ROLE_SECURITY, ROLE_EMERGENCY),
        "warning": (ROLE_ORGANIZER, ROLE_SECURITY),
    },
}

# Broadcast topics each role subscribes to, on top of its own role topic
ROLE_TOPICS: Dict[str, Tuple[str, ...]] = {
    ROLE_FAN: ("general_announcements",),
    ROLE_ORGANIZER: ("organizer", "general_announcements"),
    ROLE_SECURITY: ("security_alerts", "general_announcements"),
    ROLE_EMERGENCY: ("emergency_alerts", "security_alerts", "general_announcements"),
}


# ═══════════════════════════════════════════════════════════════════════════
# Threshold Groups
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DensityBreakpoints:
    """Lower edges of the moderate / high / critical status bands."""
    moderate: float = 1.6
    high: float = 3.1
    critical: float = 4.6

    def __post_init__(self) -> None:
        if not (0 <= self.moderate <= self.high <= self.critical):
            raise ValueError(
                "Density breakpoints must be ascending: "
                f"{self.moderate}, {self.high}, {self.critical}"
            )


@dataclass(frozen=True)
class OccupancyThresholds:
    """Fractions of capacity at which info / warning / critical alerts fire."""
    warning: float = 0.70
    high: float = 0.85
    critical: float = 0.95

    def __post_init__(self) -> None:
        if not (0 <= self.warning <= self.high <= self.critical):
            raise ValueError(
                "Occupancy thresholds must be ascending: "
                f"{self.warning}, {self.high}, {self.critical}"
            )


@dataclass(frozen=True)
class DensityAlertThresholds:
    """People / m² at which density-basis alerts fire."""
    warning: float = 3.0
    critical: float = 4.5


@dataclass(frozen=True)
class EngineConfig:
    """Everything the engine needs that a deployment may want to tune."""
    density_breakpoints: DensityBreakpoints = field(default_factory=DensityBreakpoints)
    occupancy_thresholds: OccupancyThresholds = field(default_factory=OccupancyThresholds)
    density_alert_thresholds: DensityAlertThresholds = field(
        default_factory=DensityAlertThresholds
    )
    alert_basis: AlertBasis = AlertBasis.OCCUPANCY
    severity_roles: Mapping[AlertBasis, Mapping[str, Tuple[str, ...]]] = field(
        default_factory=lambda: SEVERITY_ROLES
    )
    role_topics: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: ROLE_TOPICS)
    default_role: str = ROLE_FAN

    dedup_window: timedelta = timedelta(minutes=30)
    alert_ttl: timedelta = timedelta(hours=2)
    sample_lookback: timedelta = timedelta(seconds=30)
    sample_retention: timedelta = timedelta(minutes=5)

    min_zone_area_sqm: float = 1.0
    area_per_person_sqm: float = 0.5
    incident_body_max_chars: int = 120

    profile_poll_attempts: int = 3
    profile_poll_base_delay: float = 2.0
    push_send_timeout: float = 10.0
    click_action: str = "FLUTTER_NOTIFICATION_CLICK"

    def roles_for_severity(self, severity: str) -> Tuple[str, ...]:
        """Target roles for an alert severity under the active basis."""
        table = self.severity_roles.get(self.alert_basis, {})
        return tuple(table.get(severity, ()))

    @classmethod
    def from_settings(cls, settings) -> "EngineConfig":
        """Freeze the relevant ``Settings`` fields into an EngineConfig."""
        return cls(
            density_breakpoints=DensityBreakpoints(
                moderate=settings.DENSITY_MODERATE,
                high=settings.DENSITY_HIGH,
                critical=settings.DENSITY_CRITICAL,
            ),
            occupancy_thresholds=OccupancyThresholds(
                warning=settings.OCCUPANCY_WARNING,
                high=settings.OCCUPANCY_HIGH,
                critical=settings.OCCUPANCY_CRITICAL,
            ),
            density_alert_thresholds=DensityAlertThresholds(
                warning=settings.DENSITY_ALERT_WARNING,
                critical=settings.DENSITY_ALERT_CRITICAL,
            ),
            alert_basis=AlertBasis(settings.ALERT_BASIS.lower()),
            dedup_window=timedelta(minutes=settings.ALERT_DEDUP_WINDOW_MINUTES),
            alert_ttl=timedelta(hours=settings.ALERT_TTL_HOURS),
            sample_lookback=timedelta(seconds=settings.SAMPLE_LOOKBACK_SECONDS),
            sample_retention=timedelta(seconds=settings.SAMPLE_RETENTION_SECONDS),
            min_zone_area_sqm=settings.MIN_ZONE_AREA_SQM,
            area_per_person_sqm=settings.AREA_PER_PERSON_SQM,
            incident_body_max_chars=settings.INCIDENT_BODY_MAX_CHARS,
            profile_poll_attempts=settings.PROFILE_POLL_ATTEMPTS,
            profile_poll_base_delay=settings.PROFILE_POLL_BASE_DELAY_SECONDS,
            push_send_timeout=settings.PUSH_SEND_TIMEOUT_SECONDS,
            click_action=settings.PUSH_CLICK_ACTION,
        )
