"""
evaluator.py — Crowd density and occupancy evaluation.

Two different measures come out of one zone count:

    density    = count / area        people per m²   → DensityReading.status
    occupancy  = count / capacity    fraction full   → alerting (occupancy basis)

They are never mixed. Which one decides whether an alert is attempted is
a deployment choice (``EngineConfig.alert_basis``).

═══════════════════════════════════════════════════════════════════════════
AREA FALLBACK
═══════════════════════════════════════════════════════════════════════════

Zones with a degenerate or missing boundary have area ≈ 0, which would
make density infinite. Below ``min_zone_area_sqm`` the area is replaced
by a capacity-derived estimate:

    area = capacity × area_per_person_sqm      (default 0.5 m² / person)

═══════════════════════════════════════════════════════════════════════════
STATUS BANDS
═══════════════════════════════════════════════════════════════════════════

Lower edges are inclusive and there is no hysteresis, so the status is a
pure, monotonic function of density.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from crowdwatch.app.alerts.models import AlertSeverity, DensityStatus
from crowdwatch.app.core.thresholds import (
    AlertBasis,
    DensityAlertThresholds,
    DensityBreakpoints,
    EngineConfig,
    OccupancyThresholds,
)


@dataclass(frozen=True)
class DensityEvaluation:
    """Everything computed for one zone in one cycle."""
    count: int
    capacity: int
    area_used: float
    density: float
    status: DensityStatus
    occupancy: float


def density_status(value: float, breakpoints: DensityBreakpoints) -> DensityStatus:
    if value >= breakpoints.critical:
        return DensityStatus.CRITICAL
    if value >= breakpoints.high:
        return DensityStatus.HIGH
    if value >= breakpoints.moderate:
        return DensityStatus.MODERATE
    return DensityStatus.SAFE


def effective_area(area: float, capacity: int, config: EngineConfig) -> float:
    """``area``, or the capacity-derived estimate when it is below the floor."""
    if area < config.min_zone_area_sqm:
        return max(capacity, 1) * config.area_per_person_sqm
    return area


def evaluate(count: int, area: float, capacity: int, config: EngineConfig) -> DensityEvaluation:
    """
    Compute density, status and occupancy for one zone.

    Parameters
    ----------
    count : int
        People classified into the zone this cycle.
    area : float
        Polygon area in m² (0 when the boundary is unusable).
    capacity : int
        Zone capacity; values below 1 are treated as 1.
    config : EngineConfig

    Returns
    -------
    DensityEvaluation
    """
    capacity = max(int(capacity), 1)
    area_used = effective_area(area, capacity, config)
    density = count / area_used if area_used > 0 else 0.0
    return DensityEvaluation(
        count=count,
        capacity=capacity,
        area_used=area_used,
        density=density,
        status=density_status(density, config.density_breakpoints),
        occupancy=count / capacity,
    )


def occupancy_severity(ratio: float, thresholds: OccupancyThresholds) -> Optional[AlertSeverity]:
    if ratio >= thresholds.critical:
        return AlertSeverity.CRITICAL
    if ratio >= thresholds.high:
        return AlertSeverity.WARNING
    if ratio >= thresholds.warning:
        return AlertSeverity.INFO
    return None


def evaluate_occupancy(
    count: int,
    capacity: int,
    thresholds: OccupancyThresholds,
) -> Tuple[float, Optional[AlertSeverity]]:
    """Occupancy ratio and the alert severity it earns (None below warning)."""
    ratio = count / max(int(capacity), 1)
    return ratio, occupancy_severity(ratio, thresholds)


def density_severity(value: float, thresholds: DensityAlertThresholds) -> Optional[AlertSeverity]:
    if value >= thresholds.critical:
        return AlertSeverity.CRITICAL
    if value >= thresholds.warning:
        return AlertSeverity.WARNING
    return None


def alert_severity(evaluation: DensityEvaluation, config: EngineConfig) -> Optional[AlertSeverity]:
    """
    Severity an alert would carry under the configured basis.

    ``None`` means the zone is below every alert threshold and alerting
    is not attempted at all.
    """
    if config.alert_basis == AlertBasis.DENSITY:
        return density_severity(evaluation.density, config.density_alert_thresholds)
    return occupancy_severity(evaluation.occupancy, config.occupancy_thresholds)
