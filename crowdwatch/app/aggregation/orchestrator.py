"""
orchestrator.py — One aggregation cycle, as an explicit state machine.

═══════════════════════════════════════════════════════════════════════════
CYCLE STATES
═══════════════════════════════════════════════════════════════════════════

    FETCH_SAMPLES ──(none)──────────────────────────────┐
         │                                               │
         ▼                                               │
    FETCH_ZONES ───(none, warning)──────────────────────┤
         │                                               │
         ▼                                               │
    CLASSIFY            samples → per-zone counts        │
         │                                               │
         ▼                                               │
    COMPUTE_DENSITY     area, density, status, occupancy │
         │                                               │
         ▼                                               │
    PERSIST             merge one reading per zone       │
         │                                               │
         ▼                                               │
    ALERT_AND_DISPATCH  severity → dedup → alert → push  │
         │                                               │
         ▼                                               ▼
    CLEANUP             delete samples past retention ◄──┘
         │
         ▼
    IDLE

Outcomes: NO_SAMPLES, NO_ZONES_CONFIGURED, COMPLETED.

A cycle carries no state into the next one. Any exception aborts the
rest of the cycle and is raised as AggregationError naming the state it
failed in; the scheduler logs it and the next tick recomputes every
reading from scratch.

Samples are read from a 30-second lookback window although the cycle
runs once a minute: a client pinging every ~15 s is seen once or twice,
never counted from a minute-old position.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from crowdwatch.app.alerts.alert_service import AlertService, RaisedAlert
from crowdwatch.app.alerts.models import DensityReading, LocationSample, Zone
from crowdwatch.app.core.errors import AggregationError
from crowdwatch.app.core.thresholds import EngineConfig
from crowdwatch.app.density.evaluator import DensityEvaluation, evaluate
from crowdwatch.app.spatial.zones import bucket_samples, polygon_area_sq_meters
from crowdwatch.app.store.base import (
    DEFAULT_BATCH_SIZE,
    DENSITY_READINGS,
    LOCATION_SAMPLES,
    ZONES,
    DocumentStore,
    chunked,
    where,
)

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    FETCH_SAMPLES = "fetch_samples"
    FETCH_ZONES = "fetch_zones"
    CLASSIFY = "classify"
    COMPUTE_DENSITY = "compute_density"
    PERSIST = "persist"
    ALERT_AND_DISPATCH = "alert_and_dispatch"
    CLEANUP = "cleanup"
    IDLE = "idle"


class CycleOutcome(str, Enum):
    NO_SAMPLES = "no_samples"
    NO_ZONES_CONFIGURED = "no_zones_configured"
    COMPLETED = "completed"


@dataclass
class CycleReport:
    """What one cycle did."""
    cycle_id: str
    started_at: datetime
    outcome: Optional[CycleOutcome] = None
    states: List[CycleState] = field(default_factory=list)
    samples: int = 0
    zones: int = 0
    readings: List[DensityReading] = field(default_factory=list)
    alerts: List[RaisedAlert] = field(default_factory=list)
    samples_deleted: int = 0
    duration_ms: float = 0.0

    @property
    def state(self) -> CycleState:
        """State this cycle is in; IDLE before the first transition."""
        return self.states[-1] if self.states else CycleState.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at.isoformat(),
            "outcome": self.outcome.value if self.outcome else None,
            "states": [s.value for s in self.states],
            "samples": self.samples,
            "zones": self.zones,
            "readings": [
                {**r.to_dict(), "lastUpdated": r.last_updated.isoformat()}
                for r in self.readings
            ],
            "alerts": [a.to_dict() for a in self.alerts],
            "samples_deleted": self.samples_deleted,
            "duration_ms": round(self.duration_ms, 1),
        }


class AggregationOrchestrator:
    """
    Drives aggregation cycles.

    Cycles may overlap (the scheduler tick and a manual trigger); each one
    tracks its own state on its CycleReport.

    Usage:
        orchestrator = AggregationOrchestrator(store, alert_service, config)
        report = await orchestrator.run_cycle()
    """

    def __init__(
        self,
        store: DocumentStore,
        alert_service: AlertService,
        config: EngineConfig,
    ):
        self._store = store
        self._alerts = alert_service
        self._config = config
        self.last_report: Optional[CycleReport] = None

    def _enter(self, report: CycleReport, state: CycleState) -> None:
        report.states.append(state)
        logger.debug("Cycle %s → %s", report.cycle_id, state.value,
                     extra={"cycle_id": report.cycle_id})

    # ─────────────────────────────────────────────────────────────────────
    # States
    # ─────────────────────────────────────────────────────────────────────

    async def _fetch_samples(self, now: datetime) -> List[LocationSample]:
        since = now - self._config.sample_lookback
        docs = await self._store.query(LOCATION_SAMPLES, [where("timestamp", ">=", since)])
        return [LocationSample.from_document(d.data) for d in docs]

    async def _fetch_zones(self) -> List[Zone]:
        docs = await self._store.query(ZONES)
        return [Zone.from_document(d.id, d.data) for d in docs]

    def _compute(
        self,
        zones: List[Zone],
        counts: Dict[str, int],
        now: datetime,
    ) -> List[tuple]:
        results = []
        for zone in zones:
            evaluation: DensityEvaluation = evaluate(
                counts.get(zone.id, 0),
                polygon_area_sq_meters(zone.boundary),
                zone.capacity,
                self._config,
            )
            reading = DensityReading(
                zone_id=zone.id,
                zone_name=zone.name,
                event_id=zone.event_id,
                current_population=evaluation.count,
                capacity=evaluation.capacity,
                density_per_sq_meter=evaluation.density,
                occupancy=evaluation.occupancy,
                status=evaluation.status,
                area_sq_meters=evaluation.area_used,
                last_updated=now,
            )
            results.append((reading, evaluation))
        return results

    async def _persist(self, readings: List[DensityReading]) -> None:
        for page in chunked(readings, DEFAULT_BATCH_SIZE):
            batch = self._store.batch()
            for reading in page:
                batch.set(DENSITY_READINGS, reading.zone_id, reading.to_dict(), merge=True)
            await batch.commit()

    async def _cleanup(self, now: datetime) -> int:
        cutoff = now - self._config.sample_retention
        return await self._store.delete_matching(
            LOCATION_SAMPLES,
            [where("timestamp", "<", cutoff)],
            batch_size=DEFAULT_BATCH_SIZE,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Cycle
    # ─────────────────────────────────────────────────────────────────────

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """
        Run one complete cycle.

        Parameters
        ----------
        now : datetime, optional
            Cycle clock; defaults to the current UTC time. Every window
            (lookback, dedup, retention) is measured from it.

        Returns
        -------
        CycleReport

        Raises
        ------
        AggregationError
            When any state fails; the report is discarded.
        """
        now = now or datetime.now(timezone.utc)
        report = CycleReport(cycle_id=uuid.uuid4().hex[:8], started_at=now)
        started = time.perf_counter()

        try:
            await self._run(report, now)
        except Exception as exc:
            failed_in = report.state
            logger.error(
                "Cycle %s aborted in %s: %s", report.cycle_id, failed_in.value, exc,
                extra={"cycle_id": report.cycle_id},
            )
            raise AggregationError(failed_in.value, str(exc) or type(exc).__name__) from exc

        self._enter(report, CycleState.IDLE)
        report.duration_ms = (time.perf_counter() - started) * 1000
        self.last_report = report
        logger.info(
            "Cycle %s %s: %d samples, %d zones, %d alerts, %d samples deleted (%.0f ms)",
            report.cycle_id, report.outcome.value, report.samples, report.zones,
            len(report.alerts), report.samples_deleted, report.duration_ms,
            extra={"cycle_id": report.cycle_id, "duration_ms": report.duration_ms},
        )
        return report

    async def _run(self, report: CycleReport, now: datetime) -> None:
        self._enter(report, CycleState.FETCH_SAMPLES)
        samples = await self._fetch_samples(now)
        report.samples = len(samples)

        if not samples:
            report.outcome = CycleOutcome.NO_SAMPLES
        else:
            self._enter(report, CycleState.FETCH_ZONES)
            zones = await self._fetch_zones()
            report.zones = len(zones)

            if not zones:
                logger.warning("No zones configured; %d samples ignored", len(samples),
                               extra={"cycle_id": report.cycle_id})
                report.outcome = CycleOutcome.NO_ZONES_CONFIGURED
            else:
                await self._aggregate(report, samples, zones, now)
                report.outcome = CycleOutcome.COMPLETED

        self._enter(report, CycleState.CLEANUP)
        report.samples_deleted = await self._cleanup(now)

    async def _aggregate(
        self,
        report: CycleReport,
        samples: List[LocationSample],
        zones: List[Zone],
        now: datetime,
    ) -> None:
        self._enter(report, CycleState.CLASSIFY)
        counts = bucket_samples(samples, zones)

        self._enter(report, CycleState.COMPUTE_DENSITY)
        computed = self._compute(zones, counts, now)
        report.readings = [reading for reading, _ in computed]

        self._enter(report, CycleState.PERSIST)
        await self._persist(report.readings)

        self._enter(report, CycleState.ALERT_AND_DISPATCH)
        for reading, evaluation in computed:
            raised = await self._alerts.handle_density_reading(reading, evaluation, now)
            if raised is not None:
                report.alerts.append(raised)
