"""
FastAPI route: Density ingestion and aggregation.

Provides endpoints to:
    POST /api/v1/density/samples     — ingest attendee location samples
    POST /api/v1/density/aggregate   — run one aggregation cycle now
    GET  /api/v1/density/readings    — current reading per zone
    GET  /api/v1/density/scheduler   — scheduled job status
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from crowdwatch.app.alerts.models import DensityReading, LocationSample, as_datetime
from crowdwatch.app.api.schemas import (
    AggregateRequest,
    SampleBatchRequest,
    SampleBatchResponse,
)
from crowdwatch.app.services import ServiceContainer, get_services
from crowdwatch.app.store.base import (
    DEFAULT_BATCH_SIZE,
    DENSITY_READINGS,
    LOCATION_SAMPLES,
    chunked,
    where,
)

router = APIRouter(prefix="/api/v1/density", tags=["density"])


@router.post(
    "/samples",
    response_model=SampleBatchResponse,
    status_code=202,
    summary="Ingest location samples",
)
async def ingest_samples(
    request: SampleBatchRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Store samples for the next aggregation cycle."""
    received_at = datetime.now(timezone.utc)
    accepted = 0
    for page in chunked(request.samples, DEFAULT_BATCH_SIZE):
        batch = services.store.batch()
        for s in page:
            sample = LocationSample(s.latitude, s.longitude, as_datetime(s.timestamp) or received_at)
            batch.create(LOCATION_SAMPLES, sample.to_dict())
        accepted += await batch.commit()
    return SampleBatchResponse(accepted=accepted)


@router.post(
    "/aggregate",
    summary="Run one aggregation cycle",
    description=(
        "Classifies recent samples into zones, writes one reading per zone, "
        "raises deduplicated alerts and cleans up old samples."
    ),
)
async def aggregate(
    request: Optional[AggregateRequest] = None,
    services: ServiceContainer = Depends(get_services),
):
    now = request.now if request and request.now else None
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    report = await services.orchestrator.run_cycle(now)
    return report.to_dict()


@router.get(
    "/readings",
    summary="Current density readings",
)
async def list_readings(
    event_id: Optional[str] = Query(None, description="Only zones of this event"),
    services: ServiceContainer = Depends(get_services),
):
    filters = [where("eventId", "==", event_id)] if event_id else []
    docs = await services.store.query(DENSITY_READINGS, filters)
    readings = [DensityReading.from_document(d.id, d.data) for d in docs]
    return {
        "count": len(readings),
        "readings": [
            {**r.to_dict(), "lastUpdated": r.last_updated.isoformat()} for r in readings
        ],
    }


@router.get(
    "/scheduler",
    summary="Scheduled job status",
)
async def scheduler_status(services: ServiceContainer = Depends(get_services)):
    return services.scheduler.status()
