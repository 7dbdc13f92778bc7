"""
FastAPI route: Change-trigger webhooks.

The record store's change feed (or any producer) calls these after a
document was written; each handler reads the current document itself.

    POST /api/v1/triggers/alerts/{id}/created      — relay operator alert
    POST /api/v1/triggers/incidents/{id}/created   — announce new incident
    POST /api/v1/triggers/incidents/{id}/updated   — announce status change
    POST /api/v1/triggers/users/{id}/created       — welcome + subscriptions

Unknown documents return 404. Provider failures never fail the request;
they are reported per topic in the response body.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from crowdwatch.app.api.schemas import (
    DispatchResponse,
    IncidentUpdatedRequest,
    UserCreatedRequest,
)
from crowdwatch.app.services import ServiceContainer, get_services

router = APIRouter(prefix="/api/v1/triggers", tags=["triggers"])


@router.post(
    "/alerts/{alert_id}/created",
    response_model=DispatchResponse,
    summary="Alert created",
)
async def alert_created(alert_id: str, services: ServiceContainer = Depends(get_services)):
    report = await services.alerts.on_alert_created(alert_id)
    if report is None:
        return DispatchResponse(skipped=True, reason="system alert or no target roles")
    return DispatchResponse(dispatch=report.to_dict())


@router.post(
    "/incidents/{incident_id}/created",
    response_model=DispatchResponse,
    summary="Incident created",
)
async def incident_created(incident_id: str, services: ServiceContainer = Depends(get_services)):
    report = await services.incidents.on_incident_created(incident_id)
    return DispatchResponse(dispatch=report.to_dict())


@router.post(
    "/incidents/{incident_id}/updated",
    response_model=DispatchResponse,
    summary="Incident updated",
)
async def incident_updated(
    incident_id: str,
    request: Optional[IncidentUpdatedRequest] = None,
    services: ServiceContainer = Depends(get_services),
):
    previous = request.previous_status if request else None
    report = await services.incidents.on_incident_updated(incident_id, previous)
    if report is None:
        return DispatchResponse(skipped=True, reason="status not changed or not announced")
    return DispatchResponse(dispatch=report.to_dict())


@router.post(
    "/users/{user_id}/created",
    summary="Account created",
)
async def user_created(
    user_id: str,
    request: Optional[UserCreatedRequest] = None,
    services: ServiceContainer = Depends(get_services),
):
    result = await services.onboarding.on_user_created(
        user_id,
        email=request.email if request else None,
        display_name=request.display_name if request else None,
    )
    return result.to_dict()
