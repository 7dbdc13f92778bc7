"""
Pydantic schemas for the density and trigger APIs.

Separated from the route handlers so they are reusable across
the codebase (background workers, tests).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationSampleIn(BaseModel):
    """One attendee location ping."""
    latitude: float = Field(
        ..., ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[25.2048],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[55.2708],
    )
    timestamp: Optional[datetime] = Field(
        default=None,
        description="When the sample was taken (server time if omitted)",
    )


class SampleBatchRequest(BaseModel):
    """Request body for POST /api/v1/density/samples."""
    samples: List[LocationSampleIn] = Field(..., min_length=1, max_length=5000)


class AggregateRequest(BaseModel):
    """Request body for POST /api/v1/density/aggregate."""
    now: Optional[datetime] = Field(
        default=None,
        description="Cycle clock override (defaults to current UTC time)",
    )


class IncidentUpdatedRequest(BaseModel):
    """Before-snapshot fields of an incident update event."""
    previous_status: Optional[str] = Field(
        default=None, examples=["reported"],
        description="Incident status before the update",
    )


class UserCreatedRequest(BaseModel):
    """Account fields carried by an account-created event."""
    email: Optional[str] = Field(default=None, examples=["fan@example.com"])
    display_name: Optional[str] = Field(default=None, examples=["Sam"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class SampleBatchResponse(BaseModel):
    accepted: int


class DispatchResponse(BaseModel):
    """Fan-out result; ``skipped`` when nothing was sent."""
    skipped: bool = False
    reason: Optional[str] = None
    dispatch: Optional[Dict[str, Any]] = None
