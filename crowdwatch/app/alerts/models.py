"""
models.py — Shared data structures for density aggregation and alerting.

Defines:
    • DensityStatus   — four-band crowd status of a zone
    • AlertSeverity   — info / warning / critical
    • DeliveryStatus  — per-topic push outcome
    • LocationSample  — one attendee ping
    • Zone            — polygon + capacity, owned by event configuration
    • DensityReading  — current state of one zone (one per zone, merged)
    • AlertRecord     — persisted alert
    • Incident        — external incident snapshot
    • NotificationRecord — per-user in-app notification
    • TopicDelivery / DispatchReport — fan-out results

═══════════════════════════════════════════════════════════════════════════
DOCUMENT SHAPES
═══════════════════════════════════════════════════════════════════════════

Python attributes are snake_case; stored documents keep the camelCase
field names mobile clients read (``zoneId``, ``isActive``,
``createdAt`` …). ``to_dict()`` writes the stored shape and
``from_document()`` reads it back.

``from_document`` never raises on malformed input: missing or mistyped
fields fall back to safe zero values (count 0, empty boundary, capacity
1, unknown name) so a single bad record cannot fail an aggregation cycle.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

Vertex = Tuple[float, float]  # (lat, lng)


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class DensityStatus(str, Enum):
    """Crowd status bands, ascending."""
    SAFE = "safe"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    DensityStatus.SAFE,
    DensityStatus.MODERATE,
    DensityStatus.HIGH,
    DensityStatus.CRITICAL,
]


class AlertSeverity(str, Enum):
    """Alert severities, ascending."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class DeliveryStatus(str, Enum):
    """Outcome of one topic send."""
    DELIVERED = "delivered"
    FAILED = "failed"


ALERT_TYPE_CONGESTION = "congestion"
SYSTEM_CREATOR = "system"
SYSTEM_CREATOR_NAME = "Auto-Alert System"


# ═══════════════════════════════════════════════════════════════════════════
# Coercion helpers
# ═══════════════════════════════════════════════════════════════════════════

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _generate_alert_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def as_float(value: Any, default: float = 0.0) -> float:
    """``value`` as float when it is a real number, else ``default``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def as_text(value: Any, default: Optional[str] = None) -> Optional[str]:
    """``value`` when it is a non-empty string, else ``default``."""
    if isinstance(value, str) and value:
        return value
    return default


def as_datetime(value: Any) -> Optional[datetime]:
    """Accept aware/naive datetimes or ISO strings; naive means UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_boundary(raw: Any) -> Tuple[Vertex, ...]:
    """
    Read a boundary as a tuple of (lat, lng).

    Vertices may be ``{"lat": .., "lng": ..}`` maps or ``[lat, lng]``
    pairs. Anything that is not a list, or contains an unreadable vertex,
    yields an empty boundary.
    """
    if not isinstance(raw, (list, tuple)):
        return ()
    vertices: List[Vertex] = []
    for point in raw:
        if isinstance(point, dict):
            lat, lng = point.get("lat"), point.get("lng")
        elif isinstance(point, (list, tuple)) and len(point) == 2:
            lat, lng = point
        else:
            return ()
        if isinstance(lat, bool) or isinstance(lng, bool):
            return ()
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
            return ()
        vertices.append((float(lat), float(lng)))
    return tuple(vertices)


# ═══════════════════════════════════════════════════════════════════════════
# Inputs
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LocationSample:
    """A single attendee location ping."""
    latitude: float
    longitude: float
    timestamp: Optional[datetime] = None

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "LocationSample":
        return cls(
            latitude=as_float(data.get("latitude")),
            longitude=as_float(data.get("longitude")),
            timestamp=as_datetime(data.get("timestamp")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp or _now(),
        }


@dataclass(frozen=True)
class Zone:
    """
    A bounded region of the venue.

    Attributes
    ----------
    id : str
        Document id; also the id of the zone's DensityReading.
    name : str
        Display name used in alert messages.
    event_id : str | None
        Owning event.
    boundary : tuple of (lat, lng)
        Polygon vertices, implicitly closed. May be empty when the stored
        boundary is malformed.
    capacity : int
        Planned maximum occupancy; never below 1.
    """
    id: str
    name: str = "Unknown"
    event_id: Optional[str] = None
    boundary: Tuple[Vertex, ...] = ()
    capacity: int = 1

    @property
    def has_polygon(self) -> bool:
        return len(self.boundary) >= 3

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Zone":
        capacity = as_float(data.get("capacity"), 0.0)
        return cls(
            id=doc_id,
            name=as_text(data.get("name"), "Unknown"),
            event_id=as_text(data.get("eventId")),
            boundary=parse_boundary(data.get("boundaries", data.get("boundary"))),
            capacity=int(capacity) if capacity >= 1 else 1,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "eventId": self.event_id,
            "boundaries": [{"lat": lat, "lng": lng} for lat, lng in self.boundary],
            "capacity": self.capacity,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Outputs
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DensityReading:
    """Current crowd state of one zone, recomputed every cycle."""
    zone_id: str
    zone_name: str
    event_id: Optional[str]
    current_population: int
    capacity: int
    density_per_sq_meter: float
    occupancy: float
    status: DensityStatus
    area_sq_meters: float = 0.0
    last_updated: datetime = field(default_factory=_now)

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "DensityReading":
        try:
            status = DensityStatus(data.get("status", "safe"))
        except ValueError:
            status = DensityStatus.SAFE
        return cls(
            zone_id=as_text(data.get("zoneId"), doc_id),
            zone_name=as_text(data.get("zoneName"), "Unknown Zone"),
            event_id=as_text(data.get("eventId")),
            current_population=int(as_float(data.get("currentPopulation"))),
            capacity=max(int(as_float(data.get("capacity"), 1.0)), 1),
            density_per_sq_meter=as_float(data.get("densityPerSqMeter")),
            occupancy=as_float(data.get("occupancy")),
            status=status,
            area_sq_meters=as_float(data.get("areaSqMeters")),
            last_updated=as_datetime(data.get("lastUpdated")) or _now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zoneId": self.zone_id,
            "zoneName": self.zone_name,
            "eventId": self.event_id,
            "currentPopulation": self.current_population,
            "capacity": self.capacity,
            "densityPerSqMeter": round(self.density_per_sq_meter, 4),
            "occupancy": round(self.occupancy, 4),
            "status": self.status.value,
            "areaSqMeters": round(self.area_sq_meters, 2),
            "lastUpdated": self.last_updated,
        }


@dataclass
class AlertRecord:
    """
    A persisted alert.

    Immutable after creation except for ``is_active``, which the expiry
    sweep clears once ``expires_at`` has passed.
    """
    type: str
    message: str
    severity: str
    target_roles: List[str]
    event_id: Optional[str] = None
    zone_id: Optional[str] = None
    zone_name: Optional[str] = None
    is_active: bool = True
    created_by: str = SYSTEM_CREATOR
    created_by_name: str = SYSTEM_CREATOR_NAME
    created_at: datetime = field(default_factory=_now)
    expires_at: Optional[datetime] = None
    id: str = field(default_factory=_generate_alert_id)

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "AlertRecord":
        roles = data.get("targetRoles")
        return cls(
            id=doc_id,
            type=as_text(data.get("type"), "general"),
            message=as_text(data.get("message"), ""),
            severity=as_text(data.get("severity"), AlertSeverity.INFO.value),
            target_roles=[r for r in roles if isinstance(r, str)] if isinstance(roles, list) else [],
            event_id=as_text(data.get("eventId")),
            zone_id=as_text(data.get("zoneId")),
            zone_name=as_text(data.get("zoneName")),
            is_active=bool(data.get("isActive", True)),
            created_by=as_text(data.get("createdBy"), ""),
            created_by_name=as_text(data.get("createdByName"), ""),
            created_at=as_datetime(data.get("createdAt")) or _now(),
            expires_at=as_datetime(data.get("expiresAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "severity": self.severity,
            "eventId": self.event_id,
            "zoneId": self.zone_id,
            "zoneName": self.zone_name,
            "targetRoles": list(self.target_roles),
            "isActive": self.is_active,
            "createdBy": self.created_by,
            "createdByName": self.created_by_name,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }


@dataclass(frozen=True)
class Incident:
    """Snapshot of an externally managed incident."""
    id: str
    type: str = "other"
    severity: str = "low"
    description: str = ""
    status: Optional[str] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Incident":
        description = data.get("description")
        return cls(
            id=doc_id,
            type=as_text(data.get("type"), "other"),
            severity=as_text(data.get("severity"), "low"),
            description=description if isinstance(description, str) else "",
            status=as_text(data.get("status")),
        )


@dataclass
class NotificationRecord:
    """In-app notification for one user."""
    user_id: str
    title: str
    body: str
    type: str
    reference_id: str
    is_read: bool = False
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "title": self.title,
            "body": self.body,
            "type": self.type,
            "referenceId": self.reference_id,
            "isRead": self.is_read,
            "createdAt": self.created_at,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Fan-out results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class TopicDelivery:
    """Result of sending one push message to one topic."""
    topic: str
    status: DeliveryStatus
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "status": self.status.value,
            "message_id": self.message_id,
            "error_message": self.error_message,
            "latency_ms": round(self.latency_ms, 1),
        }


@dataclass
class DispatchReport:
    """Summary of one fan-out: topic sends plus persisted records."""
    reference_id: str
    notification_type: str
    title: str
    deliveries: List[TopicDelivery] = field(default_factory=list)
    records_written: int = 0

    @property
    def delivered_topics(self) -> List[str]:
        return [d.topic for d in self.deliveries if d.status == DeliveryStatus.DELIVERED]

    @property
    def failed_topics(self) -> List[str]:
        return [d.topic for d in self.deliveries if d.status == DeliveryStatus.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference_id": self.reference_id,
            "type": self.notification_type,
            "title": self.title,
            "topics_delivered": self.delivered_topics,
            "topics_failed": self.failed_topics,
            "records_written": self.records_written,
            "deliveries": [d.to_dict() for d in self.deliveries],
        }


def unique(items: Sequence[str]) -> List[str]:
    """De-duplicate preserving first-seen order; drops empty strings."""
    seen = set()
    result: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result
