"""
zones.py — Zone classification and polygon area for venue geometry.

Provides:
    - Ray-casting point-in-polygon test
    - First-match zone classification (one person, one zone, per cycle)
    - Planar polygon area estimate in square meters
    - Bucketing of a batch of location samples into per-zone counts

Coordinates are in **decimal degrees**, areas in **square meters**.

Point in Polygon — Ray Casting (even-odd rule)
==============================================
Cast a ray from the point along its own longitude and count how many
polygon edges it crosses. An odd count means inside.

For an edge (xi, yi) → (xj, yj), with x = latitude and y = longitude,
the ray crosses it when

    (yi > lng) ≠ (yj > lng)                    edge straddles the ray
    lat < (xj − xi) · (lng − yi) / (yj − yi) + xi

The half-open comparison ``>`` makes a vertex lying exactly on the ray
count for one of its two edges only, so results do not depend on which
vertex the boundary starts at or on its winding direction.

Polygon Area — Local Planar Shoelace
====================================
Project each vertex onto a local plane:

    x = (lat − φ̄) · 111 320            (meters per degree of latitude)
    y = (lng − λ̄) · 111 320 · cos(φ̄)   (φ̄, λ̄ = mean latitude, longitude)

then apply the shoelace formula

    A = ½ · | Σ (xᵢ · yᵢ₊₁ − xᵢ₊₁ · yᵢ) |

This is accurate for event-venue sized polygons (hundreds of meters);
there is no geodesic correction beyond the cosine term.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, Optional, Sequence

from crowdwatch.app.alerts.models import LocationSample, Vertex, Zone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

METERS_PER_DEGREE_LAT: float = 111_320.0
MIN_POLYGON_VERTICES: int = 3


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def point_in_polygon(lat: float, lng: float, boundary: Sequence[Vertex]) -> bool:
    """
    True if (lat, lng) lies inside ``boundary``.

    Examples
    --------
    >>> square = [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0)]
    >>> point_in_polygon(0.5, 0.5, square)
    True
    >>> point_in_polygon(1.5, 0.5, square)
    False
    """
    n = len(boundary)
    if n < MIN_POLYGON_VERTICES:
        return False

    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = boundary[i]
        xj, yj = boundary[j]
        if (yi > lng) != (yj > lng):
            crossing_lat = (xj - xi) * (lng - yi) / (yj - yi) + xi
            if lat < crossing_lat:
                inside = not inside
        j = i
    return inside


def polygon_area_sq_meters(boundary: Sequence[Vertex]) -> float:
    """
    Approximate area of ``boundary`` in square meters.

    Returns 0.0 for degenerate boundaries (fewer than three vertices);
    callers treat that as "no zone area available".

    Examples
    --------
    >>> round(polygon_area_sq_meters([(0.0, 0.0), (0.0, 0.001), (0.001, 0.001), (0.001, 0.0)]))
    12392
    """
    n = len(boundary)
    if n < MIN_POLYGON_VERTICES:
        return 0.0

    mean_lat = sum(lat for lat, _ in boundary) / n
    mean_lng = sum(lng for _, lng in boundary) / n
    lat_to_m = METERS_PER_DEGREE_LAT
    lng_to_m = METERS_PER_DEGREE_LAT * math.cos(math.radians(mean_lat))

    # Offsets from the centroid keep the cross products small
    points = [((lat - mean_lat) * lat_to_m, (lng - mean_lng) * lng_to_m) for lat, lng in boundary]

    twice_area = 0.0
    for i in range(n):
        xi, yi = points[i]
        xj, yj = points[(i + 1) % n]
        twice_area += xi * yj - xj * yi

    return abs(twice_area) / 2.0


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify(lat: float, lng: float, zones: Iterable[Zone]) -> Optional[str]:
    """
    Id of the first zone (in iteration order) containing the point.

    Overlapping zones are resolved by order: membership is exclusive.
    Zones without a usable polygon never match.
    """
    for zone in zones:
        if not zone.has_polygon:
            continue
        if point_in_polygon(lat, lng, zone.boundary):
            return zone.id
    return None


def bucket_samples(
    samples: Iterable[LocationSample],
    zones: Sequence[Zone],
) -> Dict[str, int]:
    """
    Count samples per zone.

    Every zone appears in the result, with 0 when nobody is inside it.
    Samples outside all zones are dropped.
    """
    counts: Dict[str, int] = {zone.id: 0 for zone in zones}
    unclassified = 0

    for sample in samples:
        zone_id = classify(sample.latitude, sample.longitude, zones)
        if zone_id is None:
            unclassified += 1
            continue
        counts[zone_id] += 1

    if unclassified:
        logger.debug("%d samples fell outside every zone", unclassified)
    return counts
