"""Distance filtering of registered locations."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import math
from typing import Any

from .observability import log_event

logger = logging.getLogger("muac_monitor.proximity")

EARTH_RADIUS_KM = 6371.0
DEFAULT_RADIUS_KM = 10.0


@dataclass(frozen=True)
class NearbyLocation:
    location: Any
    distance_km: float


def parse_coordinate(raw: str | None, *, limit: float) -> float | None:
    """Parse a stored coordinate string, or return ``None`` when unusable."""

    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if not math.isfinite(value) or abs(value) > limit:
        return None
    return value


def parse_point(latitude: str | None, longitude: str | None) -> tuple[float, float] | None:
    lat = parse_coordinate(latitude, limit=90.0)
    lng = parse_coordinate(longitude, limit=180.0)
    if lat is None or lng is None:
        return None
    return lat, lng


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""

    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def find_nearby(
    lat: float,
    lng: float,
    radius_km: float,
    locations: Iterable[Any],
    *,
    default_radius_km: float = DEFAULT_RADIUS_KM,
) -> list[NearbyLocation]:
    """Return locations within ``radius_km`` of the origin, closest first.

    Locations whose stored coordinates do not parse are skipped. A
    non-positive radius falls back to ``default_radius_km``.
    """

    if radius_km is None or not radius_km > 0:
        radius_km = default_radius_km

    nearby: list[NearbyLocation] = []
    skipped = 0
    for location in locations:
        point = parse_point(location.latitude, location.longitude)
        if point is None:
            skipped += 1
            continue
        distance = haversine_km(lat, lng, point[0], point[1])
        if distance <= radius_km:
            nearby.append(NearbyLocation(location=location, distance_km=distance))

    if skipped:
        log_event(logger, "nearby_locations_skipped_unparsable", level=logging.DEBUG, skipped=skipped)

    nearby.sort(key=lambda item: item.distance_km)
    return nearby
