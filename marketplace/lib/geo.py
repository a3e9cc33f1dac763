"""
Great-circle distance and bounding-box helpers.

Location tracking works in meters (movement threshold) while discovery
reports kilometers. Call the function matching the unit you need instead
of converting by hand.
"""
import math
from dataclasses import dataclass


EARTH_RADIUS_METERS = 6_371_000.0
EARTH_RADIUS_KM = 6371.0

# Length of one degree of latitude in kilometers on the haversine sphere
KM_PER_DEGREE = math.pi * EARTH_RADIUS_KM / 180.0

# Relative widening of prefilter boxes
BOX_PADDING = 1e-6


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned lat/lon box; all bounds inclusive.

    A box whose ``min_lon`` exceeds ``max_lon`` wraps across the antimeridian.
    """
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        if not self.min_lat <= lat <= self.max_lat:
            return False
        if self.min_lon <= self.max_lon:
            return self.min_lon <= lon <= self.max_lon
        return lon >= self.min_lon or lon <= self.max_lon


def in_bounding_box(lat: float, lon: float, box: BoundingBox) -> bool:
    return box.contains(lat, lon)


def _central_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Clamp against floating point drift slightly above 1
    a = min(1.0, max(0.0, a))
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance between two points in meters."""
    return EARTH_RADIUS_METERS * _central_angle(lat1, lon1, lat2, lon2)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance between two points in kilometers."""
    return EARTH_RADIUS_KM * _central_angle(lat1, lon1, lat2, lon2)


def bounding_box(lat: float, lon: float, radius_km: float) -> BoundingBox:
    """
    Box enclosing every point within ``radius_km`` of ``(lat, lon)``.

    Degree lengths come from the same sphere as :func:`haversine_km`, and the
    longitude half-width is the widest point of the circle, which sits
    poleward of the center. When the circle reaches a pole the box covers
    every longitude.
    """
    angular = radius_km / EARTH_RADIUS_KM
    lat_delta = radius_km / KM_PER_DEGREE
    cos_lat = math.cos(math.radians(lat))
    if angular >= math.pi / 2 or abs(lat) + lat_delta >= 90.0 or math.sin(angular) >= abs(cos_lat):
        lon_delta = 180.0
    else:
        lon_delta = math.degrees(math.asin(math.sin(angular) / abs(cos_lat)))

    # Pad against floating point at the exact edge
    lat_delta *= 1 + BOX_PADDING
    lon_delta = min(180.0, lon_delta * (1 + BOX_PADDING))

    return BoundingBox(
        min_lat=max(-90.0, lat - lat_delta),
        max_lat=min(90.0, lat + lat_delta),
        min_lon=max(-180.0, lon - lon_delta),
        max_lon=min(180.0, lon + lon_delta),
    )


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """True when latitude is within [-90, 90] and longitude within [-180, 180]."""
    if lat is None or lon is None:
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
