"""
Great-circle distance and nearest-bin ranking
"""
import math
from typing import Any, Dict, Iterable, List, Tuple
from smartwaste.errors import InvalidInput

EARTH_RADIUS_KM = 6371.0
MAX_NEARBY_RESULTS = 20

Point = Tuple[float, float]  # (latitude, longitude) in decimal degrees


def validate_point(point: Point) -> Point:
    latitude, longitude = point
    if not -90 <= latitude <= 90:
        raise InvalidInput("Latitude must be between -90 and 90")
    if not -180 <= longitude <= 180:
        raise InvalidInput("Longitude must be between -180 and 180")
    return latitude, longitude


def distance_km(a: Point, b: Point) -> float:
    """
    Haversine distance between two points

    Args:
        a: (latitude, longitude) in decimal degrees
        b: (latitude, longitude) in decimal degrees

    Returns:
        Distance in kilometers
    """
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bin_point(bin_doc: Dict[str, Any]) -> Point:
    coordinates = bin_doc["location"]["coordinates"]
    return float(coordinates["latitude"]), float(coordinates["longitude"])


def nearby(
    point: Point,
    radius_km: float,
    candidates: Iterable[Dict[str, Any]],
    limit: int = MAX_NEARBY_RESULTS
) -> List[Dict[str, Any]]:
    """
    Active candidates within radius_km of point, nearest first

    Each result is a shallow copy of the candidate with a "distance" key.
    Equal distances keep their input order.
    """
    validate_point(point)
    if radius_km < 0:
        raise InvalidInput("Radius must be non-negative")

    ranked = []
    for candidate in candidates:
        if not candidate.get("active", False):
            continue
        try:
            distance = distance_km(point, bin_point(candidate))
        except (KeyError, TypeError, ValueError):
            continue
        if distance <= radius_km:
            ranked.append({**candidate, "distance": distance})

    # sorted() is stable, so ties stay in input order
    ranked = sorted(ranked, key=lambda item: item["distance"])
    return ranked[:min(limit, MAX_NEARBY_RESULTS)]
