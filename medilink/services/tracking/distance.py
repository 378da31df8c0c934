"""
Great-circle distance helpers for emergency tracking
"""

import math
from typing import Iterable, List, Optional, Tuple, TypeVar

from medilink.models.emergency import Coordinates

EARTH_RADIUS = {
    'km': 6371.0,
    'miles': 3959.0,
}

T = TypeVar('T')


def haversine_distance(a: Coordinates, b: Coordinates, unit: str = 'km') -> float:
    """
    Calculate the great-circle distance between two coordinates

    Args:
        a: First coordinate
        b: Second coordinate
        unit: 'km' or 'miles'

    Returns:
        Distance in the requested unit
    """
    if unit not in EARTH_RADIUS:
        raise ValueError(f"Unsupported distance unit: {unit}")

    lat1_rad = math.radians(a.lat)
    lat2_rad = math.radians(b.lat)
    delta_lat = math.radians(b.lat - a.lat)
    delta_lng = math.radians(b.lng - a.lng)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lng / 2) ** 2)
    # Rounding can push h a hair outside [0, 1] for antipodal points
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS[unit] * c


def format_distance(distance: Optional[float], unit: str = 'km') -> str:
    """Format a distance for display: metres/feet below one unit"""
    if distance is None:
        return "Unknown distance"

    if unit == 'km':
        if distance < 1:
            return f"{round(distance * 1000)}m"
        return f"{distance:.1f} km"

    if distance < 1:
        return f"{round(distance * 5280)}ft"
    return f"{distance:.1f} miles"


def sort_by_distance(origin: Coordinates, destinations: Iterable[T],
                     unit: str = 'km') -> List[Tuple[T, Optional[float]]]:
    """
    Pair destinations with their distance from origin, nearest first.

    Destinations must expose a ``location`` attribute; those without one are
    kept at the end with a distance of None.
    """
    known = []
    unknown = []
    for destination in destinations:
        location = getattr(destination, 'location', None)
        if location is None:
            unknown.append((destination, None))
        else:
            known.append((destination, haversine_distance(origin, location, unit)))

    known.sort(key=lambda pair: pair[1])
    return known + unknown
