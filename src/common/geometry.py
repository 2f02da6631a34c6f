"""
Route geometry helpers for the School Bus GPS Simulator.

Pure functions over GeographicPoint values: great-circle distance, initial
bearing, linear interpolation and polyline length. None of them keep state.
"""

import math
from typing import List, Sequence

from src.common.models import GeographicPoint


# Earth radius in meters
EARTH_RADIUS_METERS = 6371000


def haversine_distance(a: GeographicPoint, b: GeographicPoint) -> float:
    """
    Calculate distance between two points using the Haversine formula.

    Args:
        a: First point
        b: Second point

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(a.lat)
    lat2_rad = math.radians(b.lat)
    delta_lat = math.radians(b.lat - a.lat)
    delta_lng = math.radians(b.lng - a.lng)

    h = math.sin(delta_lat / 2) ** 2 + \
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    # Rounding can push h just above 1 for antipodal points
    h = min(1.0, h)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_METERS * c


def initial_bearing(origin: GeographicPoint, target: GeographicPoint) -> float:
    """
    Calculate the compass bearing from one point towards another.

    Args:
        origin: Point the bus is leaving
        target: Point the bus is heading to

    Returns:
        Bearing in degrees (0-360, 0 = north, clockwise). Returns 0.0 when
        both points are the same.
    """
    if origin == target:
        return 0.0

    delta_lng = math.radians(target.lng - origin.lng)
    lat1 = math.radians(origin.lat)
    lat2 = math.radians(target.lat)

    x = math.sin(delta_lng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - \
        math.sin(lat1) * math.cos(lat2) * math.cos(delta_lng)

    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360) % 360


def interpolate(origin: GeographicPoint, target: GeographicPoint, t: float) -> GeographicPoint:
    """
    Linear interpolation in longitude/latitude space.

    Values of t outside [0, 1] extrapolate along the same line; callers are
    responsible for clamping.

    Args:
        origin: Point returned for t = 0
        target: Point returned for t = 1
        t: Interpolation factor

    Returns:
        Interpolated point
    """
    if t == 0:
        return origin
    if t == 1:
        return target

    return GeographicPoint(
        lng=origin.lng + (target.lng - origin.lng) * t,
        lat=origin.lat + (target.lat - origin.lat) * t
    )


def segment_lengths(polyline: Sequence[GeographicPoint]) -> List[float]:
    """Haversine length of every consecutive pair of points, in meters."""
    return [
        haversine_distance(polyline[i], polyline[i + 1])
        for i in range(len(polyline) - 1)
    ]


def total_length(polyline: Sequence[GeographicPoint]) -> float:
    """
    Calculate the total length of a route polyline.

    Args:
        polyline: Ordered route points

    Returns:
        Total distance in meters (0.0 for fewer than two points)
    """
    return sum(segment_lengths(polyline), 0.0)
