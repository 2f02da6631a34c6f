"""
Data models for the School Bus GPS Simulator.

This module contains the value types shared by the geometry helpers, the
simulation engine and the feeder service. All models include validation
methods to ensure data integrity.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union


# Defaults used by the route map view of the dashboard
DEFAULT_SPEED_KMH = 50.0
DEFAULT_TICK_INTERVAL_MS = 100


# Geographic Models

@dataclass(frozen=True)
class GeographicPoint:
    """
    A longitude/latitude pair in degrees.

    Attributes:
        lng: Longitude
        lat: Latitude
    """
    lng: float
    lat: float

    @classmethod
    def from_pair(cls, pair: Union["GeographicPoint", Sequence[float]]) -> "GeographicPoint":
        """
        Build a point from a [lng, lat] pair.

        Args:
            pair: A two-element [lng, lat] sequence, or an existing point

        Returns:
            GeographicPoint instance

        Raises:
            ValueError: If the pair does not hold exactly two numbers
        """
        if isinstance(pair, GeographicPoint):
            return pair
        if isinstance(pair, (str, bytes)) or len(pair) != 2:
            raise ValueError(f"coordinate must be a [lng, lat] pair, got {pair!r}")
        lng, lat = pair
        if isinstance(lng, bool) or isinstance(lat, bool):
            raise ValueError(f"coordinate values must be numbers, got {pair!r}")
        return cls(lng=float(lng), lat=float(lat))

    def as_pair(self) -> Tuple[float, float]:
        return (self.lng, self.lat)

    def validate(self) -> None:
        """
        Validate coordinate ranges.

        Raises:
            ValueError: If validation fails
        """
        if not (-180 <= self.lng <= 180):
            raise ValueError(f"longitude must be between -180 and 180, got {self.lng}")
        if not (-90 <= self.lat <= 90):
            raise ValueError(f"latitude must be between -90 and 90, got {self.lat}")


@dataclass(frozen=True)
class GPSCoordinate:
    """
    A simulated GPS fix: a position plus the time it was captured.

    Attributes:
        lng: Longitude
        lat: Latitude
        timestamp_ms: Capture time in milliseconds since the epoch
    """
    lng: float
    lat: float
    timestamp_ms: int

    @property
    def point(self) -> GeographicPoint:
        return GeographicPoint(lng=self.lng, lat=self.lat)


# Simulation Models

@dataclass(frozen=True)
class SimulationState:
    """
    Snapshot of the simulated bus handed to position update consumers.

    Attributes:
        current_position: Current GPS fix
        heading: Direction of travel in degrees (0-360, 0 = north)
        speed_kmh: Configured speed in km/h
        progress_percent: Route progress (0-100)
        distance_traveled_meters: Distance covered since the last restart
        total_distance_meters: Total route length
        is_moving: Whether the simulator timer is running
        current_segment_index: Segment i joins point i to point i + 1
        segment_progress: Fraction (0-1) of the current segment covered
    """
    current_position: GPSCoordinate
    heading: float
    speed_kmh: float
    progress_percent: float
    distance_traveled_meters: float
    total_distance_meters: float
    is_moving: bool
    current_segment_index: int
    segment_progress: float

    def to_dict(self) -> Dict[str, Any]:
        """
        Render the state as the payload map consumers receive.

        Returns:
            Dictionary with camelCase keys
        """
        return {
            'currentPosition': {
                'lng': self.current_position.lng,
                'lat': self.current_position.lat,
                'timestampMs': self.current_position.timestamp_ms
            },
            'heading': self.heading,
            'speedKmh': self.speed_kmh,
            'progressPercent': self.progress_percent,
            'distanceTraveledMeters': self.distance_traveled_meters,
            'totalDistanceMeters': self.total_distance_meters,
            'isMoving': self.is_moving,
            'currentSegmentIndex': self.current_segment_index,
            'segmentProgress': self.segment_progress
        }


PositionUpdateCallback = Callable[[SimulationState], None]
RouteCompleteCallback = Callable[[], None]


@dataclass(frozen=True)
class SimulationConfig:
    """
    Parameters for one simulator instance.

    Attributes:
        speed_kmh: Constant speed in km/h
        tick_interval_ms: Time between position updates in milliseconds
        route_coordinates: Route polyline as [lng, lat] pairs
        on_position_update: Called with a snapshot after every update
        on_route_complete: Called each time the bus loops back to the start
    """
    speed_kmh: float
    tick_interval_ms: float
    route_coordinates: Sequence[Union[GeographicPoint, Sequence[float]]]
    on_position_update: PositionUpdateCallback
    on_route_complete: Optional[RouteCompleteCallback] = None

    def route_points(self) -> Tuple[GeographicPoint, ...]:
        """Route coordinates converted to an immutable tuple of points."""
        return tuple(GeographicPoint.from_pair(pair) for pair in self.route_coordinates)

    def validate(self) -> None:
        """
        Validate simulator configuration.

        Raises:
            ValueError: If validation fails
        """
        if isinstance(self.speed_kmh, bool) or not isinstance(self.speed_kmh, (int, float)):
            raise ValueError(f"speed_kmh must be a number, got {self.speed_kmh!r}")
        if not (self.speed_kmh > 0 and math.isfinite(self.speed_kmh)):
            raise ValueError(f"speed_kmh must be positive, got {self.speed_kmh}")
        if isinstance(self.tick_interval_ms, bool) or not isinstance(self.tick_interval_ms, (int, float)):
            raise ValueError(f"tick_interval_ms must be a number, got {self.tick_interval_ms!r}")
        if not (self.tick_interval_ms > 0 and math.isfinite(self.tick_interval_ms)):
            raise ValueError(f"tick_interval_ms must be positive, got {self.tick_interval_ms}")
        if self.route_coordinates is None or len(self.route_coordinates) == 0:
            raise ValueError("route_coordinates cannot be empty")
        if not callable(self.on_position_update):
            raise ValueError("on_position_update must be callable")
        if self.on_route_complete is not None and not callable(self.on_route_complete):
            raise ValueError("on_route_complete must be callable")

        for point in self.route_points():
            point.validate()
