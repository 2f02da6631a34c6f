"""
Configuration loader for the School Bus GPS Simulator.

This module provides functionality to load simulated route definitions from
YAML configuration files and convert them into RouteDefinition objects.
"""

import math
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

from .models import (
    DEFAULT_SPEED_KMH,
    DEFAULT_TICK_INTERVAL_MS,
    GeographicPoint,
)


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


@dataclass
class RouteDefinition:
    """
    A route the simulator can drive, as read from the route catalogue.

    Attributes:
        route_id: Unique identifier for the route
        name: Human-readable name of the route
        coordinates: Route polyline, first point = start
        speed_kmh: Simulated bus speed in km/h
        tick_interval_ms: Time between position updates in milliseconds
    """
    route_id: str
    name: str
    coordinates: Tuple[GeographicPoint, ...]
    speed_kmh: float = DEFAULT_SPEED_KMH
    tick_interval_ms: float = DEFAULT_TICK_INTERVAL_MS

    def validate(self) -> None:
        """
        Validate route definition.

        Raises:
            ValueError: If validation fails
        """
        if not self.route_id:
            raise ValueError("route_id cannot be empty")
        if not self.name:
            raise ValueError("name cannot be empty")
        if not self.coordinates:
            raise ValueError("coordinates cannot be empty")
        for point in self.coordinates:
            point.validate()
        if not (self.speed_kmh > 0 and math.isfinite(self.speed_kmh)):
            raise ValueError(f"speed_kmh must be positive, got {self.speed_kmh}")
        if not (self.tick_interval_ms > 0 and math.isfinite(self.tick_interval_ms)):
            raise ValueError(f"tick_interval_ms must be positive, got {self.tick_interval_ms}")


class RouteLoader:
    """
    Loads and validates the route catalogue from a YAML file.

    The loader parses routes.yaml files containing one entry per route with
    its polyline and optional speed and update interval.
    """

    def __init__(self, config_path: str):
        """
        Initialize the route loader.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            ConfigurationError: If the file doesn't exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        self._raw_config: Dict = {}
        self._routes: List[RouteDefinition] = []

    def load(self) -> None:
        """
        Load and parse the YAML configuration file.

        Raises:
            ConfigurationError: If the file can't be parsed or is invalid
        """
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}")

        if not self._raw_config:
            raise ConfigurationError("Configuration file is empty")

        if not isinstance(self._raw_config, dict) or 'routes' not in self._raw_config:
            raise ConfigurationError("Configuration must contain 'routes' key")

        if not isinstance(self._raw_config['routes'], list):
            raise ConfigurationError("'routes' must be a list")

        if not self._raw_config['routes']:
            raise ConfigurationError("Configuration must contain at least one route")

    def parse_routes(self) -> List[RouteDefinition]:
        """
        Parse routes from the loaded configuration.

        Returns:
            List of RouteDefinition objects

        Raises:
            ConfigurationError: If route data is invalid
        """
        if not self._raw_config:
            raise ConfigurationError("Configuration not loaded. Call load() first.")

        routes = []
        route_ids_seen = set()

        for route_data in self._raw_config['routes']:
            if not isinstance(route_data, dict):
                raise ConfigurationError(f"Route entry must be a mapping, got {route_data!r}")

            try:
                for required in ('route_id', 'name', 'coordinates'):
                    if required not in route_data:
                        raise ConfigurationError(
                            f"Route {route_data.get('route_id', 'unknown')} missing '{required}' field"
                        )

                route_id = str(route_data['route_id'])

                if route_id in route_ids_seen:
                    raise ConfigurationError(f"Duplicate route_id: {route_id}")
                route_ids_seen.add(route_id)

                route = RouteDefinition(
                    route_id=route_id,
                    name=str(route_data['name']),
                    coordinates=self._parse_coordinates(route_data['coordinates'], route_id),
                    speed_kmh=float(route_data.get('speed_kmh', DEFAULT_SPEED_KMH)),
                    tick_interval_ms=float(route_data.get('tick_interval_ms', DEFAULT_TICK_INTERVAL_MS))
                )

                route.validate()

                routes.append(route)

            except (KeyError, ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"Error parsing route {route_data.get('route_id', 'unknown')}: {e}"
                )

        self._routes = routes
        return routes

    def _parse_coordinates(self, coordinates_data: List, route_id: str) -> Tuple[GeographicPoint, ...]:
        """
        Parse the [lng, lat] pairs of one route.

        Args:
            coordinates_data: List of [lng, lat] pairs
            route_id: ID of the route (for error messages)

        Returns:
            Tuple of GeographicPoint objects

        Raises:
            ConfigurationError: If coordinate data is invalid
        """
        if not isinstance(coordinates_data, list):
            raise ConfigurationError(f"Route {route_id}: 'coordinates' must be a list")

        if not coordinates_data:
            raise ConfigurationError(f"Route {route_id}: must have at least one coordinate")

        points = []
        for index, pair in enumerate(coordinates_data):
            if not isinstance(pair, (list, tuple)):
                raise ConfigurationError(
                    f"Route {route_id}, coordinate {index}: expected [lng, lat], got {pair!r}"
                )
            try:
                point = GeographicPoint.from_pair(pair)
                point.validate()
            except (ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"Route {route_id}, coordinate {index}: Invalid data - {e}"
                )
            points.append(point)

        return tuple(points)

    def get_routes(self) -> List[RouteDefinition]:
        """
        Get the parsed routes.

        Raises:
            ConfigurationError: If routes haven't been parsed yet
        """
        if not self._routes:
            raise ConfigurationError("Routes not parsed. Call parse_routes() first.")
        return self._routes

    def get_route_by_id(self, route_id: str) -> RouteDefinition:
        """
        Get a specific route by ID.

        Args:
            route_id: The route ID to search for

        Returns:
            The RouteDefinition object

        Raises:
            ConfigurationError: If route not found or routes not parsed
        """
        if not self._routes:
            raise ConfigurationError("Routes not parsed. Call parse_routes() first.")

        for route in self._routes:
            if route.route_id == route_id:
                return route

        raise ConfigurationError(f"Route not found: {route_id}")


def load_routes(config_path: str) -> List[RouteDefinition]:
    """
    Convenience function to load and parse the route catalogue in one call.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        List of RouteDefinition objects

    Raises:
        ConfigurationError: If loading or validation fails
    """
    loader = RouteLoader(config_path)
    loader.load()
    return loader.parse_routes()
