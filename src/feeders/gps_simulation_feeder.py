#!/usr/bin/env python3
"""
GPS Simulation Feeder Service for the School Bus GPS Simulator.

This service runs continuously, driving one simulated school bus along a route
from the route catalogue, logging every position and optionally publishing it
to EventBridge so the route map can move the bus marker.

Environment Variables:
    CONFIG_FILE: Path to routes.yaml configuration file (default: data/routes.yaml)
    ROUTE_ID: Route to simulate (default: first route in the file)
    SPEED_KMH: Overrides the route speed in km/h
    TICK_INTERVAL_MS: Overrides the route update interval in milliseconds
    EVENT_BUS_NAME: EventBridge event bus name (default: unset, publishing disabled)
    AWS_REGION: AWS region for EventBridge (default: eu-west-1)
    LOG_LEVEL: Logging level (default: INFO)

Usage:
    # Run with default settings
    python gps_simulation_feeder.py

    # Run a specific route at 30 km/h
    ROUTE_ID=R002 SPEED_KMH=30 python gps_simulation_feeder.py
"""

import math
import os
import sys
import time
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Optional
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.common.config_loader import RouteLoader, RouteDefinition, ConfigurationError
from src.common.eventbridge_client import EventBridgeClient
from src.common.models import SimulationState
from src.feeders.gps_simulator import GPSSimulator, create_simulator


# Configure logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

# Positions queued for publishing beyond this are dropped; the next tick supersedes them
MAX_PENDING_PUBLISHES = 50


class GPSSimulationFeederService:
    """
    Main service class for the GPS Simulation Feeder.

    The service owns a single GPSSimulator. Every state the simulator emits
    is logged and, when an event bus is configured, published to EventBridge.

    Publishing happens on a single background worker so network latency never
    delays the simulator ticks. When the worker falls behind by more than
    MAX_PENDING_PUBLISHES events, new positions are dropped until it catches up.
    Route completion events are never dropped.
    """

    def __init__(
        self,
        config_file: str,
        route_id: Optional[str] = None,
        speed_kmh: Optional[float] = None,
        tick_interval_ms: Optional[float] = None,
        event_bus_name: Optional[str] = None,
        region_name: str = "eu-west-1"
    ):
        """
        Initialize the GPS Simulation Feeder Service.

        Args:
            config_file: Path to routes.yaml configuration file
            route_id: Route to simulate; the first route when None
            speed_kmh: Speed override in km/h
            tick_interval_ms: Update interval override in milliseconds
            event_bus_name: EventBridge event bus name; publishing is disabled when None
            region_name: AWS region name
        """
        self.config_file = config_file
        self.route_id = route_id
        self.speed_kmh = speed_kmh
        self.tick_interval_ms = tick_interval_ms
        self.event_bus_name = event_bus_name
        self.region_name = region_name

        self.route: Optional[RouteDefinition] = None
        self.simulator: Optional[GPSSimulator] = None
        self.eventbridge_client: Optional[EventBridgeClient] = None

        self.updates_emitted = 0
        self.laps_completed = 0
        self.positions_dropped = 0

        self._publisher: Optional[ThreadPoolExecutor] = None
        self._pending_publishes = 0
        self._publish_lock = threading.Lock()

        logger.info(
            f"Initializing GPS Simulation Feeder Service: "
            f"config={config_file}, route={route_id or 'first'}, "
            f"event_bus={event_bus_name or 'disabled'}, region={region_name}"
        )

    def load_configuration(self) -> None:
        """
        Load the route catalogue and select the route to simulate.

        Raises:
            ConfigurationError: If configuration loading fails
        """
        logger.info(f"Loading configuration from {self.config_file}")

        try:
            loader = RouteLoader(self.config_file)
            loader.load()
            routes = loader.parse_routes()

            if self.route_id:
                self.route = loader.get_route_by_id(self.route_id)
            else:
                self.route = routes[0]

            logger.info(
                f"Configuration loaded successfully: {len(routes)} routes, "
                f"simulating {self.route.route_id} ({self.route.name}, "
                f"{len(self.route.coordinates)} points)"
            )

        except ConfigurationError as e:
            logger.error(f"Failed to load configuration: {e}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error loading configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    def initialize_clients(self) -> None:
        """Initialize the EventBridge client when an event bus is configured."""
        if not self.event_bus_name:
            logger.info("No event bus configured, positions will only be logged")
            return

        logger.info("Initializing EventBridge client")

        try:
            # A lost position is superseded by the next tick, so do not back off
            self.eventbridge_client = EventBridgeClient(
                event_bus_name=self.event_bus_name,
                region_name=self.region_name,
                max_retries=1
            )
            logger.info("Client initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize EventBridge client: {e}")
            raise

    def build_simulator(self, **kwargs) -> GPSSimulator:
        """
        Create the simulator for the selected route.

        Args:
            **kwargs: Passed through to GPSSimulator (timer_factory, clock)

        Returns:
            The simulator, not yet started

        Raises:
            ConfigurationError: If no route is loaded or the simulator settings are invalid
        """
        if self.route is None:
            raise ConfigurationError("Configuration not loaded. Call load_configuration() first.")

        speed_kmh = self.speed_kmh if self.speed_kmh is not None else self.route.speed_kmh
        tick_interval_ms = self.tick_interval_ms if self.tick_interval_ms is not None else self.route.tick_interval_ms

        self.simulator = create_simulator(
            route_coordinates=list(self.route.coordinates),
            on_position_update=self.handle_position_update,
            speed_kmh=speed_kmh,
            tick_interval_ms=tick_interval_ms,
            on_route_complete=self.handle_route_complete,
            **kwargs
        )
        return self.simulator

    def handle_position_update(self, state: SimulationState) -> None:
        """Log a simulated position and publish it when an event bus is configured."""
        self.updates_emitted += 1

        logger.debug(
            f"Route {self.route.route_id} position: "
            f"({state.current_position.lat:.6f}, {state.current_position.lng:.6f}), "
            f"heading {state.heading:.1f}, progress {state.progress_percent:.1f}%"
        )

        if self.eventbridge_client is not None:
            self._submit_publish(
                self.eventbridge_client.publish_position_event,
                self.route.route_id,
                state,
                droppable=True
            )

    def handle_route_complete(self) -> None:
        self.laps_completed += 1
        logger.info(f"Route {self.route.route_id} completed (lap {self.laps_completed}), restarting")

        if self.eventbridge_client is not None:
            self._submit_publish(
                self.eventbridge_client.publish_route_completed_event,
                self.route.route_id,
                datetime.now()
            )

    def _submit_publish(self, publish, *args, droppable: bool = False) -> None:
        """
        Hand a publish call to the background worker.

        Args:
            publish: EventBridgeClient method to call
            *args: Arguments for the call
            droppable: Skip the call when the worker is too far behind
        """
        with self._publish_lock:
            if droppable and self._pending_publishes >= MAX_PENDING_PUBLISHES:
                self.positions_dropped += 1
                logger.warning(
                    f"Publisher is {self._pending_publishes} events behind, "
                    f"dropping position ({self.positions_dropped} dropped so far)"
                )
                return

            if self._publisher is None:
                self._publisher = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix="eventbridge-publisher"
                )
            self._pending_publishes += 1
            future = self._publisher.submit(publish, *args)

        future.add_done_callback(self._publish_done)

    def _publish_done(self, future: Future) -> None:
        with self._publish_lock:
            self._pending_publishes -= 1

        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Failed to publish event: {error}", exc_info=error)

    def shutdown(self) -> None:
        """Destroy the simulator, then wait for queued events to be published."""
        if self.simulator is not None:
            self.simulator.destroy()
            logger.info(
                f"Simulator shut down after {self.updates_emitted} updates, "
                f"{self.laps_completed} laps"
            )

        with self._publish_lock:
            publisher, self._publisher = self._publisher, None

        if publisher is not None:
            logger.info("Waiting for pending events to be published")
            publisher.shutdown(wait=True)

    def run(self) -> None:
        """
        Main service loop - runs until interrupted.

        This method:
        1. Loads configuration
        2. Initializes clients
        3. Starts the simulator and waits while its timer drives the bus
        4. Destroys the simulator on shutdown
        """
        logger.info("Starting GPS Simulation Feeder Service")

        try:
            self.load_configuration()
            self.initialize_clients()
            self.build_simulator()
            self.simulator.start()

            logger.info(
                f"Service initialized successfully. Simulating route {self.route.route_id} "
                f"at {self.simulator.config.speed_kmh}km/h"
            )

        except Exception as e:
            logger.critical(f"Fatal error during service initialization: {e}", exc_info=True)
            sys.exit(1)

        try:
            while self.simulator.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Received interrupt signal, shutting down gracefully")
        finally:
            self.shutdown()

        logger.info("GPS Simulation Feeder Service stopped")


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == '':
        return None
    return float(value)


def main():
    """
    Main entry point for the GPS Simulation Feeder Service.

    Reads configuration from environment variables and starts the service.
    """
    config_file = os.getenv('CONFIG_FILE', 'data/routes.yaml')
    route_id = os.getenv('ROUTE_ID') or None
    event_bus_name = os.getenv('EVENT_BUS_NAME') or None
    region_name = os.getenv('AWS_REGION', 'eu-west-1')

    try:
        speed_kmh = _optional_float('SPEED_KMH')
        tick_interval_ms = _optional_float('TICK_INTERVAL_MS')
    except ValueError as e:
        logger.error(f"Invalid numeric setting: {e}")
        sys.exit(1)

    # Validate configuration
    if not os.path.exists(config_file):
        logger.error(f"Configuration file not found: {config_file}")
        sys.exit(1)

    if speed_kmh is not None and not (speed_kmh > 0 and math.isfinite(speed_kmh)):
        logger.error(f"SPEED_KMH must be positive, got {speed_kmh}")
        sys.exit(1)

    if tick_interval_ms is not None and not (tick_interval_ms > 0 and math.isfinite(tick_interval_ms)):
        logger.error(f"TICK_INTERVAL_MS must be positive, got {tick_interval_ms}")
        sys.exit(1)

    service = GPSSimulationFeederService(
        config_file=config_file,
        route_id=route_id,
        speed_kmh=speed_kmh,
        tick_interval_ms=tick_interval_ms,
        event_bus_name=event_bus_name,
        region_name=region_name
    )

    service.run()


if __name__ == '__main__':
    main()
