"""
GPS route simulation for the School Bus GPS Simulator.

This module implements the simulated telematics feed used to animate a bus
marker on the route map. A GPSSimulator walks a route polyline at constant
speed, advancing a fixed distance on every timer tick and handing a snapshot
of its state to the position update callback. When the bus reaches the last
point it loops back to the first one.

Speed formula:
    speed_kmh / 3.6                       -> meters per second
    meters per second * tick_interval_s   -> meters per tick

    50 km/h every 100 ms = 13.89 m/s * 0.1 s = 1.389 m per tick
"""

import functools
import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from src.common.config_loader import ConfigurationError
from src.common.geometry import initial_bearing, interpolate, segment_lengths
from src.common.models import (
    GeographicPoint,
    GPSCoordinate,
    SimulationConfig,
    SimulationState,
)


logger = logging.getLogger(__name__)

# Leftover below this many meters at a segment boundary counts as the whole segment
BOUNDARY_TOLERANCE_METERS = 1e-6


class SimulatorStateError(RuntimeError):
    """Raised when a simulator is used after it has been destroyed."""
    pass


class SimulatorStatus(Enum):
    """Lifecycle of a GPSSimulator: IDLE -> RUNNING <-> PAUSED -> DESTROYED."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    DESTROYED = "destroyed"


def current_time_ms() -> int:
    """Wall clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class RepeatingTimer:
    """
    Calls a function every `interval` seconds on a daemon thread until cancelled.

    Sleeps are measured against a monotonic deadline so a slow callback does
    not push every later tick back.
    """

    def __init__(self, interval: float, function: Callable[[], None], name: Optional[str] = None):
        self.interval = interval
        self.function = function
        self._finished = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name or "gps-simulator-timer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        """Stop the timer. A tick already in progress finishes normally."""
        self._finished.set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        next_run = time.monotonic() + self.interval
        while not self._finished.wait(max(0.0, next_run - time.monotonic())):
            try:
                self.function()
            except Exception as e:
                logger.error(f"Unhandled error in timer tick: {e}", exc_info=True)

            next_run += self.interval
            now = time.monotonic()
            if next_run < now:
                logger.debug(
                    f"Tick overran its {self.interval:.3f}s interval by {now - next_run:.3f}s"
                )
                next_run = now


TimerFactory = Callable[[float, Callable[[], None]], RepeatingTimer]


class GPSSimulator:
    """
    Simulates a bus driving a route at constant speed.

    All state changes happen under a single re-entrant lock, so the timer
    thread and the public methods never interleave. Callbacks run while the
    lock is held: they may call pause(), stop() or destroy() on the same
    simulator but should return quickly, since they delay the next tick.

    Exceptions raised by the callbacks are logged and discarded; they never
    change the simulator state or stop the timer.
    """

    def __init__(
        self,
        config: SimulationConfig,
        timer_factory: Optional[TimerFactory] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize the simulator. The timer is not started.

        Args:
            config: Speed, update interval, route and callbacks
            timer_factory: Builds the repeating timer from (interval_seconds, function);
                defaults to RepeatingTimer
            clock: Returns the current time in milliseconds; defaults to the wall clock

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            config.validate()
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid simulator configuration: {e}") from e

        self.config = config
        self._route = config.route_points()
        self._segment_distances = segment_lengths(self._route)
        self._total_distance = sum(self._segment_distances, 0.0)
        self._tick_distance = 0.0

        self._timer_factory = timer_factory or RepeatingTimer
        self._clock = clock or current_time_ms
        self._lock = threading.RLock()
        self._timer = None
        self._generation = 0
        self._status = SimulatorStatus.IDLE

        self._reset_state()

        logger.info(
            f"GPS simulator created: {len(self._route)} points, "
            f"{self._total_distance:.1f}m, speed={config.speed_kmh}km/h, "
            f"interval={config.tick_interval_ms}ms"
        )

    @property
    def status(self) -> SimulatorStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status is SimulatorStatus.RUNNING

    @property
    def tick_distance_meters(self) -> float:
        """Distance covered on every tick, in meters."""
        return self.config.speed_kmh / 3.6 * (self.config.tick_interval_ms / 1000)

    @property
    def segment_distances(self) -> List[float]:
        return list(self._segment_distances)

    def start(self) -> None:
        """
        Start (or resume) the simulation.

        Emits the current state immediately, then once per tick. Does nothing
        if the simulator is already running.

        Raises:
            SimulatorStateError: If the simulator has been destroyed
        """
        with self._lock:
            if self._status is SimulatorStatus.DESTROYED:
                raise SimulatorStateError("Cannot start a destroyed GPS simulator")
            if self._status is SimulatorStatus.RUNNING:
                return

            self._status = SimulatorStatus.RUNNING
            self._tick_distance = self.tick_distance_meters
            self._generation += 1

            timer = self._timer_factory(
                self.config.tick_interval_ms / 1000,
                functools.partial(self._on_tick, self._generation)
            )
            self._timer = timer
            timer.start()

            logger.info(
                f"GPS simulation started at {self._distance_traveled:.1f}m "
                f"({self._tick_distance:.3f}m per tick)"
            )

            self._emit_position()

    def pause(self) -> None:
        """Stop the timer, keeping the current position."""
        with self._lock:
            if self._status is not SimulatorStatus.RUNNING:
                return

            self._cancel_timer()
            self._status = SimulatorStatus.PAUSED
            logger.info(f"GPS simulation paused at {self._distance_traveled:.1f}m")

    def stop(self) -> None:
        """Stop the timer and move the bus back to the first point."""
        with self._lock:
            if self._status is SimulatorStatus.DESTROYED:
                return

            self.pause()
            self._reset_state()
            self._status = SimulatorStatus.IDLE
            logger.info("GPS simulation stopped")

    def reset_to_start(self) -> None:
        """
        Move the bus back to the first point without touching the timer.

        Raises:
            SimulatorStateError: If the simulator has been destroyed
        """
        with self._lock:
            if self._status is SimulatorStatus.DESTROYED:
                raise SimulatorStateError("Cannot reset a destroyed GPS simulator")
            self._reset_state()

    def destroy(self) -> None:
        """
        Stop the timer for good. No update is emitted after this returns.

        Starting a destroyed simulator is a programming error and raises
        SimulatorStateError.
        """
        with self._lock:
            if self._status is SimulatorStatus.DESTROYED:
                return

            self._cancel_timer()
            self._status = SimulatorStatus.DESTROYED
            logger.info("GPS simulator destroyed")

    def get_state(self) -> SimulationState:
        """Return a snapshot of the current state."""
        with self._lock:
            return self._snapshot()

    def _cancel_timer(self) -> None:
        # Bumping the generation makes any tick already queued on the old timer a no-op
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset_state(self) -> None:
        self._position = self._route[0]
        self._timestamp_ms = self._clock()
        self._heading = initial_bearing(self._route[0], self._route[1]) if len(self._route) > 1 else 0.0
        self._distance_traveled = 0.0
        self._segment_index = 0
        self._segment_progress = 0.0
        self._progress = 100.0 if self._total_distance == 0 else 0.0

    def _snapshot(self) -> SimulationState:
        return SimulationState(
            current_position=GPSCoordinate(
                lng=self._position.lng,
                lat=self._position.lat,
                timestamp_ms=self._timestamp_ms
            ),
            heading=self._heading,
            speed_kmh=float(self.config.speed_kmh),
            progress_percent=self._progress,
            distance_traveled_meters=self._distance_traveled,
            total_distance_meters=self._total_distance,
            is_moving=self._status is SimulatorStatus.RUNNING,
            current_segment_index=self._segment_index,
            segment_progress=self._segment_progress
        )

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._status is not SimulatorStatus.RUNNING:
                return
            self._advance(self._tick_distance)

    def _advance(self, distance: float) -> None:
        """
        Move the bus `distance` meters along the route and emit the new state.

        A tick ending within BOUNDARY_TOLERANCE_METERS of a vertex snaps to
        that vertex, so the distance traveled may run ahead of the summed tick
        distances by up to the tolerance per vertex crossed.

        Args:
            distance: Distance to travel in meters
        """
        num_segments = len(self._segment_distances)

        if self._segment_index >= num_segments:
            # Route completed: loop back to the start
            self._reset_state()
            logger.info("Route completed, restarting from the first point")
            self._notify_route_complete()
            if self._status is SimulatorStatus.RUNNING:
                self._emit_position()
            return

        remaining = distance
        while remaining > 0 and self._segment_index < num_segments:
            segment_distance = self._segment_distances[self._segment_index]
            remaining_in_segment = segment_distance * (1 - self._segment_progress)

            if remaining >= remaining_in_segment - BOUNDARY_TOLERANCE_METERS:
                # Advance to the next segment
                remaining = max(0.0, remaining - remaining_in_segment)
                self._distance_traveled += remaining_in_segment
                self._segment_index += 1
                self._segment_progress = 0.0
            else:
                # Advance within the current segment
                self._segment_progress += remaining / segment_distance
                self._distance_traveled += remaining
                remaining = 0.0

        if self._segment_index < num_segments:
            origin = self._route[self._segment_index]
            target = self._route[self._segment_index + 1]
            fraction = min(1.0, max(0.0, self._segment_progress))
            self._position = interpolate(origin, target, fraction)
            self._heading = initial_bearing(origin, target)
        else:
            # End of the route
            self._position = self._route[-1]

        if self._total_distance == 0:
            self._progress = 100.0
        else:
            self._progress = min(100.0, self._distance_traveled / self._total_distance * 100)

        self._timestamp_ms = self._clock()

        logger.debug(
            f"Bus position: ({self._position.lat:.6f}, {self._position.lng:.6f}), "
            f"heading {self._heading:.1f}, segment {self._segment_index}/{num_segments}, "
            f"progress {self._progress:.1f}%"
        )

        self._emit_position()

    def _emit_position(self) -> None:
        state = self._snapshot()
        try:
            self.config.on_position_update(state)
        except Exception as e:
            logger.error(f"Position update callback failed: {e}", exc_info=True)

    def _notify_route_complete(self) -> None:
        if self.config.on_route_complete is None:
            return
        try:
            self.config.on_route_complete()
        except Exception as e:
            logger.error(f"Route complete callback failed: {e}", exc_info=True)


def create_simulator(
    route_coordinates: List[GeographicPoint],
    on_position_update: Callable[[SimulationState], None],
    speed_kmh: float,
    tick_interval_ms: float,
    on_route_complete: Optional[Callable[[], None]] = None,
    **kwargs
) -> GPSSimulator:
    """
    Convenience function to build a simulator from plain arguments.

    Args:
        route_coordinates: Route polyline
        on_position_update: Called with every new state
        speed_kmh: Bus speed in km/h
        tick_interval_ms: Update interval in milliseconds
        on_route_complete: Called every time the route restarts
        **kwargs: Passed through to GPSSimulator (timer_factory, clock)

    Returns:
        A GPSSimulator that has not been started

    Raises:
        ConfigurationError: If any argument is invalid
    """
    config = SimulationConfig(
        speed_kmh=speed_kmh,
        tick_interval_ms=tick_interval_ms,
        route_coordinates=route_coordinates,
        on_position_update=on_position_update,
        on_route_complete=on_route_complete
    )
    return GPSSimulator(config, **kwargs)
