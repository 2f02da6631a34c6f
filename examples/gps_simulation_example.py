"""
Example demonstrating the GPS route simulator.

This example shows how to:
- Measure a route polyline with the geometry helpers
- Drive a simulated bus along the route in real time
- Receive position updates and route completion notifications
"""

import sys
import time
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.common.geometry import haversine_distance, initial_bearing, total_length
from src.common.models import GeographicPoint, SimulationState
from src.feeders.gps_simulator import create_simulator


def main():
    """Demonstrate the GPS route simulator."""

    route = [
        GeographicPoint(lng=-74.0721, lat=4.7110),
        GeographicPoint(lng=-74.0650, lat=4.7231),
        GeographicPoint(lng=-74.0580, lat=4.7090),
    ]

    print("=" * 60)
    print("GPS Route Simulator Example")
    print("=" * 60)

    print(f"\nRoute length: {total_length(route):.1f} meters")
    for i in range(len(route) - 1):
        print(
            f"  Segment {i}: {haversine_distance(route[i], route[i + 1]):.1f}m, "
            f"bearing {initial_bearing(route[i], route[i + 1]):.1f} degrees"
        )

    def on_position_update(state: SimulationState):
        position = state.current_position
        print(
            f"  ({position.lat:.6f}, {position.lng:.6f}) "
            f"heading {state.heading:5.1f}  progress {state.progress_percent:5.1f}%"
        )

    def on_route_complete():
        print("  Route completed, restarting...")

    # 600 km/h so the bus covers a visible distance in a few seconds
    simulator = create_simulator(
        route_coordinates=route,
        on_position_update=on_position_update,
        speed_kmh=600,
        tick_interval_ms=500,
        on_route_complete=on_route_complete
    )

    print(f"\nDriving at 600 km/h, {simulator.tick_distance_meters:.1f}m per tick:")
    simulator.start()
    time.sleep(5)
    simulator.pause()

    state = simulator.get_state()
    print(f"\nPaused after {state.distance_traveled_meters:.1f}m")

    simulator.destroy()


if __name__ == "__main__":
    main()
