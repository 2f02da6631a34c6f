"""
Unit tests for the GPS Simulation Feeder Service.

Tests cover:
- Service initialization
- Configuration loading and route selection
- Simulator construction with overrides
- Position and route completion handling with a mocked EventBridge client
- Entry point validation of environment variables
"""

import os
import sys
import threading
import tempfile
import time
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.common.config_loader import ConfigurationError
from src.common.eventbridge_client import EventBridgeClient
from src.feeders.gps_simulation_feeder import GPSSimulationFeederService, main
from src.feeders.gps_simulator import SimulatorStatus


TEST_CONFIG = """
routes:
  - route_id: R001
    name: Ruta Norte
    speed_kmh: 36
    tick_interval_ms: 1000
    coordinates:
      - [-74.0721, 4.7110]
      - [-74.0650, 4.7231]
  - route_id: R002
    name: Ruta Sur
    coordinates:
      - [10, 20]
"""


class ManualTimer:
    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.cancelled = False

    def start(self):
        pass

    def cancel(self):
        self.cancelled = True

    def fire(self, times=1):
        for _ in range(times):
            self.function()


class TestGPSSimulationFeederService(unittest.TestCase):
    """Test cases for GPSSimulationFeederService."""

    def setUp(self):
        """Set up test fixtures."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(TEST_CONFIG)
            self.config_file = f.name

        self.timers = []

    def tearDown(self):
        os.unlink(self.config_file)

    def timer_factory(self, interval, function):
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    def test_initialization(self):
        service = GPSSimulationFeederService(config_file=self.config_file)

        self.assertEqual(service.config_file, self.config_file)
        self.assertIsNone(service.route_id)
        self.assertEqual(service.region_name, "eu-west-1")
        self.assertIsNone(service.route)
        self.assertIsNone(service.simulator)
        self.assertIsNone(service.eventbridge_client)

    def test_load_configuration_selects_first_route(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.load_configuration()

        self.assertEqual(service.route.route_id, "R001")

    def test_load_configuration_selects_requested_route(self):
        service = GPSSimulationFeederService(config_file=self.config_file, route_id="R002")
        service.load_configuration()

        self.assertEqual(service.route.name, "Ruta Sur")

    def test_load_configuration_unknown_route(self):
        service = GPSSimulationFeederService(config_file=self.config_file, route_id="R999")

        with self.assertRaises(ConfigurationError):
            service.load_configuration()

    def test_load_configuration_missing_file(self):
        service = GPSSimulationFeederService(config_file="/nonexistent/routes.yaml")

        with self.assertRaises(ConfigurationError):
            service.load_configuration()

    def test_build_simulator_before_load(self):
        service = GPSSimulationFeederService(config_file=self.config_file)

        with self.assertRaises(ConfigurationError):
            service.build_simulator(timer_factory=self.timer_factory)

    def test_build_simulator_uses_route_settings(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.load_configuration()
        simulator = service.build_simulator(timer_factory=self.timer_factory)

        self.assertEqual(simulator.config.speed_kmh, 36.0)
        self.assertEqual(simulator.config.tick_interval_ms, 1000.0)
        self.assertEqual(simulator.status, SimulatorStatus.IDLE)

    def test_build_simulator_applies_overrides(self):
        service = GPSSimulationFeederService(
            config_file=self.config_file,
            speed_kmh=72.0,
            tick_interval_ms=500
        )
        service.load_configuration()
        simulator = service.build_simulator(timer_factory=self.timer_factory)

        self.assertAlmostEqual(simulator.tick_distance_meters, 10.0)

    def test_initialize_clients_without_event_bus(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.initialize_clients()

        self.assertIsNone(service.eventbridge_client)

    @patch('src.feeders.gps_simulation_feeder.EventBridgeClient')
    def test_initialize_clients_with_event_bus(self, mock_client_class):
        service = GPSSimulationFeederService(
            config_file=self.config_file,
            event_bus_name="test-bus",
            region_name="us-east-1"
        )
        service.initialize_clients()

        mock_client_class.assert_called_once_with(
            event_bus_name="test-bus",
            region_name="us-east-1",
            max_retries=1
        )
        self.assertEqual(service.eventbridge_client, mock_client_class.return_value)

    def test_positions_published_on_every_tick(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.load_configuration()
        service.eventbridge_client = Mock()
        simulator = service.build_simulator(timer_factory=self.timer_factory)

        simulator.start()
        self.timers[0].fire(2)
        service.shutdown()

        self.assertEqual(service.updates_emitted, 3)
        self.assertEqual(service.eventbridge_client.publish_position_event.call_count, 3)
        route_id, state = service.eventbridge_client.publish_position_event.call_args[0]
        self.assertEqual(route_id, "R001")
        self.assertAlmostEqual(state.distance_traveled_meters, 20.0)

    def test_route_completion_published(self):
        service = GPSSimulationFeederService(config_file=self.config_file, route_id="R002")
        service.load_configuration()
        service.eventbridge_client = Mock()
        simulator = service.build_simulator(timer_factory=self.timer_factory)

        simulator.start()
        self.timers[0].fire(2)
        service.shutdown()

        self.assertEqual(service.laps_completed, 2)
        self.assertEqual(service.eventbridge_client.publish_route_completed_event.call_count, 2)
        self.assertEqual(
            service.eventbridge_client.publish_route_completed_event.call_args[0][0],
            "R002"
        )

    def test_publish_failure_does_not_stop_simulation(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.load_configuration()
        service.eventbridge_client = Mock()
        service.eventbridge_client.publish_position_event.side_effect = Exception("boom")
        simulator = service.build_simulator(timer_factory=self.timer_factory)

        with self.assertLogs('src.feeders.gps_simulation_feeder', level='ERROR') as logs:
            simulator.start()
            self.timers[0].fire(3)

            self.assertEqual(simulator.status, SimulatorStatus.RUNNING)
            self.assertAlmostEqual(simulator.get_state().distance_traveled_meters, 30.0)

            service.shutdown()

        self.assertEqual(len(logs.output), 4)
        self.assertIn("Failed to publish event: boom", logs.output[0])

    def test_slow_publishing_does_not_slow_the_bus(self):
        def slow_put_events(**kwargs):
            time.sleep(0.25)
            return {'FailedEntryCount': 0, 'Entries': []}

        boto_client = Mock()
        boto_client.put_events.side_effect = slow_put_events

        # 36 km/h every 100 ms is 1 m per tick, 10 m per second
        service = GPSSimulationFeederService(config_file=self.config_file, tick_interval_ms=100)
        service.load_configuration()
        service.eventbridge_client = EventBridgeClient(
            event_bus_name='test-bus',
            max_retries=1,
            client=boto_client
        )
        simulator = service.build_simulator()

        started = time.monotonic()
        simulator.start()
        time.sleep(1.0)

        pause_started = time.monotonic()
        simulator.pause()
        pause_elapsed = time.monotonic() - pause_started
        elapsed = pause_started - started
        distance = simulator.get_state().distance_traveled_meters

        service.shutdown()

        self.assertLess(pause_elapsed, 0.1)
        self.assertGreaterEqual(distance, 10.0 * elapsed * 0.7)
        self.assertEqual(boto_client.put_events.call_count, service.updates_emitted)

    def test_positions_dropped_when_publisher_falls_behind(self):
        release = threading.Event()
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.load_configuration()
        service.eventbridge_client = Mock()
        service.eventbridge_client.publish_position_event.side_effect = lambda *args: release.wait(5)
        simulator = service.build_simulator(timer_factory=self.timer_factory)

        with patch('src.feeders.gps_simulation_feeder.MAX_PENDING_PUBLISHES', 2):
            simulator.start()
            self.timers[0].fire(3)

        release.set()
        service.shutdown()

        self.assertEqual(service.updates_emitted, 4)
        self.assertEqual(service.positions_dropped, 2)
        self.assertEqual(service.eventbridge_client.publish_position_event.call_count, 2)

    def test_shutdown_waits_for_pending_events(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.load_configuration()
        service.eventbridge_client = Mock()
        service.eventbridge_client.publish_position_event.side_effect = lambda *args: time.sleep(0.05)
        simulator = service.build_simulator(timer_factory=self.timer_factory)

        simulator.start()
        self.timers[0].fire(3)
        service.shutdown()

        self.assertEqual(service.eventbridge_client.publish_position_event.call_count, 4)

    def test_shutdown_destroys_simulator(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.load_configuration()
        simulator = service.build_simulator(timer_factory=self.timer_factory)
        simulator.start()

        service.shutdown()

        self.assertEqual(simulator.status, SimulatorStatus.DESTROYED)
        self.assertTrue(self.timers[0].cancelled)

    def test_shutdown_without_simulator(self):
        service = GPSSimulationFeederService(config_file=self.config_file)
        service.shutdown()

    @patch('src.feeders.gps_simulation_feeder.time.sleep')
    def test_run_stops_on_keyboard_interrupt(self, mock_sleep):
        mock_sleep.side_effect = KeyboardInterrupt
        service = GPSSimulationFeederService(config_file=self.config_file)

        service.run()

        self.assertEqual(service.simulator.status, SimulatorStatus.DESTROYED)
        self.assertGreaterEqual(service.updates_emitted, 1)

    def test_run_exits_on_bad_configuration(self):
        service = GPSSimulationFeederService(config_file=self.config_file, route_id="R999")

        with self.assertRaises(SystemExit) as ctx:
            service.run()
        self.assertEqual(ctx.exception.code, 1)


class TestMain(unittest.TestCase):
    """Test cases for the main entry point."""

    @patch.dict(os.environ, {'CONFIG_FILE': '/nonexistent/routes.yaml'}, clear=False)
    def test_missing_config_file_exits(self):
        with self.assertRaises(SystemExit) as ctx:
            main()
        self.assertEqual(ctx.exception.code, 1)

    @patch.dict(os.environ, {'SPEED_KMH': 'fast'}, clear=False)
    def test_invalid_speed_exits(self):
        with self.assertRaises(SystemExit):
            main()

    @patch('src.feeders.gps_simulation_feeder.GPSSimulationFeederService')
    def test_main_passes_environment(self, mock_service_class):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(TEST_CONFIG)
            config_file = f.name

        env = {
            'CONFIG_FILE': config_file,
            'ROUTE_ID': 'R002',
            'SPEED_KMH': '30',
            'TICK_INTERVAL_MS': '250',
            'EVENT_BUS_NAME': 'test-bus',
            'AWS_REGION': 'us-east-1'
        }
        try:
            with patch.dict(os.environ, env, clear=False):
                main()
        finally:
            os.unlink(config_file)

        mock_service_class.assert_called_once_with(
            config_file=config_file,
            route_id='R002',
            speed_kmh=30.0,
            tick_interval_ms=250.0,
            event_bus_name='test-bus',
            region_name='us-east-1'
        )
        mock_service_class.return_value.run.assert_called_once()

    @patch.dict(os.environ, {'SPEED_KMH': '-5'}, clear=False)
    def test_non_positive_speed_exits(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(TEST_CONFIG)
            config_file = f.name
        try:
            with patch.dict(os.environ, {'CONFIG_FILE': config_file}):
                with self.assertRaises(SystemExit):
                    main()
        finally:
            os.unlink(config_file)

    @patch('src.feeders.gps_simulation_feeder.GPSSimulationFeederService')
    def test_non_finite_settings_exit(self, mock_service_class):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(TEST_CONFIG)
            config_file = f.name
        try:
            for env in ({'SPEED_KMH': 'nan'}, {'SPEED_KMH': 'inf'}, {'TICK_INTERVAL_MS': 'nan'}):
                env['CONFIG_FILE'] = config_file
                with self.subTest(env=env), patch.dict(os.environ, env, clear=False):
                    with self.assertRaises(SystemExit) as ctx:
                        main()
                    self.assertEqual(ctx.exception.code, 1)
        finally:
            os.unlink(config_file)

        mock_service_class.assert_not_called()


if __name__ == '__main__':
    unittest.main()
