"""
EventBridge client wrapper for the School Bus GPS Simulator.

This module provides a wrapper around the AWS EventBridge client
with retry logic, exponential backoff, and convenience methods for publishing
simulated bus position and route completion events.
"""

import time
import json
import logging
from typing import Dict, Any, Optional
from datetime import datetime

import boto3
from botocore.exceptions import ClientError

from .models import SimulationState


logger = logging.getLogger(__name__)

EVENT_SOURCE = 'school-bus-simulator'


class EventBridgeClient:
    """
    Wrapper for AWS EventBridge operations with retry logic.

    This client provides methods for publishing simulated position updates
    and route completion events with automatic retry on failures.
    """

    def __init__(
        self,
        event_bus_name: str,
        region_name: str = "eu-west-1",
        max_retries: int = 3,
        client: Optional[Any] = None
    ):
        """
        Initialize EventBridge client.

        Args:
            event_bus_name: Name of the EventBridge event bus
            region_name: AWS region name
            max_retries: Maximum number of retry attempts for failed publishes
            client: Optional boto3 client (for testing)
        """
        self.event_bus_name = event_bus_name
        self.region_name = region_name
        self.max_retries = max_retries

        # Use provided client or create new one
        self.client = client or boto3.client(
            'events',
            region_name=region_name
        )

    def publish_position_event(self, route_id: str, state: SimulationState) -> bool:
        """
        Publish a simulated bus position to EventBridge.

        Args:
            route_id: Route the simulated bus is driving
            state: Simulator state snapshot

        Returns:
            True if publish succeeded, False otherwise

        Example:
            client.publish_position_event('R001', simulator.get_state())
        """
        detail = {'route_id': route_id}
        detail.update(state.to_dict())

        return self._publish_event(
            source=EVENT_SOURCE,
            detail_type='bus.position.simulated',
            detail=detail
        )

    def publish_route_completed_event(self, route_id: str, timestamp: datetime) -> bool:
        """
        Publish an event telling consumers the simulated bus restarted its route.

        Args:
            route_id: Route the simulated bus completed
            timestamp: Time the route was completed

        Returns:
            True if publish succeeded, False otherwise
        """
        detail = {
            'route_id': route_id,
            'timestamp': timestamp.isoformat()
        }

        return self._publish_event(
            source=EVENT_SOURCE,
            detail_type='bus.route.completed',
            detail=detail
        )

    def _publish_event(
        self,
        source: str,
        detail_type: str,
        detail: Dict[str, Any]
    ) -> bool:
        """
        Publish an event to EventBridge with exponential backoff retry logic.

        Args:
            source: Event source identifier
            detail_type: Type of event
            detail: Event detail dictionary

        Returns:
            True if publish succeeded, False otherwise
        """
        for attempt in range(self.max_retries):
            try:
                entry = {
                    'Source': source,
                    'DetailType': detail_type,
                    'Detail': json.dumps(detail),
                    'EventBusName': self.event_bus_name
                }

                response = self.client.put_events(Entries=[entry])

                # Check for failed entries
                failed_count = response.get('FailedEntryCount', 0)
                if failed_count > 0:
                    failed_entries = response.get('Entries', [])
                    error_msg = failed_entries[0].get('ErrorMessage', 'Unknown error') if failed_entries else 'Unknown error'
                    raise Exception(f"Failed to publish event: {error_msg}")

                logger.debug(
                    f"Published event to EventBridge: "
                    f"source={source}, detail_type={detail_type}"
                )
                return True

            except (ClientError, Exception) as e:
                if attempt == self.max_retries - 1:
                    # Log warning and continue (non-critical failure)
                    logger.warning(
                        f"Failed to publish event to EventBridge after {self.max_retries} attempts: "
                        f"{str(e)}. Continuing without event publication."
                    )
                    return False

                # Calculate exponential backoff wait time
                wait_time = 2 ** attempt

                logger.warning(
                    f"EventBridge publish failed (attempt {attempt + 1}/{self.max_retries}): "
                    f"{str(e)}. Retrying in {wait_time}s..."
                )

                time.sleep(wait_time)

        return False
