"""
NATS JetStream Client for Python Microservices

Thin event bus over nats-py: connects, ensures the service stream exists
and publishes `Event` envelopes as JSON.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import nats
from nats.aio.client import Client as NATS
from nats.js import JetStreamContext

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types published by the match service"""

    # Match lifecycle
    MATCH_CREATED = "match.created"
    MATCH_TRANSITIONED = "match.transitioned"
    MATCH_PAID = "match.paid"

    # Delivery handoff
    DELIVERY_PIN_ISSUED = "match.delivery.pin_issued"
    DELIVERY_PIN_FAILED = "match.delivery.pin_failed"
    DELIVERY_COMPLETED = "match.delivery.completed"

    # Audit trail
    AUDIT_RECORDED = "match.audit.recorded"


class ServiceSource(Enum):
    """Service sources"""
    MATCH_SERVICE = "match_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }


class NATSEventBus:
    """
    NATS JetStream event bus.

    Publishing never raises: failures are logged and reported as False so a
    broker outage cannot fail a committed state transition.
    """

    def __init__(
        self,
        service_name: str,
        servers: str = "nats://localhost:4222",
        stream_name: str = "match-stream",
        subjects: Optional[List[str]] = None,
    ):
        self.service_name = service_name
        self.servers = servers
        self.stream_name = stream_name
        self.subjects = subjects or ["match.>"]

        self._client: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.servers}")

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self):
        """Connect to NATS and make sure the JetStream stream exists"""
        try:
            self._client = await nats.connect(servers=self.servers, name=self.service_name)
            self._js = self._client.jetstream()

            try:
                await self._js.add_stream(name=self.stream_name, subjects=self.subjects)
            except Exception as e:
                logger.debug(f"Stream creation note: {e}")

            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}, stream {self.stream_name}")

        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """Publish an event to JetStream using event.type as subject"""
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            data = json.dumps(event.to_dict()).encode()
            ack = await self._js.publish(event.type, data, stream=self.stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {self.stream_name}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def close(self):
        """Drain and close the connection"""
        if self._client and self._is_connected:
            try:
                await self._client.drain()
            except Exception as e:
                logger.warning(f"Error draining NATS connection: {e}")
        self._is_connected = False
        self._client = None
        self._js = None
        logger.info("NATS connection closed")

_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    servers: Optional[str] = None,
    stream_name: Optional[str] = None,
) -> NATSEventBus:
    """Get or create a connected event bus singleton"""
    global _event_bus

    if _event_bus is None:
        from core.config import get_settings

        infra = get_settings().infrastructure
        _event_bus = NATSEventBus(
            service_name=service_name,
            servers=servers or infra.nats_server,
            stream_name=stream_name or infra.nats_stream,
        )
        await _event_bus.connect()

    return _event_bus
