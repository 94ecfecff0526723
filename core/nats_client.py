"""
NATS JetStream Client for Python Microservices

Provides event-driven communication between the ledger and its peers
using the native nats-py client.
"""

import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import nats
from nats.aio.client import Client as NATS
from nats.js import JetStreamContext
from nats.js.errors import BadRequestError

from core.config import InfraConfig, get_settings

logger = logging.getLogger(__name__)


class EventEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, date and datetime values"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class EventType(Enum):
    """Event types exchanged over the bus"""

    # Membership ledger events (published)
    MEMBERSHIP_ASSIGNED = "membership.assigned"
    MEMBERSHIP_USAGE_ADJUSTED = "membership.usage_adjusted"
    MEMBERSHIP_STATUS_CHANGED = "membership.status_changed"
    MEMBERSHIP_OVERRIDE_TOGGLED = "membership.override_toggled"

    # Attendance events (consumed)
    ATTENDANCE_RECORDED = "attendance.recorded"

    # Player events (consumed)
    PLAYER_DELETED = "player.deleted"


class ServiceSource(Enum):
    """Service sources"""

    MEMBERSHIP_LEDGER_SERVICE = "membership_ledger_service"
    PLAYER_SERVICE = "player_service"


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


EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class NATSEventBus:
    """
    NATS JetStream event bus on top of nats-py.

    Streams are derived from the first subject token
    (``membership.assigned`` -> ``membership-stream``).
    """

    def __init__(self, service_name: str, config: Optional[InfraConfig] = None):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used in durable consumer names)
            config: Optional infrastructure config
        """
        self.service_name = service_name
        self.config = config or get_settings().infrastructure
        self.server = self.config.nats_server

        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._subscriptions: List[Any] = []
        self._streams: set = set()

        logger.info(f"NATS EventBus initialized: {self.server}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=[self.server], name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    @staticmethod
    def _get_stream_name(subject: str) -> str:
        return f"{subject.split('.')[0]}-stream"

    async def _ensure_stream(self, subject: str) -> str:
        stream_name = self._get_stream_name(subject)
        if stream_name in self._streams:
            return stream_name
        prefix = subject.split(".")[0]
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
        except BadRequestError as e:
            # stream already exists with a different config
            logger.debug(f"Stream creation note: {e}")
        self._streams.add(stream_name)
        return stream_name

    async def publish(self, subject: str, data: Dict[str, Any]) -> None:
        """Publish a raw payload to a JetStream subject"""
        if not self.is_connected:
            raise RuntimeError("Not connected to NATS")

        stream_name = await self._ensure_stream(subject)
        payload = json.dumps(data, cls=EventEncoder).encode()
        ack = await self._js.publish(subject, payload)
        logger.info(f"Published {subject} to stream {stream_name}, seq={ack.seq}")

    async def publish_event(self, event: Event) -> bool:
        """Publish an Event envelope, returning False on failure"""
        try:
            await self.publish(event.type, event.to_dict())
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self, pattern: str, handler: EventHandler, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a pattern using a durable JetStream consumer.

        The handler receives the decoded JSON payload. Messages are acked
        after the handler returns; a handler exception naks the message so
        JetStream redelivers it.

        Args:
            pattern: Subject pattern to subscribe to (e.g., "attendance.recorded")
            handler: Async callback receiving the event dict
            durable: Optional durable name for the consumer
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return None

        await self._ensure_stream(pattern)
        durable_name = durable or f"{self.service_name}-{pattern.replace('.', '-').replace('*', 'all')}"

        async def _on_message(msg):
            try:
                event_data = json.loads(msg.data.decode())
                await handler(event_data)
                await msg.ack()
            except Exception as e:
                logger.error(f"Error handling message on {msg.subject}: {e}", exc_info=True)
                await msg.nak()

        sub = await self._js.subscribe(pattern, durable=durable_name, cb=_on_message, manual_ack=True)
        self._subscriptions.append(sub)
        logger.info(f"Subscribed to {pattern} (durable={durable_name})")
        return durable_name

    async def close(self):
        """Drain subscriptions and close the connection"""
        for sub in self._subscriptions:
            try:
                await sub.unsubscribe()
            except Exception as e:
                logger.debug(f"Unsubscribe note: {e}")
        self._subscriptions.clear()

        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None

        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional infrastructure config

    Returns:
        Connected NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        bus = NATSEventBus(service_name=service_name, config=config)
        await bus.connect()
        _event_bus = bus

    return _event_bus


def create_event(
    event_type: EventType,
    source: ServiceSource,
    data: Dict[str, Any],
    subject: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> Event:
    """Create an Event instance"""
    return Event(
        event_type=event_type,
        source=source,
        data=data,
        subject=subject,
        metadata=metadata,
    )
