# File: campus_parking/infrastructure/messaging.py
"""
Messaging Infrastructure for the Campus Parking Booking Engine

1. EventBus - in-process publish/subscribe for committed booking transitions
2. EventHandler - base class for bus subscribers
3. Notification adapters implementing NotificationPort:
   - LoggingNotifier: writes notifications to the log (default)
   - RedisNotificationPublisher: publishes JSON payloads on a redis pub/sub channel

Delivery (email, SMS, push) is somebody else's job: a notification here is a
published message and nothing more.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging
import threading

import redis

from ..application.ports import DomainEvent, EventType


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        """Handle a domain event"""
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        """Check if this handler can handle the event"""
        return True


class RecordingHandler(EventHandler):
    """Keeps every event it sees; handy for tests and audits"""

    def __init__(self):
        self.events: List[DomainEvent] = []
        self._lock = threading.Lock()

    def handle(self, event: DomainEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: EventType) -> List[DomainEvent]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing

    Handlers run synchronously on the publishing thread after the transition
    has been committed. A failing handler is logged and never affects the
    publisher or the other handlers.
    """

    def __init__(self):
        self._subscribers: Dict[Optional[EventType], List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: Optional[EventType], handler: EventHandler) -> None:
        """Subscribe to events of a specific type (None subscribes to every type)"""
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type or 'all events'}")

    def unsubscribe(self, event_type: Optional[EventType], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type or 'all events'}")

    def publish(self, event: DomainEvent) -> None:
        """Publish an event to all subscribers"""
        self._logger.debug(f"Publishing event: {event.event_type.value} (ID: {event.event_id})")

        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, [])) + list(self._subscribers.get(None, []))

        for handler in handlers:
            if not handler.can_handle(event):
                continue
            try:
                handler.handle(event)
            except Exception as e:
                self._logger.error(
                    f"Error handling event {event.event_type.value} with {handler.__class__.__name__}: {e}"
                )

    def clear_subscribers(self) -> None:
        """Clear all subscribers (for testing)"""
        with self._lock:
            self._subscribers.clear()


# ============================================================================
# NOTIFICATION ADAPTERS
# ============================================================================

class LoggingNotifier:
    """NotificationPort that only logs the request"""

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self._logger = logging.getLogger(self.__class__.__name__)

    def notify(self, event: DomainEvent) -> None:
        self._logger.log(
            self.level,
            f"Notification {event.event_type.value} for user {event.user_id} "
            f"(booking {event.booking_id}, slot {event.slot_id})"
        )


class RedisNotificationPublisher:
    """NotificationPort publishing each event as JSON on a redis channel"""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        channel: str = "parking.notifications",
        client: Optional[Any] = None,
        **kwargs
    ):
        self.redis_url = redis_url
        self.channel = channel
        self._logger = logging.getLogger(self.__class__.__name__)
        if client is None:
            kwargs.setdefault("socket_timeout", 5.0)
            kwargs.setdefault("socket_connect_timeout", 5.0)
            client = redis.Redis.from_url(redis_url, **kwargs)
        self.redis_client = client

    def notify(self, event: DomainEvent) -> None:
        try:
            receivers = self.redis_client.publish(self.channel, event.to_json())
        except redis.RedisError as e:
            self._logger.error(f"Error publishing {event.event_type.value} to Redis: {e}")
            raise
        self._logger.debug(f"Published {event.event_type.value} to {self.channel} ({receivers} receivers)")

    def close(self) -> None:
        self.redis_client.close()
        self._logger.info("Redis connection closed")
