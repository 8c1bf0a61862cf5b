"""
Publishing Events

Typed events emitted by the publisher, queue and scheduler for
observability collaborators (dashboards, notifiers, the SSE server).

Usage:
    bus = EventBus()
    bus.on_dispatch_result(lambda e: print(e.platform, e.data["success"]))
    publisher = MultiPlatformPublisher(events=bus)
"""

import inspect
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

logger = logging.getLogger(__name__)


class PublishingEventType(str, Enum):
    """Types of publishing events."""

    # Publisher fan-out
    DISPATCH_START = "dispatch_start"
    DISPATCH_RESULT = "dispatch_result"
    PUBLISH_COMPLETED = "publish_completed"

    # Queue items
    QUEUE_ITEM_STARTED = "queue_item_started"
    QUEUE_ITEM_COMPLETED = "queue_item_completed"
    QUEUE_ITEM_RETRIED = "queue_item_retried"
    QUEUE_ITEM_FAILED = "queue_item_failed"

    # Schedules
    SCHEDULE_EXPANDED = "schedule_expanded"
    SCHEDULE_COMPLETED = "schedule_completed"

    INFO = "info"


@dataclass
class PublishingEvent:
    """One observable occurrence."""

    event_type: PublishingEventType = PublishingEventType.INFO
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    platform: Optional[str] = None
    request_id: Optional[str] = None
    queue_id: Optional[str] = None
    item_id: Optional[str] = None
    schedule_id: Optional[str] = None

    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        event_data = {
            "id": self.event_id,
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }
        for key in ("platform", "request_id", "queue_id", "item_id", "schedule_id"):
            value = getattr(self, key)
            if value:
                event_data[key] = value
        if self.data:
            event_data["data"] = self.data
        return event_data

    def to_sse(self) -> str:
        """Format as SSE message."""
        return (
            f"id: {self.event_id}\n"
            f"event: {self.event_type.value}\n"
            f"data: {json.dumps(self.to_dict(), default=str)}\n\n"
        )


EventCallback = Callable[[PublishingEvent], Union[None, Awaitable[None]]]


class EventBus:
    """
    Fan-out of publishing events to registered callbacks.

    Callbacks may be plain functions or coroutines. A failing callback is
    logged and never interrupts publishing.
    """

    def __init__(self, history_size: int = 200):
        self._listeners: list[tuple[Optional[PublishingEventType], EventCallback]] = []
        self._history: list[PublishingEvent] = []
        self._history_size = history_size

    def on_event(self, callback: EventCallback):
        """Register a callback for every event."""
        self._listeners.append((None, callback))

    def on(self, event_type: PublishingEventType, callback: EventCallback):
        self._listeners.append((event_type, callback))

    def on_dispatch_start(self, callback: EventCallback):
        self.on(PublishingEventType.DISPATCH_START, callback)

    def on_dispatch_result(self, callback: EventCallback):
        self.on(PublishingEventType.DISPATCH_RESULT, callback)

    def on_queue_item_retried(self, callback: EventCallback):
        self.on(PublishingEventType.QUEUE_ITEM_RETRIED, callback)

    def remove(self, callback: EventCallback):
        self._listeners = [(t, cb) for t, cb in self._listeners if cb is not callback]

    @property
    def history(self) -> list[PublishingEvent]:
        return list(self._history)

    async def emit(self, event: PublishingEvent):
        """Deliver an event to all matching callbacks."""
        self._history.append(event)
        if len(self._history) > self._history_size:
            self._history = self._history[-self._history_size:]

        for event_type, callback in list(self._listeners):
            if event_type is not None and event_type != event.event_type:
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event callback error ({event.event_type.value}): {e}")
