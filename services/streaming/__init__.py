"""
Publishing Event Streaming

Typed events from the publisher, queues and scheduler, plus an SSE
server that streams them to dashboards and CLIs.

Usage:
    from services.streaming import EventBus, EventStreamServer
    bus = EventBus()
    server = EventStreamServer(bus, port=8765)
    await server.start()

    # In CLI
    curl -N http://localhost:8765/stream
"""

from .events import EventBus, PublishingEvent, PublishingEventType
from .sse_server import EventStreamServer, SSEClient

__all__ = [
    "EventBus",
    "PublishingEvent",
    "PublishingEventType",
    "EventStreamServer",
    "SSEClient",
]
