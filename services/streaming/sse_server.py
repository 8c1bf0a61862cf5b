"""
SSE Server for Publishing Events

Streams publisher, queue and scheduler events to dashboards and CLIs via
Server-Sent Events, and exposes health and queue/schedule status as JSON.

Features:
- One stream for all publishing activity, optionally filtered
- Event replay for late-joining clients (Last-Event-ID)
- Heartbeat to keep connections alive
- Automatic client cleanup on disconnect

Usage:
    server = EventStreamServer(bus, publisher=publisher, scheduler=scheduler)
    await server.start()

    # From CLI
    curl -N http://localhost:8765/stream
    curl -N "http://localhost:8765/stream?platform=linkedin"
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from aiohttp import web

from .events import EventBus, PublishingEvent, PublishingEventType

if TYPE_CHECKING:
    from services.publisher import MultiPlatformPublisher
    from services.scheduling import PublishingScheduler

logger = logging.getLogger(__name__)

FILTER_FIELDS = ("platform", "request_id", "queue_id", "schedule_id")


@dataclass
class SSEClient:
    """Represents a connected SSE client."""

    client_id: str = field(default_factory=lambda: str(uuid4()))
    filters: dict[str, str] = field(default_factory=dict)
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_event_id: Optional[str] = None
    user_agent: str = ""

    def wants(self, event: PublishingEvent) -> bool:
        return all(getattr(event, key) == value for key, value in self.filters.items())


class EventStreamServer:
    """
    Server-Sent Events server for publishing activity.

    Subscribes to an EventBus; every event is kept for replay and pushed
    to each connected client whose filters match.
    """

    def __init__(
        self,
        events: EventBus,
        publisher: Optional["MultiPlatformPublisher"] = None,
        scheduler: Optional["PublishingScheduler"] = None,
        host: str = "0.0.0.0",
        port: int = 8765,
        heartbeat_interval: int = 30,
        event_history_size: int = 200,
    ):
        self.events = events
        self.publisher = publisher
        self.scheduler = scheduler
        self.host = host
        self.port = port
        self.heartbeat_interval = heartbeat_interval
        self.event_history_size = event_history_size

        self._clients: dict[str, SSEClient] = {}
        self._event_history: list[PublishingEvent] = []
        self._started_at = datetime.now(timezone.utc)

        self._runner: Optional[web.AppRunner] = None
        self.events.on_event(self.broadcast)

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_index)
        app.router.add_get("/stream", self._handle_stream)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/status", self._handle_status)
        return app

    async def start(self):
        """Start the SSE server."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info(f"Event stream server started at http://{self.host}:{self.port}")

    async def stop(self):
        """Stop the SSE server."""
        self.events.remove(self.broadcast)

        for client in list(self._clients.values()):
            await client.queue.put(None)

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Event stream server stopped")

    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.Response(
            text="""
Publishing Event Stream

Endpoints:
  GET /stream                  - SSE stream of publishing events
        ?platform=linkedin     - only events for one platform
        ?request_id=...        - only one publish request
        ?queue_id=... / ?schedule_id=...
  GET /health                  - Platform health report
  GET /status                  - Queue and schedule statistics

Event types: dispatch_start, dispatch_result, publish_completed,
queue_item_started, queue_item_completed, queue_item_retried,
queue_item_failed, schedule_expanded, schedule_completed
            """,
            content_type="text/plain",
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        body = {"server": "healthy", "connected_clients": len(self._clients)}
        if self.publisher is not None:
            report = await self.publisher.check_platform_health()
            body["platforms"] = report.to_dict()
        return web.json_response(body)

    async def _handle_status(self, request: web.Request) -> web.Response:
        body = {
            "server": {
                "host": self.host,
                "port": self.port,
                "uptime_seconds": round((datetime.now(timezone.utc) - self._started_at).total_seconds(), 1),
                "clients": len(self._clients),
                "buffered_events": len(self._event_history),
            },
        }
        if self.publisher is not None:
            body["platforms"] = self.publisher.get_connected_platforms()
        if self.scheduler is not None:
            body["schedules"] = self.scheduler.get_schedule_statistics().to_dict()
            body["queues"] = {
                queue_id: self.scheduler.queues.get_queue_statistics(queue_id).to_dict()
                for queue_id in self.scheduler.queues.list_queues()
            }
        return web.json_response(body)

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        """Handle SSE stream connection."""
        last_event_id = request.headers.get("Last-Event-ID")
        client = SSEClient(
            filters={key: request.query[key] for key in FILTER_FIELDS if request.query.get(key)},
            last_event_id=last_event_id,
            user_agent=request.headers.get("User-Agent", ""),
        )
        self._clients[client.client_id] = client
        logger.info(f"Client {client.client_id} connected (filters: {client.filters or 'none'})")

        response = web.StreamResponse(
            status=200,
            reason="OK",
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering
            },
        )
        await response.prepare(request)

        try:
            connect_event = PublishingEvent(
                event_type=PublishingEventType.INFO,
                message="Connected to publishing event stream",
                data={"client_id": client.client_id},
            )
            await response.write(connect_event.to_sse().encode())

            if last_event_id:
                await self._replay_events(response, client, last_event_id)

            while True:
                try:
                    event = await asyncio.wait_for(client.queue.get(), timeout=self.heartbeat_interval)
                    if event is None:
                        break
                    await response.write(event.to_sse().encode())
                    client.last_event_id = event.event_id

                except asyncio.TimeoutError:
                    await response.write(b": heartbeat\n\n")

        except (ConnectionResetError, asyncio.CancelledError):
            pass
        finally:
            self._disconnect_client(client.client_id)

        return response

    async def _replay_events(self, response: web.StreamResponse, client: SSEClient, last_event_id: str):
        """Replay buffered events after the given event ID."""
        replay_from = 0
        for i, event in enumerate(self._event_history):
            if event.event_id == last_event_id:
                replay_from = i + 1
                break

        missed = [e for e in self._event_history[replay_from:] if client.wants(e)]
        for event in missed:
            await response.write(event.to_sse().encode())
        if missed:
            logger.debug(f"Replayed {len(missed)} events for client {client.client_id}")

    def _disconnect_client(self, client_id: str):
        if self._clients.pop(client_id, None):
            logger.info(f"Client {client_id} disconnected")

    async def broadcast(self, event: PublishingEvent):
        """Buffer an event and queue it for every matching client."""
        self._event_history.append(event)
        if len(self._event_history) > self.event_history_size:
            self._event_history = self._event_history[-self.event_history_size:]

        for client in list(self._clients.values()):
            if client.wants(event):
                await client.queue.put(event)

    def get_client_count(self) -> int:
        return len(self._clients)
