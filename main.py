#!/usr/bin/env python3
"""
Multichannel Publisher - Main Entry Point

Publishes blog content to WordPress, Medium and LinkedIn, runs the
scheduler, and streams publishing events over SSE.

Usage:
    # Run the scheduler worker with the event stream server
    python main.py worker

    # Event stream server only
    python main.py serve

    # Publish a markdown file now
    python main.py publish post.md --title "Release notes" --platforms wordpress linkedin

    # Check platform health
    python main.py health
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("multichannel")


async def _wait_for_shutdown():
    stop_event = asyncio.Event()

    def handle_signal():
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    await stop_event.wait()


async def run_worker(with_server: bool = True):
    """Run the scheduler worker, optionally with the event stream server."""
    from core.config import get_config
    from services.publisher import build_publisher
    from services.scheduling import PublishingScheduler, SchedulerWorker
    from services.streaming import EventBus, EventStreamServer

    config = get_config()
    for issue in config.validate():
        logger.warning(f"Config: {issue}")

    bus = EventBus(history_size=config.streaming.event_history_size)
    publisher = await build_publisher(config, events=bus)
    scheduler = PublishingScheduler(publisher, config=config.scheduler, events=bus)
    worker = SchedulerWorker(scheduler, config)

    server = None
    if with_server and config.streaming.enabled:
        server = EventStreamServer(
            bus,
            publisher=publisher,
            scheduler=scheduler,
            host=config.streaming.host,
            port=config.streaming.port,
            heartbeat_interval=config.streaming.heartbeat_interval,
            event_history_size=config.streaming.event_history_size,
        )
        await server.start()

    worker_task = asyncio.create_task(worker.start())
    logger.info("Worker running. Press Ctrl+C to stop")

    await _wait_for_shutdown()

    await worker.stop()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass

    if server:
        await server.stop()
    await publisher.close()
    logger.info("Worker stopped")


async def start_server(host: Optional[str] = None, port: Optional[int] = None):
    """Start the event stream server without the scheduler loops."""
    from core.config import get_config
    from services.publisher import build_publisher
    from services.streaming import EventBus, EventStreamServer

    config = get_config()
    bus = EventBus(history_size=config.streaming.event_history_size)
    publisher = await build_publisher(config, events=bus)

    server = EventStreamServer(
        bus,
        publisher=publisher,
        host=host or config.streaming.host,
        port=port or config.streaming.port,
        heartbeat_interval=config.streaming.heartbeat_interval,
        event_history_size=config.streaming.event_history_size,
    )
    await server.start()
    logger.info("Press Ctrl+C to stop")

    await _wait_for_shutdown()
    await server.stop()
    await publisher.close()

    logger.info("Server stopped")


async def publish_file(
    path: str,
    title: str,
    platforms: Optional[list[str]] = None,
    tags: Optional[list[str]] = None,
    draft: bool = False,
) -> bool:
    """Publish a markdown file to the connected platforms."""
    from services.platforms import BlogContent, PublishOptions
    from services.publisher import MultiPlatformPublishOptions, build_publisher
    from core.errors import ValidationError

    publisher = await build_publisher()
    content = BlogContent(
        title=title,
        content=Path(path).read_text(encoding="utf-8"),
        tags=tags or [],
    )
    options = MultiPlatformPublishOptions(
        default_options=PublishOptions(status="draft" if draft else None),
    )

    try:
        result = await publisher.publish_to_all(content, platforms=platforms, options=options)
    except ValidationError as e:
        logger.error(f"Content rejected: {e.message} {e.issues}")
        return False
    finally:
        await publisher.close()

    for name, platform_result in result.results.items():
        if platform_result.success:
            print(f"  ✓ {name}: {platform_result.external_url or platform_result.external_id}")
        else:
            print(f"  ✗ {name}: [{platform_result.error_code}] {platform_result.error}")
    print(f"{result.state.value}: {result.success_count} succeeded, {result.failure_count} failed")
    return result.success


async def check_health():
    from services.publisher import build_publisher

    publisher = await build_publisher()
    try:
        report = await publisher.check_platform_health()
    finally:
        await publisher.close()

    print(json.dumps(report.to_dict(), indent=2, default=str))
    return report.overall_status.value != "unhealthy"


def main():
    parser = argparse.ArgumentParser(
        description="Multichannel Publisher - publish and schedule blog content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Scheduler worker plus SSE server
    python main.py worker

    # Publish now
    python main.py publish post.md --title "Hello" --platforms wordpress medium

    # Query a running server
    python main.py status --server http://localhost:8765
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    worker_parser = subparsers.add_parser("worker", help="Run the scheduler worker")
    worker_parser.add_argument("--no-server", action="store_true", help="Do not start the SSE server")

    server_parser = subparsers.add_parser("serve", help="Start the event stream server")
    server_parser.add_argument("--host", help="Host to bind")
    server_parser.add_argument("--port", type=int, help="Port to bind")

    pub_parser = subparsers.add_parser("publish", help="Publish a markdown file")
    pub_parser.add_argument("path", help="Markdown file")
    pub_parser.add_argument("--title", "-t", required=True, help="Post title")
    pub_parser.add_argument("--platforms", "-p", nargs="+", help="Target platforms (default: all connected)")
    pub_parser.add_argument("--tags", nargs="+", default=[], help="Tags")
    pub_parser.add_argument("--draft", action="store_true", help="Publish as draft where supported")

    subparsers.add_parser("health", help="Check platform health")

    status_parser = subparsers.add_parser("status", help="Check server status")
    status_parser.add_argument(
        "--server",
        default="http://localhost:8765",
        help="Event stream server URL",
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "worker":
        asyncio.run(run_worker(with_server=not args.no_server))

    elif args.command == "serve":
        asyncio.run(start_server(host=args.host, port=args.port))

    elif args.command == "publish":
        ok = asyncio.run(
            publish_file(
                args.path,
                title=args.title,
                platforms=args.platforms,
                tags=args.tags,
                draft=args.draft,
            )
        )
        sys.exit(0 if ok else 1)

    elif args.command == "health":
        sys.exit(0 if asyncio.run(check_health()) else 1)

    elif args.command == "status":
        import aiohttp

        async def check_status():
            async with aiohttp.ClientSession() as session:
                try:
                    async with session.get(f"{args.server}/status") as resp:
                        if resp.status == 200:
                            data = await resp.json()
                            print(f"Server: {args.server}")
                            print(f"Status: Online")
                            print(f"Connected clients: {data['server']['clients']}")
                            print(f"Platforms: {', '.join(data.get('platforms', [])) or 'none'}")
                            for queue_id, stats in data.get("queues", {}).items():
                                print(
                                    f"  - queue {queue_id}: {stats['pending']} pending, "
                                    f"{stats['processing']} processing, {stats['failed']} failed"
                                )
                        else:
                            print(f"Server returned status {resp.status}")
                except aiohttp.ClientError as e:
                    print(f"Cannot connect to server: {e}")
                    sys.exit(1)

        asyncio.run(check_status())


if __name__ == "__main__":
    main()
