"""
Scheduler Worker

Background service that drives the scheduler:
- expands due schedules every schedule_check_interval seconds
- starts ready queue items every queue_process_interval seconds
"""

import asyncio
import logging
import signal
from typing import Optional

from core.config import Config, get_config
from services.publisher import build_publisher

from .scheduler import PublishingScheduler

logger = logging.getLogger(__name__)


class SchedulerWorker:
    """
    Background driver loop for a PublishingScheduler.

    Loop errors are logged and the loop keeps going; only stop() or
    cancellation ends it.
    """

    def __init__(self, scheduler: PublishingScheduler, config: Optional[Config] = None):
        self.scheduler = scheduler
        self.config = config or get_config()
        self.schedule_interval = self.config.scheduler.schedule_check_interval
        self.queue_interval = self.config.scheduler.queue_process_interval

        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Run both loops until stopped."""
        self._running = True
        logger.info(
            f"Scheduler worker starting (schedules every {self.schedule_interval}s, "
            f"queues every {self.queue_interval}s)"
        )
        self._tasks = [
            asyncio.create_task(self._schedule_loop()),
            asyncio.create_task(self._queue_loop()),
        ]
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Scheduler worker cancelled")

    async def stop(self):
        """Stop the loops and wait for in-flight queue items."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.scheduler.queues.close()
        logger.info("Scheduler worker stopped")

    async def _schedule_loop(self):
        while self._running:
            try:
                expanded = await self.scheduler.check_due_schedules()
                if expanded:
                    logger.info(f"Expanded {len(expanded)} due schedule(s)")
                    await self.scheduler.queues.process_all()
                await asyncio.sleep(self.schedule_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Schedule loop error: {e}")
                await asyncio.sleep(self.schedule_interval)

    async def _queue_loop(self):
        while self._running:
            try:
                await self.scheduler.queues.process_all()
                await asyncio.sleep(self.queue_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Queue loop error: {e}")
                await asyncio.sleep(self.queue_interval)


async def main():
    """Main entry point for the scheduler worker."""
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    for issue in config.validate():
        logger.warning(f"Config: {issue}")

    logger.info("Starting scheduler worker...")

    publisher = await build_publisher(config)
    scheduler = PublishingScheduler(publisher, config=config.scheduler)
    worker = SchedulerWorker(scheduler, config)

    # Handle shutdown signals
    stop_event = asyncio.Event()

    def handle_signal():
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    worker_task = asyncio.create_task(worker.start())

    await stop_event.wait()

    await worker.stop()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass

    await publisher.close()
    logger.info("Scheduler worker stopped")


if __name__ == "__main__":
    asyncio.run(main())
