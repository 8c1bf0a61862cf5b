"""
Queue Manager

In-process work queues ("lanes"), each with its own processing order,
concurrency cap and retry policy.

- PRIORITY lanes start the highest priority first, FIFO among equals
- FIFO lanes ignore priority
- At most max_concurrent items per lane are PROCESSING at any instant
- A failing item is retried after retry_delay * 2^(n-1) (exponential
  backoff) until max_retries, unless its error is not retryable (auth,
  validation, not found, unsupported) or its code is in skip_on_errors
- Success rate counts completed against failed items; cancelled items
  are neither

Usage:
    queues = QueueManager(handler=processor)
    lane = await queues.create_queue(QueueConfiguration(name="publish", processing_order=ProcessingOrder.PRIORITY))
    await queues.add_to_queue(lane, QueueItemType.PUBLISH, {"content": post, "platforms": ["medium"]}, priority=90)
    await queues.process_queue(lane)
    await queues.wait_idle(lane)
"""

import asyncio
import inspect
import itertools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

from core.config import SchedulerConfig, get_config
from core.errors import NotFoundError, is_retryable
from services.platforms.models import utcnow
from services.streaming.events import EventBus, PublishingEvent, PublishingEventType

from .models import (
    ProcessingOrder,
    QueueConfiguration,
    QueueItem,
    QueueItemStatus,
    QueueItemType,
    QueueStatistics,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_ID = "default"

ItemHandler = Callable[[QueueItem], Awaitable[Any]]
ItemListener = Callable[[QueueItem], Union[None, Awaitable[None]]]


@dataclass
class _Lane:
    queue_id: str
    config: QueueConfiguration
    max_concurrent: int
    retry_policy: RetryPolicy
    items: dict[str, QueueItem] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    tasks: set = field(default_factory=set)
    timers: set = field(default_factory=set)


class QueueManager:
    """Owns every lane and runs items through the injected handler."""

    def __init__(
        self,
        handler: ItemHandler,
        config: Optional[SchedulerConfig] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.handler = handler
        self.config = config or get_config().scheduler
        self.events = events or EventBus()
        self.clock = clock
        self._lanes: dict[str, _Lane] = {}
        self._sequence = itertools.count()
        self._listeners: list[ItemListener] = []

        self._add_lane(QueueConfiguration(
            name="Default",
            description="Scheduled publishes",
            processing_order=ProcessingOrder.PRIORITY,
            queue_id=DEFAULT_QUEUE_ID,
        ))

    # ===== Lanes =====

    def _add_lane(self, config: QueueConfiguration) -> _Lane:
        queue_id = config.queue_id or str(uuid4())
        retry_policy = config.retry_policy or RetryPolicy(
            max_retries=self.config.default_max_retries,
            retry_delay=self.config.default_retry_delay,
            exponential_backoff=self.config.default_exponential_backoff,
        )
        lane = _Lane(
            queue_id=queue_id,
            config=config,
            max_concurrent=config.max_concurrent or self.config.default_max_concurrent,
            retry_policy=retry_policy,
        )
        self._lanes[queue_id] = lane
        return lane

    async def create_queue(self, config: QueueConfiguration) -> str:
        if config.queue_id and config.queue_id in self._lanes:
            raise ValueError(f"Queue {config.queue_id} already exists")
        if config.max_concurrent is not None and config.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        lane = self._add_lane(config)
        logger.info(
            f"Created queue {config.name} ({lane.queue_id}): "
            f"{config.processing_order.value}, max_concurrent={lane.max_concurrent}"
        )
        return lane.queue_id

    def _lane(self, queue_id: str) -> _Lane:
        lane = self._lanes.get(queue_id)
        if lane is None:
            raise NotFoundError(f"Queue {queue_id} not found")
        return lane

    def has_queue(self, queue_id: str) -> bool:
        return queue_id in self._lanes

    def list_queues(self) -> list[str]:
        return list(self._lanes)

    def add_item_listener(self, listener: ItemListener):
        """Called once per item when it reaches completed, failed or cancelled."""
        self._listeners.append(listener)

    # ===== Items =====

    async def add_to_queue(
        self,
        queue_id: str,
        item_type: QueueItemType,
        payload: dict[str, Any],
        priority: int = 50,
        dependencies: Optional[list[str]] = None,
        scheduled_time: Optional[datetime] = None,
    ) -> str:
        lane = self._lane(queue_id)
        async with lane.lock:
            for dependency in dependencies or []:
                if dependency not in lane.items:
                    raise ValueError(f"Unknown dependency {dependency} in queue {queue_id}")

            now = self.clock()
            item = QueueItem(
                id=str(uuid4()),
                queue_id=queue_id,
                type=QueueItemType(item_type),
                payload=payload,
                priority=priority,
                sequence=next(self._sequence),
                dependencies=list(dependencies or []),
                scheduled_time=scheduled_time,
                created_at=now,
                updated_at=now,
            )
            lane.items[item.id] = item

        logger.debug(f"Queued {item.type.value} item {item.id} on {queue_id} (priority {priority})")
        return item.id

    def get_item(self, queue_id: str, item_id: str) -> Optional[QueueItem]:
        return self._lane(queue_id).items.get(item_id)

    def list_items(self, queue_id: str, status: Optional[QueueItemStatus] = None) -> list[QueueItem]:
        items = sorted(self._lane(queue_id).items.values(), key=lambda i: i.sequence)
        return [i for i in items if status is None or i.status == status]

    async def cancel_item(self, queue_id: str, item_id: str) -> bool:
        """Cancel a waiting item; items already processing run to completion."""
        lane = self._lane(queue_id)
        async with lane.lock:
            item = lane.items.get(item_id)
            if item is None or item.status not in (QueueItemStatus.PENDING, QueueItemStatus.RETRYING):
                return False
            item.status = QueueItemStatus.CANCELLED
            item.completed_at = item.updated_at = self.clock()
        logger.info(f"Cancelled queue item {item_id}")
        await self._notify(item)
        return True

    def _is_ready(self, lane: _Lane, item: QueueItem, now: datetime) -> bool:
        if item.status == QueueItemStatus.RETRYING:
            if item.next_attempt_at and item.next_attempt_at > now:
                return False
        elif item.status != QueueItemStatus.PENDING:
            return False
        if item.scheduled_time and item.scheduled_time > now:
            return False
        return all(
            lane.items[dep].status == QueueItemStatus.COMPLETED
            for dep in item.dependencies
            if dep in lane.items
        )

    def get_ready_items(self, queue_id: str, limit: Optional[int] = None) -> list[QueueItem]:
        """Items that could start now, in dequeue order. Read-only."""
        lane = self._lane(queue_id)
        now = self.clock()
        ready = [item for item in lane.items.values() if self._is_ready(lane, item, now)]

        if lane.config.processing_order == ProcessingOrder.PRIORITY:
            ready.sort(key=lambda i: (-i.priority, i.sequence))
        else:
            ready.sort(key=lambda i: i.sequence)

        return ready[:limit] if limit is not None else ready

    def _fail_orphans(self, lane: _Lane) -> list[QueueItem]:
        """Fail waiting items whose dependency can no longer complete."""
        orphans = []
        for item in lane.items.values():
            if item.status != QueueItemStatus.PENDING:
                continue
            broken = [
                dep for dep in item.dependencies
                if dep in lane.items and lane.items[dep].status in (QueueItemStatus.FAILED, QueueItemStatus.CANCELLED)
            ]
            if broken:
                item.status = QueueItemStatus.FAILED
                item.error = f"Dependency {broken[0]} did not complete"
                item.error_code = "DEPENDENCY_FAILED"
                item.completed_at = item.updated_at = self.clock()
                orphans.append(item)
        return orphans

    # ===== Processing =====

    async def process_queue(self, queue_id: str) -> list[str]:
        """Start as many ready items as the lane has free slots. Returns the started ids."""
        lane = self._lane(queue_id)
        started: list[QueueItem] = []

        async with lane.lock:
            orphans = self._fail_orphans(lane)
            processing = sum(1 for i in lane.items.values() if i.status == QueueItemStatus.PROCESSING)
            slots = lane.max_concurrent - processing

            if slots > 0:
                now = self.clock()
                for item in self.get_ready_items(queue_id, slots):
                    item.status = QueueItemStatus.PROCESSING
                    item.attempts += 1
                    item.started_at = item.updated_at = now
                    item.next_attempt_at = None
                    started.append(item)

                for item in started:
                    task = asyncio.create_task(self._run_item(lane, item))
                    lane.tasks.add(task)
                    task.add_done_callback(lane.tasks.discard)

        for orphan in orphans:
            logger.error(f"Queue item {orphan.id} failed: {orphan.error}")
            await self._emit(PublishingEventType.QUEUE_ITEM_FAILED, orphan, orphan.error)
            await self._notify(orphan)

        if started:
            logger.info(f"Queue {queue_id}: started {len(started)} item(s)")
        return [item.id for item in started]

    async def process_all(self) -> int:
        started = 0
        for queue_id in list(self._lanes):
            started += len(await self.process_queue(queue_id))
        return started

    async def _run_item(self, lane: _Lane, item: QueueItem):
        await self._emit(PublishingEventType.QUEUE_ITEM_STARTED, item, f"attempt {item.attempts}")
        started = time.monotonic()
        error: Optional[Exception] = None
        result = None

        try:
            result = await self.handler(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        elapsed_ms = (time.monotonic() - started) * 1000
        retry_delay: Optional[float] = None

        async with lane.lock:
            item.processing_time_ms += elapsed_ms
            item.updated_at = self.clock()

            if error is None:
                item.status = QueueItemStatus.COMPLETED
                item.result = result
                item.error = item.error_code = None
                item.completed_at = item.updated_at
            else:
                item.error = str(error) or type(error).__name__
                item.error_code = getattr(error, "error_code", None) or "UNKNOWN_ERROR"

                if lane.retry_policy.should_retry(item.retry_count, item.error_code, is_retryable(error)):
                    item.retry_count += 1
                    retry_delay = lane.retry_policy.delay_for(item.retry_count)
                    item.last_retry_delay = retry_delay
                    item.status = QueueItemStatus.RETRYING
                    item.next_attempt_at = item.updated_at + timedelta(seconds=retry_delay)
                else:
                    item.status = QueueItemStatus.FAILED
                    item.completed_at = item.updated_at

        if item.status == QueueItemStatus.COMPLETED:
            logger.info(f"Queue item {item.id} completed ({elapsed_ms:.0f}ms)")
            await self._emit(PublishingEventType.QUEUE_ITEM_COMPLETED, item, "completed")
            await self._notify(item)
        elif item.status == QueueItemStatus.RETRYING:
            logger.warning(
                f"Queue item {item.id} failed [{item.error_code}] {item.error}; "
                f"retry {item.retry_count}/{lane.retry_policy.max_retries} in {retry_delay:.1f}s"
            )
            await self._emit(
                PublishingEventType.QUEUE_ITEM_RETRIED,
                item,
                item.error,
                {"retry_count": item.retry_count, "delay": retry_delay, "error_code": item.error_code},
            )
            timer = asyncio.create_task(self._wake_after(lane, item, retry_delay))
            lane.timers.add(timer)
            timer.add_done_callback(lane.timers.discard)
        else:
            logger.error(
                f"Queue item {item.id} failed permanently [{item.error_code}] after "
                f"{item.attempts} attempt(s): {item.error}"
            )
            await self._emit(PublishingEventType.QUEUE_ITEM_FAILED, item, item.error, {"error_code": item.error_code})
            await self._notify(item)

        # A slot just freed up
        await self.process_queue(lane.queue_id)

    async def _wake_after(self, lane: _Lane, item: QueueItem, delay: float):
        await asyncio.sleep(delay)
        async with lane.lock:
            if item.status == QueueItemStatus.RETRYING:
                item.next_attempt_at = min(item.next_attempt_at or self.clock(), self.clock())
        await self.process_queue(lane.queue_id)

    async def wait_idle(self, queue_id: str, timeout: Optional[float] = None):
        """Wait until no item of the lane is processing or waiting for a retry."""
        lane = self._lane(queue_id)

        async def drain():
            while lane.tasks or lane.timers:
                await asyncio.gather(*(lane.tasks | lane.timers), return_exceptions=True)

        await asyncio.wait_for(drain(), timeout=timeout)

    async def close(self):
        """Cancel retry timers and wait for in-flight items."""
        for lane in self._lanes.values():
            for timer in list(lane.timers):
                timer.cancel()
            pending = list(lane.tasks | lane.timers)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    # ===== Statistics =====

    def get_queue_statistics(self, queue_id: str) -> Optional[QueueStatistics]:
        lane = self._lanes.get(queue_id)
        if lane is None:
            return None

        items = list(lane.items.values())
        counts = {status: 0 for status in QueueItemStatus}
        for item in items:
            counts[item.status] += 1

        completed = [i for i in items if i.status == QueueItemStatus.COMPLETED]
        finished = completed + [i for i in items if i.status == QueueItemStatus.FAILED]
        last_processed = max((i.completed_at for i in finished if i.completed_at), default=None)

        return QueueStatistics(
            queue_id=queue_id,
            name=lane.config.name,
            total=len(items),
            pending=counts[QueueItemStatus.PENDING],
            processing=counts[QueueItemStatus.PROCESSING],
            retrying=counts[QueueItemStatus.RETRYING],
            completed=counts[QueueItemStatus.COMPLETED],
            failed=counts[QueueItemStatus.FAILED],
            cancelled=counts[QueueItemStatus.CANCELLED],
            average_processing_time=(
                sum(i.processing_time_ms for i in completed) / len(completed) / 1000 if completed else 0.0
            ),
            success_rate=len(completed) / len(finished) if finished else 0.0,
            last_processed_at=last_processed,
        )

    # ===== Helpers =====

    async def _notify(self, item: QueueItem):
        for listener in list(self._listeners):
            try:
                outcome = listener(item)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Queue listener error for item {item.id}: {e}")

    async def _emit(
        self,
        event_type: PublishingEventType,
        item: QueueItem,
        message: Optional[str],
        data: Optional[dict[str, Any]] = None,
    ):
        await self.events.emit(PublishingEvent(
            event_type=event_type,
            queue_id=item.queue_id,
            item_id=item.id,
            schedule_id=item.payload.get("schedule_id"),
            message=message or "",
            data={"type": item.type.value, "attempts": item.attempts, **(data or {})},
        ))
