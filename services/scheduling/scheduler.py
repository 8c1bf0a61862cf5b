"""
Publishing Scheduler

Turns publish intents into time-triggered, optionally recurring jobs.

State machine per schedule:
    pending -> (due) -> active -> completed | failed | cancelled
A recurring schedule goes back to pending for its next occurrence until
max_occurrences (or end_date) is reached, then completes.

Each due schedule expands into one combined publish item on its queue
lane; the QueueManager runs it with the lane's retry policy and reports
back when the item is finished.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from core.config import SchedulerConfig, get_config
from core.errors import ValidationError
from services.platforms import BlogContent, PublishResult
from services.platforms.models import utcnow
from services.publisher import MultiPlatformPublisher
from services.streaming.events import EventBus, PublishingEvent, PublishingEventType

from .models import (
    TERMINAL_SCHEDULE_STATUSES,
    CreateScheduleOptions,
    QueueItem,
    QueueItemStatus,
    QueueItemType,
    RecurringPattern,
    Schedule,
    ScheduleExecution,
    ScheduleStatistics,
    ScheduleStatus,
)
from .processor import QueueItemProcessor
from .queue import QueueManager
from .recurrence import localize, nth_occurrence, resolve_timezone

logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 100

# Marks an update_schedule argument that was not passed; None clears the recurring pattern
_UNSET = object()


class PublishingScheduler:
    """
    Schedule registry plus the driver tick.

    Usage:
        scheduler = PublishingScheduler(publisher)
        schedule = await scheduler.create_schedule(post, CreateScheduleOptions(
            name="Weekly digest",
            scheduled_time=datetime(2026, 11, 2, 9, 0),
            timezone="Europe/Berlin",
            platforms=["wordpress", "linkedin"],
            recurring_pattern=RecurringPattern(type=RecurrenceType.WEEKLY, max_occurrences=4),
        ))
        await scheduler.check_due_schedules()   # normally driven by SchedulerWorker
    """

    def __init__(
        self,
        publisher: MultiPlatformPublisher,
        queue_manager: Optional[QueueManager] = None,
        config: Optional[SchedulerConfig] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.publisher = publisher
        self.config = config or get_config().scheduler
        self.events = events or publisher.events
        self.clock = clock
        self.queues = queue_manager or QueueManager(
            QueueItemProcessor(publisher, scheduler=self),
            config=self.config,
            events=self.events,
            clock=clock,
        )
        self.queues.add_item_listener(self._on_item_finished)

        self._schedules: dict[str, Schedule] = {}
        self._lock = asyncio.Lock()

    # ===== CRUD =====

    def _validate(self, options: CreateScheduleOptions, tz_name: str):
        issues = []
        if not options.name.strip():
            issues.append("name is required")
        if not options.platforms:
            issues.append("at least one platform is required")
        if not MIN_PRIORITY <= options.priority <= MAX_PRIORITY:
            issues.append(f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")
        if not self.queues.has_queue(options.queue_id):
            issues.append(f"queue {options.queue_id} does not exist")
        if options.recurring_pattern:
            issues.extend(options.recurring_pattern.validate())
        resolve_timezone(tz_name)

        if issues:
            raise ValidationError(f"Invalid schedule: {'; '.join(issues)}", issues=issues)

    async def create_schedule(self, content: BlogContent, options: CreateScheduleOptions) -> Schedule:
        """
        Validate and register a schedule.

        Raises:
            ValidationError: Bad options, unknown timezone, or a start time
                further in the past than the configured tolerance
        """
        tz_name = options.timezone or self.config.default_timezone
        self._validate(options, tz_name)

        scheduled_time = localize(options.scheduled_time, tz_name)
        if scheduled_time < self.clock() - timedelta(seconds=self.config.past_tolerance):
            raise ValidationError(f"Scheduled time {scheduled_time.isoformat()} is in the past")

        first = nth_occurrence(scheduled_time, options.recurring_pattern, 0, tz_name)
        if first is None:
            raise ValidationError("Recurring pattern produces no occurrences")

        schedule = Schedule(
            id=str(uuid4()),
            name=options.name,
            description=options.description,
            content=content,
            platforms=list(dict.fromkeys(options.platforms)),
            scheduled_time=scheduled_time,
            timezone=tz_name,
            recurring_pattern=options.recurring_pattern,
            publish_options=options.publish_options,
            priority=options.priority,
            queue_id=options.queue_id,
            next_execution=first,
            created_at=self.clock(),
        )

        async with self._lock:
            self._schedules[schedule.id] = schedule

        recurrence = f", {options.recurring_pattern.type.value}" if options.recurring_pattern else ""
        logger.info(f"Created schedule {schedule.name} ({schedule.id}) for {first.isoformat()}{recurrence}")
        return schedule

    async def update_schedule(
        self,
        schedule_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        scheduled_time: Optional[datetime] = None,
        platforms: Optional[list[str]] = None,
        priority: Optional[int] = None,
        recurring_pattern: Optional[RecurringPattern] = _UNSET,
        publish_options=None,
    ) -> Optional[Schedule]:
        """Edit a pending schedule. Returns None if it does not exist.

        Omitted fields keep their values. Passing recurring_pattern=None turns
        a recurring schedule into a one-time one.
        """
        async with self._lock:
            schedule = self._schedules.get(schedule_id)
            if schedule is None:
                return None
            if schedule.status != ScheduleStatus.PENDING:
                raise ValidationError(f"Schedule {schedule_id} is {schedule.status.value}; only pending schedules can change")

            options = CreateScheduleOptions(
                name=name if name is not None else schedule.name,
                description=description if description is not None else schedule.description,
                scheduled_time=scheduled_time or schedule.scheduled_time,
                timezone=schedule.timezone,
                platforms=platforms if platforms is not None else schedule.platforms,
                priority=priority if priority is not None else schedule.priority,
                recurring_pattern=schedule.recurring_pattern if recurring_pattern is _UNSET else recurring_pattern,
                publish_options=publish_options if publish_options is not None else schedule.publish_options,
                queue_id=schedule.queue_id,
            )
            self._validate(options, schedule.timezone)

            start = localize(options.scheduled_time, schedule.timezone)
            next_execution = nth_occurrence(start, options.recurring_pattern, schedule.occurrence_count, schedule.timezone)

            updated = replace(
                schedule,
                name=options.name,
                description=options.description,
                scheduled_time=start,
                platforms=list(dict.fromkeys(options.platforms)),
                priority=options.priority,
                recurring_pattern=options.recurring_pattern,
                publish_options=options.publish_options,
                next_execution=next_execution,
                status=ScheduleStatus.PENDING if next_execution else ScheduleStatus.COMPLETED,
            )
            self._schedules[schedule_id] = updated

        logger.info(f"Updated schedule {updated.name} ({schedule_id})")
        return updated

    async def cancel_schedule(self, schedule_id: str) -> bool:
        """Stop future expansions; an item already on the queue still runs."""
        async with self._lock:
            schedule = self._schedules.get(schedule_id)
            if schedule is None or schedule.status in TERMINAL_SCHEDULE_STATUSES:
                return False
            schedule.status = ScheduleStatus.CANCELLED
            schedule.next_execution = None

        logger.info(f"Cancelled schedule {schedule.name} ({schedule_id})")
        return True

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        return self._schedules.get(schedule_id)

    def list_schedules(
        self,
        status: Optional[ScheduleStatus] = None,
        platform: Optional[str] = None,
    ) -> list[Schedule]:
        schedules = [
            s for s in self._schedules.values()
            if (status is None or s.status == status) and (platform is None or platform in s.platforms)
        ]
        return sorted(schedules, key=lambda s: s.next_execution or s.scheduled_time)

    def get_upcoming_schedules(self, hours: float = 24) -> list[Schedule]:
        now = self.clock()
        horizon = now + timedelta(hours=hours)
        return [
            s for s in self.list_schedules(ScheduleStatus.PENDING)
            if s.next_execution and now <= s.next_execution <= horizon
        ]

    def get_execution_history(self, schedule_id: str) -> list[ScheduleExecution]:
        schedule = self._schedules.get(schedule_id)
        return list(schedule.execution_history) if schedule else []

    # ===== Driver =====

    async def check_due_schedules(self) -> list[str]:
        """
        One driver tick: expand every due schedule into a publish item.

        Returns the ids of the expanded schedules.
        """
        now = self.clock()
        expanded: list[Schedule] = []

        async with self._lock:
            due = [
                s for s in self._schedules.values()
                if s.status == ScheduleStatus.PENDING and s.next_execution and s.next_execution <= now
            ]
            due.sort(key=lambda s: (s.next_execution, -s.priority))

            for schedule in due:
                item_id = await self.queues.add_to_queue(
                    schedule.queue_id,
                    QueueItemType.PUBLISH,
                    {
                        "content": schedule.content,
                        "platforms": list(schedule.platforms),
                        "options": schedule.publish_options,
                        "schedule_id": schedule.id,
                        "occurrence": schedule.occurrence_count,
                    },
                    priority=schedule.priority,
                )
                schedule.status = ScheduleStatus.ACTIVE
                schedule.active_item_id = item_id
                schedule.occurrence_count += 1
                schedule.last_executed = now
                expanded.append(schedule)

        for schedule in expanded:
            logger.info(
                f"Schedule {schedule.name} due: occurrence {schedule.occurrence_count} queued "
                f"as {schedule.active_item_id}"
            )
            await self.events.emit(PublishingEvent(
                event_type=PublishingEventType.SCHEDULE_EXPANDED,
                schedule_id=schedule.id,
                queue_id=schedule.queue_id,
                item_id=schedule.active_item_id,
                message=f"occurrence {schedule.occurrence_count}",
                data={"platforms": schedule.platforms},
            ))
        return [s.id for s in expanded]

    async def tick(self) -> list[str]:
        """Expand due schedules and start whatever the lanes have room for."""
        expanded = await self.check_due_schedules()
        await self.queues.process_all()
        return expanded

    async def _on_item_finished(self, item: QueueItem):
        schedule_id = item.payload.get("schedule_id")
        if not schedule_id:
            return

        async with self._lock:
            schedule = self._schedules.get(schedule_id)
            if schedule is None or schedule.active_item_id != item.id:
                return

            success = item.status == QueueItemStatus.COMPLETED
            results: dict[str, PublishResult] = dict(item.payload.get("results", {}))
            schedule.execution_history.append(ScheduleExecution(
                execution_id=str(uuid4()),
                occurrence=item.payload.get("occurrence", schedule.occurrence_count - 1) + 1,
                item_id=item.id,
                executed_at=item.completed_at or self.clock(),
                success=success,
                results=results,
                error=None if success else item.error,
                duration_ms=item.processing_time_ms,
            ))
            schedule.active_item_id = None

            if schedule.status == ScheduleStatus.CANCELLED:
                finished = None
            elif schedule.recurring_pattern:
                schedule.next_execution = nth_occurrence(
                    schedule.scheduled_time,
                    schedule.recurring_pattern,
                    schedule.occurrence_count,
                    schedule.timezone,
                )
                if schedule.next_execution is None:
                    schedule.status = ScheduleStatus.COMPLETED
                    finished = schedule.status
                else:
                    schedule.status = ScheduleStatus.PENDING
                    finished = None
            else:
                schedule.next_execution = None
                schedule.status = ScheduleStatus.COMPLETED if success else ScheduleStatus.FAILED
                finished = schedule.status

        if not success:
            logger.warning(f"Schedule {schedule.name} occurrence failed: {item.error}")
        if finished is not None:
            logger.info(f"Schedule {schedule.name} {finished.value} after {schedule.occurrence_count} occurrence(s)")
            await self.events.emit(PublishingEvent(
                event_type=PublishingEventType.SCHEDULE_COMPLETED,
                schedule_id=schedule.id,
                message=finished.value,
                data={"occurrences": schedule.occurrence_count},
            ))

    # ===== Statistics =====

    def get_schedule_statistics(self) -> ScheduleStatistics:
        """Derived view; never mutates schedules."""
        schedules = list(self._schedules.values())
        counts = {status: 0 for status in ScheduleStatus}
        for schedule in schedules:
            counts[schedule.status] += 1

        upcoming = [s.next_execution for s in schedules if s.status == ScheduleStatus.PENDING and s.next_execution]

        today = self.clock().date()
        executions = [e for s in schedules for e in s.execution_history]
        successes = sum(1 for e in executions if e.success)

        return ScheduleStatistics(
            total=len(schedules),
            pending=counts[ScheduleStatus.PENDING],
            active=counts[ScheduleStatus.ACTIVE],
            completed=counts[ScheduleStatus.COMPLETED],
            failed=counts[ScheduleStatus.FAILED],
            cancelled=counts[ScheduleStatus.CANCELLED],
            next_execution=min(upcoming, default=None),
            executions_today=sum(1 for e in executions if e.executed_at.date() == today),
            success_rate=successes / len(executions) if executions else 0.0,
        )
