"""
Scheduling Services

Deferred and recurring publishing:
- PublishingScheduler: one-time and recurring schedules
- QueueManager: in-process lanes with ordering, concurrency caps and retry policy
- QueueItemProcessor: maps queue items onto publisher calls
- SchedulerWorker: background driver loop
"""

from .models import (
    CreateScheduleOptions,
    ProcessingOrder,
    QueueConfiguration,
    QueueItem,
    QueueItemStatus,
    QueueItemType,
    QueueStatistics,
    RecurrenceType,
    RecurringPattern,
    RetryPolicy,
    Schedule,
    ScheduleExecution,
    ScheduleStatistics,
    ScheduleStatus,
)
from .recurrence import nth_occurrence, upcoming_occurrences
from .queue import DEFAULT_QUEUE_ID, QueueManager
from .processor import PublishFailedError, QueueItemProcessor
from .scheduler import PublishingScheduler
from .worker import SchedulerWorker

__all__ = [
    # Scheduler
    "PublishingScheduler",
    "SchedulerWorker",
    "CreateScheduleOptions",
    "Schedule",
    "ScheduleExecution",
    "ScheduleStatistics",
    "ScheduleStatus",
    "RecurrenceType",
    "RecurringPattern",
    "nth_occurrence",
    "upcoming_occurrences",
    # Queues
    "QueueManager",
    "QueueItemProcessor",
    "PublishFailedError",
    "DEFAULT_QUEUE_ID",
    "ProcessingOrder",
    "QueueConfiguration",
    "QueueItem",
    "QueueItemStatus",
    "QueueItemType",
    "QueueStatistics",
    "RetryPolicy",
]
