"""
Scheduling & queue data models.

Schedules describe deferred (optionally recurring) publishes; queues are
named processing lanes with their own ordering, concurrency cap and
retry policy.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from services.platforms import BlogContent, PublishResult
from services.platforms.models import utcnow


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================================
# Schedules
# ============================================================

class ScheduleStatus(str, Enum):
    PENDING = "pending"      # waiting for its next occurrence
    ACTIVE = "active"        # expanded; queue item in flight
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_SCHEDULE_STATUSES = (ScheduleStatus.COMPLETED, ScheduleStatus.FAILED, ScheduleStatus.CANCELLED)


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class RecurringPattern:
    """How a schedule regenerates. days_of_week uses 0 = Sunday."""
    type: RecurrenceType
    interval: int = 1
    days_of_week: list[int] = field(default_factory=list)
    day_of_month: Optional[int] = None
    end_date: Optional[datetime] = None
    max_occurrences: Optional[int] = None

    def validate(self) -> list[str]:
        issues = []
        if self.interval < 1:
            issues.append("interval must be at least 1")
        if self.days_of_week:
            if self.type != RecurrenceType.WEEKLY:
                issues.append("days_of_week only applies to weekly patterns")
            if any(day not in range(7) for day in self.days_of_week):
                issues.append("days_of_week values must be 0 (Sunday) to 6 (Saturday)")
        if self.day_of_month is not None:
            if self.type != RecurrenceType.MONTHLY:
                issues.append("day_of_month only applies to monthly patterns")
            elif not 1 <= self.day_of_month <= 31:
                issues.append("day_of_month must be between 1 and 31")
        if self.max_occurrences is not None and self.max_occurrences < 1:
            issues.append("max_occurrences must be at least 1")
        return issues

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "interval": self.interval,
            "days_of_week": self.days_of_week,
            "day_of_month": self.day_of_month,
            "end_date": _iso(self.end_date),
            "max_occurrences": self.max_occurrences,
        }


@dataclass
class CreateScheduleOptions:
    name: str
    scheduled_time: datetime
    platforms: list[str]
    description: str = ""
    timezone: Optional[str] = None
    recurring_pattern: Optional[RecurringPattern] = None
    publish_options: Any = None  # MultiPlatformPublishOptions
    priority: int = 50
    queue_id: str = "default"


@dataclass
class ScheduleExecution:
    """One expansion of a schedule and how it ended."""
    execution_id: str
    occurrence: int
    item_id: str
    executed_at: datetime
    success: bool
    results: dict[str, PublishResult] = field(default_factory=dict)
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "occurrence": self.occurrence,
            "item_id": self.item_id,
            "executed_at": self.executed_at.isoformat(),
            "success": self.success,
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "error": self.error,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class Schedule:
    id: str
    name: str
    content: BlogContent
    platforms: list[str]
    scheduled_time: datetime
    timezone: str = "UTC"
    description: str = ""
    recurring_pattern: Optional[RecurringPattern] = None
    publish_options: Any = None
    priority: int = 50
    queue_id: str = "default"

    status: ScheduleStatus = ScheduleStatus.PENDING
    next_execution: Optional[datetime] = None
    occurrence_count: int = 0
    last_executed: Optional[datetime] = None
    active_item_id: Optional[str] = None
    execution_history: list[ScheduleExecution] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_recurring(self) -> bool:
        return self.recurring_pattern is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "title": self.content.title,
            "platforms": self.platforms,
            "scheduled_time": self.scheduled_time.isoformat(),
            "timezone": self.timezone,
            "recurring_pattern": self.recurring_pattern.to_dict() if self.recurring_pattern else None,
            "priority": self.priority,
            "queue_id": self.queue_id,
            "status": self.status.value,
            "next_execution": _iso(self.next_execution),
            "occurrence_count": self.occurrence_count,
            "last_executed": _iso(self.last_executed),
            "executions": len(self.execution_history),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ScheduleStatistics:
    total: int = 0
    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    next_execution: Optional[datetime] = None
    executions_today: int = 0
    success_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "next_execution": _iso(self.next_execution),
            "executions_today": self.executions_today,
            "success_rate": round(self.success_rate, 3),
        }


# ============================================================
# Queues
# ============================================================

class ProcessingOrder(str, Enum):
    FIFO = "fifo"
    PRIORITY = "priority"


@dataclass
class RetryPolicy:
    max_retries: int = 3
    retry_delay: float = 5.0  # seconds
    exponential_backoff: bool = True
    skip_on_errors: list[str] = field(default_factory=list)

    def delay_for(self, retry_number: int) -> float:
        """Delay before the n-th retry (n starts at 1)."""
        if self.exponential_backoff:
            return self.retry_delay * (2 ** (retry_number - 1))
        return self.retry_delay

    def should_retry(self, retry_count: int, error_code: str, retryable: bool = True) -> bool:
        """Non-retryable errors (auth, validation, not found, unsupported) always fail immediately."""
        if not retryable or error_code in self.skip_on_errors:
            return False
        return retry_count < self.max_retries


@dataclass
class QueueConfiguration:
    name: str
    description: str = ""
    processing_order: ProcessingOrder = ProcessingOrder.FIFO
    max_concurrent: Optional[int] = None
    retry_policy: Optional[RetryPolicy] = None
    queue_id: Optional[str] = None


class QueueItemType(str, Enum):
    PUBLISH = "publish"
    SCHEDULE = "schedule"
    UPDATE = "update"
    DELETE = "delete"
    ANALYTICS_SYNC = "analytics_sync"
    CONTENT_ADAPTATION = "content_adaptation"
    BULK_OPERATION = "bulk_operation"


class QueueItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"   # waiting out its backoff delay
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_ITEM_STATUSES = (QueueItemStatus.COMPLETED, QueueItemStatus.FAILED, QueueItemStatus.CANCELLED)


@dataclass
class QueueItem:
    id: str
    queue_id: str
    type: QueueItemType
    payload: dict[str, Any]
    priority: int = 50
    sequence: int = 0
    status: QueueItemStatus = QueueItemStatus.PENDING
    dependencies: list[str] = field(default_factory=list)
    scheduled_time: Optional[datetime] = None

    attempts: int = 0
    retry_count: int = 0
    next_attempt_at: Optional[datetime] = None
    last_retry_delay: Optional[float] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_ms: float = 0.0

    result: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_ITEM_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "queue_id": self.queue_id,
            "type": self.type.value,
            "priority": self.priority,
            "status": self.status.value,
            "dependencies": self.dependencies,
            "scheduled_time": _iso(self.scheduled_time),
            "attempts": self.attempts,
            "retry_count": self.retry_count,
            "next_attempt_at": _iso(self.next_attempt_at),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "processing_time_ms": round(self.processing_time_ms, 1),
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass
class QueueStatistics:
    queue_id: str
    name: str
    total: int = 0
    pending: int = 0
    processing: int = 0
    retrying: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    average_processing_time: float = 0.0  # seconds
    success_rate: float = 0.0
    last_processed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "queue_id": self.queue_id,
            "name": self.name,
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "retrying": self.retrying,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "average_processing_time": round(self.average_processing_time, 3),
            "success_rate": round(self.success_rate, 3),
            "last_processed_at": _iso(self.last_processed_at),
        }
