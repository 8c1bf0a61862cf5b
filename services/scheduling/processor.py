"""
Queue item processing.

Maps each QueueItemType onto a MultiPlatformPublisher call. A publish
item whose fan-out failed on some platforms raises PublishFailedError
and narrows its payload to the failed platforms, so a retry never
republishes where it already succeeded. The error takes its code and
retryability from the first failure that a retry could fix, or from the
first failure when none could, so the lane's retry policy can decide.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional, Union

from core.errors import ConfigurationError, PublishingError, is_retryable_code
from services.platforms import DeleteResult, PublishResult, TimeRange
from services.publisher import MultiPlatformPublisher

from .models import QueueItem, QueueItemType

if TYPE_CHECKING:
    from .scheduler import PublishingScheduler

logger = logging.getLogger(__name__)


class PublishFailedError(PublishingError):
    """A queued fan-out left at least one platform unpublished."""

    def __init__(self, message: str, error_code: str, failed_platforms: list[str], retryable: bool = True):
        super().__init__(message, error_code=error_code, details={"failed_platforms": failed_platforms})
        self.failed_platforms = failed_platforms
        self.retryable = retryable

    @classmethod
    def from_results(cls, action: str, failures: dict[str, Union[PublishResult, DeleteResult]]) -> "PublishFailedError":
        retryable = [name for name, result in failures.items() if is_retryable_code(result.error_code)]
        cause = failures[(retryable or list(failures))[0]]
        return cls(
            f"{action} failed on {', '.join(failures)}: {cause.error}",
            error_code=cause.error_code or "UNKNOWN_ERROR",
            failed_platforms=list(failures),
            retryable=bool(retryable),
        )


class QueueItemProcessor:
    """Callable handler for QueueManager."""

    def __init__(self, publisher: MultiPlatformPublisher, scheduler: Optional["PublishingScheduler"] = None):
        self.publisher = publisher
        self.scheduler = scheduler
        self._handlers = {
            QueueItemType.PUBLISH: self._publish,
            QueueItemType.SCHEDULE: self._schedule,
            QueueItemType.UPDATE: self._update,
            QueueItemType.DELETE: self._delete,
            QueueItemType.ANALYTICS_SYNC: self._analytics_sync,
            QueueItemType.CONTENT_ADAPTATION: self._content_adaptation,
            QueueItemType.BULK_OPERATION: self._bulk_operation,
        }

    async def __call__(self, item: QueueItem) -> Any:
        handler = self._handlers.get(item.type)
        if handler is None:
            raise ConfigurationError(f"No handler for queue item type {item.type}")
        return await handler(item)

    async def _publish(self, item: QueueItem):
        payload = item.payload
        platforms = payload.get("platforms") or self.publisher.get_connected_platforms()

        result = await self.publisher.publish_to_selected(payload["content"], platforms, payload.get("options"))

        # Results across attempts; a later success replaces an earlier failure
        merged = payload.setdefault("results", {})
        merged.update(result.results)

        failed = result.failed_platforms
        if failed:
            payload["platforms"] = failed
            raise PublishFailedError.from_results("Publish", {name: result.results[name] for name in failed})
        return result

    async def _schedule(self, item: QueueItem):
        if self.scheduler is None:
            raise ConfigurationError("Schedule items need a PublishingScheduler")
        schedule = await self.scheduler.create_schedule(item.payload["content"], item.payload["options"])
        return schedule.id

    async def _update(self, item: QueueItem):
        payload = item.payload
        result = await self.publisher.update_across_platforms(
            payload["content"],
            {payload["platform"]: payload["external_id"]},
            payload.get("options"),
        )
        outcome = result.results[payload["platform"]]
        if not outcome.success:
            raise PublishFailedError.from_results("Update", {payload["platform"]: outcome})
        return outcome

    async def _delete(self, item: QueueItem):
        platform, external_id = item.payload["platform"], item.payload["external_id"]
        outcome = (await self.publisher.delete_across_platforms({platform: external_id}))[platform]
        if not outcome.success:
            raise PublishFailedError.from_results("Delete", {platform: outcome})
        return outcome

    async def _analytics_sync(self, item: QueueItem):
        time_range = item.payload.get("time_range") or TimeRange.last_days(item.payload.get("days", 30))
        return await self.publisher.get_aggregated_analytics(time_range, item.payload.get("platforms"))

    async def _content_adaptation(self, item: QueueItem):
        """Pre-format content for each platform (no publishing)."""
        content = item.payload["content"]
        rules = item.payload.get("rules") or {}
        adapted = {}
        for name in item.payload.get("platforms") or self.publisher.get_connected_platforms():
            adapter = self.publisher.get_adapter(name)
            if adapter is None:
                logger.warning(f"Skipping adaptation for unknown platform {name}")
                continue
            adapted[name] = adapter.format_content(content, rules.get(name))
        return adapted

    async def _bulk_operation(self, item: QueueItem):
        return await self.publisher.bulk_publish(
            item.payload["contents"],
            item.payload.get("platforms"),
            item.payload.get("options"),
        )
