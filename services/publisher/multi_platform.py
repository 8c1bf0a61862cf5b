"""
Multi-Platform Publisher

Fans one piece of content out to every registered platform adapter:
format per platform, validate, publish, and collect one result per
platform. A failure on one platform never aborts the others.

Usage:
    publisher = MultiPlatformPublisher()
    await publisher.add_platform(WordPressAdapter(), wp_credentials)
    await publisher.add_platform(MediumAdapter(), medium_credentials)

    result = await publisher.publish_to_all(content)
    print(result.success_count, result.errors)
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from core.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, get_platform_breaker
from core.config import Config, get_config
from core.errors import (
    AuthError,
    ConfigurationError,
    PublishingError,
    TransientNetworkError,
    ValidationError,
)
from services.formatting import PlatformRule
from services.platforms import (
    BlogContent,
    DeleteResult,
    FormattedContent,
    HealthCheckResult,
    HealthStatus,
    PlatformAdapter,
    PlatformAnalytics,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    ScheduleResult,
    TimeRange,
)
from services.platforms.models import utcnow
from services.streaming.events import EventBus, PublishingEvent, PublishingEventType

from .reports import (
    AggregatedAnalytics,
    ComparativeAnalytics,
    PlatformHealthReport,
    aggregate_analytics,
    build_health_report,
    compare_analytics,
)

logger = logging.getLogger(__name__)

DEFAULT_ANALYTICS_DAYS = 30


class DispatchState(str, Enum):
    """Lifecycle of one publish request."""
    PENDING = "pending"
    DISPATCHING = "dispatching"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILED = "failed"


@dataclass
class MultiPlatformPublishOptions:
    """Options for one fan-out."""
    default_options: PublishOptions = field(default_factory=PublishOptions)
    platform_options: dict[str, PublishOptions] = field(default_factory=dict)
    publish_order: list[str] = field(default_factory=list)
    stop_on_first_failure: bool = False
    require_all_success: bool = False
    adaptation_rules: dict[str, PlatformRule] = field(default_factory=dict)
    max_concurrency: Optional[int] = None

    def options_for(self, platform: str) -> PublishOptions:
        return self.platform_options.get(platform) or self.default_options


@dataclass
class MultiPlatformPublishResult:
    """Aggregate outcome of one fan-out: exactly one entry per requested platform."""
    request_id: str
    success: bool
    state: DispatchState
    results: dict[str, PublishResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    formatted: dict[str, FormattedContent] = field(default_factory=dict)
    success_count: int = 0
    failure_count: int = 0
    total_duration_ms: float = 0.0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def successful_platforms(self) -> list[str]:
        return [name for name, result in self.results.items() if result.success]

    @property
    def failed_platforms(self) -> list[str]:
        return [name for name, result in self.results.items() if not result.success]

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "success": self.success,
            "state": self.state.value,
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "errors": self.errors,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_duration_ms": round(self.total_duration_ms, 1),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class PlatformRegistry:
    """
    Connected adapters keyed by platform name, in registration order.

    Mutations are serialised with an asyncio.Lock; readers take a snapshot
    so an in-flight fan-out is unaffected by later add/remove calls.
    """

    def __init__(self):
        self._adapters: dict[str, PlatformAdapter] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = asyncio.Lock()

    async def add(self, adapter: PlatformAdapter, breaker: CircuitBreaker) -> Optional[PlatformAdapter]:
        """Register (or replace) an adapter; returns the replaced one, if any."""
        async with self._lock:
            previous = self._adapters.get(adapter.name)
            self._adapters[adapter.name] = adapter
            if previous is None or previous is not adapter:
                self._breakers[adapter.name] = breaker
            return previous if previous is not adapter else None

    async def remove(self, name: str) -> Optional[PlatformAdapter]:
        async with self._lock:
            self._breakers.pop(name, None)
            return self._adapters.pop(name, None)

    def get(self, name: str) -> Optional[PlatformAdapter]:
        return self._adapters.get(name)

    def breaker(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def names(self) -> list[str]:
        return list(self._adapters)

    def snapshot(self) -> dict[str, tuple[PlatformAdapter, CircuitBreaker]]:
        return {name: (adapter, self._breakers[name]) for name, adapter in self._adapters.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


class MultiPlatformPublisher:
    """
    Orchestrates publishing across registered platforms.

    Each platform gets its own circuit breaker (timeout = adapter timeout)
    so a struggling platform fails fast without affecting the rest.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        events: Optional[EventBus] = None,
    ):
        self.config = config or get_config()
        self.events = events or EventBus()
        self.registry = PlatformRegistry()
        self._history: list[MultiPlatformPublishResult] = []

    # ===== Registry =====

    async def add_platform(self, adapter: PlatformAdapter, credentials: PlatformCredentials):
        """
        Authenticate and register an adapter.

        Raises:
            ConfigurationError: Adapter declares no name or unusable capabilities
            AuthError: Credentials rejected (the adapter is not registered)
        """
        if not isinstance(adapter, PlatformAdapter) or not getattr(adapter, "name", None):
            raise ConfigurationError(f"{type(adapter).__name__} is not a platform adapter")

        caps = adapter.capabilities
        if caps.max_content_length <= 0 or not caps.supported_formats:
            raise ConfigurationError(
                f"Adapter {adapter.name} declares no content length or formats",
                platform=adapter.name,
            )

        auth = await adapter.authenticate(credentials)
        if not auth.success:
            raise AuthError(auth.error or "Authentication failed", platform=adapter.name)

        timeout = getattr(getattr(adapter, "config", None), "timeout", self.config.adapter.timeout)
        previous = await self.registry.add(adapter, get_platform_breaker(adapter.name, timeout))
        if previous is not None:
            await previous.disconnect()
            logger.info(f"Replaced adapter for {adapter.name}")
        else:
            logger.info(f"Registered platform: {adapter.name}")

    async def remove_platform(self, name: str) -> bool:
        adapter = await self.registry.remove(name)
        if adapter is None:
            return False
        await adapter.disconnect()
        logger.info(f"Removed platform: {name}")
        return True

    def get_connected_platforms(self) -> list[str]:
        return self.registry.names()

    def get_adapter(self, name: str) -> Optional[PlatformAdapter]:
        return self.registry.get(name)

    # ===== Publishing =====

    async def publish_to_all(
        self,
        content: BlogContent,
        platforms: Optional[list[str]] = None,
        options: Optional[MultiPlatformPublishOptions] = None,
    ) -> MultiPlatformPublishResult:
        """Publish to `platforms`, or every connected platform when omitted."""
        return await self.publish_to_selected(
            content,
            platforms if platforms is not None else self.registry.names(),
            options,
        )

    async def publish_to_selected(
        self,
        content: BlogContent,
        platforms: list[str],
        options: Optional[MultiPlatformPublishOptions] = None,
    ) -> MultiPlatformPublishResult:
        options = options or MultiPlatformPublishOptions()
        request_id = str(uuid4())

        async def dispatch(name: str, adapter: PlatformAdapter, breaker: CircuitBreaker, formatted_out: dict):
            formatted = self._prepare(adapter, content, options.adaptation_rules.get(name))
            formatted_out[name] = formatted
            return await breaker.call(adapter.publish, formatted, options.options_for(name))

        return await self._fan_out(request_id, "publish", content.title, platforms, options, dispatch)

    async def update_across_platforms(
        self,
        content: BlogContent,
        external_ids: dict[str, str],
        options: Optional[MultiPlatformPublishOptions] = None,
    ) -> MultiPlatformPublishResult:
        """Update previously published content; `external_ids` maps platform -> post id."""
        options = options or MultiPlatformPublishOptions()
        request_id = str(uuid4())

        async def dispatch(name: str, adapter: PlatformAdapter, breaker: CircuitBreaker, formatted_out: dict):
            formatted = self._prepare(adapter, content, options.adaptation_rules.get(name))
            formatted_out[name] = formatted
            return await breaker.call(adapter.update, external_ids[name], formatted, options.options_for(name))

        return await self._fan_out(request_id, "update", content.title, list(external_ids), options, dispatch)

    async def delete_across_platforms(self, external_ids: dict[str, str]) -> dict[str, DeleteResult]:
        snapshot = self.registry.snapshot()
        semaphore = asyncio.Semaphore(self.config.publisher.max_concurrent_publishes)

        async def delete_one(name: str, external_id: str) -> DeleteResult:
            if name not in snapshot:
                return DeleteResult(
                    success=False,
                    platform=name,
                    external_id=external_id,
                    error=f"Platform {name} is not connected",
                    error_code="PLATFORM_NOT_CONNECTED",
                )
            adapter, breaker = snapshot[name]
            async with semaphore:
                try:
                    return await breaker.call(adapter.delete, external_id)
                except Exception as e:
                    logger.warning(f"[{name}] Delete of {external_id} failed: {e}")
                    return DeleteResult.from_error(name, external_id, self._normalize_error(name, e))

        names = list(external_ids)
        results = await asyncio.gather(*(delete_one(n, external_ids[n]) for n in names))
        return dict(zip(names, results))

    async def schedule_across_platforms(
        self,
        content: BlogContent,
        publish_time: datetime,
        platforms: Optional[list[str]] = None,
        options: Optional[MultiPlatformPublishOptions] = None,
    ) -> dict[str, ScheduleResult]:
        """
        Use native scheduling where available.

        Platforms without it answer UNSUPPORTED_OPERATION; hand those to
        the PublishingScheduler instead.
        """
        options = options or MultiPlatformPublishOptions()
        snapshot = self.registry.snapshot()
        names = platforms if platforms is not None else list(snapshot)

        async def schedule_one(name: str) -> ScheduleResult:
            if name not in snapshot:
                return ScheduleResult(
                    success=False,
                    platform=name,
                    error=f"Platform {name} is not connected",
                    error_code="PLATFORM_NOT_CONNECTED",
                )
            adapter, breaker = snapshot[name]
            try:
                formatted = self._prepare(adapter, content, options.adaptation_rules.get(name))
                return await breaker.call(adapter.schedule, formatted, publish_time, options.options_for(name))
            except Exception as e:
                logger.warning(f"[{name}] Schedule failed: {e}")
                return ScheduleResult.from_error(name, self._normalize_error(name, e))

        results = await asyncio.gather(*(schedule_one(n) for n in names))
        return dict(zip(names, results))

    async def bulk_publish(
        self,
        contents: list[BlogContent],
        platforms: Optional[list[str]] = None,
        options: Optional[MultiPlatformPublishOptions] = None,
    ) -> list[MultiPlatformPublishResult]:
        """Publish several pieces one after another (each one fans out)."""
        results = []
        for index, content in enumerate(contents, start=1):
            logger.info(f"Bulk publish {index}/{len(contents)}: {content.title}")
            results.append(await self.publish_to_all(content, platforms, options))
        return results

    def _prepare(
        self,
        adapter: PlatformAdapter,
        content: BlogContent,
        rule: Optional[PlatformRule],
    ) -> FormattedContent:
        """Format for the platform and refuse anything that still violates its limits."""
        formatted = adapter.format_content(content, rule)
        issues = [issue for issue in adapter.validate_content(formatted) if issue.severity == "error"]
        if issues:
            raise ValidationError(
                f"Formatted content violates {adapter.name} constraints: "
                + "; ".join(issue.message for issue in issues),
                platform=adapter.name,
                issues=[issue.code for issue in issues],
            )
        return formatted

    async def _fan_out(
        self,
        request_id: str,
        operation: str,
        title: str,
        platforms: list[str],
        options: MultiPlatformPublishOptions,
        dispatch: Callable[..., Awaitable[PublishResult]],
    ) -> MultiPlatformPublishResult:
        """
        Run `dispatch` once per platform through a bounded worker pool.

        Workers drain an ordered queue, so start order follows
        `publish_order` (then the requested order). With
        stop_on_first_failure, no new dispatch starts once a failure is
        seen; in-flight ones finish and the rest are reported CANCELLED.
        """
        started = time.monotonic()
        aggregate = MultiPlatformPublishResult(request_id=request_id, success=False, state=DispatchState.PENDING)
        snapshot = self.registry.snapshot()
        ordered = self._order_platforms(platforms, options.publish_order)

        results: dict[str, PublishResult] = {}
        pending: deque[str] = deque()
        for name in ordered:
            if name in snapshot:
                pending.append(name)
            else:
                results[name] = PublishResult(
                    success=False,
                    platform=name,
                    error=f"Platform {name} is not connected",
                    error_code="PLATFORM_NOT_CONNECTED",
                )

        logger.info(
            f"[{request_id[:8]}] {operation} '{title}' to {len(pending)} platform(s): {', '.join(pending) or '-'}"
        )
        aggregate.state = DispatchState.DISPATCHING
        stop = asyncio.Event()

        async def run_one(name: str) -> PublishResult:
            adapter, breaker = snapshot[name]
            await self._emit(PublishingEventType.DISPATCH_START, name, request_id, f"{operation} started")
            dispatch_started = time.monotonic()
            try:
                result = await dispatch(name, adapter, breaker, aggregate.formatted)
            except CircuitBreakerOpen as e:
                result = PublishResult(success=False, platform=name, error=str(e), error_code=e.error_code)
            except Exception as e:
                result = PublishResult.from_error(name, self._normalize_error(name, e))
            result.duration_ms = (time.monotonic() - dispatch_started) * 1000

            if result.success:
                logger.info(f"[{request_id[:8]}] {name}: {operation} ok -> {result.external_url or result.external_id}")
            else:
                logger.warning(f"[{request_id[:8]}] {name}: {operation} failed [{result.error_code}] {result.error}")

            await self._emit(
                PublishingEventType.DISPATCH_RESULT,
                name,
                request_id,
                f"{operation} {'succeeded' if result.success else 'failed'}",
                result.to_dict(),
            )
            return result

        async def worker():
            while pending:
                if options.stop_on_first_failure and stop.is_set():
                    return
                name = pending.popleft()
                result = await run_one(name)
                results[name] = result
                if not result.success:
                    stop.set()

        pool_size = min(
            options.max_concurrency or self.config.publisher.max_concurrent_publishes,
            len(pending),
        )
        if pool_size > 0:
            await asyncio.gather(*(worker() for _ in range(max(1, pool_size))))

        while pending:
            name = pending.popleft()
            results[name] = PublishResult(
                success=False,
                platform=name,
                error="Skipped after an earlier platform failed",
                error_code="CANCELLED",
            )

        aggregate.results = {name: results[name] for name in ordered}
        aggregate.errors = {name: r.error or "Unknown error" for name, r in aggregate.results.items() if not r.success}
        aggregate.success_count = sum(1 for r in aggregate.results.values() if r.success)
        aggregate.failure_count = len(aggregate.results) - aggregate.success_count

        if options.require_all_success:
            aggregate.success = aggregate.failure_count == 0 and aggregate.success_count > 0
        else:
            aggregate.success = aggregate.success_count > 0

        if aggregate.success_count and not aggregate.failure_count:
            aggregate.state = DispatchState.SUCCEEDED
        elif aggregate.success_count:
            aggregate.state = DispatchState.PARTIALLY_SUCCEEDED
        else:
            aggregate.state = DispatchState.FAILED

        aggregate.total_duration_ms = (time.monotonic() - started) * 1000
        aggregate.completed_at = utcnow()
        self._record(aggregate)

        logger.info(
            f"[{request_id[:8]}] {operation} finished: "
            f"{aggregate.success_count} succeeded, {aggregate.failure_count} failed "
            f"({aggregate.total_duration_ms:.0f}ms)"
        )
        await self._emit(
            PublishingEventType.PUBLISH_COMPLETED,
            None,
            request_id,
            f"{operation} {aggregate.state.value}",
            {
                "success": aggregate.success,
                "success_count": aggregate.success_count,
                "failure_count": aggregate.failure_count,
                "errors": aggregate.errors,
            },
        )
        return aggregate

    def _order_platforms(self, platforms: list[str], publish_order: list[str]) -> list[str]:
        """publish_order first, then the remaining requested platforms in their given order."""
        requested = list(dict.fromkeys(platforms))
        ordered = [name for name in dict.fromkeys(publish_order) if name in requested]
        ordered.extend(name for name in requested if name not in ordered)
        return ordered

    def _normalize_error(self, platform: str, error: Exception) -> Exception:
        if isinstance(error, asyncio.TimeoutError):
            return TransientNetworkError(
                f"{platform} did not answer within {self.config.adapter.timeout}s",
                platform=platform,
                error_code="TIMEOUT",
            )
        if not isinstance(error, (PublishingError, CircuitBreakerOpen)):
            logger.error(f"[{platform}] Unexpected adapter error: {type(error).__name__}: {error}")
        return error

    def _record(self, result: MultiPlatformPublishResult):
        self._history.append(result)
        limit = self.config.publisher.history_limit
        if len(self._history) > limit:
            self._history = self._history[-limit:]

    def get_publish_history(self, limit: Optional[int] = None) -> list[MultiPlatformPublishResult]:
        """Most recent results first."""
        history = list(reversed(self._history))
        return history[:limit] if limit else history

    # ===== Health & analytics =====

    async def check_platform_health(self) -> PlatformHealthReport:
        snapshot = self.registry.snapshot()

        async def check(name: str, adapter: PlatformAdapter) -> HealthCheckResult:
            try:
                return await asyncio.wait_for(adapter.health_check(), timeout=self.config.adapter.timeout)
            except asyncio.TimeoutError:
                return HealthCheckResult(
                    platform=name,
                    status=HealthStatus.UNHEALTHY,
                    errors=[f"TIMEOUT: no answer within {self.config.adapter.timeout}s"],
                )
            except Exception as e:
                return HealthCheckResult(platform=name, status=HealthStatus.UNHEALTHY, errors=[str(e)])

        names = list(snapshot)
        results = await asyncio.gather(*(check(name, snapshot[name][0]) for name in names))
        report = build_health_report(
            dict(zip(names, results)),
            {name: breaker.get_status() for name, (_, breaker) in snapshot.items()},
        )
        logger.info(f"Platform health: {report.overall_status.value} ({len(names)} platform(s))")
        return report

    async def _collect_analytics(
        self,
        platforms: Optional[list[str]],
        time_range: TimeRange,
    ) -> tuple[dict[str, PlatformAnalytics], dict[str, str]]:
        """Per-platform analytics; failures become zeroed entries plus a gap note."""
        snapshot = self.registry.snapshot()
        names = platforms if platforms is not None else list(snapshot)
        gaps: dict[str, str] = {}

        async def fetch(name: str) -> PlatformAnalytics:
            if name not in snapshot:
                gaps[name] = "not connected"
                return PlatformAnalytics.empty(name, time_range, "Platform not connected")
            adapter, breaker = snapshot[name]
            try:
                return await breaker.call(adapter.get_analytics, time_range)
            except Exception as e:
                logger.warning(f"[{name}] Analytics unavailable: {e}")
                gaps[name] = str(self._normalize_error(name, e))
                return PlatformAnalytics.empty(name, time_range, f"Analytics call failed: {e}")

        results = await asyncio.gather(*(fetch(name) for name in names))
        return dict(zip(names, results)), gaps

    async def get_aggregated_analytics(
        self,
        time_range: Optional[TimeRange] = None,
        platforms: Optional[list[str]] = None,
    ) -> AggregatedAnalytics:
        time_range = time_range or TimeRange.last_days(DEFAULT_ANALYTICS_DAYS)
        breakdown, gaps = await self._collect_analytics(platforms, time_range)
        return aggregate_analytics(breakdown, time_range, gaps)

    async def get_comparative_analytics(
        self,
        time_range: Optional[TimeRange] = None,
        platforms: Optional[list[str]] = None,
    ) -> ComparativeAnalytics:
        time_range = time_range or TimeRange.last_days(DEFAULT_ANALYTICS_DAYS)
        breakdown, gaps = await self._collect_analytics(platforms, time_range)
        return compare_analytics(breakdown, time_range, gaps)

    # ===== Events & lifecycle =====

    async def _emit(
        self,
        event_type: PublishingEventType,
        platform: Optional[str],
        request_id: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ):
        await self.events.emit(PublishingEvent(
            event_type=event_type,
            platform=platform,
            request_id=request_id,
            message=message,
            data=data or {},
        ))

    async def close(self):
        """Disconnect every adapter."""
        for name in self.registry.names():
            await self.remove_platform(name)


async def build_publisher(
    config: Optional[Config] = None,
    events: Optional[EventBus] = None,
) -> MultiPlatformPublisher:
    """
    Create a publisher connected to every platform with credentials in the environment.

    Platforms whose authentication fails are logged and skipped.
    """
    # Import here to avoid circular imports
    from services.platforms import LinkedInAdapter, MediumAdapter, WordPressAdapter
    from services.platforms.models import CredentialType

    config = config or get_config()
    creds = config.credentials
    publisher = MultiPlatformPublisher(config=config, events=events)

    candidates = []
    if "wordpress" in creds.configured_platforms():
        candidates.append((
            WordPressAdapter(config=config.adapter),
            PlatformCredentials(
                type=CredentialType.APPLICATION_PASSWORD,
                site_url=creds.wordpress_site_url,
                username=creds.wordpress_username,
                application_password=creds.wordpress_app_password,
            ),
        ))
    if "medium" in creds.configured_platforms():
        candidates.append((
            MediumAdapter(config=config.adapter),
            PlatformCredentials(
                type=CredentialType.INTEGRATION_TOKEN,
                integration_token=creds.medium_integration_token,
            ),
        ))
    if "linkedin" in creds.configured_platforms():
        candidates.append((
            LinkedInAdapter(config=config.adapter),
            PlatformCredentials(
                type=CredentialType.OAUTH2,
                access_token=creds.linkedin_access_token,
                person_urn=creds.linkedin_person_urn or None,
            ),
        ))

    for adapter, credentials in candidates:
        try:
            await publisher.add_platform(adapter, credentials)
        except PublishingError as e:
            logger.error(f"Could not connect {adapter.name}: [{e.error_code}] {e.message}")
            await adapter.disconnect()

    if not publisher.get_connected_platforms():
        logger.warning("No platforms connected; check platform credentials")
    return publisher
