"""
Shared fixtures for the publishing engine tests.

FakeAdapter is a BasePlatformAdapter with scripted behaviour (delays,
errors, analytics) so publisher, queue and scheduler tests never touch
the network.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import AdapterConfig, Config, PublisherConfig, SchedulerConfig
from services.platforms import (
    BasePlatformAdapter,
    BlogContent,
    ContentFormat,
    CredentialType,
    DeleteResult,
    FormattedContent,
    PlatformAnalytics,
    PlatformCapabilities,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    ScheduleResult,
    TimeRange,
)
from services.platforms.models import utcnow

FAKE_CAPABILITIES = PlatformCapabilities(
    max_content_length=50000,
    max_title_length=200,
    max_description_length=300,
    max_tags_count=10,
    supported_formats=(ContentFormat.HTML, ContentFormat.MARKDOWN),
    supports_scheduling=True,
    supports_updates=True,
    supports_deleting=True,
    supports_analytics=True,
)


class ConcurrencyTracker:
    """Tracks how many fake publishes run at the same time."""

    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.calls: list[str] = []

    def enter(self, name: str):
        self.calls.append(name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)

    def exit(self):
        self.active -= 1


class FakeAdapter(BasePlatformAdapter):
    """Scripted adapter; `fail_times` limits how often publish_error is raised."""

    def __init__(
        self,
        name: str = "fake",
        capabilities: Optional[PlatformCapabilities] = None,
        publish_error: Optional[Exception] = None,
        fail_times: Optional[int] = None,
        auth_error: Optional[Exception] = None,
        ping_error: Optional[Exception] = None,
        delay: float = 0.0,
        timeout: float = 5.0,
        analytics: Optional[dict] = None,
        analytics_error: Optional[Exception] = None,
        tracker: Optional[ConcurrencyTracker] = None,
    ):
        self.name = name
        self.display_name = name.title()
        self.capabilities = capabilities or FAKE_CAPABILITIES
        super().__init__(config=AdapterConfig(timeout=timeout, retry_attempts=1, retry_delay=0, rate_limit_buffer=10))

        self.publish_error = publish_error
        self.fail_times = fail_times
        self.auth_error = auth_error
        self.ping_error = ping_error
        self.delay = delay
        self.analytics = analytics or {}
        self.analytics_error = analytics_error
        self.tracker = tracker

        self.auth_calls = 0
        self.published: list[FormattedContent] = []
        self.publish_attempts = 0
        self.updated: list[tuple[str, FormattedContent]] = []
        self.deleted: list[str] = []

    async def _authenticate(self, credentials: PlatformCredentials) -> dict:
        self.auth_calls += 1
        if self.auth_error:
            raise self.auth_error
        return {"id": f"{self.name}-user", "name": f"{self.display_name} Author"}

    async def _ping(self):
        if self.ping_error:
            raise self.ping_error

    async def _publish(self, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        self.publish_attempts += 1
        if self.tracker:
            self.tracker.enter(self.name)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.publish_error and (self.fail_times is None or self.publish_attempts <= self.fail_times):
                raise self.publish_error
        finally:
            if self.tracker:
                self.tracker.exit()

        self.published.append(formatted)
        external_id = f"{self.name}-{len(self.published)}"
        return PublishResult(
            success=True,
            platform=self.name,
            external_id=external_id,
            external_url=f"https://{self.name}.example.com/posts/{external_id}",
            published_at=utcnow(),
        )

    async def _update(self, external_id: str, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        self.updated.append((external_id, formatted))
        return PublishResult(success=True, platform=self.name, external_id=external_id, published_at=utcnow())

    async def _delete(self, external_id: str) -> DeleteResult:
        self.deleted.append(external_id)
        return DeleteResult(success=True, platform=self.name, external_id=external_id, deleted_at=utcnow())

    async def _schedule(self, formatted: FormattedContent, publish_time: datetime, options: PublishOptions) -> ScheduleResult:
        return ScheduleResult(
            success=True,
            platform=self.name,
            scheduled_time=publish_time,
            external_id=f"{self.name}-scheduled",
        )

    async def _get_analytics(self, time_range: TimeRange) -> PlatformAnalytics:
        if self.analytics_error:
            raise self.analytics_error
        return PlatformAnalytics(platform=self.name, time_range=time_range, **self.analytics)


class FakeClock:
    """Settable clock for scheduler and queue tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def credentials():
    return PlatformCredentials(type=CredentialType.API_TOKEN, access_token="test-token")


@pytest.fixture
def sample_content():
    return BlogContent(
        title="Shipping faster with feature flags",
        content=(
            "# Why flags\n\n"
            "Feature flags let teams **merge early** and release when ready.\n\n"
            "- Smaller pull requests\n- Safer rollouts\n\n"
            "Read more on [our blog](https://example.com/flags)."
        ),
        excerpt="How feature flags shorten the path from merge to release.",
        tags=["devops", "release engineering", "feature flags"],
        author="Platform Team",
    )


@pytest.fixture
def config():
    return Config(
        adapter=AdapterConfig(timeout=5.0, retry_attempts=1, retry_delay=0, rate_limit_buffer=10),
        publisher=PublisherConfig(max_concurrent_publishes=3, history_limit=50),
        scheduler=SchedulerConfig(
            schedule_check_interval=0.01,
            queue_process_interval=0.01,
            default_max_concurrent=5,
            default_max_retries=2,
            default_retry_delay=0.01,
            default_exponential_backoff=True,
            past_tolerance=60,
            default_timezone="UTC",
        ),
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 11, 2, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_adapter():
    """Factory: make_adapter("medium", publish_error=RateLimitError(...))."""
    return FakeAdapter


@pytest.fixture
def connect(credentials):
    """Register adapters on a publisher: await connect(publisher, *adapters)."""

    async def _connect(publisher, *adapters):
        for adapter in adapters:
            await publisher.add_platform(adapter, credentials)
        return publisher

    return _connect


@pytest.fixture
def tracker():
    return ConcurrencyTracker()
