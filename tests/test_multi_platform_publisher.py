"""
Tests for MultiPlatformPublisher fan-out, isolation, health and analytics.

Run with:
    python -m pytest tests/test_multi_platform_publisher.py -v
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import AuthError, ConfigurationError, RateLimitError, TransientNetworkError
from services.platforms import BlogContent, ContentFormat, HealthStatus, PlatformCapabilities, TimeRange
from services.publisher import DispatchState, MultiPlatformPublisher, MultiPlatformPublishOptions
from services.streaming import EventBus, PublishingEventType


class TestRegistry:
    """add_platform / remove_platform behaviour."""

    @pytest.mark.asyncio
    async def test_add_platform_authenticates_and_registers(self, config, make_adapter, credentials):
        publisher = MultiPlatformPublisher(config=config)
        adapter = make_adapter("wordpress")

        await publisher.add_platform(adapter, credentials)

        assert publisher.get_connected_platforms() == ["wordpress"]
        assert adapter.is_authenticated
        assert publisher.registry.breaker("wordpress") is not None

    @pytest.mark.asyncio
    async def test_rejected_credentials_leave_registry_unchanged(self, config, make_adapter, credentials):
        publisher = MultiPlatformPublisher(config=config)
        adapter = make_adapter("medium", auth_error=AuthError("Invalid token", platform="medium"))

        with pytest.raises(AuthError):
            await publisher.add_platform(adapter, credentials)

        assert "medium" not in publisher.registry
        assert publisher.get_connected_platforms() == []

    @pytest.mark.asyncio
    async def test_adapter_without_formats_is_a_configuration_error(self, config, make_adapter, credentials):
        broken = PlatformCapabilities(
            max_content_length=0,
            max_title_length=100,
            max_description_length=100,
            max_tags_count=5,
            supported_formats=(),
        )
        publisher = MultiPlatformPublisher(config=config)

        with pytest.raises(ConfigurationError):
            await publisher.add_platform(make_adapter("broken", capabilities=broken), credentials)

    @pytest.mark.asyncio
    async def test_non_adapter_is_rejected(self, config, credentials):
        publisher = MultiPlatformPublisher(config=config)
        with pytest.raises(ConfigurationError):
            await publisher.add_platform(object(), credentials)

    @pytest.mark.asyncio
    async def test_reauthenticating_with_same_credentials_is_idempotent(self, make_adapter, credentials):
        adapter = make_adapter("linkedin")

        first = await adapter.authenticate(credentials)
        second = await adapter.authenticate(credentials)

        assert first is second
        assert adapter.auth_calls == 1

    @pytest.mark.asyncio
    async def test_replacing_an_adapter_disconnects_the_old_one(self, config, make_adapter, connect):
        publisher = MultiPlatformPublisher(config=config)
        old, new = make_adapter("medium"), make_adapter("medium")

        await connect(publisher, old, new)

        assert publisher.get_adapter("medium") is new
        assert not old.is_authenticated
        assert len(publisher.registry) == 1

    @pytest.mark.asyncio
    async def test_remove_platform(self, config, make_adapter, connect):
        publisher = await connect(MultiPlatformPublisher(config=config), make_adapter("wordpress"))

        assert await publisher.remove_platform("wordpress") is True
        assert await publisher.remove_platform("wordpress") is False
        assert publisher.get_connected_platforms() == []


class TestFanOut:
    """publish_to_all / publish_to_selected."""

    @pytest.mark.asyncio
    async def test_rate_limit_on_one_platform_does_not_affect_others(
        self, config, make_adapter, connect, sample_content
    ):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress"),
            make_adapter("medium"),
            make_adapter("linkedin", publish_error=RateLimitError("Daily quota reached", platform="linkedin")),
        )

        result = await publisher.publish_to_all(sample_content)

        assert set(result.results) == {"wordpress", "medium", "linkedin"}
        assert result.success is True
        assert result.state == DispatchState.PARTIALLY_SUCCEEDED
        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.results["linkedin"].error_code == "RATE_LIMITED"
        assert "linkedin" in result.errors
        assert result.results["wordpress"].external_url.startswith("https://wordpress.example.com/")

    @pytest.mark.asyncio
    async def test_every_requested_platform_gets_a_result(self, config, make_adapter, connect, sample_content):
        publisher = await connect(MultiPlatformPublisher(config=config), make_adapter("wordpress"))

        result = await publisher.publish_to_selected(sample_content, ["wordpress", "ghost"])

        assert list(result.results) == ["wordpress", "ghost"]
        assert result.results["ghost"].error_code == "PLATFORM_NOT_CONNECTED"
        assert result.success_count + result.failure_count == 2

    @pytest.mark.asyncio
    async def test_content_is_formatted_per_platform(self, config, make_adapter, connect, sample_content):
        markdown_only = PlatformCapabilities(
            max_content_length=10000,
            max_title_length=100,
            max_description_length=140,
            max_tags_count=3,
            supported_formats=(ContentFormat.MARKDOWN,),
        )
        wordpress = make_adapter("wordpress")
        medium = make_adapter("medium", capabilities=markdown_only)
        publisher = await connect(MultiPlatformPublisher(config=config), wordpress, medium)

        result = await publisher.publish_to_all(sample_content)

        assert result.formatted["wordpress"].format == ContentFormat.HTML
        assert "<strong>merge early</strong>" in wordpress.published[0].content
        assert result.formatted["medium"].format == ContentFormat.MARKDOWN
        assert medium.published[0].content.startswith("# Why flags")

    @pytest.mark.asyncio
    async def test_all_failures_give_failed_state(self, config, make_adapter, connect, sample_content):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress", publish_error=TransientNetworkError("down", platform="wordpress")),
            make_adapter("medium", publish_error=AuthError("expired", platform="medium")),
        )

        result = await publisher.publish_to_all(sample_content)

        assert result.success is False
        assert result.state == DispatchState.FAILED
        assert result.results["wordpress"].error_code == "TRANSIENT_NETWORK"
        assert result.results["medium"].error_code == "AUTH_ERROR"

    @pytest.mark.asyncio
    async def test_require_all_success(self, config, make_adapter, connect, sample_content):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress"),
            make_adapter("medium", publish_error=RateLimitError("slow down", platform="medium")),
        )

        result = await publisher.publish_to_all(
            sample_content, options=MultiPlatformPublishOptions(require_all_success=True)
        )

        assert result.success is False
        assert result.state == DispatchState.PARTIALLY_SUCCEEDED
        assert result.success_count == 1

    @pytest.mark.asyncio
    async def test_stop_on_first_failure_cancels_remaining(self, config, make_adapter, connect, sample_content):
        first = make_adapter("medium", publish_error=RateLimitError("quota", platform="medium"))
        second, third = make_adapter("wordpress"), make_adapter("linkedin")
        publisher = await connect(MultiPlatformPublisher(config=config), second, third, first)

        result = await publisher.publish_to_all(
            sample_content,
            options=MultiPlatformPublishOptions(
                publish_order=["medium", "wordpress", "linkedin"],
                stop_on_first_failure=True,
                max_concurrency=1,
            ),
        )

        assert list(result.results) == ["medium", "wordpress", "linkedin"]
        assert result.results["wordpress"].error_code == "CANCELLED"
        assert result.results["linkedin"].error_code == "CANCELLED"
        assert second.publish_attempts == 0
        assert third.publish_attempts == 0
        assert result.state == DispatchState.FAILED

    @pytest.mark.asyncio
    async def test_publish_order_sets_dispatch_start_order(self, config, make_adapter, connect, sample_content, tracker):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("a", tracker=tracker),
            make_adapter("b", tracker=tracker),
            make_adapter("c", tracker=tracker),
        )

        await publisher.publish_to_selected(
            sample_content,
            ["a", "b", "c"],
            MultiPlatformPublishOptions(publish_order=["c", "a"], max_concurrency=1),
        )

        assert tracker.calls == ["c", "a", "b"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, config, make_adapter, connect, sample_content, tracker):
        adapters = [make_adapter(f"p{i}", delay=0.05, tracker=tracker) for i in range(5)]
        publisher = await connect(MultiPlatformPublisher(config=config), *adapters)

        result = await publisher.publish_to_all(sample_content, options=MultiPlatformPublishOptions(max_concurrency=2))

        assert result.success_count == 5
        assert tracker.max_active == 2

    @pytest.mark.asyncio
    async def test_slow_platform_times_out(self, config, make_adapter, connect, sample_content):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress"),
            make_adapter("medium", delay=1.0, timeout=0.05),
        )

        result = await publisher.publish_to_all(sample_content)

        assert result.results["wordpress"].success
        assert result.results["medium"].error_code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_open_circuit_breaker_fails_fast(self, config, make_adapter, connect, sample_content):
        adapter = make_adapter("linkedin")
        publisher = await connect(MultiPlatformPublisher(config=config), adapter)
        publisher.registry.breaker("linkedin").force_open()

        result = await publisher.publish_to_all(sample_content)

        assert result.results["linkedin"].error_code == "CIRCUIT_BREAKER_OPEN"
        assert adapter.publish_attempts == 0

    @pytest.mark.asyncio
    async def test_invalid_content_is_reported_as_validation_error(self, config, make_adapter, connect):
        publisher = await connect(MultiPlatformPublisher(config=config), make_adapter("fake"))
        empty = BlogContent(title="Nothing to see", content="")

        result = await publisher.publish_to_all(empty)

        assert result.results["fake"].error_code == "VALIDATION_ERROR"
        assert "Content is required" in result.results["fake"].error

    @pytest.mark.asyncio
    async def test_events_are_emitted_per_platform(self, config, make_adapter, connect, sample_content):
        bus = EventBus()
        seen = []
        bus.on_event(lambda event: seen.append((event.event_type, event.platform)))
        publisher = await connect(
            MultiPlatformPublisher(config=config, events=bus),
            make_adapter("wordpress"),
            make_adapter("medium"),
        )

        await publisher.publish_to_all(sample_content)

        starts = [p for t, p in seen if t == PublishingEventType.DISPATCH_START]
        results = [p for t, p in seen if t == PublishingEventType.DISPATCH_RESULT]
        assert sorted(starts) == ["medium", "wordpress"]
        assert sorted(results) == ["medium", "wordpress"]
        assert seen[-1][0] == PublishingEventType.PUBLISH_COMPLETED

    @pytest.mark.asyncio
    async def test_failing_event_callback_does_not_break_publishing(
        self, config, make_adapter, connect, sample_content
    ):
        bus = EventBus()

        def explode(event):
            raise RuntimeError("listener bug")

        bus.on_event(explode)
        publisher = await connect(MultiPlatformPublisher(config=config, events=bus), make_adapter("wordpress"))

        result = await publisher.publish_to_all(sample_content)

        assert result.success

    @pytest.mark.asyncio
    async def test_publish_history_is_newest_first(self, config, make_adapter, connect, sample_content):
        publisher = await connect(MultiPlatformPublisher(config=config), make_adapter("wordpress"))

        first = await publisher.publish_to_all(sample_content)
        second = await publisher.publish_to_all(sample_content)

        history = publisher.get_publish_history()
        assert [r.request_id for r in history] == [second.request_id, first.request_id]
        assert publisher.get_publish_history(limit=1)[0].request_id == second.request_id

    @pytest.mark.asyncio
    async def test_bulk_publish_runs_each_piece(self, config, make_adapter, connect, sample_content):
        adapter = make_adapter("wordpress")
        publisher = await connect(MultiPlatformPublisher(config=config), adapter)
        other = sample_content.model_copy(update={"title": "Second post"})

        results = await publisher.bulk_publish([sample_content, other])

        assert [r.success for r in results] == [True, True]
        assert [p.title for p in adapter.published] == [sample_content.title, "Second post"]


class TestUpdateDeleteSchedule:

    @pytest.mark.asyncio
    async def test_update_across_platforms(self, config, make_adapter, connect, sample_content):
        adapter = make_adapter("wordpress")
        publisher = await connect(MultiPlatformPublisher(config=config), adapter)

        result = await publisher.update_across_platforms(sample_content, {"wordpress": "42"})

        assert result.success
        assert adapter.updated[0][0] == "42"

    @pytest.mark.asyncio
    async def test_update_unsupported_platform(self, config, make_adapter, connect, sample_content):
        no_updates = PlatformCapabilities(
            max_content_length=10000,
            max_title_length=100,
            max_description_length=140,
            max_tags_count=3,
            supported_formats=(ContentFormat.MARKDOWN,),
        )
        publisher = await connect(MultiPlatformPublisher(config=config), make_adapter("medium", capabilities=no_updates))

        result = await publisher.update_across_platforms(sample_content, {"medium": "abc"})

        assert result.results["medium"].error_code == "UNSUPPORTED_OPERATION"

    @pytest.mark.asyncio
    async def test_delete_across_platforms(self, config, make_adapter, connect):
        adapter = make_adapter("wordpress")
        publisher = await connect(MultiPlatformPublisher(config=config), adapter)

        results = await publisher.delete_across_platforms({"wordpress": "42", "ghost": "7"})

        assert results["wordpress"].success
        assert adapter.deleted == ["42"]
        assert results["ghost"].error_code == "PLATFORM_NOT_CONNECTED"

    @pytest.mark.asyncio
    async def test_schedule_across_platforms_reports_unsupported(
        self, config, make_adapter, connect, sample_content, clock
    ):
        no_scheduling = PlatformCapabilities(
            max_content_length=10000,
            max_title_length=100,
            max_description_length=140,
            max_tags_count=3,
            supported_formats=(ContentFormat.MARKDOWN,),
        )
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress"),
            make_adapter("linkedin", capabilities=no_scheduling),
        )

        results = await publisher.schedule_across_platforms(sample_content, clock.now)

        assert results["wordpress"].success
        assert results["linkedin"].success is False
        assert results["linkedin"].error_code == "UNSUPPORTED_OPERATION"


class TestHealthAndAnalytics:

    @pytest.mark.asyncio
    async def test_health_rollup(self, config, make_adapter, connect):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress"),
            make_adapter("medium", ping_error=TransientNetworkError("connection refused", platform="medium")),
        )

        report = await publisher.check_platform_health()

        assert report.platforms["wordpress"].status == HealthStatus.HEALTHY
        assert report.platforms["medium"].status == HealthStatus.UNHEALTHY
        assert report.overall_status == HealthStatus.UNHEALTHY
        assert report.issues[0].severity == "high"
        assert report.issues[0].platform == "medium"
        assert any("medium" in r for r in report.recommendations)
        assert set(report.circuit_breakers) == {"wordpress", "medium"}

    @pytest.mark.asyncio
    async def test_health_all_healthy(self, config, make_adapter, connect):
        publisher = await connect(MultiPlatformPublisher(config=config), make_adapter("wordpress"))

        report = await publisher.check_platform_health()

        assert report.overall_status == HealthStatus.HEALTHY
        assert report.issues == []

    @pytest.mark.asyncio
    async def test_open_breaker_is_reported(self, config, make_adapter, connect):
        publisher = await connect(MultiPlatformPublisher(config=config), make_adapter("linkedin"))
        publisher.registry.breaker("linkedin").force_open()

        report = await publisher.check_platform_health()

        assert any(i.message == "Circuit breaker is open" for i in report.issues)

    @pytest.mark.asyncio
    async def test_aggregated_analytics_tolerates_failures(self, config, make_adapter, connect):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress", analytics={"page_views": 1200, "total_engagements": 80, "engagement_rate": 0.06}),
            make_adapter("linkedin", analytics={"page_views": 300, "total_engagements": 45, "engagement_rate": 0.15}),
            make_adapter("medium", analytics_error=TransientNetworkError("stats down", platform="medium")),
        )

        report = await publisher.get_aggregated_analytics(TimeRange.last_days(7))

        assert report.totals["page_views"] == 1500
        assert report.totals["total_engagements"] == 125
        assert report.averages["engagement_rate"] == pytest.approx(0.105)
        assert report.top_platform == "wordpress"
        assert "medium" in report.gaps
        assert report.platform_breakdown["medium"].page_views == 0

    @pytest.mark.asyncio
    async def test_comparative_analytics_winners(self, config, make_adapter, connect):
        publisher = await connect(
            MultiPlatformPublisher(config=config),
            make_adapter("wordpress", analytics={"page_views": 1000, "shares": 5}),
            make_adapter("linkedin", analytics={"page_views": 800, "shares": 40}),
        )

        report = await publisher.get_comparative_analytics()

        assert report.winners["page_views"].platform == "wordpress"
        assert report.winners["page_views"].lead_percent == 25.0
        assert report.winners["shares"].platform == "linkedin"
        assert report.winners["conversions"] is None
        assert report.rankings["page_views"] == ["wordpress", "linkedin"]

    @pytest.mark.asyncio
    async def test_close_disconnects_everything(self, config, make_adapter, connect):
        adapters = [make_adapter("wordpress"), make_adapter("medium")]
        publisher = await connect(MultiPlatformPublisher(config=config), *adapters)

        await publisher.close()

        assert publisher.get_connected_platforms() == []
        assert not any(a.is_authenticated for a in adapters)
