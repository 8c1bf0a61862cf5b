"""
Publisher Services

Cross-platform publishing orchestration.
Fans content out to WordPress, Medium, LinkedIn and any other registered
adapter, with per-platform isolation, health and analytics roll-ups.
"""

from .multi_platform import (
    DispatchState,
    MultiPlatformPublisher,
    MultiPlatformPublishOptions,
    MultiPlatformPublishResult,
    PlatformRegistry,
    build_publisher,
)

from .reports import (
    AggregatedAnalytics,
    ComparativeAnalytics,
    HealthIssue,
    MetricWinner,
    PlatformHealthReport,
    aggregate_analytics,
    build_health_report,
    compare_analytics,
    rollup_status,
)

__all__ = [
    # Publisher
    "MultiPlatformPublisher",
    "MultiPlatformPublishOptions",
    "MultiPlatformPublishResult",
    "DispatchState",
    "PlatformRegistry",
    "build_publisher",
    # Reports
    "PlatformHealthReport",
    "HealthIssue",
    "AggregatedAnalytics",
    "ComparativeAnalytics",
    "MetricWinner",
    "aggregate_analytics",
    "build_health_report",
    "compare_analytics",
    "rollup_status",
]
