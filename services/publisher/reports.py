"""
Cross-Platform Reports

Pure roll-ups used by the MultiPlatformPublisher:
- Health report with overall status, severity-sorted issues and recommendations
- Aggregated analytics (sums, averages, top platform, insights)
- Comparative analytics (per-metric winners and rankings)

No I/O here; the publisher gathers the inputs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from services.platforms.models import (
    AVERAGED_METRICS,
    SUMMED_METRICS,
    HealthCheckResult,
    HealthStatus,
    PlatformAnalytics,
    TimeRange,
    utcnow,
)

SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}

COMPARED_METRICS = ("page_views", "total_engagements", "shares", "conversions")
RANKED_METRICS = ("page_views", "engagement_rate", "conversion_rate")

INSIGHT_ENGAGEMENT_MULTIPLIER = 1.5
LOW_ENGAGEMENT_RATE = 0.02
HIGH_BOUNCE_RATE = 0.7


# ============================================================
# Health
# ============================================================

@dataclass
class HealthIssue:
    platform: str
    severity: str  # high, medium, low
    message: str

    def to_dict(self) -> dict:
        return {"platform": self.platform, "severity": self.severity, "message": self.message}


@dataclass
class PlatformHealthReport:
    overall_status: HealthStatus
    platforms: dict[str, HealthCheckResult] = field(default_factory=dict)
    issues: list[HealthIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    circuit_breakers: dict[str, dict] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "overall_status": self.overall_status.value,
            "platforms": {name: result.to_dict() for name, result in self.platforms.items()},
            "issues": [issue.to_dict() for issue in self.issues],
            "recommendations": self.recommendations,
            "circuit_breakers": self.circuit_breakers,
            "checked_at": self.checked_at.isoformat(),
        }


def rollup_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """healthy if all healthy; degraded if any degraded and none unhealthy; unhealthy if any unhealthy."""
    statuses = list(statuses)
    if HealthStatus.UNHEALTHY in statuses:
        return HealthStatus.UNHEALTHY
    if HealthStatus.DEGRADED in statuses:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def build_health_report(
    results: dict[str, HealthCheckResult],
    circuit_breakers: Optional[dict[str, dict]] = None,
) -> PlatformHealthReport:
    circuit_breakers = circuit_breakers or {}
    issues: list[HealthIssue] = []
    recommendations: list[str] = []

    for platform, result in results.items():
        for error in result.errors:
            issues.append(HealthIssue(platform, "high", error))
        if result.status == HealthStatus.UNHEALTHY and not result.errors:
            issues.append(HealthIssue(platform, "high", "Platform reported unhealthy"))

        warning_severity = "medium" if result.status == HealthStatus.DEGRADED else "low"
        for warning in result.warnings:
            issues.append(HealthIssue(platform, warning_severity, warning))

        breaker = circuit_breakers.get(platform)
        if breaker and breaker.get("state") != "closed":
            issues.append(HealthIssue(platform, "medium", f"Circuit breaker is {breaker['state']}"))

        if result.status == HealthStatus.UNHEALTHY:
            if any("AUTH" in e or "authenticated" in e for e in result.errors):
                recommendations.append(f"Refresh credentials for {platform} and re-register it")
            else:
                recommendations.append(f"Check connectivity to {platform}; dispatches will fail until it recovers")
        if any("Rate limit" in w for w in result.warnings):
            recommendations.append(f"Spread publishes to {platform} over time; its rate limit is nearly exhausted")
        if any("Slow response" in w for w in result.warnings):
            recommendations.append(f"Consider a longer adapter timeout for {platform}")

    issues.sort(key=lambda issue: SEVERITY_RANK.get(issue.severity, len(SEVERITY_RANK)))

    return PlatformHealthReport(
        overall_status=rollup_status(r.status for r in results.values()),
        platforms=results,
        issues=issues,
        recommendations=recommendations,
        circuit_breakers=circuit_breakers,
    )


# ============================================================
# Analytics
# ============================================================

@dataclass
class AggregatedAnalytics:
    time_range: TimeRange
    platforms: list[str]
    totals: dict[str, float] = field(default_factory=dict)
    averages: dict[str, float] = field(default_factory=dict)
    platform_breakdown: dict[str, PlatformAnalytics] = field(default_factory=dict)
    top_platform: Optional[str] = None
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    gaps: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "time_range": self.time_range.to_dict(),
            "platforms": self.platforms,
            "totals": self.totals,
            "averages": self.averages,
            "platform_breakdown": {p: a.to_dict() for p, a in self.platform_breakdown.items()},
            "top_platform": self.top_platform,
            "insights": self.insights,
            "recommendations": self.recommendations,
            "gaps": self.gaps,
        }


@dataclass
class MetricWinner:
    metric: str
    platform: str
    value: float
    lead_percent: Optional[float] = None  # vs. second place


@dataclass
class ComparativeAnalytics:
    time_range: TimeRange
    platforms: list[str]
    metrics: dict[str, dict[str, float]] = field(default_factory=dict)
    winners: dict[str, Optional[MetricWinner]] = field(default_factory=dict)
    rankings: dict[str, list[str]] = field(default_factory=dict)
    gaps: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "time_range": self.time_range.to_dict(),
            "platforms": self.platforms,
            "metrics": self.metrics,
            "winners": {
                metric: (vars(winner) if winner else None) for metric, winner in self.winners.items()
            },
            "rankings": self.rankings,
            "gaps": self.gaps,
        }


def aggregate_analytics(
    breakdown: dict[str, PlatformAnalytics],
    time_range: TimeRange,
    gaps: Optional[dict[str, str]] = None,
) -> AggregatedAnalytics:
    """
    Sum and average core metrics across platforms.

    Platforms listed in `gaps` contribute zeros to the totals and are left
    out of the averages so a failed call does not drag rates down.
    """
    gaps = gaps or {}
    platforms = list(breakdown)

    totals = {metric: sum(getattr(a, metric) for a in breakdown.values()) for metric in SUMMED_METRICS}

    reporting = [a for p, a in breakdown.items() if p not in gaps]
    averages = {
        metric: (sum(getattr(a, metric) for a in reporting) / len(reporting)) if reporting else 0.0
        for metric in AVERAGED_METRICS
    }

    top_platform = None
    best_score = 0
    for platform, analytics in breakdown.items():
        score = analytics.page_views + analytics.total_engagements
        if score > best_score:
            top_platform, best_score = platform, score

    insights = []
    recommendations = []
    average_engagement = averages["engagement_rate"]
    for platform, analytics in breakdown.items():
        if platform in gaps:
            recommendations.append(f"Analytics unavailable for {platform}: {gaps[platform]}")
            continue
        if analytics.estimated:
            continue
        if average_engagement > 0 and analytics.engagement_rate > INSIGHT_ENGAGEMENT_MULTIPLIER * average_engagement:
            insights.append(
                f"{platform} engagement rate ({analytics.engagement_rate:.1%}) is well above "
                f"the cross-platform average ({average_engagement:.1%})"
            )
        if analytics.engagement_rate < LOW_ENGAGEMENT_RATE:
            recommendations.append(
                f"Engagement on {platform} is below {LOW_ENGAGEMENT_RATE:.0%}; "
                "try stronger hooks or platform-native formats"
            )
        if analytics.bounce_rate > HIGH_BOUNCE_RATE:
            recommendations.append(
                f"Bounce rate on {platform} is above {HIGH_BOUNCE_RATE:.0%}; review intros and internal links"
            )

    if top_platform:
        insights.insert(0, f"{top_platform} drives the most combined views and engagements")

    return AggregatedAnalytics(
        time_range=time_range,
        platforms=platforms,
        totals=totals,
        averages=averages,
        platform_breakdown=breakdown,
        top_platform=top_platform,
        insights=insights,
        recommendations=recommendations,
        gaps=gaps,
    )


def compare_analytics(
    breakdown: dict[str, PlatformAnalytics],
    time_range: TimeRange,
    gaps: Optional[dict[str, str]] = None,
) -> ComparativeAnalytics:
    """Per-metric winners (simple max, earliest platform wins ties) and rankings."""
    gaps = gaps or {}
    platforms = list(breakdown)
    metric_names = tuple(dict.fromkeys(COMPARED_METRICS + RANKED_METRICS))

    metrics = {
        platform: {metric: getattr(analytics, metric) for metric in metric_names}
        for platform, analytics in breakdown.items()
    }

    winners: dict[str, Optional[MetricWinner]] = {}
    for metric in COMPARED_METRICS:
        ordered = sorted(platforms, key=lambda p: metrics[p][metric], reverse=True)
        if not ordered or metrics[ordered[0]][metric] <= 0:
            winners[metric] = None
            continue
        best = metrics[ordered[0]][metric]
        lead = None
        if len(ordered) > 1 and metrics[ordered[1]][metric] > 0:
            second = metrics[ordered[1]][metric]
            lead = round((best - second) / second * 100, 1)
        winners[metric] = MetricWinner(metric=metric, platform=ordered[0], value=best, lead_percent=lead)

    rankings = {
        metric: sorted(platforms, key=lambda p: metrics[p][metric], reverse=True)
        for metric in RANKED_METRICS
    }

    return ComparativeAnalytics(
        time_range=time_range,
        platforms=platforms,
        metrics=metrics,
        winners=winners,
        rankings=rankings,
        gaps=gaps,
    )
