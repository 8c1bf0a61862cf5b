"""
Platform Adapters

One capability-aware adapter per publishing target:
- wordpress: WordPress REST API (publish, update, delete, native scheduling)
- medium: Medium API (publish only)
- linkedin: LinkedIn UGC posts (publish, delete)

All adapters satisfy the PlatformAdapter protocol defined in base.py.
"""

from .models import (
    AuthenticationResult,
    BlogContent,
    ContentAnalytics,
    ContentFormat,
    ContentIssue,
    ContentModification,
    CredentialType,
    DeleteResult,
    FormattedContent,
    HealthCheckResult,
    HealthStatus,
    MediaReference,
    ModificationImpact,
    ModificationType,
    PlatformAnalytics,
    PlatformCapabilities,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    RateLimitStatus,
    ScheduleResult,
    SEOFields,
    TimeRange,
)
from .base import BasePlatformAdapter, PlatformAdapter, PlatformHttpClient
from .wordpress import WordPressAdapter
from .medium import MediumAdapter
from .linkedin import LinkedInAdapter, LinkedInShareMode

ADAPTERS = {
    "wordpress": WordPressAdapter,
    "medium": MediumAdapter,
    "linkedin": LinkedInAdapter,
}


def create_adapter(platform: str, **kwargs) -> BasePlatformAdapter:
    """Instantiate a bundled adapter by platform name."""
    try:
        adapter_cls = ADAPTERS[platform]
    except KeyError:
        raise ValueError(f"Unknown platform: {platform}. Available: {', '.join(ADAPTERS)}") from None
    return adapter_cls(**kwargs)


__all__ = [
    # Contract
    "PlatformAdapter",
    "BasePlatformAdapter",
    "PlatformHttpClient",
    # Adapters
    "WordPressAdapter",
    "MediumAdapter",
    "LinkedInAdapter",
    "LinkedInShareMode",
    "ADAPTERS",
    "create_adapter",
    # Models
    "AuthenticationResult",
    "BlogContent",
    "ContentAnalytics",
    "ContentFormat",
    "ContentIssue",
    "ContentModification",
    "CredentialType",
    "DeleteResult",
    "FormattedContent",
    "HealthCheckResult",
    "HealthStatus",
    "MediaReference",
    "ModificationImpact",
    "ModificationType",
    "PlatformAnalytics",
    "PlatformCapabilities",
    "PlatformCredentials",
    "PublishOptions",
    "PublishResult",
    "RateLimitStatus",
    "ScheduleResult",
    "SEOFields",
    "TimeRange",
]
