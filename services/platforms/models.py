"""
Platform Models

Shared data model for the adapter contract:
- Canonical input payloads (BlogContent, PlatformCredentials) as pydantic models
- Declared PlatformCapabilities per adapter
- FormattedContent produced by the formatter
- Result records (publish, schedule, delete, auth, analytics, health)
"""

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentFormat(str, Enum):
    """Markup formats a platform can accept."""
    HTML = "html"
    MARKDOWN = "markdown"
    RICH_TEXT = "rich_text"
    PLAIN_TEXT = "plain_text"


class CredentialType(str, Enum):
    """Credential payload discriminator."""
    PRIVATE_APP = "private_app"
    OAUTH2 = "oauth2"
    API_TOKEN = "api_token"
    API_KEY = "api_key"
    APPLICATION_PASSWORD = "application_password"
    INTEGRATION_TOKEN = "integration_token"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ModificationType(str, Enum):
    LENGTH_REDUCTION = "length_reduction"
    FORMAT_CHANGE = "format_change"
    STRUCTURE_CHANGE = "structure_change"
    MEDIA_OPTIMIZATION = "media_optimization"
    SEO_OPTIMIZATION = "seo_optimization"


class ModificationImpact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================
# Input payloads
# ============================================================

class PlatformCredentials(BaseModel):
    """Credentials for one platform; extra platform fields are allowed."""
    model_config = ConfigDict(extra="allow")

    type: CredentialType
    site_url: Optional[str] = None
    username: Optional[str] = None
    application_password: Optional[str] = None
    access_token: Optional[str] = None
    integration_token: Optional[str] = None
    api_key: Optional[str] = None
    person_urn: Optional[str] = None

    def fingerprint(self) -> str:
        """Stable digest used to detect re-authentication with identical credentials."""
        payload = self.model_dump_json(exclude_none=True)
        return hashlib.sha256(payload.encode()).hexdigest()


class MediaReference(BaseModel):
    """Reference to an image or other asset."""
    url: str
    alt_text: Optional[str] = None
    caption: Optional[str] = None
    mime_type: Optional[str] = None
    filename: Optional[str] = None


class SEOFields(BaseModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    focus_keyword: Optional[str] = None
    canonical_url: Optional[str] = None
    open_graph: dict[str, str] = Field(default_factory=dict)
    twitter_card: dict[str, str] = Field(default_factory=dict)
    schema_markup: dict[str, Any] = Field(default_factory=dict)


class BlogContent(BaseModel):
    """Canonical content object handed over by the content-generation side."""
    title: str
    content: str
    content_format: ContentFormat = ContentFormat.MARKDOWN
    excerpt: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    author: Optional[str] = None
    slug: Optional[str] = None
    featured_image: Optional[MediaReference] = None
    seo: SEOFields = Field(default_factory=SEOFields)
    published_at: Optional[datetime] = None
    status: str = "publish"


# ============================================================
# Capabilities and formatted content
# ============================================================

@dataclass(frozen=True)
class PlatformCapabilities:
    """Declared limits and features of one platform."""
    max_content_length: int
    max_title_length: int
    max_description_length: int
    max_tags_count: int
    supported_formats: tuple[ContentFormat, ...]

    supports_images: bool = True
    supports_video: bool = False
    supports_audio: bool = False
    supports_galleries: bool = False
    max_image_size: int = 10 * 1024 * 1024
    supported_image_formats: tuple[str, ...] = ("image/jpeg", "image/png", "image/gif", "image/webp")

    supports_scheduling: bool = False
    supports_drafts: bool = False
    supports_updates: bool = False
    supports_deleting: bool = False
    supports_categories: bool = False
    supports_tags: bool = True
    supports_analytics: bool = False

    supports_custom_meta: bool = False
    supports_open_graph: bool = False
    supports_twitter_cards: bool = False
    supports_schema: bool = False
    supports_canonical: bool = False

    def supports_format(self, content_format: ContentFormat) -> bool:
        return content_format in self.supported_formats

    def to_dict(self) -> dict:
        data = asdict(self)
        data["supported_formats"] = [f.value for f in self.supported_formats]
        return data


@dataclass
class ContentModification:
    """One change the formatter made, and why."""
    type: ModificationType
    description: str
    impact: ModificationImpact
    before: Optional[str] = None
    after: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "description": self.description,
            "impact": self.impact.value,
            "before": self.before,
            "after": self.after,
        }


@dataclass
class ContentIssue:
    """A constraint violation found by validate_content."""
    code: str
    field: str
    message: str
    severity: str = "error"


@dataclass
class FormattedContent:
    """Content adapted for one platform."""
    platform: str
    title: str
    content: str
    format: ContentFormat
    excerpt: str = ""
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    author: Optional[str] = None
    slug: Optional[str] = None
    seo: dict[str, Any] = field(default_factory=dict)
    featured_image: Optional[MediaReference] = None
    platform_specific: dict[str, Any] = field(default_factory=dict)

    original_word_count: int = 0
    adapted_word_count: int = 0
    adaptation_score: float = 1.0
    modifications: list[ContentModification] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "title": self.title,
            "content": self.content,
            "format": self.format.value,
            "excerpt": self.excerpt,
            "tags": self.tags,
            "categories": self.categories,
            "author": self.author,
            "slug": self.slug,
            "seo": self.seo,
            "featured_image": self.featured_image.model_dump() if self.featured_image else None,
            "platform_specific": self.platform_specific,
            "original_word_count": self.original_word_count,
            "adapted_word_count": self.adapted_word_count,
            "adaptation_score": round(self.adaptation_score, 3),
            "modifications": [m.to_dict() for m in self.modifications],
            "warnings": self.warnings,
            "suggestions": self.suggestions,
        }


@dataclass
class PublishOptions:
    """Per-call publish options; adapters ignore fields they do not support."""
    status: Optional[str] = None  # publish, draft, private, unlisted
    slug: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    notify_followers: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


# ============================================================
# Results
# ============================================================

def _error_fields(error: BaseException) -> tuple[str, str]:
    """Extract (message, error_code) from any exception."""
    code = getattr(error, "error_code", None) or "UNKNOWN_ERROR"
    message = str(error) or type(error).__name__
    return message, code


@dataclass
class AuthenticationResult:
    success: bool
    platform: str
    user_info: dict[str, Any] = field(default_factory=dict)
    authenticated_at: datetime = field(default_factory=utcnow)
    error: Optional[str] = None


@dataclass
class PublishResult:
    """Outcome of one adapter publish/update call."""
    success: bool
    platform: str
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    published_at: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    platform_response: Optional[dict] = None
    duration_ms: float = 0.0

    @classmethod
    def from_error(cls, platform: str, error: BaseException, duration_ms: float = 0.0) -> "PublishResult":
        message, code = _error_fields(error)
        return cls(success=False, platform=platform, error=message, error_code=code, duration_ms=duration_ms)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "platform": self.platform,
            "external_id": self.external_id,
            "external_url": self.external_url,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "error": self.error,
            "error_code": self.error_code,
            "warnings": self.warnings,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class ScheduleResult:
    success: bool
    platform: str
    scheduled_time: Optional[datetime] = None
    external_id: Optional[str] = None
    schedule_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_error(cls, platform: str, error: BaseException) -> "ScheduleResult":
        message, code = _error_fields(error)
        return cls(success=False, platform=platform, error=message, error_code=code)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "platform": self.platform,
            "scheduled_time": self.scheduled_time.isoformat() if self.scheduled_time else None,
            "external_id": self.external_id,
            "schedule_id": self.schedule_id,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass
class DeleteResult:
    success: bool
    platform: str
    external_id: Optional[str] = None
    deleted_at: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_error(cls, platform: str, external_id: str, error: BaseException) -> "DeleteResult":
        message, code = _error_fields(error)
        return cls(success=False, platform=platform, external_id=external_id, error=message, error_code=code)


@dataclass
class TimeRange:
    start: datetime
    end: datetime

    @classmethod
    def last_days(cls, days: int) -> "TimeRange":
        end = utcnow()
        return cls(start=end - timedelta(days=days), end=end)

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


# Metrics summed or averaged during cross-platform aggregation
SUMMED_METRICS = (
    "page_views",
    "unique_visitors",
    "sessions",
    "total_engagements",
    "shares",
    "comments",
    "likes",
    "conversions",
    "revenue",
)
AVERAGED_METRICS = ("engagement_rate", "conversion_rate", "bounce_rate", "avg_session_duration")


@dataclass
class PlatformAnalytics:
    platform: str
    time_range: TimeRange
    page_views: int = 0
    unique_visitors: int = 0
    sessions: int = 0
    bounce_rate: float = 0.0
    avg_session_duration: float = 0.0
    total_engagements: int = 0
    engagement_rate: float = 0.0
    shares: int = 0
    comments: int = 0
    likes: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    revenue: float = 0.0
    platform_specific: dict[str, Any] = field(default_factory=dict)
    estimated: bool = False
    notes: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls, platform: str, time_range: TimeRange, note: str) -> "PlatformAnalytics":
        """Zeroed, estimated analytics for platforms without a usable API."""
        return cls(platform=platform, time_range=time_range, estimated=True, notes=[note])

    def to_dict(self) -> dict:
        data = {name: getattr(self, name) for name in SUMMED_METRICS + AVERAGED_METRICS}
        data.update({
            "platform": self.platform,
            "time_range": self.time_range.to_dict(),
            "platform_specific": self.platform_specific,
            "estimated": self.estimated,
            "notes": self.notes,
        })
        return data


@dataclass
class ContentAnalytics:
    platform: str
    external_id: str
    time_range: TimeRange
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    platform_specific: dict[str, Any] = field(default_factory=dict)
    estimated: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def engagements(self) -> int:
        return self.likes + self.comments + self.shares


@dataclass
class HealthCheckResult:
    platform: str
    status: HealthStatus
    response_time_ms: float = 0.0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    last_checked: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "status": self.status.value,
            "response_time_ms": round(self.response_time_ms, 1),
            "errors": self.errors,
            "warnings": self.warnings,
            "last_checked": self.last_checked.isoformat(),
        }


@dataclass
class RateLimitStatus:
    limit: int
    remaining: int
    reset_time: datetime
    retry_after: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_time": self.reset_time.isoformat(),
            "retry_after": self.retry_after,
        }
