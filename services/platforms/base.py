"""
Platform Adapter Contract

Every publishing target implements the PlatformAdapter protocol. Shared
behaviour lives in two composable pieces:
- PlatformHttpClient: httpx session, auth headers, status-to-error mapping,
  rate-limit header tracking, tenacity retries for idempotent reads
- BasePlatformAdapter: authentication bookkeeping, formatting via the
  ContentFormatter, content validation, health checks, and the
  capability gates (scheduling/update/delete/analytics)

Adapters raise the core.errors taxonomy; the publisher is responsible
for isolating those errors per platform.
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Protocol, runtime_checkable

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import AdapterConfig, get_config
from core.errors import (
    AuthError,
    PublishingError,
    TransientNetworkError,
    UnsupportedOperationError,
    error_from_status,
)

from .models import (
    AuthenticationResult,
    BlogContent,
    ContentAnalytics,
    ContentIssue,
    DeleteResult,
    FormattedContent,
    HealthCheckResult,
    HealthStatus,
    PlatformAnalytics,
    PlatformCapabilities,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    RateLimitStatus,
    ScheduleResult,
    TimeRange,
    utcnow,
)

if TYPE_CHECKING:
    from services.formatting import ContentFormatter, PlatformRule

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 1000
SLOW_RESPONSE_MS = 5000


@runtime_checkable
class PlatformAdapter(Protocol):
    """The operations the publisher and scheduler rely on."""

    name: str
    capabilities: PlatformCapabilities

    @property
    def is_authenticated(self) -> bool: ...

    async def authenticate(self, credentials: PlatformCredentials) -> AuthenticationResult: ...

    def format_content(self, content: BlogContent, rule: Optional["PlatformRule"] = None) -> FormattedContent: ...

    def validate_content(self, formatted: FormattedContent) -> list[ContentIssue]: ...

    async def publish(self, formatted: FormattedContent, options: Optional[PublishOptions] = None) -> PublishResult: ...

    async def update(
        self, external_id: str, formatted: FormattedContent, options: Optional[PublishOptions] = None
    ) -> PublishResult: ...

    async def delete(self, external_id: str) -> DeleteResult: ...

    async def schedule(
        self, formatted: FormattedContent, publish_time: datetime, options: Optional[PublishOptions] = None
    ) -> ScheduleResult: ...

    async def get_analytics(self, time_range: TimeRange) -> PlatformAnalytics: ...

    async def get_content_analytics(self, external_id: str, time_range: TimeRange) -> ContentAnalytics: ...

    async def health_check(self) -> HealthCheckResult: ...

    def get_rate_limit(self) -> RateLimitStatus: ...

    async def disconnect(self): ...


class PlatformHttpClient:
    """
    HTTP helper shared by adapters.

    The httpx client is created lazily; tests inject one built on
    httpx.MockTransport.
    """

    def __init__(
        self,
        platform: str,
        base_url: str = "",
        config: Optional[AdapterConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        error_message_extractor: Optional[Callable[[Any], Optional[str]]] = None,
    ):
        self.platform = platform
        self.base_url = base_url
        self.config = config or get_config().adapter
        self._client = client
        self._owns_client = client is None
        self._headers: dict[str, str] = {"User-Agent": self.config.user_agent, "Accept": "application/json"}
        self._extract_error = error_message_extractor
        self._rate_limit: Optional[RateLimitStatus] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
            self._owns_client = True
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def set_header(self, name: str, value: str):
        self._headers[name] = value

    def clear_header(self, name: str):
        self._headers.pop(name, None)

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        content: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Single round trip; HTTP errors are raised as publishing errors."""
        client = await self._get_client()
        url = self.url_for(path)
        merged_headers = {**self._headers, **(headers or {})}

        try:
            response = await client.request(
                method,
                url,
                json=json,
                params=params,
                content=content,
                headers=merged_headers,
                timeout=self.config.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"{method} {url} timed out after {self.config.timeout}s",
                platform=self.platform,
                error_code="TIMEOUT",
            ) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(
                f"{method} {url} failed: {type(e).__name__}: {e}",
                platform=self.platform,
            ) from e

        self._record_rate_limit(response.headers)

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning(f"[{self.platform}] {method} {url} -> {response.status_code}: {message}")
            raise error_from_status(response.status_code, message, self.platform, response.headers)

        return response

    async def request_json(self, method: str, path: str, **kwargs) -> Any:
        response = await self.request(method, path, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Idempotent GET, retried on transient failures."""
        response = await self.get(path, params=params)
        if not response.content:
            return {}
        return response.json()

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.retry_attempts)),
            wait=wait_exponential(multiplier=self.config.retry_delay, max=30),
            retry=retry_if_exception_type(TransientNetworkError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"[{self.platform}] Retrying GET {path} "
                        f"(attempt {attempt.retry_state.attempt_number}/{self.config.retry_attempts})"
                    )
                return await self.request("GET", path, params=params)

    async def fetch_external(self, url: str) -> httpx.Response:
        """GET a third-party URL (e.g. an image) without the platform's auth headers."""
        client = await self._get_client()
        try:
            response = await client.get(url, follow_redirects=True, timeout=self.config.timeout)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"GET {url} timed out", platform=self.platform, error_code="TIMEOUT") from e
        except httpx.RequestError as e:
            raise TransientNetworkError(f"GET {url} failed: {e}", platform=self.platform) from e
        if response.status_code >= 400:
            raise error_from_status(response.status_code, f"GET {url} -> {response.status_code}", self.platform)
        return response

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None

        if body is not None and self._extract_error:
            extracted = self._extract_error(body)
            if extracted:
                return extracted
        if isinstance(body, dict):
            for key in ("message", "error_description", "error"):
                if isinstance(body.get(key), str):
                    return body[key]
        return response.text[:200] or f"HTTP {response.status_code}"

    def _record_rate_limit(self, headers: Mapping[str, str]):
        limit = headers.get("X-RateLimit-Limit")
        remaining = headers.get("X-RateLimit-Remaining")
        if limit is None or remaining is None:
            return
        try:
            reset_header = headers.get("X-RateLimit-Reset")
            reset_time = (
                datetime.fromtimestamp(float(reset_header), tz=timezone.utc)
                if reset_header
                else utcnow() + timedelta(hours=1)
            )
            self._rate_limit = RateLimitStatus(
                limit=int(limit),
                remaining=int(remaining),
                reset_time=reset_time,
            )
        except (ValueError, OverflowError, OSError):
            logger.debug(f"[{self.platform}] Ignoring malformed rate limit headers")

    @property
    def rate_limit(self) -> RateLimitStatus:
        if self._rate_limit is None:
            return RateLimitStatus(
                limit=DEFAULT_RATE_LIMIT,
                remaining=DEFAULT_RATE_LIMIT,
                reset_time=utcnow() + timedelta(hours=1),
            )
        return self._rate_limit


class BasePlatformAdapter(ABC):
    """
    Shared adapter behaviour.

    Subclasses declare `name`, `display_name`, `capabilities` and the
    platform calls (_authenticate, _ping, _publish, ...). Capability
    gates live here so every adapter answers unsupported operations the
    same way.
    """

    name: str = ""
    display_name: str = ""
    capabilities: PlatformCapabilities
    base_url: str = ""

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        formatter: Optional["ContentFormatter"] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        # Import here to avoid circular imports
        from services.formatting import ContentFormatter

        self.config = config or get_config().adapter
        self.formatter = formatter or ContentFormatter()
        self.http = PlatformHttpClient(
            platform=self.name,
            base_url=self.base_url,
            config=self.config,
            client=client,
            error_message_extractor=self._extract_error_message,
        )

        self._authenticated = False
        self._credentials_fingerprint: Optional[str] = None
        self._auth_result: Optional[AuthenticationResult] = None

    # ===== Authentication =====

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    async def authenticate(self, credentials: PlatformCredentials) -> AuthenticationResult:
        """
        Validate credentials against the platform and keep the session.

        Re-authenticating with identical credentials returns the stored
        result without another round trip.

        Raises:
            AuthError: Credentials missing, invalid or expired
            TransientNetworkError: Platform unreachable
        """
        fingerprint = credentials.fingerprint()
        if self._authenticated and fingerprint == self._credentials_fingerprint and self._auth_result:
            logger.debug(f"[{self.name}] Already authenticated with these credentials")
            return self._auth_result

        self._authenticated = False
        try:
            user_info = await self._authenticate(credentials)
        except AuthError:
            logger.error(f"[{self.name}] Authentication rejected")
            raise

        self._authenticated = True
        self._credentials_fingerprint = fingerprint
        self._auth_result = AuthenticationResult(success=True, platform=self.name, user_info=user_info)
        logger.info(f"[{self.name}] Authenticated as {user_info.get('name') or user_info.get('id', 'unknown')}")
        return self._auth_result

    def _ensure_authenticated(self):
        if not self._authenticated:
            raise AuthError(f"{self.display_name or self.name} adapter is not authenticated", platform=self.name)

    async def disconnect(self):
        self._authenticated = False
        self._credentials_fingerprint = None
        self._auth_result = None
        await self.http.close()

    # ===== Formatting & validation =====

    def format_content(self, content: BlogContent, rule: Optional["PlatformRule"] = None) -> FormattedContent:
        formatted = self.formatter.format_for_platform(content, self.capabilities, self.name, rule)
        return self._finalize_formatting(formatted)

    def _finalize_formatting(self, formatted: FormattedContent) -> FormattedContent:
        """Platform-specific touch-ups; must keep content within capabilities."""
        return formatted

    def validate_content(self, formatted: FormattedContent) -> list[ContentIssue]:
        caps = self.capabilities
        issues = []

        if not formatted.title.strip():
            issues.append(ContentIssue("MISSING_TITLE", "title", "Title is required"))
        if not formatted.content.strip():
            issues.append(ContentIssue("MISSING_CONTENT", "content", "Content is required"))
        if len(formatted.title) > caps.max_title_length:
            issues.append(ContentIssue(
                "TITLE_TOO_LONG", "title",
                f"Title exceeds {caps.max_title_length} characters",
            ))
        if len(formatted.content) > caps.max_content_length:
            issues.append(ContentIssue(
                "CONTENT_TOO_LONG", "content",
                f"Content exceeds {caps.max_content_length} characters",
            ))
        if len(formatted.tags) > caps.max_tags_count:
            issues.append(ContentIssue(
                "TOO_MANY_TAGS", "tags",
                f"At most {caps.max_tags_count} tags allowed",
            ))
        if not caps.supports_format(formatted.format):
            issues.append(ContentIssue(
                "UNSUPPORTED_FORMAT", "format",
                f"{formatted.format.value} is not accepted",
            ))

        return issues

    # ===== Publishing =====

    async def publish(self, formatted: FormattedContent, options: Optional[PublishOptions] = None) -> PublishResult:
        self._ensure_authenticated()
        return await self._publish(formatted, options or PublishOptions())

    async def update(
        self,
        external_id: str,
        formatted: FormattedContent,
        options: Optional[PublishOptions] = None,
    ) -> PublishResult:
        self._ensure_authenticated()
        self._require(self.capabilities.supports_updates, "update")
        return await self._update(external_id, formatted, options or PublishOptions())

    async def delete(self, external_id: str) -> DeleteResult:
        self._ensure_authenticated()
        self._require(self.capabilities.supports_deleting, "delete")
        return await self._delete(external_id)

    async def schedule(
        self,
        formatted: FormattedContent,
        publish_time: datetime,
        options: Optional[PublishOptions] = None,
    ) -> ScheduleResult:
        """
        Use the platform's native scheduling.

        Platforms without it answer with a structured UNSUPPORTED_OPERATION
        result so callers can hand the job to the generic scheduler.
        """
        if not self.capabilities.supports_scheduling:
            return ScheduleResult(
                success=False,
                platform=self.name,
                scheduled_time=publish_time,
                error=f"{self.display_name or self.name} does not support native scheduling",
                error_code="UNSUPPORTED_OPERATION",
            )
        self._ensure_authenticated()
        return await self._schedule(formatted, publish_time, options or PublishOptions())

    def _require(self, supported: bool, operation: str):
        if not supported:
            raise UnsupportedOperationError(
                f"{self.display_name or self.name} does not support {operation}",
                platform=self.name,
            )

    @abstractmethod
    async def _authenticate(self, credentials: PlatformCredentials) -> dict[str, Any]:
        """Verify credentials; return identity metadata."""

    @abstractmethod
    async def _ping(self):
        """One lightweight authenticated round trip."""

    @abstractmethod
    async def _publish(self, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        ...

    async def _update(self, external_id: str, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        raise NotImplementedError

    async def _delete(self, external_id: str) -> DeleteResult:
        raise NotImplementedError

    async def _schedule(
        self, formatted: FormattedContent, publish_time: datetime, options: PublishOptions
    ) -> ScheduleResult:
        raise NotImplementedError

    # ===== Analytics =====

    async def get_analytics(self, time_range: TimeRange) -> PlatformAnalytics:
        if not self.capabilities.supports_analytics:
            return PlatformAnalytics.empty(
                self.name,
                time_range,
                f"{self.display_name or self.name} offers no analytics API; metrics are zero estimates",
            )
        self._ensure_authenticated()
        return await self._get_analytics(time_range)

    async def _get_analytics(self, time_range: TimeRange) -> PlatformAnalytics:
        return PlatformAnalytics.empty(self.name, time_range, "No aggregate analytics endpoint")

    async def get_content_analytics(self, external_id: str, time_range: TimeRange) -> ContentAnalytics:
        self._ensure_authenticated()
        return await self._get_content_analytics(external_id, time_range)

    async def _get_content_analytics(self, external_id: str, time_range: TimeRange) -> ContentAnalytics:
        return ContentAnalytics(
            platform=self.name,
            external_id=external_id,
            time_range=time_range,
            estimated=True,
            notes=[f"{self.display_name or self.name} exposes no per-post statistics"],
        )

    # ===== Health =====

    async def validate_connection(self) -> bool:
        self._ensure_authenticated()
        await self._ping()
        return True

    async def health_check(self) -> HealthCheckResult:
        """Single ping round trip. Never raises."""
        started = time.monotonic()
        errors: list[str] = []
        warnings: list[str] = []

        if not self._authenticated:
            return HealthCheckResult(
                platform=self.name,
                status=HealthStatus.UNHEALTHY,
                errors=["Not authenticated"],
            )

        try:
            await self._ping()
        except PublishingError as e:
            errors.append(f"{e.error_code}: {e.message}")
        except Exception as e:
            errors.append(f"{type(e).__name__}: {e}")

        response_time_ms = (time.monotonic() - started) * 1000

        if errors:
            status = HealthStatus.UNHEALTHY
        else:
            rate_limit = self.get_rate_limit()
            if rate_limit.remaining < self.config.rate_limit_buffer:
                warnings.append(f"Rate limit nearly exhausted: {rate_limit.remaining}/{rate_limit.limit} remaining")
            if response_time_ms > SLOW_RESPONSE_MS:
                warnings.append(f"Slow response: {response_time_ms:.0f}ms")
            status = HealthStatus.DEGRADED if warnings else HealthStatus.HEALTHY

        return HealthCheckResult(
            platform=self.name,
            status=status,
            response_time_ms=response_time_ms,
            errors=errors,
            warnings=warnings,
        )

    def get_rate_limit(self) -> RateLimitStatus:
        return self.http.rate_limit

    # ===== Helpers =====

    @staticmethod
    def _extract_error_message(body: Any) -> Optional[str]:
        return None
