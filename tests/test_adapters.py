"""
Tests for the WordPress, Medium and LinkedIn adapters.

HTTP traffic is served by httpx.MockTransport; no network access.

Run with:
    python -m pytest tests/test_adapters.py -v
"""

import base64
import json
import os
import sys
from datetime import datetime, timezone

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import AdapterConfig
from core.errors import (
    AuthError,
    NotFoundError,
    RateLimitError,
    TransientNetworkError,
    UnsupportedOperationError,
    ValidationError,
)
from services.platforms import (
    CredentialType,
    HealthStatus,
    LinkedInAdapter,
    MediaReference,
    MediumAdapter,
    PlatformCredentials,
    PublishOptions,
    SEOFields,
    TimeRange,
    WordPressAdapter,
    create_adapter,
)
from services.platforms.medium import normalize_tag

UTC = timezone.utc


class MockApi:
    """Route table for httpx.MockTransport; the last response for a route repeats."""

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses):
        """Each response is (status, kwargs for httpx.Response) or an exception to raise."""
        self.routes[(method, path)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responses = self.routes.get((request.method, request.url.path))
        if not responses:
            return httpx.Response(404, json={"message": f"no route for {request.url.path}"})

        canned = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(canned, Exception):
            raise canned
        status, kwargs = canned
        return httpx.Response(status, **kwargs)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def last(self, method: str, path: str) -> httpx.Request:
        return [r for r in self.requests if r.method == method and r.url.path == path][-1]


@pytest.fixture
def api():
    return MockApi()


@pytest.fixture
def adapter_config():
    return AdapterConfig(timeout=5.0, retry_attempts=3, retry_delay=0, rate_limit_buffer=10)


def body_of(request: httpx.Request) -> dict:
    return json.loads(request.content)


# ============================================================
# WordPress
# ============================================================

WP = "/wp-json/wp/v2"


@pytest.fixture
def wp_credentials():
    return PlatformCredentials(
        type=CredentialType.APPLICATION_PASSWORD,
        site_url="https://blog.example.com/",
        username="editor",
        application_password="abcd efgh",
    )


@pytest.fixture
async def wordpress(api, adapter_config, wp_credentials):
    api.add("GET", f"{WP}/users/me", (200, {"json": {"id": 7, "name": "Editor", "roles": ["editor"]}}))
    adapter = WordPressAdapter(config=adapter_config, client=api.client())
    await adapter.authenticate(wp_credentials)
    return adapter


class TestWordPressAdapter:

    @pytest.mark.asyncio
    async def test_application_password_auth(self, wordpress, api):
        request = api.last("GET", f"{WP}/users/me")

        expected = base64.b64encode(b"editor:abcd efgh").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert request.url.params["context"] == "edit"
        assert wordpress.is_authenticated
        assert wordpress.site_url == "https://blog.example.com"

    @pytest.mark.asyncio
    async def test_reauthentication_with_same_credentials_skips_round_trip(self, wordpress, api, wp_credentials):
        before = len(api.requests)
        result = await wordpress.authenticate(wp_credentials)

        assert result.success
        assert result.user_info["name"] == "Editor"
        assert len(api.requests) == before

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, api, adapter_config, wp_credentials):
        api.add("GET", f"{WP}/users/me", (401, {"json": {"code": "rest_not_logged_in", "message": "Not logged in"}}))
        adapter = WordPressAdapter(config=adapter_config, client=api.client())

        with pytest.raises(AuthError, match="Not logged in"):
            await adapter.authenticate(wp_credentials)

        assert not adapter.is_authenticated
        assert "Authorization" not in adapter.http._headers

    @pytest.mark.asyncio
    async def test_missing_site_url(self, adapter_config):
        adapter = WordPressAdapter(config=adapter_config)
        with pytest.raises(AuthError, match="site_url"):
            await adapter.authenticate(PlatformCredentials(type=CredentialType.OAUTH2, access_token="t"))

    @pytest.mark.asyncio
    async def test_publish_post(self, wordpress, api, sample_content):
        api.add("POST", f"{WP}/posts", (201, {"json": {
            "id": 101,
            "link": "https://blog.example.com/flags",
            "date_gmt": "2026-11-02T09:00:00",
        }}))

        result = await wordpress.publish(wordpress.format_content(sample_content))

        assert result.success
        assert result.external_id == "101"
        assert result.external_url == "https://blog.example.com/flags"
        assert result.published_at == datetime(2026, 11, 2, 9, 0, tzinfo=UTC)

        sent = body_of(api.last("POST", f"{WP}/posts"))
        assert sent["status"] == "publish"
        assert "<strong>merge early</strong>" in sent["content"]
        assert sent["meta"]["_yoast_wpseo_metadesc"] == sample_content.excerpt
        assert "tags" not in sent

    @pytest.mark.asyncio
    async def test_draft_status_and_tag_ids(self, wordpress, api, sample_content):
        api.add("POST", f"{WP}/posts", (201, {"json": {"id": 102}}))

        await wordpress.publish(
            wordpress.format_content(sample_content),
            PublishOptions(status="draft", tags=["12", "news"], categories=["3"]),
        )

        sent = body_of(api.last("POST", f"{WP}/posts"))
        assert sent["status"] == "draft"
        assert sent["tags"] == [12]
        assert sent["categories"] == [3]

    @pytest.mark.asyncio
    async def test_featured_image_failure_is_a_warning(self, wordpress, api, sample_content):
        content = sample_content.model_copy(update={
            "featured_image": MediaReference(url="https://cdn.example.com/cover.png"),
        })
        api.add("GET", "/cover.png", (404, {"text": "gone"}))
        api.add("POST", f"{WP}/posts", (201, {"json": {"id": 103}}))

        result = await wordpress.publish(wordpress.format_content(content))

        assert result.success
        assert any("Featured image upload failed" in w for w in result.warnings)
        assert "featured_media" not in body_of(api.last("POST", f"{WP}/posts"))

    @pytest.mark.asyncio
    async def test_featured_image_upload(self, wordpress, api, sample_content):
        content = sample_content.model_copy(update={
            "featured_image": MediaReference(url="https://cdn.example.com/cover.png", alt_text="Cover"),
        })
        api.add("GET", "/cover.png", (200, {"content": b"\x89PNG"}))
        api.add("POST", f"{WP}/media", (201, {"json": {"id": 55}}))
        api.add("POST", f"{WP}/media/55", (200, {"json": {"id": 55}}))
        api.add("POST", f"{WP}/posts", (201, {"json": {"id": 104}}))

        await wordpress.publish(wordpress.format_content(content))

        upload = api.last("POST", f"{WP}/media")
        assert upload.headers["Content-Type"] == "image/png"
        assert 'filename="cover.png"' in upload.headers["Content-Disposition"]
        assert "Authorization" not in api.last("GET", "/cover.png").headers
        assert body_of(api.last("POST", f"{WP}/posts"))["featured_media"] == 55

    @pytest.mark.asyncio
    async def test_native_schedule(self, wordpress, api, sample_content):
        api.add("POST", f"{WP}/posts", (201, {"json": {"id": 105}}))

        result = await wordpress.schedule(
            wordpress.format_content(sample_content), datetime(2026, 11, 3, 9, 0, tzinfo=UTC)
        )

        sent = body_of(api.last("POST", f"{WP}/posts"))
        assert sent["status"] == "future"
        assert sent["date_gmt"] == "2026-11-03T09:00:00"
        assert result.success
        assert result.schedule_id == "wordpress-105"

    @pytest.mark.asyncio
    async def test_update_and_delete(self, wordpress, api, sample_content):
        api.add("POST", f"{WP}/posts/101", (200, {"json": {"id": 101, "link": "https://blog.example.com/flags"}}))
        api.add("DELETE", f"{WP}/posts/101", (200, {"json": {"deleted": True}}))

        updated = await wordpress.update("101", wordpress.format_content(sample_content))
        deleted = await wordpress.delete("101")

        assert updated.external_id == "101"
        assert deleted.success
        assert api.last("DELETE", f"{WP}/posts/101").url.params["force"] == "true"

    @pytest.mark.asyncio
    async def test_delete_missing_post(self, wordpress, api):
        api.add("DELETE", f"{WP}/posts/999", (404, {"json": {"message": "Invalid post ID."}}))
        with pytest.raises(NotFoundError, match="Invalid post ID"):
            await wordpress.delete("999")

    @pytest.mark.asyncio
    async def test_content_analytics_counts_comments(self, wordpress, api):
        api.add("GET", f"{WP}/comments", (200, {"json": [], "headers": {"X-WP-Total": "4"}}))

        analytics = await wordpress.get_content_analytics("101", TimeRange.last_days(7))

        assert analytics.comments == 4
        assert analytics.estimated

    @pytest.mark.asyncio
    async def test_transient_get_is_retried(self, wordpress, api):
        api.add(
            "GET",
            f"{WP}/categories",
            (503, {"text": "busy"}),
            (200, {"json": [{"id": 3, "name": "News", "slug": "news"}]}),
        )

        categories = await wordpress.get_categories()

        assert categories == [{"id": 3, "name": "News", "slug": "news"}]
        assert len([r for r in api.requests if r.url.path == f"{WP}/categories"]) == 2

    @pytest.mark.asyncio
    async def test_get_tags(self, wordpress, api):
        api.add("GET", f"{WP}/tags", (200, {"json": [{"id": 8, "name": "DevOps", "slug": "devops", "count": 4}]}))

        tags = await wordpress.get_tags()

        assert tags == [{"id": 8, "name": "DevOps", "slug": "devops"}]
        assert api.last("GET", f"{WP}/tags").url.params["per_page"] == "100"

    @pytest.mark.asyncio
    async def test_rate_limit_response(self, wordpress, api, sample_content):
        api.add("POST", f"{WP}/posts", (429, {"json": {"message": "Slow down"}, "headers": {"Retry-After": "30"}}))

        with pytest.raises(RateLimitError) as exc_info:
            await wordpress.publish(wordpress.format_content(sample_content))

        assert exc_info.value.retry_after == 30.0

    @pytest.mark.asyncio
    async def test_health_degraded_when_rate_limit_low(self, wordpress, api):
        api.add("GET", f"{WP}/users/me", (200, {
            "json": {"id": 7},
            "headers": {"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "5"},
        }))

        health = await wordpress.health_check()

        assert health.status == HealthStatus.DEGRADED
        assert health.warnings == ["Rate limit nearly exhausted: 5/100 remaining"]
        assert wordpress.get_rate_limit().remaining == 5


# ============================================================
# Medium
# ============================================================

MEDIUM = "/v1"


@pytest.fixture
async def medium(api, adapter_config):
    api.add("GET", f"{MEDIUM}/me", (200, {"json": {"data": {"id": "u1", "name": "Ada", "username": "ada"}}}))
    adapter = MediumAdapter(config=adapter_config, client=api.client())
    await adapter.authenticate(PlatformCredentials(type=CredentialType.INTEGRATION_TOKEN, integration_token="tok"))
    return adapter


class TestMediumAdapter:

    @pytest.mark.asyncio
    async def test_authenticate(self, medium, api):
        assert medium.user_id == "u1"
        assert api.last("GET", f"{MEDIUM}/me").headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_wrong_credential_type(self, adapter_config):
        adapter = MediumAdapter(config=adapter_config)
        with pytest.raises(AuthError):
            await adapter.authenticate(PlatformCredentials(type=CredentialType.API_KEY, api_key="k"))

    @pytest.mark.asyncio
    async def test_publish_story(self, medium, api, sample_content):
        api.add("POST", f"{MEDIUM}/users/u1/posts", (201, {"json": {"data": {
            "id": "p1",
            "url": "https://medium.com/@ada/p1",
            "publishedAt": 1793610000000,
        }}}))

        result = await medium.publish(medium.format_content(sample_content))

        sent = body_of(api.last("POST", f"{MEDIUM}/users/u1/posts"))
        assert sent["contentFormat"] == "markdown"
        assert sent["publishStatus"] == "public"
        assert sent["tags"] == ["devops", "release-engineering", "feature-flags"]
        assert result.external_id == "p1"
        assert result.published_at == datetime(2026, 11, 2, 9, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_api_error_message_is_extracted(self, medium, api, sample_content):
        api.add("POST", f"{MEDIUM}/users/u1/posts", (400, {"json": {"errors": [{"message": "Title too long", "code": 2004}]}}))

        with pytest.raises(ValidationError, match="Title too long"):
            await medium.publish(medium.format_content(sample_content))

    @pytest.mark.asyncio
    async def test_unsupported_operations(self, medium, sample_content):
        formatted = medium.format_content(sample_content)

        with pytest.raises(UnsupportedOperationError):
            await medium.update("p1", formatted)
        with pytest.raises(UnsupportedOperationError):
            await medium.delete("p1")

        scheduled = await medium.schedule(formatted, datetime(2026, 11, 3, tzinfo=UTC))
        assert not scheduled.success
        assert scheduled.error_code == "UNSUPPORTED_OPERATION"

    @pytest.mark.asyncio
    async def test_analytics_are_estimated(self, medium):
        analytics = await medium.get_analytics(TimeRange.last_days(30))

        assert analytics.estimated
        assert analytics.page_views == 0
        assert analytics.notes

    def test_normalize_tag(self):
        assert normalize_tag("C++ & Rust!") == "c-rust"
        assert normalize_tag("Release Engineering") == "release-engineering"
        assert len(normalize_tag("x" * 40)) == 25


# ============================================================
# LinkedIn
# ============================================================

LI = "/v2"


@pytest.fixture
def linkedin_credentials():
    return PlatformCredentials(type=CredentialType.OAUTH2, access_token="li-token")


@pytest.fixture
def linkedin_api(api):
    api.add("GET", f"{LI}/me", (200, {"json": {"id": "abc", "localizedFirstName": "Ada", "localizedLastName": "Lovelace"}}))
    api.add("POST", f"{LI}/ugcPosts", (201, {"headers": {"X-RestLi-Id": "urn:li:share:1"}}))
    return api


class TestLinkedInAdapter:

    @pytest.mark.asyncio
    async def test_authenticate(self, linkedin_api, adapter_config, linkedin_credentials):
        adapter = LinkedInAdapter(config=adapter_config, client=linkedin_api.client())

        result = await adapter.authenticate(linkedin_credentials)

        assert result.user_info == {"id": "abc", "name": "Ada Lovelace", "urn": "urn:li:person:abc"}
        assert linkedin_api.last("GET", f"{LI}/me").headers["X-Restli-Protocol-Version"] == "2.0.0"

    def test_capabilities_follow_share_mode(self):
        assert LinkedInAdapter().capabilities.max_content_length == 125000
        assert LinkedInAdapter(share_mode="post").capabilities.max_content_length == 3000

    @pytest.mark.asyncio
    async def test_article_share(self, linkedin_api, adapter_config, linkedin_credentials, sample_content):
        adapter = LinkedInAdapter(config=adapter_config, client=linkedin_api.client())
        await adapter.authenticate(linkedin_credentials)
        content = sample_content.model_copy(update={"seo": SEOFields(canonical_url="https://example.com/flags")})

        result = await adapter.publish(adapter.format_content(content))

        share = body_of(linkedin_api.last("POST", f"{LI}/ugcPosts"))
        specific = share["specificContent"]["com.linkedin.ugc.ShareContent"]
        assert share["author"] == "urn:li:person:abc"
        assert share["lifecycleState"] == "PUBLISHED"
        assert specific["shareMediaCategory"] == "ARTICLE"
        assert specific["media"][0]["originalUrl"] == "https://example.com/flags"
        assert result.external_id == "urn:li:share:1"
        assert result.external_url == "https://www.linkedin.com/feed/update/urn:li:share:1/"

    @pytest.mark.asyncio
    async def test_article_share_needs_canonical_url(
        self, linkedin_api, adapter_config, linkedin_credentials, sample_content
    ):
        adapter = LinkedInAdapter(config=adapter_config, client=linkedin_api.client())
        await adapter.authenticate(linkedin_credentials)

        with pytest.raises(ValidationError, match="canonical URL"):
            await adapter.publish(adapter.format_content(sample_content))

    @pytest.mark.asyncio
    async def test_post_share_uses_plain_text_body(
        self, linkedin_api, adapter_config, linkedin_credentials, sample_content
    ):
        adapter = LinkedInAdapter(config=adapter_config, client=linkedin_api.client(), share_mode="post")
        await adapter.authenticate(linkedin_credentials)
        formatted = adapter.format_content(sample_content)

        await adapter.publish(formatted, PublishOptions(status="draft"))

        share = body_of(linkedin_api.last("POST", f"{LI}/ugcPosts"))
        specific = share["specificContent"]["com.linkedin.ugc.ShareContent"]
        assert share["lifecycleState"] == "DRAFT"
        assert specific["shareMediaCategory"] == "NONE"
        assert specific["shareCommentary"]["text"] == formatted.content
        assert len(formatted.content) <= 3000
        assert formatted.platform_specific["share_mode"] == "post"

    @pytest.mark.asyncio
    async def test_delete_and_content_analytics(self, linkedin_api, adapter_config, linkedin_credentials):
        linkedin_api.add("DELETE", f"{LI}/ugcPosts/urn:li:share:1", (204, {}))
        linkedin_api.add("GET", f"{LI}/socialActions/urn:li:share:1", (200, {"json": {
            "likesSummary": {"totalLikes": 12, "likedByCurrentUser": False},
            "commentsSummary": {"aggregatedTotalComments": 3},
        }}))
        adapter = LinkedInAdapter(config=adapter_config, client=linkedin_api.client())
        await adapter.authenticate(linkedin_credentials)

        deleted = await adapter.delete("urn:li:share:1")
        analytics = await adapter.get_content_analytics("urn:li:share:1", TimeRange.last_days(7))

        assert deleted.success
        assert analytics.likes == 12
        assert analytics.comments == 3
        assert analytics.engagements == 15


# ============================================================
# Shared behaviour
# ============================================================

class TestSharedAdapterBehaviour:

    @pytest.mark.asyncio
    async def test_publish_requires_authentication(self, adapter_config, sample_content):
        adapter = MediumAdapter(config=adapter_config)
        with pytest.raises(AuthError, match="not authenticated"):
            await adapter.publish(adapter.format_content(sample_content))

    @pytest.mark.asyncio
    async def test_health_when_not_authenticated(self, adapter_config):
        health = await MediumAdapter(config=adapter_config).health_check()

        assert health.status == HealthStatus.UNHEALTHY
        assert health.errors == ["Not authenticated"]

    @pytest.mark.asyncio
    async def test_timeout_becomes_transient_error(self, api, adapter_config):
        api.add("GET", f"{MEDIUM}/me", httpx.ReadTimeout("read timed out"))
        adapter = MediumAdapter(config=adapter_config, client=api.client())

        with pytest.raises(TransientNetworkError) as exc_info:
            await adapter.authenticate(PlatformCredentials(type=CredentialType.INTEGRATION_TOKEN, integration_token="t"))

        assert exc_info.value.error_code == "TIMEOUT"
        assert len(api.requests) == adapter_config.retry_attempts

    @pytest.mark.asyncio
    async def test_disconnect_closes_session(self, medium):
        await medium.disconnect()
        assert not medium.is_authenticated

    def test_create_adapter(self):
        assert isinstance(create_adapter("wordpress"), WordPressAdapter)
        with pytest.raises(ValueError, match="Unknown platform"):
            create_adapter("myspace")
