"""
WordPress Adapter

Publishes to self-hosted or WordPress.com sites through the REST API
(`{site_url}/wp-json/wp/v2/`).

Supports:
- Application-password (Basic) and OAuth2 (Bearer) authentication
- Publish, update, delete and native scheduling (status=future)
- Featured image upload via the media endpoint
- Yoast SEO meta fields
- Category and tag listings
"""

import base64
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import AuthError, PublishingError, TransientNetworkError

from .base import BasePlatformAdapter
from .models import (
    ContentAnalytics,
    ContentFormat,
    CredentialType,
    DeleteResult,
    FormattedContent,
    PlatformCapabilities,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    ScheduleResult,
    TimeRange,
    utcnow,
)

logger = logging.getLogger(__name__)

WORDPRESS_CAPABILITIES = PlatformCapabilities(
    max_content_length=65535,
    max_title_length=255,
    max_description_length=320,
    max_tags_count=50,
    supported_formats=(ContentFormat.HTML, ContentFormat.RICH_TEXT, ContentFormat.MARKDOWN),
    supports_images=True,
    supports_video=True,
    supports_galleries=True,
    supports_scheduling=True,
    supports_drafts=True,
    supports_updates=True,
    supports_deleting=True,
    supports_categories=True,
    supports_tags=True,
    supports_analytics=False,
    supports_custom_meta=True,
    supports_open_graph=True,
    supports_twitter_cards=True,
    supports_schema=True,
    supports_canonical=True,
)


STATUS_MAP = {
    "publish": "publish",
    "published": "publish",
    "draft": "draft",
    "private": "private",
    "pending": "pending",
}


def _parse_wp_date(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    try:
        return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
    except ValueError:
        return utcnow()


class WordPressAdapter(BasePlatformAdapter):
    """
    WordPress REST adapter.

    Usage:
        adapter = WordPressAdapter()
        await adapter.authenticate(PlatformCredentials(
            type="application_password",
            site_url="https://blog.example.com",
            username="editor",
            application_password="abcd efgh ijkl",
        ))
        result = await adapter.publish(adapter.format_content(content))
    """

    name = "wordpress"
    display_name = "WordPress"
    capabilities = WORDPRESS_CAPABILITIES

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.site_url: Optional[str] = None

    # ===== Authentication =====

    async def _authenticate(self, credentials: PlatformCredentials) -> dict[str, Any]:
        if not credentials.site_url:
            raise AuthError("WordPress credentials require site_url", platform=self.name)

        if credentials.type == CredentialType.APPLICATION_PASSWORD:
            if not credentials.username or not credentials.application_password:
                raise AuthError("Application password authentication needs username and password", platform=self.name)
            token = base64.b64encode(
                f"{credentials.username}:{credentials.application_password}".encode()
            ).decode()
            self.http.set_header("Authorization", f"Basic {token}")
        elif credentials.type == CredentialType.OAUTH2:
            if not credentials.access_token:
                raise AuthError("OAuth2 authentication needs access_token", platform=self.name)
            self.http.set_header("Authorization", f"Bearer {credentials.access_token}")
        else:
            raise AuthError(f"Unsupported credential type for WordPress: {credentials.type.value}", platform=self.name)

        self.site_url = credentials.site_url.rstrip("/")
        self.http.base_url = f"{self.site_url}/wp-json/wp/v2/"

        try:
            user = await self.http.get_json("users/me", params={"context": "edit"})
        except AuthError:
            self.http.clear_header("Authorization")
            raise

        return {
            "id": user.get("id"),
            "name": user.get("name"),
            "site_url": self.site_url,
            "roles": user.get("roles", []),
        }

    async def _ping(self):
        await self.http.get("users/me")

    # ===== Formatting =====

    def _finalize_formatting(self, formatted: FormattedContent) -> FormattedContent:
        """Wrap loose HTML paragraphs in <p> blocks when that still fits."""
        from services.formatting.converters import has_block_elements

        if formatted.format != ContentFormat.HTML or has_block_elements(formatted.content):
            return formatted

        paragraphs = [p.strip() for p in re.split(r"\n\s*\n", formatted.content) if p.strip()]
        wrapped = "\n".join(f"<p>{p}</p>" for p in paragraphs)
        if len(wrapped) <= self.capabilities.max_content_length:
            formatted.content = wrapped
        return formatted

    # ===== Publishing =====

    def _build_post_data(self, formatted: FormattedContent, options: PublishOptions, status: str) -> tuple[dict, list[str]]:
        warnings = []
        data: dict[str, Any] = {
            "title": formatted.title,
            "content": formatted.content,
            "excerpt": formatted.excerpt,
            "status": status,
        }

        slug = options.slug or formatted.slug
        if slug:
            data["slug"] = slug

        # The REST API only accepts term ids
        categories = options.categories or formatted.categories
        category_ids = [int(c) for c in categories if str(c).isdigit()]
        if category_ids:
            data["categories"] = category_ids
        if len(category_ids) < len(categories):
            warnings.append("Category names were skipped; WordPress expects category ids")

        tags = options.tags or formatted.tags
        tag_ids = [int(t) for t in tags if str(t).isdigit()]
        if tag_ids:
            data["tags"] = tag_ids

        meta = {}
        seo = formatted.seo
        if seo.get("meta_description"):
            meta["_yoast_wpseo_metadesc"] = seo["meta_description"]
        if seo.get("focus_keyword"):
            meta["_yoast_wpseo_focuskw"] = seo["focus_keyword"]
        if seo.get("meta_title"):
            meta["_yoast_wpseo_title"] = seo["meta_title"]
        if seo.get("canonical_url"):
            meta["_yoast_wpseo_canonical"] = seo["canonical_url"]
        if meta:
            data["meta"] = meta

        data.update(options.extra.get("post_fields", {}))
        return data, warnings

    async def _upload_featured_image(self, formatted: FormattedContent) -> tuple[Optional[int], list[str]]:
        """Upload the featured image; failures become warnings, never a failed publish."""
        image = formatted.featured_image
        if image is None:
            return None, []

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.config.retry_attempts)),
                wait=wait_exponential(multiplier=self.config.retry_delay, max=30),
                retry=retry_if_exception_type(TransientNetworkError),
                reraise=True,
            ):
                with attempt:
                    download = await self.http.fetch_external(image.url)
                    media = await self.http.request_json(
                        "POST",
                        "media",
                        content=download.content,
                        headers={
                            "Content-Type": image.mime_type or "application/octet-stream",
                            "Content-Disposition": f'attachment; filename="{image.filename or "image"}"',
                        },
                    )

            media_id = media.get("id")
            if media_id and image.alt_text:
                await self.http.request_json("POST", f"media/{media_id}", json={"alt_text": image.alt_text})
            return media_id, []
        except PublishingError as e:
            logger.warning(f"[wordpress] Featured image upload failed: {e.message}")
            return None, [f"Featured image upload failed: {e.message}"]

    def _to_publish_result(self, response: dict, warnings: list[str]) -> PublishResult:
        return PublishResult(
            success=True,
            platform=self.name,
            external_id=str(response.get("id")),
            external_url=response.get("link"),
            published_at=_parse_wp_date(response.get("date_gmt")),
            warnings=warnings,
            platform_response=response,
        )

    async def _publish(self, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        status = STATUS_MAP.get((options.status or "publish").lower(), "publish")
        data, warnings = self._build_post_data(formatted, options, status)

        media_id, image_warnings = await self._upload_featured_image(formatted)
        if media_id:
            data["featured_media"] = media_id

        response = await self.http.request_json("POST", "posts", json=data)
        logger.info(f"[wordpress] Published post {response.get('id')}: {response.get('link')}")
        return self._to_publish_result(response, warnings + image_warnings + formatted.warnings)

    async def _update(self, external_id: str, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        status = STATUS_MAP.get((options.status or "publish").lower(), "publish")
        data, warnings = self._build_post_data(formatted, options, status)
        response = await self.http.request_json("POST", f"posts/{external_id}", json=data)
        return self._to_publish_result(response, warnings)

    async def _delete(self, external_id: str) -> DeleteResult:
        await self.http.request_json("DELETE", f"posts/{external_id}", params={"force": "true"})
        return DeleteResult(success=True, platform=self.name, external_id=external_id, deleted_at=utcnow())

    async def _schedule(
        self,
        formatted: FormattedContent,
        publish_time: datetime,
        options: PublishOptions,
    ) -> ScheduleResult:
        if publish_time.tzinfo is None:
            publish_time = publish_time.replace(tzinfo=timezone.utc)

        data, _ = self._build_post_data(formatted, options, "future")
        data["date_gmt"] = publish_time.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")

        response = await self.http.request_json("POST", "posts", json=data)
        post_id = str(response.get("id"))
        return ScheduleResult(
            success=True,
            platform=self.name,
            scheduled_time=publish_time,
            external_id=post_id,
            schedule_id=f"wordpress-{post_id}",
        )

    # ===== Analytics =====

    async def _get_content_analytics(self, external_id: str, time_range: TimeRange) -> ContentAnalytics:
        response = await self.http.get("comments", params={"post": external_id, "per_page": 1})
        comments = int(response.headers.get("X-WP-Total", "0") or 0)
        return ContentAnalytics(
            platform=self.name,
            external_id=external_id,
            time_range=time_range,
            comments=comments,
            estimated=True,
            notes=["WordPress core tracks comments only; views need an analytics plugin"],
        )

    # ===== Taxonomies =====

    async def get_categories(self) -> list[dict]:
        self._ensure_authenticated()
        categories = await self.http.get_json("categories", params={"per_page": 100})
        return [{"id": c.get("id"), "name": c.get("name"), "slug": c.get("slug")} for c in categories]

    async def get_tags(self) -> list[dict]:
        self._ensure_authenticated()
        tags = await self.http.get_json("tags", params={"per_page": 100})
        return [{"id": t.get("id"), "name": t.get("name"), "slug": t.get("slug")} for t in tags]
