"""
Medium Adapter

Publishes stories through the Medium REST API (https://api.medium.com/v1).

Medium's public API is write-only: posts can be created (public, draft
or unlisted) but not updated, deleted, scheduled or read back for stats.
Those operations answer with UnsupportedOperationError or estimated
analytics.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from core.errors import AuthError

from .base import BasePlatformAdapter
from .models import (
    ContentFormat,
    CredentialType,
    FormattedContent,
    PlatformCapabilities,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    utcnow,
)

logger = logging.getLogger(__name__)

MEDIUM_CAPABILITIES = PlatformCapabilities(
    max_content_length=200000,
    max_title_length=100,
    max_description_length=300,
    max_tags_count=5,
    supported_formats=(ContentFormat.MARKDOWN, ContentFormat.HTML),
    supports_images=True,
    supports_scheduling=False,
    supports_drafts=True,
    supports_updates=False,
    supports_deleting=False,
    supports_categories=False,
    supports_tags=True,
    supports_analytics=False,
    supports_canonical=True,
)

PUBLISH_STATUS = {
    "publish": "public",
    "published": "public",
    "public": "public",
    "draft": "draft",
    "unlisted": "unlisted",
}

MAX_TAG_LENGTH = 25


def normalize_tag(tag: str) -> str:
    """Medium tags: lower-case, alphanumerics and hyphens, at most 25 characters."""
    tag = re.sub(r"[^a-z0-9\s-]", "", tag.lower()).strip()
    tag = re.sub(r"\s+", "-", tag)
    return tag[:MAX_TAG_LENGTH].strip("-")


class MediumAdapter(BasePlatformAdapter):
    """Medium integration-token adapter."""

    name = "medium"
    display_name = "Medium"
    capabilities = MEDIUM_CAPABILITIES
    base_url = "https://api.medium.com/v1"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id: Optional[str] = None

    async def _authenticate(self, credentials: PlatformCredentials) -> dict[str, Any]:
        if credentials.type not in (CredentialType.INTEGRATION_TOKEN, CredentialType.OAUTH2):
            raise AuthError(f"Unsupported credential type for Medium: {credentials.type.value}", platform=self.name)

        token = credentials.integration_token or credentials.access_token
        if not token:
            raise AuthError("Medium integration token is required", platform=self.name)

        self.http.set_header("Authorization", f"Bearer {token}")
        try:
            response = await self.http.get_json("me")
        except AuthError:
            self.http.clear_header("Authorization")
            raise

        user = response.get("data", {})
        if not user.get("id"):
            raise AuthError("Medium did not return a user id", platform=self.name)

        self.user_id = user["id"]
        return {
            "id": user["id"],
            "name": user.get("name"),
            "username": user.get("username"),
            "url": user.get("url"),
        }

    async def _ping(self):
        await self.http.get("me")

    async def _publish(self, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        tags = [t for t in (normalize_tag(tag) for tag in (options.tags or formatted.tags)) if t]

        payload: dict[str, Any] = {
            "title": formatted.title,
            "contentFormat": "html" if formatted.format == ContentFormat.HTML else "markdown",
            "content": formatted.content,
            "tags": tags[: self.capabilities.max_tags_count],
            "publishStatus": PUBLISH_STATUS.get((options.status or "publish").lower(), "public"),
            "notifyFollowers": options.notify_followers,
        }
        if formatted.seo.get("canonical_url"):
            payload["canonicalUrl"] = formatted.seo["canonical_url"]
        if options.extra.get("license"):
            payload["license"] = options.extra["license"]

        response = await self.http.request_json("POST", f"users/{self.user_id}/posts", json=payload)
        post = response.get("data", {})

        published_at = utcnow()
        if post.get("publishedAt"):
            published_at = datetime.fromtimestamp(post["publishedAt"] / 1000, tz=timezone.utc)

        logger.info(f"[medium] Published story {post.get('id')} ({payload['publishStatus']})")
        return PublishResult(
            success=True,
            platform=self.name,
            external_id=post.get("id"),
            external_url=post.get("url"),
            published_at=published_at,
            warnings=list(formatted.warnings),
            platform_response=post,
        )

    @staticmethod
    def _extract_error_message(body: Any) -> Optional[str]:
        if isinstance(body, dict):
            errors = body.get("errors") or []
            if errors and isinstance(errors[0], dict):
                return errors[0].get("message")
        return None
