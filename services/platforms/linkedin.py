"""
LinkedIn Adapter

Shares content on a member's feed through the UGC Posts API
(https://api.linkedin.com/v2/ugcPosts).

Two share modes:
- article: a link share pointing at the canonical URL, with title and excerpt
- post: the formatted body as plain-text commentary (3000 character limit)

LinkedIn offers no scheduling or editing of UGC posts; deletes are supported.
"""

import logging
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote

from core.errors import AuthError, ValidationError

from .base import BasePlatformAdapter
from .models import (
    ContentAnalytics,
    ContentFormat,
    CredentialType,
    DeleteResult,
    FormattedContent,
    PlatformAnalytics,
    PlatformCapabilities,
    PlatformCredentials,
    PublishOptions,
    PublishResult,
    TimeRange,
    utcnow,
)

logger = logging.getLogger(__name__)

SHARE_CONTENT = "com.linkedin.ugc.ShareContent"
MEMBER_VISIBILITY = "com.linkedin.ugc.MemberNetworkVisibility"


class LinkedInShareMode(str, Enum):
    ARTICLE = "article"
    POST = "post"


_COMMON = dict(
    max_title_length=150,
    max_description_length=200,
    max_tags_count=3,
    supports_images=True,
    supports_scheduling=False,
    supports_drafts=True,
    supports_updates=False,
    supports_deleting=True,
    supports_categories=False,
    supports_tags=True,
    supports_analytics=True,
    supports_canonical=True,
)

ARTICLE_CAPABILITIES = PlatformCapabilities(
    max_content_length=125000,
    supported_formats=(ContentFormat.HTML, ContentFormat.PLAIN_TEXT),
    **_COMMON,
)

POST_CAPABILITIES = PlatformCapabilities(
    max_content_length=3000,
    supported_formats=(ContentFormat.PLAIN_TEXT,),
    **_COMMON,
)


class LinkedInAdapter(BasePlatformAdapter):
    """LinkedIn UGC adapter (OAuth2 bearer token)."""

    name = "linkedin"
    display_name = "LinkedIn"
    base_url = "https://api.linkedin.com/v2"

    def __init__(self, *args, share_mode: LinkedInShareMode = LinkedInShareMode.ARTICLE, **kwargs):
        super().__init__(*args, **kwargs)
        self.share_mode = LinkedInShareMode(share_mode)
        self.capabilities = ARTICLE_CAPABILITIES if self.share_mode == LinkedInShareMode.ARTICLE else POST_CAPABILITIES
        self.person_urn: Optional[str] = None
        self.http.set_header("X-Restli-Protocol-Version", "2.0.0")

    async def _authenticate(self, credentials: PlatformCredentials) -> dict[str, Any]:
        if credentials.type != CredentialType.OAUTH2:
            raise AuthError(f"Unsupported credential type for LinkedIn: {credentials.type.value}", platform=self.name)
        if not credentials.access_token:
            raise AuthError("LinkedIn access token is required", platform=self.name)

        self.http.set_header("Authorization", f"Bearer {credentials.access_token}")
        try:
            profile = await self.http.get_json("me")
        except AuthError:
            self.http.clear_header("Authorization")
            raise

        self.person_urn = credentials.person_urn or f"urn:li:person:{profile.get('id')}"
        name = " ".join(filter(None, [profile.get("localizedFirstName"), profile.get("localizedLastName")]))
        return {"id": profile.get("id"), "name": name or None, "urn": self.person_urn}

    async def _ping(self):
        await self.http.get("me")

    def _finalize_formatting(self, formatted: FormattedContent) -> FormattedContent:
        formatted.platform_specific["share_mode"] = self.share_mode.value
        return formatted

    def _build_share(self, formatted: FormattedContent, options: PublishOptions) -> dict:
        lifecycle = "DRAFT" if (options.status or "").lower() == "draft" else "PUBLISHED"
        mode = LinkedInShareMode(formatted.platform_specific.get("share_mode", self.share_mode.value))

        if mode == LinkedInShareMode.ARTICLE:
            canonical = formatted.seo.get("canonical_url")
            if not canonical:
                raise ValidationError(
                    "LinkedIn article shares need a canonical URL to link to",
                    platform=self.name,
                )
            media = {
                "status": "READY",
                "originalUrl": canonical,
                "title": {"text": formatted.title},
                "description": {"text": formatted.excerpt},
            }
            if formatted.featured_image:
                media["thumbnails"] = [{"url": formatted.featured_image.url}]
            share = {
                "shareCommentary": {"text": formatted.title},
                "shareMediaCategory": "ARTICLE",
                "media": [media],
            }
        else:
            share = {
                "shareCommentary": {"text": formatted.content},
                "shareMediaCategory": "NONE",
            }
            if formatted.featured_image:
                share["shareMediaCategory"] = "IMAGE"
                share["media"] = [{
                    "status": "READY",
                    "media": formatted.featured_image.url,
                    "description": {"text": formatted.featured_image.alt_text or ""},
                    "title": {"text": formatted.title},
                }]

        return {
            "author": self.person_urn,
            "lifecycleState": lifecycle,
            "specificContent": {SHARE_CONTENT: share},
            "visibility": {MEMBER_VISIBILITY: options.extra.get("visibility", "PUBLIC")},
        }

    async def _publish(self, formatted: FormattedContent, options: PublishOptions) -> PublishResult:
        payload = self._build_share(formatted, options)
        response = await self.http.request("POST", "ugcPosts", json=payload)

        body = response.json() if response.content else {}
        urn = response.headers.get("X-RestLi-Id") or body.get("id")

        logger.info(f"[linkedin] Shared {urn} ({self.share_mode.value})")
        return PublishResult(
            success=True,
            platform=self.name,
            external_id=urn,
            external_url=f"https://www.linkedin.com/feed/update/{urn}/" if urn else None,
            published_at=utcnow(),
            warnings=list(formatted.warnings),
            platform_response=body or None,
        )

    async def _delete(self, external_id: str) -> DeleteResult:
        await self.http.request("DELETE", f"ugcPosts/{quote(external_id, safe='')}")
        return DeleteResult(success=True, platform=self.name, external_id=external_id, deleted_at=utcnow())

    async def _get_analytics(self, time_range: TimeRange) -> PlatformAnalytics:
        return PlatformAnalytics.empty(
            self.name,
            time_range,
            "LinkedIn reports social actions per share only; use get_content_analytics",
        )

    async def _get_content_analytics(self, external_id: str, time_range: TimeRange) -> ContentAnalytics:
        data = await self.http.get_json(f"socialActions/{quote(external_id, safe='')}")
        likes = data.get("likesSummary", {}).get("totalLikes", 0)
        comments = data.get("commentsSummary", {}).get("aggregatedTotalComments", 0)
        return ContentAnalytics(
            platform=self.name,
            external_id=external_id,
            time_range=time_range,
            likes=likes,
            comments=comments,
            platform_specific={"liked_by_current_user": data.get("likesSummary", {}).get("likedByCurrentUser")},
        )
