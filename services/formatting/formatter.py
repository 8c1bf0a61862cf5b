"""
Content Formatter

Adapts one canonical BlogContent to a target platform's declared
PlatformCapabilities and reports how much fidelity the adaptation cost.

Pipeline (deterministic, no network I/O):
1. Resolve the platform rule (per-request override > registered rule)
2. Convert markup to the best supported format
3. Strip media the platform cannot carry
4. Fit the body (plus call-to-action footer) into the length limit
5. Trim title, excerpt, tags and SEO fields
6. Score the adaptation and collect suggestions
"""

import html
import logging
import mimetypes
from dataclasses import dataclass, field, fields, replace
from typing import Optional

from core.errors import UnsupportedContentError
from services.platforms.models import (
    BlogContent,
    ContentFormat,
    ContentModification,
    FormattedContent,
    ModificationImpact,
    ModificationType,
    PlatformCapabilities,
)

from . import converters

logger = logging.getLogger(__name__)

# Highest fidelity first
FORMAT_PREFERENCE = (
    ContentFormat.HTML,
    ContentFormat.MARKDOWN,
    ContentFormat.RICH_TEXT,
    ContentFormat.PLAIN_TEXT,
)

IMPACT_WEIGHTS = {
    ModificationImpact.HIGH: 0.15,
    ModificationImpact.MEDIUM: 0.08,
    ModificationImpact.LOW: 0.03,
}
LENGTH_LOSS_WEIGHT = 0.5

META_DESCRIPTION_LIMIT = 160
META_TITLE_LIMIT = 60
GENERATED_EXCERPT_LENGTH = 150

DEFAULT_CTA_TEXT = {
    "linkedin": "What are your thoughts? Share your perspective in the comments.",
    "medium": "If you found this useful, follow for more articles like it.",
    "wordpress": "Enjoyed this post? Subscribe to get the next one in your inbox.",
}


@dataclass
class PlatformRule:
    """
    Operator override for one platform.

    Unset fields (None) fall through to the registered rule and then to
    the platform's declared capabilities.
    """
    max_length: Optional[int] = None
    target_format: Optional[ContentFormat] = None
    include_cta: Optional[bool] = None
    cta_text: Optional[str] = None
    strip_images: Optional[bool] = None
    hashtags: Optional[bool] = None
    max_tags: Optional[int] = None

    def merged_with(self, override: Optional["PlatformRule"]) -> "PlatformRule":
        """Return a copy where every field set on `override` wins."""
        if override is None:
            return replace(self)
        changes = {
            f.name: getattr(override, f.name)
            for f in fields(self)
            if getattr(override, f.name) is not None
        }
        return replace(self, **changes)


DEFAULT_PLATFORM_RULES: dict[str, PlatformRule] = {
    "linkedin": PlatformRule(include_cta=True, hashtags=True),
    "medium": PlatformRule(target_format=ContentFormat.MARKDOWN),
    "wordpress": PlatformRule(target_format=ContentFormat.HTML),
}


@dataclass
class _Draft:
    """Mutable working state for one formatting pass."""
    body: str
    format: ContentFormat
    modifications: list[ContentModification] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def modify(
        self,
        mod_type: ModificationType,
        description: str,
        impact: ModificationImpact,
        before: Optional[str] = None,
        after: Optional[str] = None,
    ):
        self.modifications.append(ContentModification(mod_type, description, impact, before, after))


class ContentFormatter:
    """
    Platform-agnostic adaptation engine.

    Usage:
        formatter = ContentFormatter()
        formatted = formatter.format_for_platform(content, adapter.capabilities, "medium")
        print(formatted.adaptation_score, [m.description for m in formatted.modifications])
    """

    def __init__(self, rules: Optional[dict[str, PlatformRule]] = None):
        self._rules: dict[str, PlatformRule] = {
            name: replace(rule) for name, rule in (rules if rules is not None else DEFAULT_PLATFORM_RULES).items()
        }

    # ===== Rule registry =====

    def add_platform_rule(self, platform: str, rule: PlatformRule):
        self._rules[platform] = rule
        logger.info(f"Registered formatting rule for {platform}")

    def remove_platform_rule(self, platform: str) -> bool:
        return self._rules.pop(platform, None) is not None

    def get_platform_rule(self, platform: str) -> Optional[PlatformRule]:
        return self._rules.get(platform)

    # ===== Formatting =====

    def format_for_platform(
        self,
        content: BlogContent,
        capabilities: PlatformCapabilities,
        platform: str,
        rule: Optional[PlatformRule] = None,
    ) -> FormattedContent:
        """
        Adapt content to one platform.

        Args:
            content: Canonical content
            capabilities: Target platform's declared capabilities
            platform: Platform name (selects the registered rule)
            rule: Per-request override, applied before the registered rule

        Returns:
            FormattedContent with modifications, warnings and score

        Raises:
            UnsupportedContentError: If the platform declares no usable format
        """
        effective = self._rules.get(platform, PlatformRule()).merged_with(rule)
        target_format = self.select_target_format(capabilities, effective.target_format, platform)

        original_words = converters.count_words(content.content, content.content_format)
        draft = _Draft(body=content.content, format=content.content_format)

        self._convert_format(draft, target_format)
        featured_image = self._adapt_media(draft, content, capabilities, effective)

        footer = self._build_footer(content, effective, platform, target_format)
        max_length = capabilities.max_content_length
        if effective.max_length:
            max_length = min(max_length, effective.max_length)
        keep_footer = self._fit_length(draft, max_length, footer)
        truncated_words = converters.count_words(draft.body, draft.format)
        if footer and keep_footer:
            draft.body = f"{draft.body}{footer}"

        title = self._adapt_title(draft, content.title, capabilities)
        excerpt = self._adapt_excerpt(draft, content, capabilities)
        tags = self._select_tags(draft, content, capabilities, effective)
        seo = self._adapt_seo(draft, content, capabilities)

        truncation_ratio = 0.0
        if original_words:
            truncation_ratio = max(0.0, 1 - truncated_words / original_words)
        if truncation_ratio > 0.3:
            draft.suggestions.append(
                f"{truncation_ratio:.0%} of the words were cut for {platform}; "
                "consider publishing a summary that links to the full article"
            )
        if target_format == ContentFormat.PLAIN_TEXT and content.content_format != ContentFormat.PLAIN_TEXT:
            draft.suggestions.append("Formatting was flattened to plain text; add a link back to the styled version")

        formatted = FormattedContent(
            platform=platform,
            title=title,
            content=draft.body,
            format=draft.format,
            excerpt=excerpt,
            tags=tags,
            categories=list(content.categories) if capabilities.supports_categories else [],
            author=content.author,
            slug=content.slug,
            seo=seo,
            featured_image=featured_image,
            original_word_count=original_words,
            adapted_word_count=converters.count_words(draft.body, draft.format),
            modifications=draft.modifications,
            warnings=draft.warnings,
            suggestions=draft.suggestions,
        )
        formatted.adaptation_score = self.calculate_adaptation_score(draft.modifications, truncation_ratio)

        logger.debug(
            f"Formatted for {platform}: {len(draft.modifications)} modifications, "
            f"score {formatted.adaptation_score:.2f}"
        )
        return formatted

    @staticmethod
    def select_target_format(
        capabilities: PlatformCapabilities,
        preferred: Optional[ContentFormat] = None,
        platform: str = "",
    ) -> ContentFormat:
        """Pick the rule's preferred format if supported, else the highest fidelity one."""
        if preferred and capabilities.supports_format(preferred):
            return preferred
        for candidate in FORMAT_PREFERENCE:
            if capabilities.supports_format(candidate):
                return candidate
        raise UnsupportedContentError(
            f"Platform {platform or '<unknown>'} declares no supported content format",
            platform=platform or None,
        )

    @staticmethod
    def calculate_adaptation_score(
        modifications: list[ContentModification],
        truncation_ratio: float = 0.0,
    ) -> float:
        structural_loss = sum(IMPACT_WEIGHTS[m.impact] for m in modifications)
        score = 1 - (structural_loss + LENGTH_LOSS_WEIGHT * truncation_ratio)
        return max(0.0, min(1.0, score))

    # ===== Pipeline steps =====

    def _convert_format(self, draft: _Draft, target: ContentFormat):
        source = draft.format
        if converters.normalize_format(source) == converters.normalize_format(target):
            draft.format = target
            return

        draft.body = converters.convert(draft.body, source, target)
        draft.format = target
        impact = ModificationImpact.MEDIUM if target == ContentFormat.PLAIN_TEXT else ModificationImpact.LOW
        draft.modify(
            ModificationType.FORMAT_CHANGE,
            f"Converted {source.value} to {target.value}",
            impact,
            before=source.value,
            after=target.value,
        )

    def _adapt_media(self, draft: _Draft, content: BlogContent, capabilities: PlatformCapabilities, rule: PlatformRule):
        if not capabilities.supports_images or rule.strip_images:
            draft.body, removed = converters.strip_images(draft.body, draft.format)
            if removed:
                draft.modify(
                    ModificationType.MEDIA_OPTIMIZATION,
                    f"Removed {removed} inline image(s)",
                    ModificationImpact.MEDIUM,
                )

        image = content.featured_image
        if image is None:
            return None

        if not capabilities.supports_images:
            draft.modify(
                ModificationType.MEDIA_OPTIMIZATION,
                "Dropped featured image: platform does not support images",
                ModificationImpact.MEDIUM,
                before=image.url,
            )
            return None

        mime_type = image.mime_type or mimetypes.guess_type(image.url.split("?", 1)[0])[0]
        if mime_type and mime_type not in capabilities.supported_image_formats:
            draft.modify(
                ModificationType.MEDIA_OPTIMIZATION,
                f"Dropped featured image: {mime_type} is not accepted",
                ModificationImpact.MEDIUM,
                before=image.url,
            )
            draft.warnings.append(f"Featured image format {mime_type} not supported")
            return None

        filename = image.filename or converters.guess_filename(image.url)
        return image.model_copy(update={"mime_type": mime_type, "filename": filename})

    def _build_footer(self, content: BlogContent, rule: PlatformRule, platform: str, target: ContentFormat) -> str:
        parts = []
        if rule.include_cta:
            cta = rule.cta_text or DEFAULT_CTA_TEXT.get(platform)
            if cta:
                parts.append(cta)
        if rule.hashtags and content.tags:
            hashtags = " ".join("#" + "".join(ch for ch in tag.title() if ch.isalnum()) for tag in content.tags[:3])
            parts.append(hashtags)
        if not parts:
            return ""

        if converters.normalize_format(target) == ContentFormat.HTML:
            return "\n" + "\n".join(f"<p>{html.escape(part, quote=False)}</p>" for part in parts)
        return "\n\n" + "\n\n".join(parts)

    def _fit_length(self, draft: _Draft, max_length: int, footer: str) -> bool:
        """Truncate the body so body + footer fit; returns whether the footer still fits."""
        budget = max_length - len(footer)
        keep_footer = True
        if footer and budget <= 0:
            budget = max_length
            keep_footer = False
            draft.warnings.append("Call-to-action omitted: no room within the length limit")

        if len(draft.body) <= budget:
            return keep_footer

        before = len(draft.body)
        draft.body = converters.smart_truncate(draft.body, budget, draft.format)
        draft.modify(
            ModificationType.LENGTH_REDUCTION,
            f"Truncated content from {before} to {len(draft.body)} characters",
            ModificationImpact.HIGH,
            before=str(before),
            after=str(len(draft.body)),
        )
        draft.warnings.append(f"Content truncated to fit {max_length} characters")
        return keep_footer

    def _adapt_title(self, draft: _Draft, title: str, capabilities: PlatformCapabilities) -> str:
        title = converters.collapse_whitespace(title)
        if len(title) <= capabilities.max_title_length:
            return title
        trimmed = converters.truncate_words(title, capabilities.max_title_length)
        draft.modify(
            ModificationType.LENGTH_REDUCTION,
            f"Shortened title to {capabilities.max_title_length} characters",
            ModificationImpact.MEDIUM,
            before=title,
            after=trimmed,
        )
        return trimmed

    def _adapt_excerpt(self, draft: _Draft, content: BlogContent, capabilities: PlatformCapabilities) -> str:
        limit = capabilities.max_description_length
        if content.excerpt:
            excerpt = converters.collapse_whitespace(content.excerpt)
            if len(excerpt) <= limit:
                return excerpt
            trimmed = converters.truncate_words(excerpt, limit)
            draft.modify(
                ModificationType.LENGTH_REDUCTION,
                f"Shortened excerpt to {limit} characters",
                ModificationImpact.LOW,
                before=excerpt,
                after=trimmed,
            )
            return trimmed

        plain = converters.collapse_whitespace(converters.to_plain_text(content.content, content.content_format))
        return converters.truncate_words(plain, min(limit, GENERATED_EXCERPT_LENGTH))

    def _select_tags(
        self,
        draft: _Draft,
        content: BlogContent,
        capabilities: PlatformCapabilities,
        rule: PlatformRule,
    ) -> list[str]:
        candidates: list[str] = []
        seen = set()
        for tag in list(content.tags) + list(content.keywords):
            key = tag.strip().lower()
            if key and key not in seen:
                seen.add(key)
                candidates.append(tag.strip())

        if not candidates:
            return []

        if not capabilities.supports_tags:
            draft.modify(
                ModificationType.STRUCTURE_CHANGE,
                "Dropped tags: platform does not support tags",
                ModificationImpact.LOW,
                before=", ".join(candidates),
            )
            return []

        limit = capabilities.max_tags_count
        if rule.max_tags is not None:
            limit = min(limit, rule.max_tags)
        if len(candidates) <= limit:
            return candidates

        selected = candidates[:limit]
        draft.modify(
            ModificationType.STRUCTURE_CHANGE,
            f"Kept {limit} of {len(candidates)} tags",
            ModificationImpact.LOW,
            before=", ".join(candidates),
            after=", ".join(selected),
        )
        return selected

    def _adapt_seo(self, draft: _Draft, content: BlogContent, capabilities: PlatformCapabilities) -> dict:
        seo = content.seo.model_dump(exclude_none=True)

        description = seo.get("meta_description") or content.excerpt
        if description:
            description = converters.collapse_whitespace(description)
            if len(description) > META_DESCRIPTION_LIMIT:
                trimmed = description[:META_DESCRIPTION_LIMIT - 3].rstrip() + "..."
                draft.modify(
                    ModificationType.SEO_OPTIMIZATION,
                    f"Trimmed meta description to {META_DESCRIPTION_LIMIT} characters",
                    ModificationImpact.LOW,
                    before=description,
                    after=trimmed,
                )
                description = trimmed
            seo["meta_description"] = description

        meta_title = seo.get("meta_title") or content.title
        if len(meta_title) > META_TITLE_LIMIT:
            trimmed = meta_title[:META_TITLE_LIMIT - 3].rstrip() + "..."
            draft.modify(
                ModificationType.SEO_OPTIMIZATION,
                f"Trimmed meta title to {META_TITLE_LIMIT} characters",
                ModificationImpact.LOW,
                before=meta_title,
                after=trimmed,
            )
            meta_title = trimmed
        seo["meta_title"] = meta_title

        unsupported = (
            ("open_graph", capabilities.supports_open_graph, "Open Graph tags"),
            ("twitter_card", capabilities.supports_twitter_cards, "Twitter card tags"),
            ("schema_markup", capabilities.supports_schema, "schema markup"),
            ("canonical_url", capabilities.supports_canonical, "canonical URL"),
        )
        for key, supported, label in unsupported:
            if not supported and seo.get(key):
                seo.pop(key)
                draft.modify(
                    ModificationType.SEO_OPTIMIZATION,
                    f"Removed {label}: not supported by platform",
                    ModificationImpact.LOW,
                )
            elif not seo.get(key):
                seo.pop(key, None)

        return seo
