"""
Tests for markup conversion and the ContentFormatter pipeline.

Run with:
    python -m pytest tests/test_formatter.py -v
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import UnsupportedContentError
from services.formatting import ContentFormatter, PlatformRule, convert, count_words, smart_truncate
from services.formatting.converters import close_open_tags, strip_images, truncate_words
from services.formatting.formatter import DEFAULT_CTA_TEXT
from services.platforms import (
    BlogContent,
    ContentFormat,
    ContentModification,
    MediaReference,
    ModificationImpact,
    ModificationType,
    PlatformCapabilities,
)


def capabilities(**overrides) -> PlatformCapabilities:
    values = dict(
        max_content_length=50000,
        max_title_length=200,
        max_description_length=300,
        max_tags_count=10,
        supported_formats=(ContentFormat.HTML, ContentFormat.MARKDOWN),
    )
    values.update(overrides)
    return PlatformCapabilities(**values)


class TestConverters:

    def test_markdown_to_html(self):
        markdown = "# Title\n\nSome **bold** and *soft* text.\n\n- one\n- two\n\nSee [docs](https://example.com/docs)."

        result = convert(markdown, ContentFormat.MARKDOWN, ContentFormat.HTML)

        assert result == (
            "<h1>Title</h1>\n"
            "<p>Some <strong>bold</strong> and <em>soft</em> text.</p>\n"
            "<ul>\n<li>one</li>\n<li>two</li>\n</ul>\n"
            '<p>See <a href="https://example.com/docs">docs</a>.</p>'
        )

    def test_markdown_prose_with_angle_brackets_is_escaped(self):
        prose = "If a < b and c > d then the claim holds for every reader."

        result = convert(prose, ContentFormat.MARKDOWN, ContentFormat.HTML)

        assert result == "<p>If a &lt; b and c &gt; d then the claim holds for every reader.</p>"
        assert count_words(prose, ContentFormat.MARKDOWN) == 15
        assert count_words(result, ContentFormat.HTML) == 15

    def test_html_to_markdown(self):
        result = convert("<h2>Intro</h2><p>Hello <strong>world</strong></p>", ContentFormat.HTML, ContentFormat.MARKDOWN)
        assert result == "## Intro\n\nHello **world**"

    def test_html_lists_and_links_to_markdown(self):
        markup = '<ul>\n<li>one</li>\n<li><a href="https://x.io">two</a></li>\n</ul>\n<blockquote><p>Quoted</p></blockquote>'

        result = convert(markup, ContentFormat.HTML, ContentFormat.MARKDOWN)

        assert result == "- one\n- [two](https://x.io)\n\n> Quoted"

    def test_html_to_plain_text_keeps_paragraphs(self):
        result = convert("<p>One &amp; two</p><p>Three</p>", ContentFormat.HTML, ContentFormat.PLAIN_TEXT)
        assert result == "One & two\n\nThree"

    def test_loose_comparison_in_html_survives_stripping(self):
        result = convert("<p>x < y holds</p><script>track()</script>", ContentFormat.HTML, ContentFormat.PLAIN_TEXT)
        assert result == "x < y holds"

    def test_markdown_list_to_plain_text(self):
        result = convert("- Smaller pull requests\n- Safer rollouts", ContentFormat.MARKDOWN, ContentFormat.PLAIN_TEXT)
        assert result == "Smaller pull requests\nSafer rollouts"

    def test_strip_images(self):
        markup, removed = strip_images('<p>Look <img src="a.png" alt="a"> here</p>', ContentFormat.HTML)
        assert removed == 1
        assert "<img" not in markup
        assert "Look" in markup and "here" in markup

        text, removed = strip_images("Intro ![chart](c.png) outro", ContentFormat.MARKDOWN)
        assert (text, removed) == ("Intro  outro", 1)

        untouched = "<p>No images</p>"
        assert strip_images(untouched, ContentFormat.HTML) == (untouched, 0)

    def test_plain_text_to_html_escapes(self):
        result = convert("a < b\n\nsecond", ContentFormat.PLAIN_TEXT, ContentFormat.HTML)
        assert result == "<p>a &lt; b</p>\n<p>second</p>"

    def test_rich_text_is_treated_as_html(self):
        markup = "<p>Already rich</p>"
        assert convert(markup, ContentFormat.RICH_TEXT, ContentFormat.HTML) is markup

    def test_count_words_ignores_markup(self):
        assert count_words("**Two** [words](https://x.io)", ContentFormat.MARKDOWN) == 2
        assert count_words("<p>Three <em>small</em> words</p>", ContentFormat.HTML) == 3


class TestSmartTruncate:

    def test_short_text_is_untouched(self):
        assert smart_truncate("short", 10) == "short"
        assert smart_truncate("anything", 0) == ""

    def test_prefers_paragraph_boundary(self):
        text = "First paragraph here.\n\nSecond paragraph is longer than the budget allows."
        assert smart_truncate(text, 30) == "First paragraph here."

    def test_falls_back_to_sentence_boundary(self):
        assert smart_truncate("One two. Three four five six seven.", 20) == "One two."

    def test_word_boundary_gets_ellipsis(self):
        result = smart_truncate("alpha beta gamma delta epsilon", 20)
        assert result == "alpha beta gamma..."
        assert len(result) <= 20

    def test_html_cut_at_closing_paragraph(self):
        markup = "<p>Alpha beta gamma delta</p><p>Epsilon zeta eta theta</p>"
        assert smart_truncate(markup, 35, ContentFormat.HTML) == "<p>Alpha beta gamma delta</p>"

    def test_html_open_tags_are_closed_within_budget(self):
        markup = "<p><strong>Alpha beta gamma delta epsilon zeta</strong></p>"

        result = smart_truncate(markup, 30, ContentFormat.HTML)

        assert len(result) <= 30
        assert result.endswith("</strong></p>")

    def test_close_open_tags_drops_partial_tag(self):
        assert close_open_tags("<p>Hello <a hre") == "<p>Hello </p>"

    def test_truncate_words(self):
        assert truncate_words("Shipping faster with feature flags", 20) == "Shipping faster..."


class TestContentFormatter:

    @pytest.fixture
    def formatter(self):
        return ContentFormatter()

    def test_wordpress_gets_html(self, formatter, sample_content):
        formatted = formatter.format_for_platform(sample_content, capabilities(), "wordpress")

        assert formatted.format == ContentFormat.HTML
        assert "<strong>merge early</strong>" in formatted.content
        assert [m.type for m in formatted.modifications] == [ModificationType.FORMAT_CHANGE]
        assert formatted.adaptation_score == pytest.approx(0.97)
        assert formatted.original_word_count == formatted.adapted_word_count

    def test_medium_keeps_markdown_untouched(self, formatter, sample_content):
        formatted = formatter.format_for_platform(sample_content, capabilities(), "medium")

        assert formatted.format == ContentFormat.MARKDOWN
        assert formatted.content == sample_content.content
        assert formatted.modifications == []
        assert formatted.adaptation_score == 1.0
        assert formatted.excerpt == sample_content.excerpt
        assert formatted.seo["meta_title"] == sample_content.title

    def test_linkedin_plain_text_with_cta_and_hashtags(self, formatter, sample_content):
        caps = capabilities(max_content_length=3000, supported_formats=(ContentFormat.PLAIN_TEXT,))

        formatted = formatter.format_for_platform(sample_content, caps, "linkedin")

        assert formatted.format == ContentFormat.PLAIN_TEXT
        assert "**" not in formatted.content
        assert DEFAULT_CTA_TEXT["linkedin"] in formatted.content
        assert formatted.content.endswith("#Devops #ReleaseEngineering #FeatureFlags")
        assert formatted.modifications[0].impact == ModificationImpact.MEDIUM
        assert any("plain text" in s for s in formatted.suggestions)

    def test_truncates_to_length_limit(self, formatter):
        content = BlogContent(
            title="Long",
            content=" ".join(f"word{i}" for i in range(100)),
            content_format=ContentFormat.PLAIN_TEXT,
        )
        caps = capabilities(max_content_length=60, supported_formats=(ContentFormat.PLAIN_TEXT,))

        formatted = formatter.format_for_platform(content, caps, "custom")

        assert len(formatted.content) <= 60
        assert formatted.content.endswith("...")
        assert formatted.modifications[0].type == ModificationType.LENGTH_REDUCTION
        assert formatted.modifications[0].impact == ModificationImpact.HIGH
        assert "Content truncated to fit 60 characters" in formatted.warnings
        assert formatted.adaptation_score < 0.85
        assert any("consider publishing a summary" in s for s in formatted.suggestions)

    def test_cta_dropped_when_it_cannot_fit(self, formatter):
        content = BlogContent(title="Tiny", content="Short body.", content_format=ContentFormat.PLAIN_TEXT)
        caps = capabilities(max_content_length=80, supported_formats=(ContentFormat.PLAIN_TEXT,))
        rule = PlatformRule(include_cta=True, cta_text="x" * 100)

        formatted = formatter.format_for_platform(content, caps, "custom", rule)

        assert formatted.content == "Short body."
        assert "Call-to-action omitted: no room within the length limit" in formatted.warnings

    def test_request_rule_overrides_registered_rule(self, formatter, sample_content):
        rule = PlatformRule(target_format=ContentFormat.HTML, max_length=120)

        formatted = formatter.format_for_platform(sample_content, capabilities(), "medium", rule)

        assert formatted.format == ContentFormat.HTML
        assert len(formatted.content) <= 120

    def test_tags_are_deduplicated_and_limited(self, formatter):
        content = BlogContent(title="Tags", content="Body", tags=["AI", "ml"], keywords=["ai", "data"])

        formatted = formatter.format_for_platform(content, capabilities(max_tags_count=2), "custom")

        assert formatted.tags == ["AI", "ml"]
        assert formatted.modifications[-1].description == "Kept 2 of 3 tags"

    def test_tags_dropped_when_unsupported(self, formatter, sample_content):
        formatted = formatter.format_for_platform(sample_content, capabilities(supports_tags=False), "medium")

        assert formatted.tags == []
        assert formatted.modifications[0].description == "Dropped tags: platform does not support tags"

    def test_long_title_is_shortened(self, formatter, sample_content):
        formatted = formatter.format_for_platform(sample_content, capabilities(max_title_length=20), "medium")
        assert formatted.title == "Shipping faster..."

    def test_generated_excerpt(self, formatter):
        content = BlogContent(title="No excerpt", content="**Bold** opening line. " * 20)

        formatted = formatter.format_for_platform(content, capabilities(), "medium")

        assert formatted.excerpt.startswith("Bold opening line.")
        assert len(formatted.excerpt) <= 150

    def test_unsupported_featured_image_is_dropped(self, formatter):
        content = BlogContent(
            title="Image",
            content="Body",
            featured_image=MediaReference(url="https://cdn.example.com/cover.tiff"),
        )

        formatted = formatter.format_for_platform(content, capabilities(), "medium")

        assert formatted.featured_image is None
        assert formatted.warnings == ["Featured image format image/tiff not supported"]

    def test_featured_image_gets_mime_and_filename(self, formatter):
        content = BlogContent(
            title="Image",
            content="Body",
            featured_image=MediaReference(url="https://cdn.example.com/img/cover.png?w=800"),
        )

        formatted = formatter.format_for_platform(content, capabilities(), "medium")

        assert formatted.featured_image.mime_type == "image/png"
        assert formatted.featured_image.filename == "cover.png"

    def test_unsupported_seo_fields_are_removed(self, formatter):
        content = BlogContent(title="SEO", content="Body", seo={"open_graph": {"og:title": "SEO"}})

        kept = formatter.format_for_platform(content, capabilities(supports_open_graph=True), "medium")
        removed = formatter.format_for_platform(content, capabilities(), "medium")

        assert kept.seo["open_graph"] == {"og:title": "SEO"}
        assert "open_graph" not in removed.seo
        assert removed.modifications[0].type == ModificationType.SEO_OPTIMIZATION

    def test_no_supported_format_raises(self, formatter, sample_content):
        with pytest.raises(UnsupportedContentError):
            formatter.format_for_platform(sample_content, capabilities(supported_formats=()), "custom")

    def test_adaptation_score(self):
        mods = [
            ContentModification(ModificationType.LENGTH_REDUCTION, "cut", ModificationImpact.HIGH),
            ContentModification(ModificationType.FORMAT_CHANGE, "flatten", ModificationImpact.MEDIUM),
        ]
        assert ContentFormatter.calculate_adaptation_score(mods, 0.5) == pytest.approx(0.52)
        assert ContentFormatter.calculate_adaptation_score(mods * 10) == 0.0
        assert ContentFormatter.calculate_adaptation_score([]) == 1.0

    def test_rule_registry(self, formatter):
        formatter.add_platform_rule("devto", PlatformRule(target_format=ContentFormat.MARKDOWN))

        assert formatter.get_platform_rule("devto").target_format == ContentFormat.MARKDOWN
        assert formatter.remove_platform_rule("devto") is True
        assert formatter.remove_platform_rule("devto") is False
