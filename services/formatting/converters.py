"""
Markup Converters

Conversion between the content formats platforms accept, plus
boundary-aware truncation. Rich text is treated as HTML.

Markdown is rendered with markdown-it (CommonMark); HTML is parsed,
stripped and repaired with BeautifulSoup.
"""

import html
import re
from typing import Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from markdown_it import MarkdownIt

from services.platforms.models import ContentFormat

_markdown = MarkdownIt("commonmark", {"html": True}).enable("table")

_HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_BLOCK_TAGS = _HEADINGS + [
    "p", "div", "section", "article", "header", "footer", "figure",
    "blockquote", "pre", "ul", "ol", "table", "hr",
]
# Whitespace-only text directly inside these is layout, not content
_CONTAINER_TAGS = {
    "[document]", "html", "body", "div", "section", "article", "figure",
    "blockquote", "ul", "ol", "table", "thead", "tbody", "tr",
}

_MD_IMAGE = re.compile(r"!\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_PARTIAL_TAG = re.compile(r"<[a-zA-Z/!][^>]*$")

_PARAGRAPH_BREAK = re.compile(r"</p>|\n\s*\n", re.I)
_SENTENCE_END = re.compile(r"[.!?][\"')\]]*(?=\s)")
_WHITESPACE = re.compile(r"\s")


def normalize_format(content_format: ContentFormat) -> ContentFormat:
    """Rich text is handled with the HTML pipeline."""
    if content_format == ContentFormat.RICH_TEXT:
        return ContentFormat.HTML
    return content_format


def _parse(markup: str) -> BeautifulSoup:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for text in soup.find_all(string=True):
        if isinstance(text, Comment):
            text.extract()
        elif not text.strip() and text.parent is not None and text.parent.name in _CONTAINER_TAGS:
            text.extract()
    return soup


def markdown_to_html(markdown: str) -> str:
    return _markdown.render(markdown).strip()


def html_to_markdown(markup: str) -> str:
    """Convert HTML to Markdown."""
    return _collapse_blank_lines(_markdown_from(_parse(markup)))


def _markdown_from(node: Tag) -> str:
    parts = []
    for child in node.children:
        if isinstance(child, NavigableString):
            parts.append(re.sub(r"\s+", " ", str(child)))
        else:
            parts.append(_markdown_for_tag(child))
    return "".join(parts)


def _inline(tag: Tag) -> str:
    return _markdown_from(tag).strip()


def _markdown_for_tag(tag: Tag) -> str:
    name = tag.name

    if name in _HEADINGS:
        return f"\n\n{'#' * int(name[1])} {_inline(tag)}\n\n"

    if name in ("ul", "ol"):
        items = []
        for index, item in enumerate(tag.find_all("li", recursive=False), start=1):
            marker = f"{index}." if name == "ol" else "-"
            items.append(f"{marker} {_inline(item)}")
        return "\n\n" + "\n".join(items) + "\n\n"

    if name == "blockquote":
        quoted = _collapse_blank_lines(_markdown_from(tag))
        return "\n\n" + "\n".join(f"> {line}".rstrip() for line in quoted.splitlines()) + "\n\n"

    if name == "pre":
        return "\n\n```\n" + tag.get_text().strip("\n") + "\n```\n\n"
    if name == "hr":
        return "\n\n---\n\n"
    if name == "br":
        return "\n"

    if name in ("strong", "b"):
        inner = _inline(tag)
        return f"**{inner}**" if inner else ""
    if name in ("em", "i"):
        inner = _inline(tag)
        return f"*{inner}*" if inner else ""
    if name == "code":
        return f"`{tag.get_text()}`"
    if name == "a":
        href = tag.get("href")
        text = _inline(tag)
        return f"[{text}]({href})" if href else text
    if name == "img":
        return f"![{tag.get('alt', '')}]({tag.get('src', '')})"

    inner = _markdown_from(tag)
    if name in _BLOCK_TAGS:
        return f"\n\n{inner.strip()}\n\n"
    return inner


def strip_html(markup: str) -> str:
    """Reduce HTML to plain text, keeping paragraph breaks."""
    soup = _parse(markup)
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.append("\n\n")
    for tag in soup.find_all(["li", "tr"]):
        tag.append("\n")

    text = re.sub(r"[ \t]+", " ", soup.get_text())
    text = re.sub(r"\n ", "\n", text)
    return _collapse_blank_lines(text)


def strip_markdown(markdown: str) -> str:
    """Reduce Markdown to plain text."""
    return strip_html(markdown_to_html(markdown))


def to_plain_text(text: str, source: ContentFormat) -> str:
    source = normalize_format(source)
    if source == ContentFormat.HTML:
        return strip_html(text)
    if source == ContentFormat.MARKDOWN:
        return strip_markdown(text)
    return text.strip()


def convert(text: str, source: ContentFormat, target: ContentFormat) -> str:
    """Convert `text` from `source` format to `target` format."""
    source = normalize_format(source)
    target = normalize_format(target)

    if source == target:
        return text
    if target == ContentFormat.PLAIN_TEXT:
        return to_plain_text(text, source)
    if source == ContentFormat.MARKDOWN and target == ContentFormat.HTML:
        return markdown_to_html(text)
    if source == ContentFormat.HTML and target == ContentFormat.MARKDOWN:
        return html_to_markdown(text)

    # Plain text into a markup format: paragraphs survive, nothing else to map
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text.strip()) if p.strip()]
    if target == ContentFormat.HTML:
        return "\n".join(f"<p>{html.escape(p, quote=False)}</p>" for p in paragraphs)
    return "\n\n".join(paragraphs)


def has_block_elements(markup: str) -> bool:
    return BeautifulSoup(markup, "html.parser").find(_BLOCK_TAGS) is not None


def strip_images(text: str, content_format: ContentFormat) -> tuple[str, int]:
    """Remove inline images; returns (text, number removed)."""
    if normalize_format(content_format) == ContentFormat.HTML:
        soup = BeautifulSoup(text, "html.parser")
        images = soup.find_all("img")
        if not images:
            return text, 0
        for image in images:
            image.decompose()
        return str(soup), len(images)
    if content_format == ContentFormat.MARKDOWN:
        return _MD_IMAGE.subn("", text)
    return text, 0


def count_words(text: str, content_format: ContentFormat = ContentFormat.PLAIN_TEXT) -> int:
    return len(to_plain_text(text, content_format).split())


def close_open_tags(markup: str) -> str:
    """Close elements left open by truncation, dropping a dangling partial tag first."""
    markup = _PARTIAL_TAG.sub("", markup)
    return str(BeautifulSoup(markup, "html.parser"))


def _last_boundary(text: str, budget: int, pattern: re.Pattern, use_start: bool = False) -> int:
    last = -1
    for match in pattern.finditer(text, 0, min(len(text), budget + 1)):
        position = match.start() if use_start else match.end()
        if position <= budget:
            last = position
    return last


def smart_truncate(
    text: str,
    max_length: int,
    content_format: ContentFormat = ContentFormat.PLAIN_TEXT,
    ellipsis: str = "...",
) -> str:
    """
    Truncate to at most `max_length` characters, preserving the opening.

    Cuts at the last paragraph break, then sentence end, then word boundary
    (with an ellipsis), so a word is never split. HTML gets its open tags
    closed and the budget shrinks until the closed result fits.
    """
    if len(text) <= max_length:
        return text
    if max_length <= 0:
        return ""

    is_html = normalize_format(content_format) == ContentFormat.HTML
    budget = max_length

    for _ in range(5):
        cut = _truncate_plain(text, budget, ellipsis)
        if not is_html:
            return cut
        closed = close_open_tags(cut)
        if len(closed) <= max_length:
            return closed
        budget -= len(closed) - max_length

    return _truncate_plain(strip_html(text), max_length, ellipsis)


def _truncate_plain(text: str, budget: int, ellipsis: str) -> str:
    if budget <= 0:
        return ""

    minimum = int(budget * 0.3)

    paragraph_end = -1
    for match in _PARAGRAPH_BREAK.finditer(text, 0, min(len(text), budget + 1)):
        position = match.end() if match.group(0).lower() == "</p>" else match.start()
        if position <= budget:
            paragraph_end = position
    if paragraph_end >= minimum and paragraph_end > 0:
        return text[:paragraph_end].rstrip()

    sentence_end = _last_boundary(text, budget, _SENTENCE_END)
    if sentence_end > 0:
        return text[:sentence_end].rstrip()

    if paragraph_end > 0:
        return text[:paragraph_end].rstrip()

    word_budget = budget - len(ellipsis)
    space = _last_boundary(text, word_budget, _WHITESPACE, use_start=True)
    if space > 0:
        return text[:space].rstrip() + ellipsis

    # A single unbroken token longer than the budget
    return text[:budget]


def truncate_words(text: str, max_length: int, ellipsis: str = "...") -> str:
    """Short-field truncation (titles, excerpts, meta tags) at a word boundary."""
    text = text.strip()
    if len(text) <= max_length:
        return text
    word_budget = max_length - len(ellipsis)
    if word_budget <= 0:
        return text[:max_length]
    space = _last_boundary(text, word_budget, _WHITESPACE, use_start=True)
    if space <= 0:
        return text[:word_budget] + ellipsis
    return text[:space].rstrip() + ellipsis


def guess_filename(url: str) -> str:
    path = url.split("?", 1)[0].split("#", 1)[0]
    return path.rstrip("/").rsplit("/", 1)[-1] or "image"


def collapse_whitespace(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _collapse_blank_lines(text: str) -> str:
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
