"""
Content Formatting Service

Adapts canonical content to each platform's capabilities:
- Markup conversion (HTML, Markdown, rich text, plain text)
- Boundary-aware truncation
- Title, excerpt, tag and SEO trimming
- Adaptation score and change log
"""

from .formatter import (
    ContentFormatter,
    PlatformRule,
    DEFAULT_PLATFORM_RULES,
)
from .converters import (
    convert,
    smart_truncate,
    count_words,
)

__all__ = [
    "ContentFormatter",
    "PlatformRule",
    "DEFAULT_PLATFORM_RULES",
    "convert",
    "smart_truncate",
    "count_words",
]
