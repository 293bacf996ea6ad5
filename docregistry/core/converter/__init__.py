"""
Markdown <-> JSON twin conversion.
"""

from docregistry.core.converter.markdown import (
    MarkdownConverter,
    ParsedDocument,
    ParsedSection,
    parse_markdown,
)

__all__ = ["MarkdownConverter", "ParsedDocument", "ParsedSection", "parse_markdown"]
