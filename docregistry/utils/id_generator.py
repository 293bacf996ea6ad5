"""
ID and slug generation utilities for the document registry.

Registry keys are derived deterministically from paths and names so that
repeated imports of the same tree produce identical registries:
- Categories: kebab-case slugs ("Business Strategy" -> "business-strategy")
- Documents: slug of the file stem, prefixed by any sub-folder path
- Anchors: GitHub-style heading anchors
"""

import re
from pathlib import PurePosixPath

_NON_SLUG = re.compile(r"[^a-z0-9]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def slugify(text: str) -> str:
    """
    Convert text to a kebab-case slug.

    Args:
        text: Arbitrary text (title, filename, category name)

    Returns:
        Lowercase slug with runs of non-alphanumerics collapsed to "-"
    """
    return _NON_SLUG.sub("-", text.lower()).strip("-")


def normalize_name(text: str) -> str:
    """
    Normalize a name for equality and similarity checks.

    "Business_Strategy", "business-strategy" and "BusinessStrategy" all
    normalize to "businessstrategy".

    Args:
        text: Name to normalize

    Returns:
        Lowercase alphanumeric-only string
    """
    return _NON_ALNUM.sub("", text.lower())


def generate_document_id(relative_path: str | PurePosixPath) -> str:
    """
    Generate a document ID from its path relative to the category folder.

    Args:
        relative_path: Path below the category folder, e.g. "features/api-design.md"

    Returns:
        ID such as "features-api-design"
    """
    path = PurePosixPath(relative_path)
    parts = [slugify(p) for p in path.parent.parts if p not in ("", ".")]
    parts.append(slugify(path.stem))
    return "-".join(p for p in parts if p) or "document"


def generate_anchor(heading: str) -> str:
    """
    Generate a GitHub-style anchor from heading text.

    Args:
        heading: Heading text without the leading hashes

    Returns:
        Anchor string (no leading "#")
    """
    anchor = re.sub(r"[^\w\s-]", "", heading.lower())
    anchor = re.sub(r"\s+", "-", anchor)
    anchor = re.sub(r"-+", "-", anchor)
    return anchor.strip("-")
