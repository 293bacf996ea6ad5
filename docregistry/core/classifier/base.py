"""
Abstract base class for external document classifiers (router Tier 3).
"""

import json
from abc import ABC, abstractmethod

from docregistry.models.classification import ClassifierVerdict

PROMPT_TEMPLATE = """You route project documents into folders.

Known categories: {categories}

Pick the single best category for the document below. Prefer a known
category; propose a new kebab-case category only if none fits.

Respond with JSON only: {{"category": "<kebab-case>", "confidence": <0..1>}}

Document:
---
{text}
---"""


class DocumentClassifier(ABC):
    """
    Single-method interface for content classification.

    Implementations wrap an external service and must raise
    ClassifierUnavailable for any failure so the router can fall through.
    """

    def __init__(self, categories: list[str] | None = None, max_chars: int = 4000):
        """
        Args:
            categories: Categories the service should prefer
            max_chars: Content is truncated to this many characters
        """
        self.categories = sorted(categories or [])
        self.max_chars = max_chars

    @abstractmethod
    async def classify(self, text: str) -> tuple[str, float]:
        """
        Classify document content.

        Args:
            text: Document content

        Returns:
            Tuple of (category, confidence in [0, 1])

        Raises:
            ClassifierUnavailable: If the service fails or answers malformed output
        """
        pass

    async def close(self):
        """
        Close any open connections.
        Optional to override if the client needs cleanup.
        """

    def build_prompt(self, text: str) -> str:
        """Render the classification prompt for ``text``."""
        return PROMPT_TEMPLATE.format(
            categories=", ".join(self.categories) or "(none yet)",
            text=text[: self.max_chars],
        )

    @staticmethod
    def parse_verdict(content: str) -> ClassifierVerdict:
        """
        Parse a JSON verdict, tolerating markdown code fences.

        Raises:
            ValueError: If the content is not a valid verdict
        """
        cleaned = content.strip()
        if "```json" in cleaned:
            cleaned = cleaned.split("```json")[1].split("```")[0].strip()
        elif "```" in cleaned:
            cleaned = cleaned.split("```")[1].split("```")[0].strip()
        data = json.loads(cleaned)
        if not isinstance(data, dict):
            raise ValueError("Classifier verdict must be a JSON object")
        return ClassifierVerdict.model_validate(data)
