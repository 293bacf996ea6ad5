"""
Token counting for Markdown sources and their JSON twins.

Uses tiktoken for OpenAI-compatible token counting, or a character-ratio
approximation when configured. A registry instance uses exactly one
Tokenizer so that savings percentages are comparable across entries.
"""

import json
from typing import Any

import tiktoken

from docregistry.config import TokenizerConfig
from docregistry.utils.exceptions import ConfigurationError

PROVIDERS = ("tiktoken", "approximate")


class Tokenizer:
    """
    Token accountant for Markdown and JSON content.

    Usage:
        tokenizer = Tokenizer()
        md_tokens = tokenizer.count_tokens(markdown)
        json_tokens = tokenizer.count_json(twin_dict)
    """

    def __init__(self, config: TokenizerConfig | None = None):
        """
        Initialize tokenizer with configuration.

        Args:
            config: Optional tokenizer configuration. Uses defaults if not provided.

        Raises:
            ConfigurationError: If the provider is unknown
        """
        self.config = config or TokenizerConfig()
        if self.config.provider not in PROVIDERS:
            raise ConfigurationError(
                f"Unsupported tokenizer provider: {self.config.provider}",
                context={"supported": list(PROVIDERS)},
            )
        self._encoder: tiktoken.Encoding | None = None

    @property
    def name(self) -> str:
        """Identifier of the counting scheme, e.g. 'tiktoken:cl100k_base'."""
        if self.config.provider == "approximate":
            return f"approximate:{self.config.chars_per_token:g}"
        return f"tiktoken:{self.config.model}"

    @property
    def encoder(self) -> tiktoken.Encoding:
        """
        Lazy-load tiktoken encoder.

        Returns:
            Tiktoken encoding instance
        """
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding(self.config.model)
        return self._encoder

    def count_tokens(self, text: str) -> int:
        """
        Count tokens with the configured provider.

        Args:
            text: Text to count tokens for

        Returns:
            Token count (0 for empty text)
        """
        if not text:
            return 0

        if self.config.provider == "approximate":
            return self.estimate_tokens(text)

        return len(self.encoder.encode(text, disallowed_special=()))

    def estimate_tokens(self, text: str) -> int:
        """
        Fast approximate token count using character ratio.

        Args:
            text: Text to estimate tokens for

        Returns:
            Approximate token count
        """
        if not text:
            return 0
        return int(len(text) / self.config.chars_per_token)

    def count_json(self, data: Any) -> int:
        """
        Count tokens of the compact JSON serialization of ``data``.

        Keys are sorted and separators minimal, so the count depends only on
        the content and not on dict ordering.
        """
        return self.count_tokens(serialize_compact(data))


def serialize_compact(data: Any) -> str:
    """Compact, key-sorted JSON used for token accounting."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
