"""
Tokenizer module for Markdown / JSON token accounting.

Provides token counting using tiktoken with a character-ratio approximation
as a configurable alternative.
"""

from docregistry.config import TokenizerConfig
from docregistry.core.tokenizer.tokenizer import Tokenizer, serialize_compact

__all__ = ["Tokenizer", "TokenizerConfig", "serialize_compact"]
