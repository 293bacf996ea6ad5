"""
External classifier abstraction used by router Tier 3.

Supported providers:
- Ollama (native SDK)
- OpenAI (official SDK)
"""

from docregistry.core.classifier.base import DocumentClassifier
from docregistry.core.classifier.ollama import OllamaClassifier
from docregistry.core.classifier.openai import OpenAIClassifier

__all__ = [
    "DocumentClassifier",
    "OllamaClassifier",
    "OpenAIClassifier",
]
