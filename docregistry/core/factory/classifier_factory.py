"""
Factory for creating external classifiers.
"""

from docregistry.config import ClassifierConfig
from docregistry.core.classifier.base import DocumentClassifier
from docregistry.core.classifier.ollama import OllamaClassifier
from docregistry.core.classifier.openai import OpenAIClassifier
from docregistry.utils.exceptions import ConfigurationError


class ClassifierFactory:
    """Factory for creating Tier 3 classifiers from configuration."""

    @staticmethod
    def create(
        config: ClassifierConfig, categories: list[str] | None = None
    ) -> DocumentClassifier | None:
        """
        Create a classifier from configuration.

        Args:
            config: Classifier configuration
            categories: Categories the classifier should prefer

        Returns:
            Classifier instance, or None when provider is "none"

        Raises:
            ConfigurationError: If provider is not supported or misconfigured
        """
        if config.provider == "none":
            return None
        if config.provider == "ollama":
            return OllamaClassifier(
                host=config.base_url,
                model=config.model,
                timeout=config.timeout,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                categories=categories,
                max_chars=config.max_chars,
            )
        if config.provider == "openai":
            if not config.api_key:
                raise ConfigurationError("OpenAI API key is required")
            return OpenAIClassifier(
                api_key=config.api_key,
                model=config.model,
                # Ollama's default URL is meaningless for OpenAI
                base_url=None if config.base_url == ClassifierConfig().base_url else config.base_url,
                timeout=config.timeout,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                categories=categories,
                max_chars=config.max_chars,
            )
        raise ConfigurationError(f"Unsupported classifier provider: {config.provider}")
