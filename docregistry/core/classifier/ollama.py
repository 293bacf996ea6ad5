"""
Ollama-backed document classifier using the native ollama-python SDK.
"""

import ollama

from docregistry.core.classifier.base import DocumentClassifier
from docregistry.utils.exceptions import ClassifierUnavailable
from docregistry.utils.logger import get_logger

logger = get_logger(__name__)


class OllamaClassifier(DocumentClassifier):
    """
    Classifier that asks a local Ollama model for a category.

    Uses JSON mode and validates the answer against ClassifierVerdict.
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "llama3.1:8b",
        timeout: float = 10.0,
        temperature: float = 0.0,
        max_tokens: int = 200,
        categories: list[str] | None = None,
        max_chars: int = 4000,
    ):
        """
        Initialize Ollama classifier.

        Args:
            host: Ollama server URL
            model: Model name (e.g., "llama3.1:8b", "mistral")
            timeout: Request timeout in seconds
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            categories: Categories the model should prefer
            max_chars: Content is truncated to this many characters
        """
        super().__init__(categories=categories, max_chars=max_chars)
        self.host = host
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.client = ollama.AsyncClient(host=host, timeout=timeout)

    async def classify(self, text: str) -> tuple[str, float]:
        """
        Classify content with Ollama.

        Raises:
            ClassifierUnavailable: On transport errors or malformed output
        """
        try:
            response = await self.client.chat(
                model=self.model,
                messages=[{"role": "user", "content": self.build_prompt(text)}],
                format="json",
                options={"temperature": self.temperature, "num_predict": self.max_tokens},
            )
            verdict = self.parse_verdict(response["message"]["content"])
        except Exception as e:
            logger.bind(model=self.model, error_type=type(e).__name__).warning(
                f"Ollama classifier failed: {e}"
            )
            raise ClassifierUnavailable(f"Ollama classifier failed: {e}") from e

        return verdict.category, verdict.confidence
