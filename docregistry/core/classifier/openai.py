"""
OpenAI-backed document classifier using the official SDK.
"""

from openai import AsyncOpenAI

from docregistry.core.classifier.base import DocumentClassifier
from docregistry.utils.exceptions import ClassifierUnavailable
from docregistry.utils.logger import get_logger

logger = get_logger(__name__)


class OpenAIClassifier(DocumentClassifier):
    """
    Classifier that asks an OpenAI chat model for a category.

    Requests a JSON object response and validates it against ClassifierVerdict.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 10.0,
        temperature: float = 0.0,
        max_tokens: int = 200,
        categories: list[str] | None = None,
        max_chars: int = 4000,
    ):
        """
        Initialize OpenAI classifier.

        Args:
            api_key: OpenAI API key
            model: Model name (e.g., "gpt-4o-mini")
            base_url: Optional custom base URL
            timeout: Request timeout in seconds
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            categories: Categories the model should prefer
            max_chars: Content is truncated to this many characters
        """
        super().__init__(categories=categories, max_chars=max_chars)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def classify(self, text: str) -> tuple[str, float]:
        """
        Classify content with OpenAI.

        Raises:
            ClassifierUnavailable: On API errors or malformed output
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": self.build_prompt(text)}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content
            if not content:
                raise ValueError("OpenAI returned empty content")
            verdict = self.parse_verdict(content)
        except Exception as e:
            logger.bind(model=self.model, error_type=type(e).__name__).warning(
                f"OpenAI classifier failed: {e}"
            )
            raise ClassifierUnavailable(f"OpenAI classifier failed: {e}") from e

        return verdict.category, verdict.confidence

    async def close(self):
        """Close OpenAI client."""
        await self.client.close()
