"""
Tests for the OpenAI classifier.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from docregistry.core.classifier.openai import OpenAIClassifier
from docregistry.utils.exceptions import ClassifierUnavailable


@pytest.fixture
def openai_classifier():
    """Create OpenAI classifier for testing."""
    return OpenAIClassifier(api_key="test-key", model="gpt-4o-mini", timeout=5.0)


def _response(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    return response


@pytest.mark.unit
@pytest.mark.asyncio
class TestOpenAIClassifier:
    """Test OpenAI classifier."""

    async def test_initialization(self, openai_classifier):
        """Test classifier initialization."""
        assert openai_classifier.model == "gpt-4o-mini"
        assert openai_classifier.client is not None

    async def test_classify(self, openai_classifier):
        """Test a valid verdict is returned."""
        with patch.object(
            openai_classifier.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            mock_create.return_value = _response('{"category": "legal", "confidence": 0.9}')

            result = await openai_classifier.classify("Master services agreement")

            assert result == ("legal", 0.9)
            kwargs = mock_create.call_args.kwargs
            assert kwargs["response_format"] == {"type": "json_object"}
            assert kwargs["max_tokens"] == 200

    async def test_empty_content(self, openai_classifier):
        """Test empty answers become ClassifierUnavailable."""
        with patch.object(
            openai_classifier.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            mock_create.return_value = _response(None)

            with pytest.raises(ClassifierUnavailable):
                await openai_classifier.classify("text")

    async def test_api_error(self, openai_classifier):
        """Test API failures become ClassifierUnavailable."""
        with patch.object(
            openai_classifier.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            mock_create.side_effect = RuntimeError("rate limited")

            with pytest.raises(ClassifierUnavailable) as exc_info:
                await openai_classifier.classify("text")
            assert "rate limited" in str(exc_info.value)

    async def test_close(self, openai_classifier):
        """Test close delegates to the client."""
        with patch.object(openai_classifier.client, "close", new_callable=AsyncMock) as mock_close:
            await openai_classifier.close()
            mock_close.assert_called_once()
