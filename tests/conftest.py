"""
Shared test fixtures for all test modules.

Tests use the approximate tokenizer unless they need real tiktoken counts;
the tiktoken fixture skips when the encoding cannot be loaded (offline).
"""

from collections.abc import AsyncGenerator, Callable, Iterator
from pathlib import Path

import pytest
from loguru import logger

from docregistry.config import (
    ClassifierConfig,
    Config,
    ConverterConfig,
    LifecycleConfig,
    RegistryConfig,
    TokenizerConfig,
)
from docregistry.core.tokenizer import Tokenizer
from docregistry.services.lifecycle_manager import LifecycleManager


@pytest.fixture
def approx_tokenizer() -> Tokenizer:
    """Deterministic, offline tokenizer (4 chars per token)."""
    return Tokenizer(TokenizerConfig(provider="approximate"))


@pytest.fixture
def tiktoken_tokenizer() -> Tokenizer:
    """Real tiktoken tokenizer; skips when the encoding is unavailable."""
    tokenizer = Tokenizer(TokenizerConfig(provider="tiktoken", model="cl100k_base"))
    try:
        tokenizer.count_tokens("warm up")
    except Exception as e:
        pytest.skip(f"tiktoken encoding not available: {e}")
    return tokenizer


@pytest.fixture
def log_records() -> Iterator[list[dict]]:
    """Loguru records emitted while the test runs."""
    records: list[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def docs_root(tmp_path: Path) -> Path:
    """Empty project documents root."""
    root = tmp_path / "project-documents"
    root.mkdir()
    return root


@pytest.fixture
def test_config(tmp_path: Path, docs_root: Path) -> Config:
    """Configuration pointing every path into tmp_path."""
    return Config(
        registry=RegistryConfig(
            path=str(tmp_path / "machine-data" / "project-document-registry.json"),
            documents_root=str(docs_root),
        ),
        tokenizer=TokenizerConfig(provider="approximate"),
        converter=ConverterConfig(twin_dir=str(tmp_path / "machine-data" / "json")),
        classifier=ClassifierConfig(provider="none"),
        lifecycle=LifecycleConfig(max_workers=2),
    )


@pytest.fixture
def write_doc(docs_root: Path) -> Callable[[str, str], Path]:
    """Write a document below the documents root and return its path."""

    def _write(rel_path: str, content: str) -> Path:
        path = docs_root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
async def manager(test_config: Config) -> AsyncGenerator[LifecycleManager, None]:
    """Lifecycle manager over an empty registry in tmp_path."""
    lifecycle = LifecycleManager.from_config(test_config)
    yield lifecycle
    await lifecycle.close()


@pytest.fixture
def prd_doc() -> str:
    """Product requirements document (Tier 1 by filename)."""
    return """# Product Requirements

## Overview

The platform lets small teams track shared documents.

## Goals

- Keep every document findable
- Keep summaries short
"""


@pytest.fixture
def pricing_doc() -> str:
    """Pricing notes (Tier 2 by the pricing|revenue rule)."""
    return """# Notes on Pricing

## Overview

Early thoughts on pricing tiers for the hosted plan.

- Free tier for individuals
- Paid tier per seat
"""
