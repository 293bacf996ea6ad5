"""
Four-tier cascading document router.

Tier 1: exact filename/title lookup          (budget 10ms)
Tier 2: ordered pattern / keyword rules       (budget 20ms)
Tier 3: external classifier above threshold   (budget 40ms)
Tier 4: folder creation manager               (budget 100ms)

Budgets are monitoring targets: an overrunning tier still returns its
result and bumps a slow-tier counter.
"""

import asyncio
import math
import re
import time
from pathlib import PurePath
from typing import TYPE_CHECKING

from docregistry.config import ClassifierConfig, RouterConfig
from docregistry.core.classifier.base import DocumentClassifier
from docregistry.core.router.rules import (
    RoutingRule,
    build_known_documents,
    build_rules,
    known_document_key,
)
from docregistry.models.classification import ClassificationResult, RoutingTier
from docregistry.models.reports import RouterStats
from docregistry.utils.exceptions import ClassifierUnavailable
from docregistry.utils.id_generator import normalize_name, slugify
from docregistry.utils.logger import get_logger

if TYPE_CHECKING:
    from docregistry.services.folder_manager import FolderCreationManager

logger = get_logger(__name__)

H1_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class TieredRouter:
    """
    Classifies documents into categories.

    Deterministic for identical (content, path, rule table, classifier
    answer): no tier uses randomness or wall-clock state.
    """

    def __init__(
        self,
        folder_manager: "FolderCreationManager",
        classifier: DocumentClassifier | None = None,
        config: RouterConfig | None = None,
        classifier_config: ClassifierConfig | None = None,
        known_documents: dict[str, str] | None = None,
        rules: list[RoutingRule] | None = None,
    ):
        """
        Initialize router.

        Args:
            folder_manager: Tier 4 category resolver
            classifier: Optional Tier 3 external classifier
            config: Router configuration (budgets, extra table entries and rules)
            classifier_config: Threshold and timeout for Tier 3
            known_documents: Full Tier 1 table, replacing the configured one
            rules: Full Tier 2 rule list, replacing the configured one
        """
        self.config = config or RouterConfig()
        self.classifier_config = classifier_config or ClassifierConfig()
        self.folder_manager = folder_manager
        self.classifier = classifier

        self.known_documents = (
            {known_document_key(k): slugify(v) for k, v in known_documents.items()}
            if known_documents is not None
            else build_known_documents(self.config.known_documents)
        )
        self.rules = (
            list(rules)
            if rules is not None
            else build_rules(self.config.rules, self.config.replace_default_rules)
        )
        self._stats = RouterStats()

    @property
    def known_categories(self) -> set[str]:
        """Every category the static tiers can produce."""
        return set(self.known_documents.values()) | {rule.category for rule in self.rules}

    def match_known(self, content: str, path_hint: str | None = None) -> ClassificationResult | None:
        """Tier 1: exact lookup by filename, then by H1 title."""
        start = time.perf_counter()
        candidates = []
        if path_hint:
            candidates.append(known_document_key(PurePath(path_hint).name))
        title = H1_RE.search(content or "")
        if title:
            candidates.append(known_document_key(title.group(1)))

        for key in candidates:
            category = self.known_documents.get(key)
            if category:
                return ClassificationResult(
                    tier=RoutingTier.KNOWN_DOCUMENT,
                    category=category,
                    confidence=1.0,
                    latency_ms=_elapsed_ms(start),
                    matched_by=key,
                )
        return None

    def match_rules(self, content: str, path_hint: str | None = None) -> ClassificationResult | None:
        """Tier 2: best rule by (priority, matched terms, declaration order)."""
        start = time.perf_counter()
        filename = PurePath(path_hint).name.lower() if path_hint else ""

        best: tuple[int, int, int] | None = None
        best_rule: RoutingRule | None = None
        for order, rule in enumerate(self.rules):
            score = rule.match(filename, content or "")
            if not score:
                continue
            rank = (rule.priority, score, -order)
            if best is None or rank > best:
                best, best_rule = rank, rule

        if best_rule is None:
            return None
        return ClassificationResult(
            tier=RoutingTier.PATTERN,
            category=best_rule.category,
            confidence=1.0,
            latency_ms=_elapsed_ms(start),
            matched_by=best_rule.name,
        )

    def route_known(self, content: str, path_hint: str | None = None) -> ClassificationResult | None:
        """
        Run only Tiers 1-2.

        Used by placement validation; does not touch usage counters.
        """
        return self.match_known(content, path_hint) or self.match_rules(content, path_hint)

    async def route(self, content: str, path_hint: str | None = None) -> ClassificationResult:
        """
        Classify a document, stopping at the first confident tier.

        Args:
            content: Document content
            path_hint: Optional path or filename

        Returns:
            ClassificationResult tagged with the deciding tier
        """
        start = time.perf_counter()

        for tier, matcher in (
            (RoutingTier.KNOWN_DOCUMENT, self.match_known),
            (RoutingTier.PATTERN, self.match_rules),
        ):
            tier_start = time.perf_counter()
            result = matcher(content, path_hint)
            self._check_budget(tier, _elapsed_ms(tier_start))
            if result is not None:
                return self._finish(result, start)

        if self.classifier is not None:
            tier_start = time.perf_counter()
            result = await self._classify(content)
            self._check_budget(RoutingTier.CLASSIFIER, _elapsed_ms(tier_start))
            if result is not None:
                return self._finish(result, start)

        # Planning only: the writer commits the folder when an entry is stored
        tier_start = time.perf_counter()
        resolution = self.folder_manager.resolve_detail(content, path_hint, commit=False)
        self._check_budget(RoutingTier.FOLDER_CREATION, _elapsed_ms(tier_start))
        consolidated = normalize_name(resolution.candidate) != normalize_name(resolution.category)
        result = ClassificationResult(
            tier=RoutingTier.FOLDER_CREATION,
            category=resolution.category,
            confidence=resolution.similarity,
            matched_by="folder-consolidated" if consolidated else "folder-derived",
        )
        return self._finish(result, start)

    def stats(self) -> RouterStats:
        """Copy of the tier usage counters."""
        return self._stats.model_copy(deep=True)

    def take_stats(self) -> RouterStats:
        """Return the counters and start new ones."""
        stats, self._stats = self._stats, RouterStats()
        return stats

    async def _classify(self, content: str) -> ClassificationResult | None:
        """Tier 3: ask the external classifier; failures mean no match."""
        threshold = self.classifier_config.confidence_threshold
        try:
            category, confidence = await asyncio.wait_for(
                self.classifier.classify(content), timeout=self.classifier_config.timeout
            )
        except asyncio.TimeoutError:
            self._stats.classifier_failures += 1
            logger.warning(
                f"ClassifierUnavailable: timed out after {self.classifier_config.timeout}s"
            )
            return None
        except ClassifierUnavailable as e:
            self._stats.classifier_failures += 1
            logger.warning(f"ClassifierUnavailable: {e.message}")
            return None
        except Exception as e:
            self._stats.classifier_failures += 1
            logger.warning(f"ClassifierUnavailable: {type(e).__name__}: {e}")
            return None

        slug = slugify(category or "")
        if not isinstance(confidence, (int, float)) or not math.isfinite(confidence):
            self._stats.classifier_failures += 1
            logger.warning(
                f"ClassifierUnavailable: unusable confidence {confidence!r} for {category!r}"
            )
            return None
        if not slug or confidence < threshold:
            logger.debug(
                f"Classifier answer below threshold: {category!r} ({confidence:.2f} < {threshold})"
            )
            return None

        return ClassificationResult(
            tier=RoutingTier.CLASSIFIER,
            category=slug,
            confidence=max(0.0, min(1.0, confidence)),
            matched_by=type(self.classifier).__name__,
        )

    def _check_budget(self, tier: RoutingTier, elapsed_ms: float) -> None:
        budget = self.config.tier_budgets_ms.get(int(tier))
        if budget is not None and elapsed_ms > budget:
            self._stats.slow_tiers[int(tier)] = self._stats.slow_tiers.get(int(tier), 0) + 1
            logger.warning(f"Tier {int(tier)} over budget: {elapsed_ms:.1f}ms > {budget:.0f}ms")

    def _finish(self, result: ClassificationResult, start: float) -> ClassificationResult:
        tier = int(result.tier)
        self._stats.tier_usage[tier] = self._stats.tier_usage.get(tier, 0) + 1
        result = result.model_copy(update={"latency_ms": _elapsed_ms(start)})
        logger.debug(
            f"Routed to {result.category} via tier {tier} ({result.matched_by}) "
            f"in {result.latency_ms:.2f}ms"
        )
        return result
