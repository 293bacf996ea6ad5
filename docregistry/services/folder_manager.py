"""
Folder Creation Manager - Router Tier 4.

Derives a category for documents no other tier could place and keeps the
category set free of near-duplicates:
1. Slug from the first H1 title, the filename stem, or the first content words
2. Fuzzy comparison (difflib ratio) against existing categories
3. Reuse above the similarity threshold, otherwise create a new category
"""

import re
from difflib import SequenceMatcher
from pathlib import Path, PurePath

from pydantic import BaseModel, Field

from docregistry.config import FolderConfig
from docregistry.models.reports import ConsolidationCandidate, FolderStats
from docregistry.utils.id_generator import normalize_name, slugify
from docregistry.utils.logger import get_logger

logger = get_logger(__name__)

FALLBACK_CATEGORY = "uncategorized"

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
        "into", "is", "it", "of", "on", "or", "our", "the", "this", "to",
        "with", "we", "you", "your", "md", "doc", "document", "notes",
    }
)  # fmt: skip

_H1_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)
_WORD_RE = re.compile(r"[a-z0-9]+")


class FolderResolution(BaseModel):
    """Outcome of resolving a category for a document."""

    category: str
    created: bool = False
    similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    candidate: str = Field(default="", description="Slug derived before deduplication")


def similarity(a: str, b: str) -> float:
    """Similarity ratio of two names after normalization."""
    return SequenceMatcher(None, normalize_name(a), normalize_name(b)).ratio()


class FolderCreationManager:
    """
    Creates or reuses categories for unmatched documents.

    Invariant: no two registered categories share a normalized name.
    """

    def __init__(
        self,
        config: FolderConfig | None = None,
        documents_root: str | Path | None = None,
        categories: list[str] | None = None,
    ):
        """
        Initialize folder manager.

        Args:
            config: Folder configuration (threshold, slug length, mkdir)
            documents_root: Root under which category folders live
            categories: Categories already known (registry, rule targets)
        """
        self.config = config or FolderConfig()
        self.documents_root = Path(documents_root) if documents_root else None

        self._categories: dict[str, str] = {}  # normalized -> category
        self._created = 0
        self._reused = 0
        self._candidates: list[ConsolidationCandidate] = []

        for category in categories or []:
            self.register(category)
        if self.documents_root is not None and self.documents_root.is_dir():
            for child in sorted(self.documents_root.iterdir()):
                if child.is_dir() and not child.name.startswith("."):
                    self.register(child.name)

    @property
    def categories(self) -> list[str]:
        """Registered categories, sorted."""
        return sorted(self._categories.values())

    def register(self, category: str) -> str:
        """
        Add a known category.

        Returns:
            The canonical category (an existing one if the normalized name
            is already taken)
        """
        slug = slugify(category)
        if not slug:
            raise ValueError(f"Category name has no usable characters: {category!r}")
        return self._categories.setdefault(normalize_name(slug), slug)

    def derive_slug(self, content: str, filename: str | None = None) -> str:
        """Kebab-case slug from H1 title, filename stem or leading content words."""
        sources = []
        title = _H1_RE.search(content or "")
        if title:
            sources.append(title.group(1))
        if filename:
            sources.append(PurePath(filename).stem)
        sources.append(_H1_RE.sub("", content or ""))

        for source in sources:
            words = [w for w in _WORD_RE.findall(source.lower()) if w not in STOP_WORDS]
            if words:
                return "-".join(words[: self.config.max_slug_words])
        return FALLBACK_CATEGORY

    def resolve(self, content_hint: str, filename: str | None = None) -> str:
        """
        Resolve a category for a document and commit it.

        Args:
            content_hint: Document content (or any descriptive text)
            filename: Optional filename or path

        Returns:
            Category slug, existing or newly created
        """
        return self.resolve_detail(content_hint, filename).category

    def resolve_detail(
        self, content_hint: str, filename: str | None = None, commit: bool = True
    ) -> FolderResolution:
        """
        Resolve a category and report whether it was created or reused.

        With commit=False nothing changes: no category is registered, no
        folder is made and no counter moves. Routing previews use this.
        """
        candidate = self.derive_slug(content_hint, filename)
        normalized = normalize_name(candidate)

        existing = self._categories.get(normalized)
        if existing is not None:
            resolution = FolderResolution(category=existing, similarity=1.0, candidate=candidate)
        else:
            best, best_score = self._best_match(candidate)
            if best is not None and best_score >= self.config.similarity_threshold:
                resolution = FolderResolution(
                    category=best, similarity=best_score, candidate=candidate
                )
            else:
                resolution = FolderResolution(
                    category=slugify(candidate), created=True, similarity=1.0, candidate=candidate
                )

        if commit:
            return resolution.model_copy(update={"category": self.commit(resolution)})
        return resolution

    def commit(self, resolution: FolderResolution) -> str:
        """
        Apply a planned resolution.

        Creates the folder before registering the category, so a failed
        mkdir leaves the category set unchanged.

        Returns:
            The registered category
        """
        if resolution.created and normalize_name(resolution.category) not in self._categories:
            if self.config.create_directories and self.documents_root is not None:
                (self.documents_root / resolution.category).mkdir(parents=True, exist_ok=True)
            category = self.register(resolution.category)
            self._created += 1
            logger.info(f"Created category '{category}'")
            return category

        category = self.register(resolution.category)
        self._reused += 1
        if normalize_name(resolution.candidate) != normalize_name(category):
            self._candidates.append(
                ConsolidationCandidate(
                    candidate=resolution.candidate,
                    existing=category,
                    similarity=round(resolution.similarity, 4),
                )
            )
            logger.info(
                f"Reusing category '{category}' for '{resolution.candidate}' "
                f"(similarity {resolution.similarity:.2f})"
            )
        return category

    def stats(self) -> FolderStats:
        """Created / reused counters and consolidation candidates."""
        return FolderStats(
            folders_created=self._created,
            folders_reused=self._reused,
            consolidation_candidates=list(self._candidates),
        )

    def take_stats(self) -> FolderStats:
        """Return the counters and start new ones."""
        stats = self.stats()
        self._created = 0
        self._reused = 0
        self._candidates = []
        return stats

    def _best_match(self, candidate: str) -> tuple[str | None, float]:
        best: str | None = None
        best_score = 0.0
        # Sorted iteration keeps ties deterministic
        for category in self.categories:
            score = similarity(candidate, category)
            if score > best_score:
                best, best_score = category, score
        return best, best_score
