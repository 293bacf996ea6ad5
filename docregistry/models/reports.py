"""
Batch run reports and engine-wide statistics.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from docregistry.models.classification import ClassificationResult
from docregistry.models.registry import RegistryEntry, RegistryStats
from docregistry.utils.file_io import utc_now


class FileError(BaseModel):
    """A file that was skipped during a batch run."""

    path: str
    error: str


class ImportReport(BaseModel):
    """Result of importing a document tree."""

    root: str
    scanned: int = Field(default=0, ge=0, description="Files matched under the root")
    imported: int = Field(default=0, ge=0, description="New entries written")
    skipped: int = Field(default=0, ge=0, description="Files already registered by path")
    errors: list[FileError] = Field(default_factory=list)
    conflicts: list[FileError] = Field(default_factory=list)
    imported_ids: list[str] = Field(default_factory=list, description="category/id of new entries")
    cancelled: bool = False
    duration_ms: float = Field(default=0.0, ge=0.0)
    started_at: datetime = Field(default_factory=utc_now)


class RouteReport(BaseModel):
    """Result of routing (and registering) a single document."""

    classification: ClassificationResult
    entry: RegistryEntry
    registered: bool = Field(default=False, description="False if the path was already registered")


class PruneReport(BaseModel):
    """Result of removing entries whose files no longer exist."""

    removed: list[str] = Field(default_factory=list, description="category/id of removed entries")


def _add_counts(a: dict[int, int], b: dict[int, int]) -> dict[int, int]:
    return {key: a.get(key, 0) + b.get(key, 0) for key in sorted(set(a) | set(b))}


class ConsolidationCandidate(BaseModel):
    """A derived category that was folded into an existing, similar one."""

    candidate: str
    existing: str
    similarity: float = Field(..., ge=0.0, le=1.0)


class RouterStats(BaseModel):
    """Tier usage counters."""

    tier_usage: dict[int, int] = Field(default_factory=lambda: {1: 0, 2: 0, 3: 0, 4: 0})
    slow_tiers: dict[int, int] = Field(default_factory=lambda: {1: 0, 2: 0, 3: 0, 4: 0})
    classifier_failures: int = 0

    def plus(self, other: "RouterStats") -> "RouterStats":
        """Counter-wise sum."""
        return RouterStats(
            tier_usage=_add_counts(self.tier_usage, other.tier_usage),
            slow_tiers=_add_counts(self.slow_tiers, other.slow_tiers),
            classifier_failures=self.classifier_failures + other.classifier_failures,
        )


class FolderStats(BaseModel):
    """Folder creation counters."""

    folders_created: int = 0
    folders_reused: int = 0
    consolidation_candidates: list[ConsolidationCandidate] = Field(default_factory=list)

    def plus(self, other: "FolderStats") -> "FolderStats":
        """Counter-wise sum; candidates are kept once per (candidate, existing) pair."""
        candidates: list[ConsolidationCandidate] = []
        seen: set[tuple[str, str]] = set()
        for item in self.consolidation_candidates + other.consolidation_candidates:
            if (item.candidate, item.existing) not in seen:
                seen.add((item.candidate, item.existing))
                candidates.append(item)
        return FolderStats(
            folders_created=self.folders_created + other.folders_created,
            folders_reused=self.folders_reused + other.folders_reused,
            consolidation_candidates=candidates,
        )


class RoutingHistory(BaseModel):
    """Router and folder counters accumulated across runs (persisted sidecar)."""

    router: RouterStats = Field(default_factory=RouterStats)
    folders: FolderStats = Field(default_factory=FolderStats)

    def plus(self, router: RouterStats, folders: FolderStats) -> "RoutingHistory":
        return RoutingHistory(router=self.router.plus(router), folders=self.folders.plus(folders))


class EngineStats(BaseModel):
    """Registry stats combined with router and folder counters."""

    registry: RegistryStats
    router: RouterStats
    folders: FolderStats
