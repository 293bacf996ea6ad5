"""
Data models for the document registry.

Core models:
- RegistryEntry, Registry, TokenCounts: The persisted document index
- RegistryStats, CategoryStats: Token accounting aggregates
- ClassificationResult, RoutingTier: Router decisions
- DocumentTwin, TwinSection, DrillDownReference: JSON twins
- HealthStatus, EntryHealth, ValidationReport: Validation results
- ImportReport, EngineStats: Batch reports and engine counters
"""

from docregistry.models.classification import ClassificationResult, ClassifierVerdict, RoutingTier
from docregistry.models.health import (
    EntryHealth,
    HealthIssue,
    HealthStatus,
    Severity,
    ValidationReport,
)
from docregistry.models.registry import (
    CategoryStats,
    Registry,
    RegistryEntry,
    RegistryStats,
    TokenCounts,
)
from docregistry.models.reports import (
    ConsolidationCandidate,
    EngineStats,
    FileError,
    FolderStats,
    ImportReport,
    PruneReport,
    RouteReport,
    RouterStats,
    RoutingHistory,
)
from docregistry.models.twin import (
    ConversionResult,
    DocumentTwin,
    DrillDownReference,
    TwinSection,
    TwinTable,
)

__all__ = [
    # Registry models
    "Registry",
    "RegistryEntry",
    "TokenCounts",
    "RegistryStats",
    "CategoryStats",
    # Routing models
    "ClassificationResult",
    "ClassifierVerdict",
    "RoutingTier",
    # Twin models
    "DocumentTwin",
    "TwinSection",
    "TwinTable",
    "DrillDownReference",
    "ConversionResult",
    # Health models
    "HealthStatus",
    "HealthIssue",
    "Severity",
    "EntryHealth",
    "ValidationReport",
    # Reports
    "FileError",
    "ImportReport",
    "PruneReport",
    "RouteReport",
    "ConsolidationCandidate",
    "RouterStats",
    "RoutingHistory",
    "FolderStats",
    "EngineStats",
]
