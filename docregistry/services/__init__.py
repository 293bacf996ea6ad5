"""
Services for the document registry.

High-level business logic services:
- DocumentRegistry: Persisted, versioned document index
- FolderCreationManager: Category derivation and deduplication (router Tier 4)
- LifecycleManager: Import, routing, validation and maintenance
"""

from docregistry.services.document_registry import DocumentRegistry, compute_stats
from docregistry.services.folder_manager import FolderCreationManager, FolderResolution
from docregistry.services.lifecycle_manager import (
    CancellationToken,
    EngineState,
    LifecycleManager,
)

__all__ = [
    "DocumentRegistry",
    "compute_stats",
    "FolderCreationManager",
    "FolderResolution",
    "LifecycleManager",
    "EngineState",
    "CancellationToken",
]
