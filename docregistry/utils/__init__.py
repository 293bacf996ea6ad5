"""Utility modules for the document registry."""

from docregistry.utils.exceptions import (
    ClassifierUnavailable,
    ConfigurationError,
    ConversionShortfall,
    DocRegistryError,
    DocumentReadError,
    MissingDependency,
    NotFoundError,
    PlacementConflict,
    RegistryCorrupt,
    RegistryError,
)
from docregistry.utils.id_generator import (
    generate_anchor,
    generate_document_id,
    normalize_name,
    slugify,
)
from docregistry.utils.logger import get_logger, setup_logging

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    # ID Generators
    "slugify",
    "normalize_name",
    "generate_document_id",
    "generate_anchor",
    # Exceptions
    "DocRegistryError",
    "RegistryError",
    "RegistryCorrupt",
    "PlacementConflict",
    "MissingDependency",
    "ClassifierUnavailable",
    "ConversionShortfall",
    "DocumentReadError",
    "NotFoundError",
    "ConfigurationError",
]
