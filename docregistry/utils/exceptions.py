"""
Custom exception hierarchy for the document registry.

Provides structured error types for routing, conversion and registry
persistence. All exceptions inherit from DocRegistryError for easy catching.
"""


class DocRegistryError(Exception):
    """
    Base exception for all document registry errors.
    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize document registry error.
        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class RegistryError(DocRegistryError):
    """
    Base exception for registry operations.
    Used for errors related to loading, mutating or persisting the registry.
    """

    pass


class RegistryCorrupt(RegistryError):
    """
    Registry file could not be parsed.
    Recovered by reinitializing an empty registry; never fatal.
    """

    pass


class PlacementConflict(RegistryError):
    """
    An entry key or path is already held by a different document.
    Surfaced to the operator, never resolved automatically.
    """

    pass


class MissingDependency(DocRegistryError):
    """
    A registry entry references a dependency id that is not registered.
    Non-fatal to a validation run, but yields a non-zero process exit.
    """

    pass


class ClassifierUnavailable(DocRegistryError):
    """
    External classifier failed or timed out.
    The router treats this as "no confident match" and falls through.
    """

    pass


class ConversionShortfall(DocRegistryError):
    """
    JSON twin missed its compression target.
    Warning only; the best-effort twin is still returned.
    """

    pass


class DocumentReadError(DocRegistryError):
    """Raised when a document cannot be read or decoded."""

    pass


class NotFoundError(DocRegistryError):
    """
    Resource not found errors.
    Raised when a requested registry entry doesn't exist.
    """

    pass


class ConfigurationError(DocRegistryError):
    """
    Configuration errors.
    Raised when configuration is invalid or missing required values.
    """

    pass
