"""
Factory modules for creating registry components from configuration.
"""

from docregistry.core.factory.classifier_factory import ClassifierFactory

__all__ = [
    "ClassifierFactory",
]
