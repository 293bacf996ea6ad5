"""
Tiered document routing.

Tier 1 (known documents) and Tier 2 (pattern rules) are static tables in
rules.py; TieredRouter cascades them into the external classifier and the
folder creation manager.
"""

from docregistry.core.router.rules import (
    DEFAULT_KNOWN_DOCUMENTS,
    DEFAULT_RULES,
    RoutingRule,
    build_known_documents,
    build_rules,
    known_document_key,
)
from docregistry.core.router.tiered_router import TieredRouter

__all__ = [
    "TieredRouter",
    "RoutingRule",
    "DEFAULT_KNOWN_DOCUMENTS",
    "DEFAULT_RULES",
    "build_known_documents",
    "build_rules",
    "known_document_key",
]
