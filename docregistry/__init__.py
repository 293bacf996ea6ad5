"""
Document Registry & Routing Engine.

Indexes project documents in a versioned registry, routes new documents
into categories through a four-tier cascade, keeps token-optimized JSON
twins and validates document health.
"""

__version__ = "1.0.0"
