"""
Routing decision models.
"""

from enum import IntEnum

from pydantic import BaseModel, Field


class RoutingTier(IntEnum):
    """Stages of the cascading classifier, cheapest first."""

    KNOWN_DOCUMENT = 1  # Exact filename/title lookup
    PATTERN = 2  # Ordered pattern / keyword rules
    CLASSIFIER = 3  # External classifier
    FOLDER_CREATION = 4  # Derived or reused category


class ClassificationResult(BaseModel):
    """
    Outcome of routing one document.

    The tier tag tells callers how the category was decided, so no type
    inspection of the document is needed downstream.
    """

    tier: RoutingTier = Field(..., description="Tier that produced the decision")
    category: str = Field(..., min_length=1, description="Target category slug")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    latency_ms: float = Field(default=0.0, ge=0.0, description="Time spent in the router")
    matched_by: str = Field(default="", description="Rule, table key or provider that matched")

    def is_confident(self) -> bool:
        """True for tiers 1-3; Tier 4 is the no-confident-match fallback."""
        return self.tier != RoutingTier.FOLDER_CREATION


class ClassifierVerdict(BaseModel):
    """Structured answer requested from an external classifier."""

    category: str = Field(..., description="Best matching category slug")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence between 0 and 1")
