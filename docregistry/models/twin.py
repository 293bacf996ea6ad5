"""
JSON twin models.

A twin is a token-optimized, lossy summary of a Markdown document. Every
section keeps a drill-down reference (line range) back to the source so
callers can fetch the full text on demand.
"""

from typing import Any

from pydantic import BaseModel, Field


class DrillDownReference(BaseModel):
    """Pointer from a twin (or one of its sections) back to the source lines."""

    path: str = Field(..., description="Source document path")
    line_start: int = Field(..., ge=1, description="First line (1-based, inclusive)")
    line_end: int = Field(..., ge=0, description="Last line (1-based, inclusive)")


class TwinSection(BaseModel):
    """Summary of one heading and the content below it."""

    title: str
    level: int = Field(..., ge=1, le=6)
    anchor: str
    line_start: int = Field(..., ge=1)
    line_end: int = Field(..., ge=1)
    tokens: int = Field(default=0, ge=0, description="Tokens in the section body")
    preview: str = ""
    key_points: list[str] = Field(default_factory=list)


class TwinTable(BaseModel):
    """Header row and size of a Markdown table."""

    section: str | None = None
    headers: list[str] = Field(default_factory=list)
    rows: int = Field(default=0, ge=0)
    line_start: int = Field(..., ge=1)


class DocumentTwin(BaseModel):
    """Token-optimized JSON counterpart of a Markdown document."""

    source_path: str
    title: str | None = None
    summary: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    sections: list[TwinSection] = Field(default_factory=list)
    tables: list[TwinTable] = Field(default_factory=list)
    reference: DrillDownReference

    def to_compact(self) -> dict[str, Any]:
        """Serialize without empty values; this is the form that gets token-counted."""
        return self.model_dump(mode="json", exclude_defaults=True, exclude_none=True)


class ConversionResult(BaseModel):
    """Twin plus the token accounting for both representations."""

    twin: DocumentTwin
    md_tokens: int = Field(..., ge=0)
    json_tokens: int = Field(..., ge=0)
    ratio: float = Field(..., ge=0.0, description="json_tokens / md_tokens (0 for empty source)")
    shortfall: bool = Field(default=False, description="True when the target ratio was missed")
