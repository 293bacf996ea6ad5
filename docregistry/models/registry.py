"""
Registry models: tracked documents and the versioned index that holds them.

The in-memory models carry the category and id of each entry; the persisted
form nests entries as documents[category][id] and stores only the remaining
fields (see to_record / from_record).
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docregistry.utils.file_io import utc_now


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so comparisons with file mtimes are valid."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TokenCounts(BaseModel):
    """Token counts for the Markdown source and its JSON twin."""

    md: int = Field(default=0, ge=0, description="Tokens in the Markdown source")
    json_tokens: int = Field(default=0, ge=0, alias="json", description="Tokens in the JSON twin")

    model_config = ConfigDict(populate_by_name=True)


class RegistryEntry(BaseModel):
    """
    A single tracked document.

    Keyed by (category, id). The path is relative to the documents root and
    is unique across the whole registry.
    """

    id: str = Field(..., min_length=1, description="Document ID, unique within its category")
    category: str = Field(..., min_length=1, description="Category slug (folder name)")
    path: str = Field(..., min_length=1, description="Path relative to the documents root")
    tokens: TokenCounts = Field(default_factory=TokenCounts)
    has_json: bool = Field(default=False, description="Whether a JSON twin exists")
    last_updated: datetime = Field(default_factory=utc_now)
    dependencies: list[str] = Field(
        default_factory=list, description="IDs (or category/id) this document depends on"
    )
    completeness_markers: list[str] = Field(
        default_factory=list, description="Unresolved TODO-style markers found on last check"
    )
    summary: str = Field(default="", description="Short summary taken from the twin")
    twin_path: str | None = Field(default=None, description="Where the JSON twin was written")

    @field_validator("last_updated")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def key(self) -> tuple[str, str]:
        """Registry key (category, id)."""
        return (self.category, self.id)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted per-entry record."""
        return {
            "path": self.path,
            "tokens": {"md": self.tokens.md, "json": self.tokens.json_tokens},
            "json": self.has_json,
            "dependencies": list(self.dependencies),
            "last_updated": self.last_updated.isoformat(),
            "completeness_markers": list(self.completeness_markers),
            "summary": self.summary,
            "twin_path": self.twin_path,
        }

    @classmethod
    def from_record(cls, category: str, entry_id: str, record: dict[str, Any]) -> "RegistryEntry":
        """Build an entry from its persisted record."""
        tokens = record.get("tokens") or {}
        return cls(
            id=entry_id,
            category=category,
            path=record["path"],
            tokens=TokenCounts(md=tokens.get("md", 0), json_tokens=tokens.get("json", 0)),
            has_json=bool(record.get("json", False)),
            last_updated=record["last_updated"],
            dependencies=record.get("dependencies") or [],
            completeness_markers=record.get("completeness_markers") or [],
            summary=record.get("summary") or "",
            twin_path=record.get("twin_path"),
        )


class Registry(BaseModel):
    """
    Versioned index of all tracked documents.

    Invariant: document_count equals the number of entries across all
    categories. Mutators keep it in sync through recount().
    """

    version: int = Field(default=1, ge=1)
    last_updated: datetime = Field(default_factory=utc_now)
    document_count: int = Field(default=0, ge=0)
    documents: dict[str, dict[str, RegistryEntry]] = Field(default_factory=dict)

    @field_validator("last_updated")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def recount(self) -> int:
        """Recompute document_count from the nested entries."""
        self.document_count = sum(len(entries) for entries in self.documents.values())
        return self.document_count

    def iter_entries(self):
        """Yield entries in deterministic (category, id) order."""
        for category in sorted(self.documents):
            for entry_id in sorted(self.documents[category]):
                yield self.documents[category][entry_id]

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted registry schema."""
        return {
            "version": self.version,
            "last_updated": self.last_updated.isoformat(),
            "document_count": self.document_count,
            "documents": {
                category: {
                    entry_id: entry.to_record() for entry_id, entry in sorted(entries.items())
                }
                for category, entries in sorted(self.documents.items())
            },
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Registry":
        """
        Parse the persisted registry schema.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed
        """
        documents: dict[str, dict[str, RegistryEntry]] = {}
        for category, entries in record["documents"].items():
            documents[category] = {
                entry_id: RegistryEntry.from_record(category, entry_id, entry_record)
                for entry_id, entry_record in entries.items()
            }
        registry = cls(
            version=record["version"],
            last_updated=record["last_updated"],
            documents=documents,
        )
        registry.recount()
        return registry


class CategoryStats(BaseModel):
    """Per-category aggregate."""

    documents: int = 0
    md_tokens: int = 0
    json_tokens: int = 0


class RegistryStats(BaseModel):
    """Aggregate token accounting over the registry."""

    version: int
    document_count: int
    categories: dict[str, CategoryStats] = Field(default_factory=dict)
    total_md_tokens: int = 0
    total_json_tokens: int = 0
    json_coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    token_savings: float = 0.0
