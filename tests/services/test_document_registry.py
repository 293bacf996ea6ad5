"""
Tests for DocumentRegistry.

Tests cover:
1. Load (missing, valid, corrupt)
2. Upsert conflicts and idempotence
3. Save, versioning and canonical serialization
4. Stats, prune and removal
"""

import json
from datetime import datetime, timezone

import pytest

from docregistry.models import RegistryEntry, TokenCounts
from docregistry.services import DocumentRegistry, compute_stats
from docregistry.utils.exceptions import NotFoundError, PlacementConflict


def _entry(category="requirements", entry_id="prd", path="requirements/prd.md", **overrides):
    data = {
        "id": entry_id,
        "category": category,
        "path": path,
        "tokens": TokenCounts(md=400, json_tokens=40),
        "has_json": True,
        "last_updated": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return RegistryEntry(**data)


@pytest.fixture
def registry_path(tmp_path):
    """Registry file location."""
    return tmp_path / "machine-data" / "registry.json"


@pytest.fixture
def registry(registry_path):
    """Loaded, empty registry."""
    store = DocumentRegistry(registry_path)
    store.load()
    return store


@pytest.mark.unit
class TestLoad:
    """Test loading."""

    def test_missing_file_starts_fresh(self, registry):
        """Test a missing file gives an empty, clean registry."""
        assert registry.registry.document_count == 0
        assert registry.registry.version == 1
        assert not registry.dirty

    def test_round_trip(self, registry, registry_path):
        """Test saved entries load back."""
        registry.upsert(_entry())
        registry.save()

        reloaded = DocumentRegistry(registry_path)
        reloaded.load()

        assert reloaded.get("requirements", "prd") == _entry()
        assert reloaded.find_by_path("requirements/prd.md").id == "prd"

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[]",
            '{"version": 1}',
            '{"version": 0, "last_updated": "2024-01-01T00:00:00+00:00", "documents": {}}',
        ],
    )
    def test_corrupt_file_starts_fresh(self, registry_path, content, log_records):
        """Test corrupt files are reported and replaced by an empty registry."""
        registry_path.parent.mkdir(parents=True)
        registry_path.write_text(content)

        store = DocumentRegistry(registry_path)
        registry = store.load()

        assert registry.document_count == 0
        assert registry.documents == {}
        warnings = [r for r in log_records if r["level"].name == "WARNING"]
        assert len(warnings) == 1
        assert warnings[0]["message"].startswith("RegistryCorrupt:")
        assert warnings[0]["extra"]["path"] == str(registry_path)

    def test_duplicate_paths_are_corrupt(self, registry_path):
        """Test two entries sharing a path make the file corrupt."""
        record = {
            "version": 3,
            "last_updated": "2024-01-01T00:00:00+00:00",
            "documents": {
                "a": {"x": _entry("a", "x", "same.md").to_record()},
                "b": {"y": _entry("b", "y", "same.md").to_record()},
            },
        }
        registry_path.parent.mkdir(parents=True)
        registry_path.write_text(json.dumps(record))

        store = DocumentRegistry(registry_path)
        assert store.load().document_count == 0


@pytest.mark.unit
class TestUpsert:
    """Test upserts."""

    def test_insert(self, registry):
        """Test a new entry is stored and marks the registry dirty."""
        assert registry.upsert(_entry()) is True
        assert registry.dirty
        assert registry.registry.document_count == 1

    def test_identical_upsert_is_noop(self, registry):
        """Test re-upserting an equal entry changes nothing."""
        registry.upsert(_entry())
        registry.save()

        assert registry.upsert(_entry()) is False
        assert not registry.dirty

    def test_update(self, registry):
        """Test changed fields replace the stored entry."""
        registry.upsert(_entry())
        assert registry.upsert(_entry(summary="New summary.")) is True
        assert registry.get("requirements", "prd").summary == "New summary."

    def test_key_with_different_path(self, registry):
        """Test a key cannot move to a different path."""
        registry.upsert(_entry())
        with pytest.raises(PlacementConflict):
            registry.upsert(_entry(path="elsewhere/prd.md"))

    def test_path_under_second_key(self, registry):
        """Test a path cannot be registered twice."""
        registry.upsert(_entry())
        with pytest.raises(PlacementConflict) as exc_info:
            registry.upsert(_entry(category="planning"))
        assert exc_info.value.context["key"] == "planning/prd"

    def test_stored_copy_is_isolated(self, registry):
        """Test later edits to the caller's object do not leak in."""
        entry = _entry()
        registry.upsert(entry)
        entry.dependencies.append("roadmap")
        assert registry.get("requirements", "prd").dependencies == []


@pytest.mark.unit
class TestSave:
    """Test persistence."""

    def test_first_save_keeps_version(self, registry, registry_path):
        """Test a brand-new registry is written as version 1."""
        registry.upsert(_entry())
        assert registry.save() is True

        data = json.loads(registry_path.read_text())
        assert data["version"] == 1
        assert data["document_count"] == 1
        assert data["documents"]["requirements"]["prd"]["path"] == "requirements/prd.md"

    def test_version_bumps_on_later_saves(self, registry, registry_path):
        """Test each committed change bumps the version."""
        registry.upsert(_entry())
        registry.save()
        registry.upsert(_entry("planning", "roadmap", "planning/roadmap.md"))
        registry.save()

        assert json.loads(registry_path.read_text())["version"] == 2

    def test_clean_save_is_noop(self, registry, registry_path):
        """Test nothing is written without pending changes."""
        assert registry.save() is False
        assert not registry_path.exists()

    def test_canonical_matches_file(self, registry, registry_path):
        """Test canonical_json is byte-identical to the saved file."""
        registry.upsert(_entry())
        registry.upsert(_entry("planning", "roadmap", "planning/roadmap.md"))
        registry.save()

        assert registry_path.read_text(encoding="utf-8") == registry.canonical_json()

    def test_lock_file_created(self, registry, registry_path):
        """Test saves take the sidecar lock."""
        registry.upsert(_entry())
        registry.save()
        assert registry_path.with_name("registry.json.lock").exists()


@pytest.mark.unit
class TestConcurrentWriters:
    """Test two registry instances writing the same file."""

    def test_second_writer_keeps_first_writers_entries(self, registry_path):
        """Test a stale writer replays its changes on top of the file."""
        first = DocumentRegistry(registry_path)
        second = DocumentRegistry(registry_path)
        first.load()
        second.load()

        first.upsert(_entry("planning", "roadmap", "planning/roadmap.md"))
        first.save()
        second.upsert(_entry())
        second.save()

        reloaded = DocumentRegistry(registry_path)
        reloaded.load()
        assert [e.key for e in reloaded.entries()] == [("planning", "roadmap"), ("requirements", "prd")]
        assert reloaded.registry.version == 2
        assert second.registry.version == 2

    def test_versions_continue_from_file(self, registry_path):
        """Test a rebased save bumps the version found on disk."""
        first = DocumentRegistry(registry_path)
        first.load()
        first.upsert(_entry())
        first.save()

        second = DocumentRegistry(registry_path)
        second.load()
        first.upsert(_entry("planning", "roadmap", "planning/roadmap.md"))
        first.save()
        first.upsert(_entry("ops", "runbook", "ops/runbook.md"))
        first.save()
        second.remove("requirements", "prd")
        second.save()

        data = json.loads(registry_path.read_text())
        assert data["version"] == 4
        assert sorted(data["documents"]) == ["ops", "planning"]

    def test_conflicting_path_keeps_other_writer(self, registry_path):
        """Test a clashing pending upsert is discarded and reported."""
        first = DocumentRegistry(registry_path)
        second = DocumentRegistry(registry_path)
        first.load()
        second.load()

        first.upsert(_entry())
        first.save()
        second.upsert(_entry(category="planning"))
        second.upsert(_entry("planning", "roadmap", "planning/roadmap.md"))

        with pytest.raises(PlacementConflict) as exc_info:
            second.save()

        assert "requirements/prd.md" in exc_info.value.message
        data = json.loads(registry_path.read_text())
        assert data["documents"]["requirements"]["prd"]["path"] == "requirements/prd.md"
        assert list(data["documents"]["planning"]) == ["roadmap"]
        assert not second.dirty

    def test_rollback_discards_pending(self, registry):
        """Test rollback restores the last saved state."""
        registry.upsert(_entry())
        registry.save()
        registry.upsert(_entry("planning", "roadmap", "planning/roadmap.md"))

        registry.rollback()

        assert not registry.dirty
        assert [e.id for e in registry.entries()] == ["prd"]
        assert registry.find_by_path("planning/roadmap.md") is None


@pytest.mark.unit
class TestFind:
    """Test search by id, path and summary."""

    def test_id_matches_first(self, registry):
        """Test id hits come before summary hits."""
        registry.upsert(_entry("planning", "roadmap", "planning/roadmap.md", summary="Pricing work."))
        registry.upsert(_entry("business-strategy", "pricing", "business-strategy/pricing.md"))

        results = registry.find("Pricing")

        assert [e.id for e in results] == ["pricing", "roadmap"]

    def test_path_match(self, registry):
        """Test path substrings match."""
        registry.upsert(_entry())
        assert [e.id for e in registry.find("requirements/prd")] == ["prd"]

    def test_blank_term(self, registry):
        """Test an empty term finds nothing."""
        registry.upsert(_entry())
        assert registry.find("  ") == []


@pytest.mark.unit
class TestStats:
    """Test token accounting."""

    def test_empty(self, registry):
        """Test an empty registry has zero coverage and savings."""
        stats = registry.stats()
        assert stats.json_coverage == 0.0
        assert stats.token_savings == 0.0

    def test_formulas(self, registry):
        """Test coverage and savings follow the totals."""
        registry.upsert(_entry())
        registry.upsert(
            _entry(
                "planning",
                "roadmap",
                "planning/roadmap.md",
                tokens=TokenCounts(md=600, json_tokens=60),
                has_json=False,
            )
        )

        stats = registry.stats()

        assert stats.total_md_tokens == 1000
        assert stats.total_json_tokens == 100
        assert stats.json_coverage == 0.5
        assert stats.token_savings == pytest.approx(0.9)
        assert stats.categories["planning"].md_tokens == 600

    def test_no_savings_without_twins(self, registry):
        """Test savings are 0 when no JSON tokens exist."""
        registry.upsert(_entry(tokens=TokenCounts(md=100, json_tokens=0), has_json=False))
        assert compute_stats(registry.snapshot()).token_savings == 0.0


@pytest.mark.unit
class TestRemoveAndPrune:
    """Test removal."""

    def test_remove_drops_empty_category(self, registry):
        """Test removing the last entry removes its category."""
        registry.upsert(_entry())
        registry.remove("requirements", "prd")

        assert registry.categories() == []
        assert registry.find_by_path("requirements/prd.md") is None

    def test_remove_missing(self, registry):
        """Test removing an unknown key raises NotFoundError."""
        with pytest.raises(NotFoundError):
            registry.remove("requirements", "nope")

    def test_get_missing(self, registry):
        """Test getting an unknown key raises NotFoundError."""
        with pytest.raises(NotFoundError):
            registry.get("requirements", "nope")

    def test_prune(self, registry, tmp_path):
        """Test entries whose files vanished are removed."""
        root = tmp_path / "docs"
        (root / "requirements").mkdir(parents=True)
        (root / "requirements" / "prd.md").write_text("# PRD\n")
        registry.upsert(_entry())
        registry.upsert(_entry("planning", "roadmap", "planning/roadmap.md"))

        report = registry.prune(root)

        assert report.removed == ["planning/roadmap"]
        assert [e.id for e in registry.entries()] == ["prd"]
