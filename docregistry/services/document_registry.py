"""
Document Registry - the persisted, versioned index of project documents.

Single writer, many readers:
- Mutations happen in memory and are committed with save()
- save() holds an exclusive lock on <registry>.lock for the whole
  read-modify-write cycle: it re-reads the file, replays pending mutations
  on top of anything another process committed since our load, and writes
  atomically
- Readers (stats, validation) work on deep-copied snapshots
"""

import json
import threading
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from docregistry.models.registry import CategoryStats, Registry, RegistryEntry, RegistryStats
from docregistry.models.reports import PruneReport
from docregistry.utils.exceptions import NotFoundError, PlacementConflict, RegistryCorrupt
from docregistry.utils.file_io import atomic_write_json, exclusive_lock, utc_now
from docregistry.utils.logger import get_logger

logger = get_logger(__name__)

# Pending mutation: ("upsert", entry) or ("remove", (category, id))
Mutation = tuple[str, RegistryEntry | tuple[str, str]]


def compute_stats(registry: Registry) -> RegistryStats:
    """
    Aggregate token accounting for a registry.

    json_coverage = entries with a twin / total (0 when empty)
    token_savings = 1 - sum(json) / sum(md) when both sums are positive, else 0
    """
    categories: dict[str, CategoryStats] = {}
    total_md = 0
    total_json = 0
    with_json = 0
    total = 0

    for entry in registry.iter_entries():
        stats = categories.setdefault(entry.category, CategoryStats())
        stats.documents += 1
        stats.md_tokens += entry.tokens.md
        stats.json_tokens += entry.tokens.json_tokens
        total_md += entry.tokens.md
        total_json += entry.tokens.json_tokens
        with_json += 1 if entry.has_json else 0
        total += 1

    return RegistryStats(
        version=registry.version,
        document_count=registry.document_count,
        categories=categories,
        total_md_tokens=total_md,
        total_json_tokens=total_json,
        json_coverage=with_json / total if total else 0.0,
        token_savings=1 - total_json / total_md if total_md > 0 and total_json > 0 else 0.0,
    )


class DocumentRegistry:
    """
    In-memory registry with atomic persistence.

    Entries are keyed by (category, id); every path appears at most once.
    """

    def __init__(self, path: str | Path):
        """
        Initialize registry.

        Args:
            path: Registry JSON file
        """
        self.path = Path(path)
        self.registry = Registry()

        self._paths: dict[str, tuple[str, str]] = {}
        self._dirty = False
        self._journal: list[Mutation] = []
        # (version, last_updated) of the file our state is based on; None if never persisted
        self._base: tuple[int, datetime] | None = None
        self._saved = Registry()
        self._lock = threading.Lock()

    @property
    def dirty(self) -> bool:
        """Whether there are uncommitted mutations."""
        return self._dirty

    def load(self) -> Registry:
        """
        Load the registry from disk.

        A missing file starts a fresh registry. An unreadable or malformed
        file is reported as RegistryCorrupt and also starts fresh.

        Returns:
            Loaded registry
        """
        if not self.path.exists():
            logger.info(f"No registry at {self.path}, starting a fresh one")
            self._reset(Registry(), persisted=False)
            return self.registry

        try:
            registry = self._read()
        except RegistryCorrupt as error:
            logger.bind(path=str(self.path)).warning(
                f"RegistryCorrupt: {error.message}; reinitializing"
            )
            self._reset(Registry(), persisted=False)
            return self.registry

        self._reset(registry, persisted=True)
        logger.info(
            f"Loaded registry v{registry.version} with {registry.document_count} documents"
        )
        return self.registry

    def save(self) -> bool:
        """
        Commit pending mutations to disk.

        Bumps version (for an already persisted registry) and last_updated.
        Does nothing when there are no pending mutations. If another process
        saved since our load, our pending mutations are replayed on top of
        its registry and the version continues from the file's.

        Returns:
            True if the file was written

        Raises:
            PlacementConflict: If a pending mutation clashes with an entry
                another process committed meanwhile. Everything else is still
                written; the clashing mutation is discarded.
        """
        if not self._dirty:
            return False

        with exclusive_lock(self.path):
            current = self._read_current()
            with self._lock:
                dropped: list[str] = []
                if current is not None and self._marker(current) != self._base:
                    dropped = self._rebase(current)
                    self.registry.version = current.version + 1
                elif self._base is not None:
                    self.registry.version += 1
                self.registry.last_updated = utc_now()
                self.registry.recount()
                record = self.registry.to_record()
                atomic_write_json(self.path, record)

                self._base = self._marker(self.registry)
                self._saved = self.registry.model_copy(deep=True)
                self._journal = []
                self._dirty = False

        logger.debug(f"Saved registry v{record['version']} to {self.path}")
        if dropped:
            raise PlacementConflict(
                f"Concurrent update kept the other writer's entries: {'; '.join(dropped)}",
                context={"path": str(self.path), "dropped": dropped},
            )
        return True

    def rollback(self) -> None:
        """Discard pending mutations, restoring the last loaded or saved state."""
        with self._lock:
            self.registry = self._saved.model_copy(deep=True)
            self._paths = {entry.path: entry.key for entry in self.registry.iter_entries()}
            self._journal = []
            self._dirty = False

    def upsert(self, entry: RegistryEntry) -> bool:
        """
        Insert or update an entry.

        Args:
            entry: Entry to store

        Returns:
            True if the registry changed, False for an identical re-upsert

        Raises:
            PlacementConflict: If the key holds a different path, or the
                path is held by a different key
        """
        with self._lock:
            changed = _apply_upsert(self.registry, self._paths, entry)
            if changed:
                self._journal.append(("upsert", entry.model_copy(deep=True)))
                self._dirty = True
            return changed

    def get(self, category: str, entry_id: str) -> RegistryEntry:
        """
        Get an entry by key.

        Raises:
            NotFoundError: If the entry does not exist
        """
        entry = self.registry.documents.get(category, {}).get(entry_id)
        if entry is None:
            raise NotFoundError(
                f"Document {category}/{entry_id} not found",
                context={"category": category, "id": entry_id},
            )
        return entry.model_copy(deep=True)

    def remove(self, category: str, entry_id: str) -> RegistryEntry:
        """
        Remove an entry by key.

        Raises:
            NotFoundError: If the entry does not exist
        """
        with self._lock:
            entry = _apply_remove(self.registry, self._paths, category, entry_id)
            if entry is None:
                raise NotFoundError(
                    f"Document {category}/{entry_id} not found",
                    context={"category": category, "id": entry_id},
                )
            self._journal.append(("remove", (category, entry_id)))
            self._dirty = True
            return entry

    def find_by_path(self, path: str) -> RegistryEntry | None:
        """Entry registered for a relative path, if any."""
        key = self._paths.get(path)
        if key is None:
            return None
        return self.get(*key)

    def find(self, term: str) -> list[RegistryEntry]:
        """
        Search entries by id, category, path and summary.

        Case-insensitive substring match. Results are ordered id matches
        first, then by (category, id).
        """
        needle = term.strip().lower()
        if not needle:
            return []

        by_id: list[RegistryEntry] = []
        by_text: list[RegistryEntry] = []
        for entry in self.entries():
            if needle in entry.id or needle in f"{entry.category}/{entry.id}":
                by_id.append(entry)
            elif any(needle in text.lower() for text in (entry.path, entry.summary)):
                by_text.append(entry)
        return by_id + by_text

    def snapshot(self) -> Registry:
        """Deep copy of the current registry, safe to read while writes continue."""
        with self._lock:
            return self.registry.model_copy(deep=True)

    def entries(self) -> list[RegistryEntry]:
        """All entries in (category, id) order, from a snapshot."""
        return list(self.snapshot().iter_entries())

    def categories(self) -> list[str]:
        """Registered categories, sorted."""
        with self._lock:
            return sorted(self.registry.documents)

    def stats(self) -> RegistryStats:
        """Aggregate token accounting, computed from a snapshot."""
        return compute_stats(self.snapshot())

    def prune(self, root: str | Path) -> PruneReport:
        """
        Remove entries whose files no longer exist under root.

        Args:
            root: Documents root that entry paths are relative to

        Returns:
            PruneReport listing removed category/id keys
        """
        root = Path(root)
        report = PruneReport()
        for entry in self.entries():
            if not (root / entry.path).exists():
                self.remove(entry.category, entry.id)
                report.removed.append(f"{entry.category}/{entry.id}")
        if report.removed:
            logger.info(f"Pruned {len(report.removed)} entries with missing files")
        return report

    def canonical_json(self) -> str:
        """Canonical serialization: identical to the bytes save() writes."""
        with self._lock:
            record = self.registry.to_record()
        return json.dumps(record, indent=2, sort_keys=True, ensure_ascii=False) + "\n"

    def _reset(self, registry: Registry, persisted: bool) -> None:
        with self._lock:
            self.registry = registry
            self._paths = {entry.path: entry.key for entry in registry.iter_entries()}
            self._journal = []
            self._dirty = False
            self._base = self._marker(registry) if persisted else None
            self._saved = registry.model_copy(deep=True)

    def _read(self) -> Registry:
        """
        Parse the registry file.

        Raises:
            RegistryCorrupt: If the file is unreadable or malformed
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                record = json.load(f)
            registry = Registry.from_record(record)
            paths = [entry.path for entry in registry.iter_entries()]
            if len(set(paths)) != len(paths):
                raise ValueError("duplicate document paths")
        except (
            OSError,
            json.JSONDecodeError,
            PydanticValidationError,
            KeyError,
            TypeError,
            ValueError,
            AttributeError,
        ) as e:
            raise RegistryCorrupt(
                f"Registry file is corrupt: {e}", context={"path": str(self.path)}
            ) from e
        return registry

    def _read_current(self) -> Registry | None:
        """On-disk registry at save time; None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            return self._read()
        except RegistryCorrupt as error:
            logger.bind(path=str(self.path)).warning(
                f"RegistryCorrupt: {error.message}; overwriting"
            )
            return None

    @staticmethod
    def _marker(registry: Registry) -> tuple[int, datetime]:
        return registry.version, registry.last_updated

    def _rebase(self, current: Registry) -> list[str]:
        """Replay pending mutations onto another writer's registry."""
        paths = {entry.path: entry.key for entry in current.iter_entries()}
        dropped: list[str] = []
        for kind, payload in self._journal:
            if kind == "upsert":
                try:
                    _apply_upsert(current, paths, payload)
                except PlacementConflict as e:
                    dropped.append(e.message)
            else:
                _apply_remove(current, paths, *payload)

        logger.bind(path=str(self.path)).info(
            f"Registry changed on disk (v{current.version}); "
            f"replayed {len(self._journal)} pending mutations"
        )
        self.registry = current
        self._paths = paths
        return dropped


def _apply_upsert(
    registry: Registry, paths: dict[str, tuple[str, str]], entry: RegistryEntry
) -> bool:
    existing = registry.documents.get(entry.category, {}).get(entry.id)
    if existing is not None and existing.path != entry.path:
        raise PlacementConflict(
            f"{entry.category}/{entry.id} already registered for {existing.path}",
            context={"key": f"{entry.category}/{entry.id}", "path": entry.path},
        )

    holder = paths.get(entry.path)
    if holder is not None and holder != entry.key:
        raise PlacementConflict(
            f"{entry.path} already registered as {holder[0]}/{holder[1]}",
            context={"key": f"{entry.category}/{entry.id}", "path": entry.path},
        )

    if existing is not None and existing == entry:
        return False

    registry.documents.setdefault(entry.category, {})[entry.id] = entry.model_copy(deep=True)
    paths[entry.path] = entry.key
    registry.recount()
    return True


def _apply_remove(
    registry: Registry, paths: dict[str, tuple[str, str]], category: str, entry_id: str
) -> RegistryEntry | None:
    entries = registry.documents.get(category, {})
    entry = entries.pop(entry_id, None)
    if entry is None:
        return None
    if not entries:
        del registry.documents[category]
    paths.pop(entry.path, None)
    registry.recount()
    return entry
