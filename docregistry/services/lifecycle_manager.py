"""
Lifecycle Manager - import, validation and maintenance of registered documents.

Owns the explicit engine state (registry, router, converter, folder manager).
Batch runs follow one pattern:
1. Per-file work (read, convert, check) runs in a bounded thread pool
2. A single writer applies results to the registry in sorted file order
3. Each successful mutation is committed before the next file

One bad file never aborts a batch; it is recorded in the report.
"""

import asyncio
import fnmatch
import inspect
import os
import re
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from docregistry.config import Config
from docregistry.core.classifier.base import DocumentClassifier
from docregistry.core.converter.markdown import MarkdownConverter, parse_markdown
from docregistry.core.factory.classifier_factory import ClassifierFactory
from docregistry.core.router.tiered_router import TieredRouter
from docregistry.core.tokenizer.tokenizer import Tokenizer
from docregistry.models.classification import ClassificationResult, RoutingTier
from docregistry.models.health import (
    EntryHealth,
    HealthIssue,
    HealthStatus,
    Severity,
    ValidationReport,
)
from docregistry.models.registry import Registry, RegistryEntry, TokenCounts
from docregistry.models.reports import (
    EngineStats,
    FileError,
    FolderStats,
    ImportReport,
    PruneReport,
    RouteReport,
    RouterStats,
    RoutingHistory,
)
from docregistry.models.twin import ConversionResult
from docregistry.services.document_registry import DocumentRegistry
from docregistry.services.folder_manager import FolderCreationManager
from docregistry.services.routing_history import RoutingHistoryStore, default_history_path
from docregistry.utils.exceptions import DocumentReadError, MissingDependency, PlacementConflict
from docregistry.utils.file_io import file_mtime, read_text, utc_now
from docregistry.utils.id_generator import generate_document_id, slugify
from docregistry.utils.logger import get_logger

logger = get_logger(__name__)

DEPENDENCY_KEYS = ("dependencies", "depends_on", "depends-on", "depends on", "requires")


class CancellationToken:
    """Cooperative cancellation flag, checked before each file."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class EngineState:
    """Everything a registry instance needs, passed explicitly."""

    config: Config
    registry: DocumentRegistry
    tokenizer: Tokenizer
    converter: MarkdownConverter
    folder_manager: FolderCreationManager
    router: TieredRouter
    classifier: DocumentClassifier | None = None
    history: RoutingHistoryStore | None = None


@dataclass
class _Prepared:
    """Read + converted document, ready for the writer."""

    path: Path
    rel_path: str
    text: str
    conversion: ConversionResult


def parse_dependencies(metadata: dict[str, Any]) -> list[str]:
    """
    Extract dependency ids from twin metadata.

    Accepts a list or a comma-separated string under any of DEPENDENCY_KEYS.
    Each id is slugified; "category/id" references keep their slash.
    """
    deps: list[str] = []
    for key, value in metadata.items():
        if str(key).strip().lower() not in DEPENDENCY_KEYS:
            continue
        items = value if isinstance(value, list) else str(value).split(",")
        for item in items:
            parts = [slugify(p) for p in str(item).split("/")]
            dep = "/".join(p for p in parts if p)
            if dep and dep not in deps:
                deps.append(dep)
    return deps


class LifecycleManager:
    """
    Import, routing, validation and maintenance over one registry.

    Not a singleton: each instance owns its EngineState.
    """

    def __init__(self, state: EngineState):
        """
        Initialize lifecycle manager.

        Args:
            state: Engine state (registry must already be loaded)
        """
        self.state = state
        self.config = state.config
        self.registry = state.registry
        self.router = state.router
        self.converter = state.converter
        self.folder_manager = state.folder_manager
        self.history = state.history
        self._history = state.history.load() if state.history is not None else RoutingHistory()

        self.documents_root = Path(self.config.registry.documents_root)
        self.twin_dir = Path(self.config.converter.twin_dir)
        self.max_workers = self.config.lifecycle.max_workers or os.cpu_count() or 1

        markers = "|".join(re.escape(m) for m in self.config.validation.incomplete_markers)
        self._marker_re = re.compile(rf"\b(?:{markers})\b") if markers else None

        # Single writer: every registry mutation happens under this lock
        self._writer = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Config | None = None) -> "LifecycleManager":
        """
        Build and load a complete engine from configuration.

        Args:
            config: Configuration (defaults if omitted)

        Returns:
            LifecycleManager with a loaded registry
        """
        config = config or Config()

        tokenizer = Tokenizer(config.tokenizer)
        converter = MarkdownConverter(tokenizer, config.converter)
        registry = DocumentRegistry(config.registry.path)
        registry.load()

        folder_manager = FolderCreationManager(
            config.folders,
            documents_root=config.registry.documents_root,
            categories=registry.categories(),
        )
        router = TieredRouter(
            folder_manager, config=config.router, classifier_config=config.classifier
        )
        for category in sorted(router.known_categories):
            folder_manager.register(category)

        classifier = ClassifierFactory.create(config.classifier, folder_manager.categories)
        router.classifier = classifier
        history = RoutingHistoryStore(
            config.registry.history_path or default_history_path(config.registry.path)
        )

        logger.info(
            f"Engine ready: registry={config.registry.path}, tokenizer={tokenizer.name}, "
            f"classifier={config.classifier.provider}"
        )
        return cls(
            EngineState(
                config=config,
                registry=registry,
                tokenizer=tokenizer,
                converter=converter,
                folder_manager=folder_manager,
                router=router,
                classifier=classifier,
                history=history,
            )
        )

    async def close(self) -> None:
        """Persist routing counters and release the external classifier, if any."""
        self.flush_history()
        if self.state.classifier is not None:
            await self.state.classifier.close()

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def import_documents(
        self, root: str | Path | None = None, cancel_token: CancellationToken | None = None
    ) -> ImportReport:
        """
        Register every unregistered document under root.

        Args:
            root: Directory to scan (defaults to the documents root)
            cancel_token: Optional cooperative cancellation

        Returns:
            ImportReport; re-running on an unchanged tree writes nothing
        """
        root = Path(root) if root is not None else self.documents_root
        token = cancel_token or CancellationToken()
        start = time.perf_counter()
        report = ImportReport(root=str(root))

        files = self.scan(root)
        report.scanned = len(files)

        async with self._writer:
            pending: list[tuple[Path, str]] = []
            for path in files:
                rel_path = self.relative_path(path)
                if self.registry.find_by_path(rel_path) is not None:
                    report.skipped += 1
                else:
                    pending.append((path, rel_path))

            semaphore = asyncio.Semaphore(self.max_workers)
            tasks = [
                asyncio.create_task(self._bounded(semaphore, token, self._prepare, path, rel_path))
                for path, rel_path in pending
            ]
            try:
                for (_, rel_path), task in zip(pending, tasks):
                    if token.cancelled:
                        report.cancelled = True
                        break
                    try:
                        prepared = await task
                    except DocumentReadError as e:
                        logger.warning(f"Skipping unreadable file {rel_path}: {e.message}")
                        report.errors.append(FileError(path=rel_path, error=e.message))
                        continue
                    except Exception as e:
                        logger.error(f"Failed to convert {rel_path}: {e}")
                        report.errors.append(
                            FileError(path=rel_path, error=f"{type(e).__name__}: {e}")
                        )
                        continue
                    if prepared is None:
                        report.cancelled = True
                        break
                    try:
                        await self._commit_import(prepared, root, report)
                    except PlacementConflict as e:
                        # Raised by save() after a concurrent writer; the rest was committed
                        logger.warning(f"PlacementConflict: {e.message}")
                        report.conflicts.append(FileError(path=rel_path, error=e.message))
                    except Exception as e:
                        self.registry.rollback()
                        logger.error(f"Failed to register {rel_path}: {e}")
                        report.errors.append(
                            FileError(path=rel_path, error=f"{type(e).__name__}: {e}")
                        )
            finally:
                await self._drain(tasks)

        self.flush_history()

        report.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Import of {root}: scanned={report.scanned} imported={report.imported} "
            f"skipped={report.skipped} errors={len(report.errors)} "
            f"conflicts={len(report.conflicts)} cancelled={report.cancelled}"
        )
        return report

    async def _commit_import(self, prepared: _Prepared, root: Path, report: ImportReport) -> None:
        """Serialized writer step for one imported document."""
        category, entry_id = await self._place(prepared, root)
        entry = self._build_entry(category, entry_id, prepared)
        try:
            changed = self.registry.upsert(entry)
        except PlacementConflict as e:
            logger.warning(f"PlacementConflict: {e.message}")
            report.conflicts.append(FileError(path=prepared.rel_path, error=e.message))
            return

        if changed:
            entry = await self._write_twin(entry, prepared, report)
            self.registry.save()
            report.imported += 1
            report.imported_ids.append(f"{category}/{entry_id}")

    async def _place(self, prepared: _Prepared, root: Path) -> tuple[str, str]:
        """Infer (category, id) from the category folder or the router."""
        try:
            rel_to_root = prepared.path.relative_to(root)
        except ValueError:
            rel_to_root = Path(prepared.path.name)

        if len(rel_to_root.parts) > 1:
            folder = slugify(rel_to_root.parts[0])
            if folder and folder in self._known_categories():
                entry_id = generate_document_id(Path(*rel_to_root.parts[1:]).as_posix())
                return self.folder_manager.register(folder), entry_id

        result = await self.router.route(prepared.text, prepared.rel_path)
        category = self._commit_category(result, prepared.text, prepared.rel_path)
        return category, generate_document_id(rel_to_root.as_posix())

    def _commit_category(
        self, result: ClassificationResult, content: str, rel_path: str
    ) -> str:
        """
        Make the routed category real. Writer only.

        Routing never touches the category set; a Tier 4 folder is created
        here, once an entry is actually being stored.
        """
        if result.tier == RoutingTier.FOLDER_CREATION:
            return self.folder_manager.resolve(content, rel_path)
        return self.folder_manager.register(result.category)

    def _known_categories(self) -> set[str]:
        return (
            set(self.registry.categories())
            | self.router.known_categories
            | set(self.folder_manager.categories)
        )

    def _build_entry(self, category: str, entry_id: str, prepared: _Prepared) -> RegistryEntry:
        twin = prepared.conversion.twin
        write_twins = self.config.converter.write_twins
        return RegistryEntry(
            id=entry_id,
            category=category,
            path=prepared.rel_path,
            tokens=TokenCounts(
                md=prepared.conversion.md_tokens, json_tokens=prepared.conversion.json_tokens
            ),
            has_json=write_twins,
            last_updated=utc_now(),
            dependencies=parse_dependencies(twin.metadata),
            completeness_markers=self.find_markers(prepared.text),
            summary=twin.summary,
            twin_path=(self.twin_dir / category / f"{entry_id}.json").as_posix()
            if write_twins
            else None,
        )

    async def _write_twin(
        self, entry: RegistryEntry, prepared: _Prepared, report: ImportReport | None = None
    ) -> RegistryEntry:
        """Persist the twin; on failure the entry is downgraded to has_json=False."""
        if not entry.twin_path:
            return entry
        try:
            await asyncio.to_thread(
                self.converter.write_twin, prepared.conversion.twin, Path(entry.twin_path)
            )
        except OSError as e:
            logger.error(f"Failed to write twin for {entry.path}: {e}")
            if report is not None:
                report.errors.append(FileError(path=entry.path, error=f"twin write failed: {e}"))
            entry = entry.model_copy(update={"has_json": False, "twin_path": None})
            self.registry.upsert(entry)
        return entry

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def classify(self, content: str, path_hint: str | None = None) -> ClassificationResult:
        """Route content without registering anything or creating folders."""
        return await self.router.route(content, path_hint)

    async def route_document(self, path: str | Path, content: str | None = None) -> RouteReport:
        """
        Route one file and register it.

        Args:
            path: File path (absolute, or relative to the working directory)
            content: Optional content; read from disk when omitted

        Returns:
            RouteReport; an already registered path is returned unchanged

        Raises:
            DocumentReadError: If the file cannot be read
            PlacementConflict: If the derived key is held by another path
        """
        path = Path(path)
        rel_path = self.relative_path(path)

        existing = self.registry.find_by_path(rel_path)
        if existing is not None:
            classification = ClassificationResult(
                tier=RoutingTier.KNOWN_DOCUMENT,
                category=existing.category,
                matched_by="registry",
            )
            return RouteReport(classification=classification, entry=existing, registered=False)

        if not path.is_file():
            raise DocumentReadError(f"File not found: {path}", context={"path": str(path)})
        if content is None:
            content = await asyncio.to_thread(read_text, path)
        conversion = await asyncio.to_thread(self.converter.to_json, content, rel_path)
        prepared = _Prepared(path=path, rel_path=rel_path, text=content, conversion=conversion)

        classification = await self.router.route(content, rel_path)
        async with self._writer:
            try:
                category = self._commit_category(classification, content, rel_path)
                entry = self._build_entry(category, generate_document_id(path.name), prepared)
                self.registry.upsert(entry)
                entry = await self._write_twin(entry, prepared)
                self.registry.save()
            except Exception:
                self.registry.rollback()
                raise
        self.flush_history()
        logger.info(f"Registered {rel_path} as {category}/{entry.id} (tier {int(classification.tier)})")
        return RouteReport(classification=classification, entry=entry, registered=True)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self, cancel_token: CancellationToken | None = None) -> ValidationReport:
        """
        Check the health of every registered document.

        Checks: file exists, freshness, completeness, placement and
        dependencies. Found completeness markers are committed back to the
        registry at the end of an uncancelled run.

        Returns:
            ValidationReport with per-entry status (most severe issue wins)
        """
        token = cancel_token or CancellationToken()
        snapshot = self.registry.snapshot()
        entries = list(snapshot.iter_entries())
        report = ValidationReport()

        semaphore = asyncio.Semaphore(self.max_workers)
        tasks = [
            asyncio.create_task(self._bounded(semaphore, token, self._check_entry, entry, snapshot))
            for entry in entries
        ]
        updates: list[RegistryEntry] = []
        try:
            for entry, task in zip(entries, tasks):
                if token.cancelled:
                    report.cancelled = True
                    break
                try:
                    outcome = await task
                except Exception as e:
                    logger.error(f"Validation of {entry.category}/{entry.id} failed: {e}")
                    report.errors.append(f"{entry.category}/{entry.id}: {type(e).__name__}: {e}")
                    continue
                if outcome is None:
                    report.cancelled = True
                    break
                health, markers = outcome
                report.entries.append(health)
                if markers is not None and markers != entry.completeness_markers:
                    updates.append(entry.model_copy(update={"completeness_markers": markers}))
        finally:
            await self._drain(tasks)

        if not report.cancelled and updates:
            async with self._writer:
                for entry in updates:
                    current = self.registry.find_by_path(entry.path)
                    # Skip entries that changed or moved while the run was in flight
                    if current is None or current.key != entry.key:
                        continue
                    if current.last_updated != entry.last_updated:
                        continue
                    self.registry.upsert(
                        current.model_copy(
                            update={"completeness_markers": entry.completeness_markers}
                        )
                    )
                self.registry.save()

        report.finalize()
        for health in report.missing_dependencies:
            error = MissingDependency(
                f"{health.category}/{health.id} has unresolved dependencies",
                context={
                    "key": f"{health.category}/{health.id}",
                    "issues": [
                        issue.message
                        for issue in health.issues
                        if issue.status == HealthStatus.MISSING_DEPENDENCY
                    ],
                },
            )
            logger.bind(**error.context).warning(f"MissingDependency: {error.message}")
            report.errors.append(f"{type(error).__name__}: {error.message}")
        logger.info(
            f"Validation: {report.healthy}/{report.total} healthy "
            f"(score {report.score:.2f}, cancelled={report.cancelled})"
        )
        return report

    def _check_entry(
        self, entry: RegistryEntry, snapshot: Registry
    ) -> tuple[EntryHealth, list[str] | None]:
        """Run every health check for one entry. Executed in a worker thread."""
        health = EntryHealth(category=entry.category, id=entry.id, path=entry.path)
        path = self.resolve_path(entry.path)

        if not path.is_file():
            health.add_issue(
                HealthIssue(
                    status=HealthStatus.BROKEN,
                    severity=Severity.ERROR,
                    message=f"File not found: {entry.path}",
                )
            )
            self._check_dependencies(entry, snapshot, health)
            return health, None

        try:
            text = read_text(path)
            mtime = file_mtime(path)
        except (DocumentReadError, OSError) as e:
            health.add_issue(
                HealthIssue(status=HealthStatus.BROKEN, severity=Severity.ERROR, message=str(e))
            )
            self._check_dependencies(entry, snapshot, health)
            return health, None

        if mtime > entry.last_updated:
            health.add_issue(
                HealthIssue(
                    status=HealthStatus.STALE,
                    message=f"Modified {mtime.isoformat()} after last update "
                    f"{entry.last_updated.isoformat()}",
                )
            )

        markers = self.find_markers(text)
        if markers:
            health.add_issue(
                HealthIssue(
                    status=HealthStatus.INCOMPLETE,
                    message=f"Unresolved markers: {', '.join(markers)}",
                )
            )
        for problem in self.find_section_problems(text):
            health.add_issue(HealthIssue(status=HealthStatus.INCOMPLETE, message=problem))

        placement = self.router.route_known(text, entry.path)
        if placement is not None and placement.category != entry.category:
            health.suggested_category = placement.category
            health.add_issue(
                HealthIssue(
                    status=HealthStatus.MISPLACED,
                    message=f"Looks like {placement.category} ({placement.matched_by}), "
                    f"registered under {entry.category}",
                )
            )

        self._check_dependencies(entry, snapshot, health)
        return health, markers

    @staticmethod
    def _check_dependencies(entry: RegistryEntry, snapshot: Registry, health: EntryHealth) -> None:
        ids = {entry_id for entries in snapshot.documents.values() for entry_id in entries}
        for dep in entry.dependencies:
            if "/" in dep:
                category, _, dep_id = dep.partition("/")
                found = dep_id in snapshot.documents.get(category, {})
            else:
                found = dep in ids
            if not found:
                health.add_issue(
                    HealthIssue(
                        status=HealthStatus.MISSING_DEPENDENCY,
                        severity=Severity.ERROR,
                        message=f"Unknown dependency: {dep}",
                    )
                )

    def find_markers(self, text: str) -> list[str]:
        """Distinct incomplete-work markers in order of first appearance."""
        if self._marker_re is None:
            return []
        found: list[str] = []
        for match in self._marker_re.finditer(text):
            if match.group(0) not in found:
                found.append(match.group(0))
        return found

    def find_section_problems(self, text: str) -> list[str]:
        """Empty sections and missing required sections."""
        parsed = parse_markdown(text)
        problems = [
            f"Empty section: {section.title} (line {section.line_start})"
            for section in parsed.sections
            if section.is_empty(parsed.lines)
        ]
        titles = {section.title.strip().lower() for section in parsed.sections}
        for required in self.config.validation.required_sections:
            if required.strip().lower() not in titles:
                problems.append(f"Missing required section: {required}")
        return problems

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stats(self) -> EngineStats:
        """Registry token accounting plus router and folder counters (all runs)."""
        return EngineStats(
            registry=self.registry.stats(),
            router=self._history.router.plus(self.router.stats()),
            folders=self._history.folders.plus(self.folder_manager.stats()),
        )

    def flush_history(self) -> None:
        """Add this process's router and folder counters to the routing history."""
        router = self.router.take_stats()
        folders = self.folder_manager.take_stats()
        if router == RouterStats() and folders == FolderStats():
            return
        if self.history is None:
            self._history = self._history.plus(router, folders)
            return
        try:
            self._history = self.history.add(router, folders)
        except OSError as e:
            logger.warning(f"Could not persist routing history to {self.history.path}: {e}")
            self._history = self._history.plus(router, folders)

    def search(self, term: str) -> list[RegistryEntry]:
        """Registered documents whose id, path or summary contains term."""
        return self.registry.find(term)

    async def refresh(self, category: str, entry_id: str) -> RegistryEntry:
        """
        Re-convert one entry, refreshing token counts and last_updated.

        Raises:
            NotFoundError: If the entry does not exist
            DocumentReadError: If the file cannot be read
        """
        entry = self.registry.get(category, entry_id)
        path = self.resolve_path(entry.path)
        prepared = await self._prepare(path, entry.path)

        refreshed = self._build_entry(category, entry_id, prepared)
        async with self._writer:
            self.registry.upsert(refreshed)
            refreshed = await self._write_twin(refreshed, prepared)
            self.registry.save()
        logger.info(f"Refreshed {category}/{entry_id}")
        return refreshed

    async def prune(self, root: str | Path | None = None) -> PruneReport:
        """Remove entries whose files no longer exist and commit."""
        async with self._writer:
            report = self.registry.prune(Path(root) if root is not None else self.documents_root)
            self.registry.save()
        return report

    def document_map(self, report: ValidationReport | None = None) -> dict[str, list[dict[str, Any]]]:
        """
        Category -> documents listing for the map command.

        Args:
            report: Optional validation report; adds each entry's status
        """
        statuses = {(h.category, h.id): h.status.value for h in report.entries} if report else {}
        doc_map: dict[str, list[dict[str, Any]]] = {}
        for entry in self.registry.entries():
            item: dict[str, Any] = {
                "id": entry.id,
                "path": entry.path,
                "tokens": {"md": entry.tokens.md, "json": entry.tokens.json_tokens},
                "has_json": entry.has_json,
            }
            if entry.key in statuses:
                item["status"] = statuses[entry.key]
            doc_map.setdefault(entry.category, []).append(item)
        return doc_map

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def scan(self, root: Path) -> list[Path]:
        """Sorted document files under root, skipping hidden, excluded and twin dirs."""
        if not root.is_dir():
            logger.warning(f"Import root does not exist: {root}")
            return []

        excluded = set(self.config.lifecycle.exclude_dirs)
        twin_dir = self.twin_dir.resolve()
        files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d
                for d in dirnames
                if not d.startswith(".")
                and d not in excluded
                and (current / d).resolve() != twin_dir
            )
            for name in sorted(filenames):
                if any(fnmatch.fnmatch(name, p) for p in self.config.lifecycle.include_patterns):
                    files.append(current / name)
        return sorted(files)

    def relative_path(self, path: Path) -> str:
        """Registry path: relative to the documents root when inside it, else absolute."""
        resolved = Path(path).resolve()
        try:
            return resolved.relative_to(self.documents_root.resolve()).as_posix()
        except ValueError:
            return resolved.as_posix()

    def resolve_path(self, rel_path: str) -> Path:
        """Filesystem path for a registry path."""
        return self.documents_root / rel_path

    async def _prepare(self, path: Path, rel_path: str) -> _Prepared:
        text = await asyncio.to_thread(read_text, path)
        conversion = await asyncio.to_thread(self.converter.to_json, text, rel_path)
        return _Prepared(path=path, rel_path=rel_path, text=text, conversion=conversion)

    @staticmethod
    async def _bounded(
        semaphore: asyncio.Semaphore,
        token: CancellationToken,
        func: Callable[..., Any],
        *args: Any,
    ) -> Any:
        """Run func under the worker semaphore; None if cancelled before starting."""
        async with semaphore:
            if token.cancelled:
                return None
            if inspect.iscoroutinefunction(func):
                return await func(*args)
            return await asyncio.to_thread(func, *args)

    @staticmethod
    async def _drain(tasks: list[Awaitable[Any]]) -> None:
        """Cancel unfinished workers and wait for them so nothing runs after a batch."""
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
