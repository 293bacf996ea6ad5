"""
Routing history - router and folder counters kept across runs.

Every CLI command is a new process, so tier usage, slow-tier hits and
consolidation candidates would reset each time. The history sidecar keeps
running totals; each process adds only the counts it produced.
"""

import json
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from docregistry.models.reports import FolderStats, RouterStats, RoutingHistory
from docregistry.utils.file_io import atomic_write_json, exclusive_lock
from docregistry.utils.logger import get_logger

logger = get_logger(__name__)


def default_history_path(registry_path: str | Path) -> Path:
    """Sidecar next to the registry file."""
    return Path(registry_path).with_name("routing-history.json")


class RoutingHistoryStore:
    """Persisted routing counters, merged additively under the sidecar lock."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> RoutingHistory:
        """Stored totals; a missing or unreadable file counts as empty."""
        if not self.path.exists():
            return RoutingHistory()
        try:
            with open(self.path, encoding="utf-8") as f:
                return RoutingHistory.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"Ignoring unreadable routing history {self.path}: {e}")
            return RoutingHistory()

    def add(self, router: RouterStats, folders: FolderStats) -> RoutingHistory:
        """
        Add one process's counters to the stored totals.

        The read and the write happen under one exclusive lock, so concurrent
        processes never drop each other's counts.

        Returns:
            The new totals
        """
        with exclusive_lock(self.path):
            totals = self.load().plus(router, folders)
            atomic_write_json(self.path, totals.model_dump(mode="json"))
        logger.debug(f"Routing history updated at {self.path}")
        return totals
