"""
Document health models produced by validation runs.
"""

from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health of a single registry entry."""

    HEALTHY = "healthy"
    STALE = "stale"
    INCOMPLETE = "incomplete"
    MISPLACED = "misplaced"
    MISSING_DEPENDENCY = "missing-dependency"
    BROKEN = "broken"

    @property
    def rank(self) -> int:
        """Severity rank; the highest-ranked issue becomes the entry status."""
        return _STATUS_RANK[self]


_STATUS_RANK = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.STALE: 1,
    HealthStatus.INCOMPLETE: 2,
    HealthStatus.MISPLACED: 3,
    HealthStatus.MISSING_DEPENDENCY: 4,
    HealthStatus.BROKEN: 5,
}


class Severity(str, Enum):
    """Issue severity."""

    WARNING = "warning"
    ERROR = "error"


class HealthIssue(BaseModel):
    """One problem found on an entry."""

    status: HealthStatus
    severity: Severity = Severity.WARNING
    message: str


class EntryHealth(BaseModel):
    """Health report for one entry."""

    category: str
    id: str
    path: str
    status: HealthStatus = HealthStatus.HEALTHY
    issues: list[HealthIssue] = Field(default_factory=list)
    suggested_category: str | None = Field(
        default=None, description="Where placement checks think the document belongs"
    )

    def add_issue(self, issue: HealthIssue) -> None:
        """Record an issue and escalate the status if it is more severe."""
        self.issues.append(issue)
        if issue.status.rank > self.status.rank:
            self.status = issue.status

    def has_status(self, status: HealthStatus) -> bool:
        """Check whether any recorded issue carries the given status."""
        return any(issue.status == status for issue in self.issues)


class ValidationReport(BaseModel):
    """Result of a validation pass over the registry."""

    entries: list[EntryHealth] = Field(default_factory=list)
    healthy: int = 0
    total: int = 0
    score: float = Field(default=1.0, ge=0.0, le=1.0)
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def missing_dependencies(self) -> list[EntryHealth]:
        """Entries with at least one unresolved dependency."""
        return [e for e in self.entries if e.has_status(HealthStatus.MISSING_DEPENDENCY)]

    def counts(self) -> dict[str, int]:
        """Number of entries per reported status."""
        counts = {status.value: 0 for status in HealthStatus}
        for entry in self.entries:
            counts[entry.status.value] += 1
        return counts

    def finalize(self) -> "ValidationReport":
        """Compute healthy/total/score from the collected entries."""
        self.total = len(self.entries)
        self.healthy = sum(1 for e in self.entries if e.status == HealthStatus.HEALTHY)
        self.score = self.healthy / self.total if self.total else 1.0
        return self
