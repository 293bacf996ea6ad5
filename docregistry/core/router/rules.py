"""
Static routing tables for Tier 1 and Tier 2.

Tier 1 is an exact lookup of well-known filenames (and titles rendered as
filenames). Tier 2 is an ordered list of pattern / keyword rules; among the
rules that match, the highest priority wins, then the rule with more
distinct matched terms, then the rule declared first.
"""

import fnmatch
import re
from dataclasses import dataclass, field
from pathlib import PurePath

from docregistry.config import RoutingRuleConfig
from docregistry.utils.id_generator import slugify

DEFAULT_KNOWN_DOCUMENTS: dict[str, str] = {
    "prd.md": "requirements",
    "product-requirements.md": "requirements",
    "product-requirements-document.md": "requirements",
    "requirements.md": "requirements",
    "user-stories.md": "requirements",
    "acceptance-criteria.md": "requirements",
    "readme.md": "overview",
    "project-overview.md": "overview",
    "vision.md": "overview",
    "roadmap.md": "planning",
    "project-roadmap.md": "planning",
    "project-plan.md": "planning",
    "release-plan.md": "planning",
    "architecture.md": "implementation",
    "system-architecture.md": "implementation",
    "technical-specification.md": "implementation",
    "api-design.md": "implementation",
    "database-schema.md": "implementation",
    "changelog.md": "operations",
    "deployment-guide.md": "operations",
    "runbook.md": "operations",
    "monitoring-plan.md": "operations",
    "market-analysis.md": "business-strategy",
    "competitive-analysis.md": "business-strategy",
    "business-plan.md": "business-strategy",
    "pitch-deck.md": "business-strategy",
    "financial-projections.md": "business-strategy",
    "sprint-plan.md": "orchestration",
    "product-backlog.md": "orchestration",
    "retrospective.md": "orchestration",
}


@dataclass(frozen=True)
class RoutingRule:
    """
    One Tier 2 rule.

    A rule matches when its regex ``pattern`` is found, any of its
    ``globs`` matches the filename, or at least ``min_matches`` distinct
    ``keywords`` appear as whole words. Patterns and keywords are searched
    in the filename (with separators read as spaces) and, unless
    ``filename_only`` is set, in the content.
    """

    name: str
    category: str
    pattern: str | None = None
    globs: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    priority: int = 0
    min_matches: int = 1
    filename_only: bool = False
    _compiled: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)
    _keyword_re: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)
    _glob_res: tuple[re.Pattern, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self):
        # frozen dataclass: precompile through object.__setattr__
        if self.pattern:
            object.__setattr__(self, "_compiled", re.compile(self.pattern, re.IGNORECASE))
        if self.keywords:
            alternation = "|".join(re.escape(k) for k in sorted(self.keywords, key=len, reverse=True))
            object.__setattr__(
                self, "_keyword_re", re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)
            )
        if self.globs:
            object.__setattr__(
                self,
                "_glob_res",
                tuple(re.compile(fnmatch.translate(g.lower())) for g in self.globs),
            )

    def match(self, filename: str, content: str) -> int:
        """
        Score this rule against a document.

        Returns:
            Number of distinct matched terms (0 when the rule does not match)
        """
        haystacks = [filename.replace("-", " ").replace("_", " ")]
        if not self.filename_only and content:
            haystacks.append(content)

        terms: set[str] = set()
        if self._glob_res and filename:
            terms.update(f"glob:{g}" for g, rx in zip(self.globs, self._glob_res) if rx.match(filename))
        if self._compiled is not None:
            for text in haystacks:
                terms.update(m.group(0).lower() for m in self._compiled.finditer(text) if m.group(0))
        if self._keyword_re is not None:
            found = {m.group(0).lower() for text in haystacks for m in self._keyword_re.finditer(text)}
            if len(found) >= self.min_matches:
                terms.update(found)
        return len(terms)

    @classmethod
    def from_config(cls, config: RoutingRuleConfig) -> "RoutingRule":
        """Build a rule from user configuration."""
        return cls(
            name=config.name,
            category=slugify(config.category),
            pattern=config.pattern,
            globs=tuple(config.globs),
            keywords=tuple(config.keywords),
            priority=config.priority,
            min_matches=config.min_matches,
            filename_only=config.filename_only,
        )


DEFAULT_RULES: tuple[RoutingRule, ...] = (
    # Filename families, strongest signal
    RoutingRule(
        name="business-strategy-files",
        category="business-strategy",
        globs=("*-analysis.md", "*-research.md", "*-strategy.md", "market-*.md", "competitive-*.md"),
        priority=20,
        filename_only=True,
    ),
    RoutingRule(
        name="implementation-files",
        category="implementation",
        globs=("*-implementation.md", "*-architecture.md", "*-design.md", "api-*.md", "database-*.md"),
        priority=20,
        filename_only=True,
    ),
    RoutingRule(
        name="operations-files",
        category="operations",
        globs=("*-dashboard.md", "*-monitoring.md", "*-deployment.md", "ci-cd-*.md"),
        priority=20,
        filename_only=True,
    ),
    RoutingRule(
        name="orchestration-files",
        category="orchestration",
        globs=("sprint-*.md", "*-coordination.md", "*-planning.md", "backlog-*.md"),
        priority=20,
        filename_only=True,
    ),
    # Topic rules over filename and content
    RoutingRule(
        name="pricing-revenue",
        category="business-strategy",
        pattern=r"pricing|revenue",
        priority=10,
    ),
    RoutingRule(
        name="requirements-keywords",
        category="requirements",
        keywords=("requirements", "user story", "user stories", "acceptance criteria"),
        priority=5,
        min_matches=2,
    ),
    RoutingRule(
        name="business-keywords",
        category="business-strategy",
        keywords=("market", "competitive", "customer", "financial", "business model"),
        priority=5,
        min_matches=2,
    ),
    RoutingRule(
        name="implementation-keywords",
        category="implementation",
        keywords=("api", "database", "architecture", "technical", "endpoint", "schema"),
        priority=5,
        min_matches=2,
    ),
    RoutingRule(
        name="operations-keywords",
        category="operations",
        keywords=("deployment", "monitoring", "dashboard", "analytics", "incident", "launch"),
        priority=5,
        min_matches=2,
    ),
    RoutingRule(
        name="orchestration-keywords",
        category="orchestration",
        keywords=("sprint", "backlog", "retrospective", "standup", "velocity"),
        priority=5,
        min_matches=2,
    ),
)


def known_document_key(name: str) -> str:
    """Normalize a filename or title to a Tier 1 table key."""
    name = name.strip().lower()
    if not name:
        return ""
    if PurePath(name).suffix == ".md":
        return PurePath(name).name
    return f"{slugify(name)}.md"


def build_known_documents(overrides: dict[str, str] | None = None) -> dict[str, str]:
    """Default Tier 1 table merged with user overrides (keys normalized)."""
    table = dict(DEFAULT_KNOWN_DOCUMENTS)
    for name, category in (overrides or {}).items():
        table[known_document_key(name)] = slugify(category)
    return table


def build_rules(
    extra: list[RoutingRuleConfig] | None = None, replace_defaults: bool = False
) -> list[RoutingRule]:
    """Tier 2 rule list: defaults (unless replaced) followed by user rules."""
    rules = [] if replace_defaults else list(DEFAULT_RULES)
    rules.extend(RoutingRule.from_config(r) for r in extra or [])
    return rules
