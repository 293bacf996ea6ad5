"""
Markdown to JSON twin conversion.

The twin keeps the document skeleton (title, metadata, heading hierarchy,
key bullets, table shapes) plus line ranges for drill-down, and drops the
prose. When the twin is still above the target ratio, optional detail is
removed in stages; if the target is still missed the best-effort twin is
returned and a ConversionShortfall warning is logged.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from docregistry.config import ConverterConfig
from docregistry.core.tokenizer import Tokenizer
from docregistry.models.twin import (
    ConversionResult,
    DocumentTwin,
    DrillDownReference,
    TwinSection,
    TwinTable,
)
from docregistry.utils.exceptions import ConversionShortfall
from docregistry.utils.file_io import atomic_write_json
from docregistry.utils.id_generator import generate_anchor
from docregistry.utils.logger import get_logger

logger = get_logger(__name__)

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
FENCE_RE = re.compile(r"^\s*(```|~~~)")
BULLET_RE = re.compile(r"^( {0,1})(?:[-*+]|\d+[.)])\s+(.+)$")
TABLE_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?\s*$")
BOLD_METADATA_RE = re.compile(r"^\*\*([^*]+?)(?::\*\*|\*\*:)\s*(.+)$")
EMPHASIS_RE = re.compile(r"(\*\*|__|\*|_|`)")
LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]*\)")

SUMMARY_SECTIONS = ("overview", "summary", "executive summary", "purpose", "introduction")


@dataclass
class ParsedSection:
    """A heading with its direct body and the span it governs."""

    title: str
    level: int
    line_start: int  # heading line, 1-based
    body_end: int  # last line before the next heading of any level
    span_end: int  # last line before the next heading of the same or higher level
    body: list[str] = field(default_factory=list)

    def is_empty(self, lines: list[str]) -> bool:
        """True when nothing but blank lines follows the heading within its span."""
        return all(not line.strip() for line in lines[self.line_start : self.span_end])


@dataclass
class ParsedDocument:
    """Structural parse of a Markdown document."""

    lines: list[str]
    front_matter: dict[str, Any]
    body_start: int  # first line after front matter, 1-based
    sections: list[ParsedSection]

    @property
    def title(self) -> str | None:
        for section in self.sections:
            if section.level == 1:
                return section.title
        return self.sections[0].title if self.sections else None


def parse_markdown(text: str) -> ParsedDocument:
    """
    Parse front matter and heading structure.

    Headings inside fenced code blocks are ignored. Line numbers are
    1-based over the whole file, front matter included.
    """
    lines = text.splitlines()
    front_matter, body_start = _split_front_matter(lines)

    headings: list[tuple[int, int, str]] = []  # (line_no, level, title)
    in_fence = False
    for idx in range(body_start - 1, len(lines)):
        line = lines[idx]
        if FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = HEADING_RE.match(line)
        if match:
            headings.append((idx + 1, len(match.group(1)), match.group(2).strip()))

    sections: list[ParsedSection] = []
    total = len(lines)
    for i, (line_no, level, title) in enumerate(headings):
        body_end = headings[i + 1][0] - 1 if i + 1 < len(headings) else total
        span_end = total
        for next_line, next_level, _ in headings[i + 1 :]:
            if next_level <= level:
                span_end = next_line - 1
                break
        sections.append(
            ParsedSection(
                title=title,
                level=level,
                line_start=line_no,
                body_end=body_end,
                span_end=span_end,
                body=lines[line_no:body_end],
            )
        )

    return ParsedDocument(
        lines=lines, front_matter=front_matter, body_start=body_start, sections=sections
    )


def _split_front_matter(lines: list[str]) -> tuple[dict[str, Any], int]:
    """Return (metadata, first body line) for an optional leading YAML block."""
    if not lines or lines[0].strip() != "---":
        return {}, 1
    for idx in range(1, len(lines)):
        if lines[idx].strip() in ("---", "..."):
            try:
                data = yaml.safe_load("\n".join(lines[1:idx]))
            except yaml.YAMLError as e:
                logger.debug(f"Ignoring invalid front matter: {e}")
                return {}, 1
            if not isinstance(data, dict):
                return {}, 1
            return {str(k): _plain(v) for k, v in data.items()}, idx + 2
    return {}, 1


def _plain(value: Any) -> Any:
    """Coerce YAML scalars (dates etc.) into JSON-friendly values."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


def _clean_inline(text: str) -> str:
    text = LINK_RE.sub(r"\1", text)
    return EMPHASIS_RE.sub("", text).strip()


def _truncate(text: str, limit: int) -> str:
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def _truncate_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]) + "..."


def _is_prose(line: str) -> bool:
    stripped = line.strip()
    return bool(
        stripped
        and not stripped.startswith(("|", ">", "<!--", "```", "~~~", "#"))
        and not BULLET_RE.match(stripped)
        and not BOLD_METADATA_RE.match(stripped)
    )


def _first_paragraph(lines: list[str]) -> str:
    paragraph: list[str] = []
    in_fence = False
    for line in lines:
        if FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        if _is_prose(line):
            paragraph.append(_clean_inline(line))
        elif paragraph:
            break
    return " ".join(paragraph)


class MarkdownConverter:
    """
    Produces token-optimized JSON twins of Markdown documents.

    Stateless apart from configuration and the shared tokenizer, so one
    instance can convert many files concurrently.
    """

    def __init__(self, tokenizer: Tokenizer, config: ConverterConfig | None = None):
        """
        Initialize converter.

        Args:
            tokenizer: Token accountant shared with the registry
            config: Optional converter configuration
        """
        self.tokenizer = tokenizer
        self.config = config or ConverterConfig()

    def to_json(self, text: str, source_path: str) -> ConversionResult:
        """
        Convert a Markdown document to its JSON twin.

        Args:
            text: Markdown source
            source_path: Path recorded in the drill-down reference

        Returns:
            ConversionResult with the twin and both token counts
        """
        parsed = parse_markdown(text)
        md_tokens = self.tokenizer.count_tokens(text)
        twin = self._build_twin(parsed, source_path)

        target = self.config.target_ratio * md_tokens
        json_tokens = self.tokenizer.count_json(twin.to_compact())
        for compact in (
            self._drop_previews,
            self._drop_key_points,
            self._drop_tables,
            self._drop_deep_sections,
        ):
            if json_tokens <= target:
                break
            twin = compact(twin)
            json_tokens = self.tokenizer.count_json(twin.to_compact())

        ratio = json_tokens / md_tokens if md_tokens else 0.0
        shortfall = md_tokens > 0 and json_tokens > target
        if shortfall:
            warning = ConversionShortfall(
                f"ConversionShortfall: {source_path} twin is {ratio:.1%} of source "
                f"(target {self.config.target_ratio:.0%})",
                context={"path": source_path, "md_tokens": md_tokens, "json_tokens": json_tokens},
            )
            logger.bind(**warning.context).warning(warning.message)

        return ConversionResult(
            twin=twin,
            md_tokens=md_tokens,
            json_tokens=json_tokens,
            ratio=ratio,
            shortfall=shortfall,
        )

    def from_json(self, twin: DocumentTwin) -> str:
        """
        Render a human-readable Markdown stub from a twin.

        The stub is for consistency checks only; prose is not recoverable.
        """
        out: list[str] = []
        if twin.title:
            out.extend([f"# {twin.title}", ""])
        if twin.summary:
            out.extend([f"> {twin.summary}", ""])
        for key, value in sorted(twin.metadata.items()):
            out.append(f"**{key}**: {value}")
        if twin.metadata:
            out.append("")
        for section in twin.sections:
            if section.level == 1 and section.title == twin.title:
                continue
            out.append(f"{'#' * section.level} {section.title}")
            out.append("")
            if section.preview:
                out.extend([section.preview, ""])
            for point in section.key_points:
                out.append(f"- {point}")
            if section.key_points:
                out.append("")
        ref = twin.reference
        out.append(f"<!-- source: {ref.path} lines {ref.line_start}-{ref.line_end} -->")
        return "\n".join(out) + "\n"

    def write_twin(self, twin: DocumentTwin, path: Path) -> None:
        """Persist a twin as compact-keyed, pretty-printed JSON."""
        atomic_write_json(Path(path), twin.to_compact())

    def _build_twin(self, parsed: ParsedDocument, source_path: str) -> DocumentTwin:
        metadata = dict(parsed.front_matter)
        metadata.update(self._bold_metadata(parsed))

        sections: list[TwinSection] = []
        tables: list[TwinTable] = []
        for section in parsed.sections:
            body_text = "\n".join(section.body)
            sections.append(
                TwinSection(
                    title=_clean_inline(section.title),
                    level=section.level,
                    anchor=generate_anchor(section.title),
                    line_start=section.line_start,
                    line_end=max(section.span_end, section.line_start),
                    tokens=self.tokenizer.count_tokens(body_text),
                    preview=_truncate(_first_paragraph(section.body), self.config.preview_chars),
                    key_points=self._key_points(section.body),
                )
            )
            tables.extend(self._tables(section.body, section.line_start + 1, section.title))

        if parsed.sections and parsed.sections[0].line_start > parsed.body_start:
            preamble = parsed.lines[parsed.body_start - 1 : parsed.sections[0].line_start - 1]
            tables[:0] = self._tables(preamble, parsed.body_start, None)

        _dedupe_anchors(sections)

        return DocumentTwin(
            source_path=source_path,
            title=_clean_inline(parsed.title) if parsed.title else None,
            summary=self._summary(parsed),
            metadata=metadata,
            sections=sections,
            tables=tables,
            reference=DrillDownReference(
                path=source_path,
                line_start=parsed.body_start if parsed.lines else 1,
                line_end=len(parsed.lines),
            ),
        )

    def _summary(self, parsed: ParsedDocument) -> str:
        for section in parsed.sections:
            if section.title.strip().lower() in SUMMARY_SECTIONS:
                text = _first_paragraph(section.body)
                if text:
                    return _truncate_words(text, self.config.summary_words)
        if parsed.sections:
            first = parsed.sections[0]
            head = parsed.lines[parsed.body_start - 1 : first.line_start - 1]
            text = _first_paragraph(head) or _first_paragraph(first.body)
        else:
            text = _first_paragraph(parsed.lines[parsed.body_start - 1 :])
        return _truncate_words(text, self.config.summary_words)

    def _bold_metadata(self, parsed: ParsedDocument) -> dict[str, str]:
        """Collect '**Key**: value' lines that appear before the first H2."""
        limit = len(parsed.lines)
        for section in parsed.sections:
            if section.level >= 2:
                limit = section.line_start - 1
                break
        found: dict[str, str] = {}
        for line in parsed.lines[parsed.body_start - 1 : limit]:
            match = BOLD_METADATA_RE.match(line.strip())
            if match:
                key = re.sub(r"[^a-z0-9]+", "_", match.group(1).lower()).strip("_")
                if key:
                    found[key] = _clean_inline(match.group(2))
        return found

    def _key_points(self, body: list[str]) -> list[str]:
        points: list[str] = []
        in_fence = False
        for line in body:
            if FENCE_RE.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            match = BULLET_RE.match(line)
            if match:
                points.append(_truncate(_clean_inline(match.group(2)), self.config.preview_chars))
                if len(points) >= self.config.max_key_points:
                    break
        return points

    def _tables(self, body: list[str], first_line: int, section: str | None) -> list[TwinTable]:
        tables: list[TwinTable] = []
        idx = 0
        while idx < len(body) - 1:
            header, separator = body[idx], body[idx + 1]
            if header.strip().startswith("|") and TABLE_SEPARATOR_RE.match(separator):
                headers = [_clean_inline(c) for c in header.strip().strip("|").split("|")]
                rows = 0
                cursor = idx + 2
                while cursor < len(body) and body[cursor].strip().startswith("|"):
                    rows += 1
                    cursor += 1
                tables.append(
                    TwinTable(
                        section=_clean_inline(section) if section else None,
                        headers=[h for h in headers if h],
                        rows=rows,
                        line_start=first_line + idx,
                    )
                )
                idx = cursor
            else:
                idx += 1
        return tables

    @staticmethod
    def _drop_previews(twin: DocumentTwin) -> DocumentTwin:
        sections = [s.model_copy(update={"preview": ""}) for s in twin.sections]
        return twin.model_copy(update={"sections": sections})

    @staticmethod
    def _drop_key_points(twin: DocumentTwin) -> DocumentTwin:
        sections = [s.model_copy(update={"key_points": []}) for s in twin.sections]
        return twin.model_copy(update={"sections": sections})

    @staticmethod
    def _drop_tables(twin: DocumentTwin) -> DocumentTwin:
        return twin.model_copy(update={"tables": []})

    @staticmethod
    def _drop_deep_sections(twin: DocumentTwin) -> DocumentTwin:
        return twin.model_copy(update={"sections": [s for s in twin.sections if s.level <= 2]})


def _dedupe_anchors(sections: list[TwinSection]) -> None:
    """Make anchors unique the way GitHub does: foo, foo-1, foo-2."""
    seen: dict[str, int] = {}
    for section in sections:
        base = section.anchor
        count = seen.get(base, 0)
        seen[base] = count + 1
        if count:
            section.anchor = f"{base}-{count}"
