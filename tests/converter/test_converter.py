"""
Tests for Markdown -> JSON twin conversion.

Tests cover:
1. Structural parsing (front matter, headings, code fences, line numbers)
2. Twin content (title, summary, metadata, anchors, key points, tables)
3. Compression target and staged compaction
4. Markdown stub rendering and twin persistence
"""

import json

import pytest

from docregistry.config import ConverterConfig
from docregistry.core.converter import MarkdownConverter, parse_markdown


def _filler(paragraphs: int) -> str:
    return "\n\n".join(
        f"Paragraph {i} " + "with background filler text " * 4 for i in range(paragraphs)
    )


@pytest.fixture
def launch_plan() -> str:
    """A realistic planning document with a long background section."""
    return f"""---
owner: Product
status: draft
---
# Launch Plan

**Version**: 2.1

## Overview

We launch the hosted product in three regions before the end of the quarter, starting with a closed beta for existing customers and partners who signed the early access agreement last year.

## Tasks

- Prepare runbooks
- Train **support** staff
- Announce [beta](https://example.com)
- Collect feedback

| Region | Date |
|--------|------|
| EU | May |
| US | June |

## Notes

First notes.

## Notes

Second notes.

```bash
# not a heading
```

## Background

{_filler(200)}
"""


@pytest.fixture
def converter(approx_tokenizer) -> MarkdownConverter:
    """Converter with the approximate tokenizer."""
    return MarkdownConverter(approx_tokenizer)


@pytest.mark.unit
class TestParseMarkdown:
    """Tests for the structural parser."""

    def test_front_matter(self, launch_plan):
        """Test front matter is parsed and skipped."""
        parsed = parse_markdown(launch_plan)

        assert parsed.front_matter == {"owner": "Product", "status": "draft"}
        assert parsed.body_start == 5

    def test_headings_and_line_numbers(self, launch_plan):
        """Test headings carry 1-based line numbers."""
        parsed = parse_markdown(launch_plan)
        lines = launch_plan.splitlines()

        overview = next(s for s in parsed.sections if s.title == "Overview")
        assert overview.level == 2
        assert overview.line_start == lines.index("## Overview") + 1
        assert parsed.title == "Launch Plan"

    def test_code_fence_headings_ignored(self, launch_plan):
        """Test '#' lines inside fences are not headings."""
        parsed = parse_markdown(launch_plan)
        assert all(s.title != "not a heading" for s in parsed.sections)

    def test_section_span(self):
        """Test a section spans its sub-sections."""
        parsed = parse_markdown("# A\n## B\ntext\n## C\n### D\nmore\n# E\n")
        b, c = parsed.sections[1], parsed.sections[2]

        assert (b.line_start, b.span_end) == (2, 3)
        assert (c.line_start, c.span_end) == (4, 6)
        assert c.body_end == 4

    def test_empty_section(self):
        """Test a heading followed only by blanks is empty."""
        parsed = parse_markdown("# Title\n\n## Empty\n\n\n## Full\ntext\n")
        empty, full = parsed.sections[1], parsed.sections[2]

        assert empty.is_empty(parsed.lines)
        assert not full.is_empty(parsed.lines)
        assert not parsed.sections[0].is_empty(parsed.lines)

    def test_invalid_front_matter_ignored(self):
        """Test malformed YAML front matter does not fail the parse."""
        parsed = parse_markdown("---\nkey: [unclosed\n---\n# Title\n")
        assert parsed.front_matter == {}
        assert parsed.title == "Title"


@pytest.mark.unit
class TestToJson:
    """Tests for twin generation."""

    def test_meets_target(self, converter, launch_plan):
        """Test a prose-heavy document compresses below the target ratio."""
        result = converter.to_json(launch_plan, "planning/launch-plan.md")

        assert result.shortfall is False
        assert result.json_tokens <= 0.15 * result.md_tokens
        assert result.ratio == pytest.approx(result.json_tokens / result.md_tokens)

    def test_title_and_metadata(self, converter, launch_plan):
        """Test title plus front matter and bold metadata."""
        twin = converter.to_json(launch_plan, "launch-plan.md").twin

        assert twin.title == "Launch Plan"
        assert twin.metadata == {"owner": "Product", "status": "draft", "version": "2.1"}

    def test_summary_from_overview(self, converter, launch_plan):
        """Test the summary comes from Overview and is capped at 25 words."""
        twin = converter.to_json(launch_plan, "launch-plan.md").twin

        assert twin.summary.startswith("We launch the hosted product")
        assert len(twin.summary.split()) == 25
        assert twin.summary.endswith("...")

    def test_summary_without_overview(self, converter):
        """Test the first paragraph is used when no Overview exists."""
        twin = converter.to_json("# Title\n\nJust a short intro.\n\n## Part\n\nBody.\n", "x.md").twin
        assert twin.summary == "Just a short intro."

    def test_unique_anchors(self, converter, launch_plan):
        """Test duplicate headings get GitHub-style suffixes."""
        twin = converter.to_json(launch_plan, "launch-plan.md").twin
        anchors = [s.anchor for s in twin.sections]

        assert "notes" in anchors
        assert "notes-1" in anchors
        assert len(anchors) == len(set(anchors))

    def test_key_points_and_tables(self, converter, launch_plan):
        """Test bullets are capped and inline markup is stripped."""
        twin = converter.to_json(launch_plan, "launch-plan.md").twin
        tasks = next(s for s in twin.sections if s.title == "Tasks")

        assert tasks.key_points == ["Prepare runbooks", "Train support staff", "Announce beta"]
        assert len(twin.tables) == 1
        assert twin.tables[0].headers == ["Region", "Date"]
        assert twin.tables[0].rows == 2
        assert twin.tables[0].section == "Tasks"

    def test_drill_down_reference(self, converter, launch_plan):
        """Test the reference covers the document body."""
        twin = converter.to_json(launch_plan, "planning/launch-plan.md").twin

        assert twin.reference.path == "planning/launch-plan.md"
        assert twin.reference.line_start == 5
        assert twin.reference.line_end == len(launch_plan.splitlines())

    def test_section_line_ranges(self, converter, launch_plan):
        """Test each section's range starts at its heading."""
        twin = converter.to_json(launch_plan, "launch-plan.md").twin
        lines = launch_plan.splitlines()

        for section in twin.sections:
            assert lines[section.line_start - 1].lstrip("#").strip() == section.title
            assert section.line_end >= section.line_start

    def test_shortfall_compacts_and_does_not_raise(self, converter, log_records):
        """Test a tiny document misses the target with a best-effort twin."""
        text = "# T\n\n## A\n\nShort.\n\n- one\n- two\n\n### Deep\n\ntext\n"
        result = converter.to_json(text, "t.md")

        assert result.shortfall is True
        assert result.json_tokens > 0.15 * result.md_tokens
        assert all(s.level <= 2 for s in result.twin.sections)
        assert all(not s.key_points and not s.preview for s in result.twin.sections)
        warnings = [r for r in log_records if r["level"].name == "WARNING"]
        assert len(warnings) == 1
        assert warnings[0]["message"].startswith("ConversionShortfall: t.md")

    def test_no_shortfall_warning_when_target_met(self, converter, launch_plan, log_records):
        """Test a compressed twin logs no shortfall."""
        converter.to_json(launch_plan, "launch-plan.md")
        assert not any("ConversionShortfall" in r["message"] for r in log_records)

    def test_empty_document(self, converter):
        """Test an empty document converts without shortfall."""
        result = converter.to_json("", "empty.md")

        assert result.md_tokens == 0
        assert result.ratio == 0.0
        assert result.shortfall is False
        assert result.twin.sections == []

    def test_deterministic(self, converter, launch_plan):
        """Test identical input yields identical twins."""
        first = converter.to_json(launch_plan, "a.md")
        second = converter.to_json(launch_plan, "a.md")
        assert first.twin.to_compact() == second.twin.to_compact()


@pytest.mark.unit
class TestFromJsonAndWrite:
    """Tests for stub rendering and persistence."""

    def test_from_json_stub(self, converter, launch_plan):
        """Test the stub keeps title, headings and the source reference."""
        twin = converter.to_json(launch_plan, "launch-plan.md").twin
        stub = converter.from_json(twin)

        assert stub.startswith("# Launch Plan\n")
        assert "## Tasks" in stub
        assert "- Prepare runbooks" in stub
        assert stub.rstrip().endswith(f"lines 5-{len(launch_plan.splitlines())} -->")

    def test_write_twin(self, converter, launch_plan, tmp_path):
        """Test twins are written as compact-keyed JSON."""
        twin = converter.to_json(launch_plan, "launch-plan.md").twin
        target = tmp_path / "json" / "planning" / "launch-plan.json"

        converter.write_twin(twin, target)

        assert json.loads(target.read_text(encoding="utf-8")) == twin.to_compact()

    def test_custom_config(self, approx_tokenizer):
        """Test key point and summary limits are configurable."""
        converter = MarkdownConverter(
            approx_tokenizer, ConverterConfig(max_key_points=1, summary_words=3)
        )
        text = "# T\n\n## Overview\n\none two three four\n\n- a\n- b\n\n" + _filler(200)
        twin = converter.to_json(text, "t.md").twin

        assert twin.summary == "one two three..."
        assert twin.sections[1].key_points == ["a"]
