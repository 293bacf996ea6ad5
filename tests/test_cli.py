"""
Tests for the command line interface.

Commands run in-process through main(argv) against a tmp_path registry.
"""

import json

import pytest
from loguru import logger

from docregistry.cli import (
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_OK,
    EXIT_USAGE,
    _on_interrupt,
    build_parser,
    main,
    run_command,
)
from docregistry.services import CancellationToken


@pytest.fixture
def cli(tmp_path, docs_root, monkeypatch):
    """Run the CLI with every path inside tmp_path."""
    monkeypatch.chdir(tmp_path)
    registry = tmp_path / "machine-data" / "registry.json"

    def _run(*argv: str) -> int:
        return main(
            [
                "--registry",
                str(registry),
                "--root",
                str(docs_root),
                "--tokenizer",
                "approximate",
                "--log-level",
                "WARNING",
                *argv,
            ]
        )

    yield _run
    # main() points loguru at the captured stderr
    logger.remove()


@pytest.mark.unit
class TestParser:
    """Test argument parsing."""

    def test_no_command_prints_help(self, capsys):
        """Test running without a command is a usage error."""
        assert main([]) == EXIT_USAGE
        assert "usage" in capsys.readouterr().out

    def test_serve_defaults(self):
        """Test serve options."""
        args = build_parser().parse_args(["serve"])
        assert (args.host, args.port, args.reload) == ("0.0.0.0", 8000, False)

    def test_missing_config_file(self, tmp_path, capsys):
        """Test a missing config file is a usage error."""
        assert main(["--config", str(tmp_path / "nope.yaml"), "stats"]) == EXIT_USAGE
        assert "Config file not found" in capsys.readouterr().err


@pytest.mark.integration
class TestCommands:
    """Test commands end to end."""

    def test_import_then_stats(self, cli, write_doc, prd_doc, pricing_doc, capsys):
        """Test import registers documents and stats reports them."""
        write_doc("prd.md", prd_doc)
        write_doc("notes-on-pricing.md", pricing_doc)

        assert cli("import", "--json") == EXIT_OK
        report = json.loads(capsys.readouterr().out)
        assert report["imported"] == 2

        assert cli("stats", "--json") == EXIT_OK
        stats = json.loads(capsys.readouterr().out)
        assert stats["registry"]["document_count"] == 2
        assert set(stats["registry"]["categories"]) == {"business-strategy", "requirements"}

    def test_validate_healthy(self, cli, write_doc, prd_doc, capsys):
        """Test validate exits 0 when no dependency is missing."""
        write_doc("prd.md", prd_doc)
        cli("import")
        capsys.readouterr()

        assert cli("validate") == EXIT_OK
        assert "Health score: 1.00 (1/1 healthy)" in capsys.readouterr().out

    def test_validate_missing_dependency(self, cli, write_doc):
        """Test validate exits 1 on a missing dependency."""
        write_doc(
            "launch-checklist.md",
            "# Launch Checklist\n\n**Depends on**: security-review\n\n## Steps\n\n- Ship\n",
        )
        cli("import")

        assert cli("validate") == EXIT_FAILURE

    def test_map_with_status(self, cli, write_doc, prd_doc, capsys):
        """Test the map lists categories and health status."""
        write_doc("prd.md", prd_doc)
        cli("import")
        capsys.readouterr()

        assert cli("map", "--status", "--json") == EXIT_OK
        doc_map = json.loads(capsys.readouterr().out)
        assert doc_map["requirements"][0]["status"] == "healthy"

    def test_map_empty(self, cli, capsys):
        """Test the map on an empty registry."""
        assert cli("map") == EXIT_OK
        assert "No documents registered." in capsys.readouterr().out

    def test_route(self, cli, write_doc, pricing_doc, capsys):
        """Test routing a single file."""
        path = write_doc("notes-on-pricing.md", pricing_doc)

        assert cli("route", str(path)) == EXIT_OK
        assert "business-strategy/notes-on-pricing (tier 2" in capsys.readouterr().out

    def test_route_missing_file(self, cli, docs_root, capsys):
        """Test routing a missing file is a usage error."""
        assert cli("route", str(docs_root / "missing.md")) == EXIT_USAGE
        assert "File not found" in capsys.readouterr().err

    def test_prune(self, cli, write_doc, prd_doc, capsys):
        """Test prune removes entries for deleted files."""
        path = write_doc("prd.md", prd_doc)
        cli("import")
        path.unlink()
        capsys.readouterr()

        assert cli("prune", "--json") == EXIT_OK
        assert json.loads(capsys.readouterr().out)["removed"] == ["requirements/prd"]

    def test_stats_counters_persist(self, cli, write_doc, prd_doc, pricing_doc, capsys):
        """Test router counters from an import show up in a later stats run."""
        write_doc("prd.md", prd_doc)
        write_doc("notes-on-pricing.md", pricing_doc)
        cli("import")
        capsys.readouterr()

        assert cli("stats", "--json") == EXIT_OK
        stats = json.loads(capsys.readouterr().out)
        assert stats["router"]["tier_usage"]["1"] == 1
        assert stats["router"]["tier_usage"]["2"] == 1

    def test_search(self, cli, write_doc, prd_doc, pricing_doc, capsys):
        """Test search prints matching entries."""
        write_doc("prd.md", prd_doc)
        write_doc("notes-on-pricing.md", pricing_doc)
        cli("import")
        capsys.readouterr()

        assert cli("search", "pricing", "--json") == EXIT_OK
        results = json.loads(capsys.readouterr().out)
        assert [r["id"] for r in results] == ["notes-on-pricing"]

        assert cli("search", "nothing-here") == EXIT_OK
        assert "No documents match 'nothing-here'." in capsys.readouterr().out


@pytest.mark.unit
class TestInterrupt:
    """Test Ctrl-C handling."""

    def test_first_interrupt_cancels(self):
        """Test the first Ctrl-C only sets the cancellation token."""
        token = CancellationToken()
        _on_interrupt(token)
        assert token.cancelled

    def test_second_interrupt_aborts(self):
        """Test a second Ctrl-C raises KeyboardInterrupt."""
        token = CancellationToken()
        _on_interrupt(token)
        with pytest.raises(KeyboardInterrupt):
            _on_interrupt(token)

    @pytest.mark.asyncio
    async def test_cancelled_import_exits_130(self, manager, write_doc, prd_doc, capsys):
        """Test an import interrupted before its first file exits with 130."""
        write_doc("prd.md", prd_doc)
        token = CancellationToken()
        token.cancel()

        code = await run_command(build_parser().parse_args(["import"]), manager, token)

        assert code == EXIT_CANCELLED
        assert manager.registry.entries() == []
