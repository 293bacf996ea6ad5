"""
Command line interface for the document registry.

Commands:
    import [root]   Register every unregistered document under root
    validate        Check document health (exit 1 on missing dependencies)
    stats           Token accounting and router counters
    map             Category -> documents listing
    route <file>    Route one file and register it
    search <term>   Find documents by id, path or summary
    prune           Remove entries whose files no longer exist
    serve           Run the HTTP API

Exit codes: 0 success, 1 missing dependency or operation failure,
2 usage/configuration error, 130 cancelled.

Ctrl-C during import or validate cancels cooperatively: files already
committed stay committed and the run exits with 130.
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from typing import Any

import yaml
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from docregistry.config import Config
from docregistry.services.lifecycle_manager import CancellationToken, LifecycleManager
from docregistry.utils.exceptions import (
    ConfigurationError,
    DocRegistryError,
    DocumentReadError,
    NotFoundError,
)
from docregistry.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="docregistry", description="Document Registry & Routing Engine"
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--env-file", help=".env file with DOCREG_* variables")
    parser.add_argument("--registry", help="Registry JSON path (overrides config)")
    parser.add_argument("--root", help="Documents root (overrides config)")
    parser.add_argument(
        "--tokenizer", choices=["tiktoken", "approximate"], help="Token counting provider"
    )
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command")

    import_p = subparsers.add_parser("import", help="Import documents into the registry")
    import_p.add_argument("path", nargs="?", help="Directory to scan (default: documents root)")
    import_p.add_argument("--json", action="store_true", help="JSON output")

    validate_p = subparsers.add_parser("validate", help="Validate document health")
    validate_p.add_argument("--json", action="store_true", help="JSON output")

    stats_p = subparsers.add_parser("stats", help="Show registry statistics")
    stats_p.add_argument("--json", action="store_true", help="JSON output")

    map_p = subparsers.add_parser("map", help="Show the document map")
    map_p.add_argument("--status", action="store_true", help="Validate and include health status")
    map_p.add_argument("--json", action="store_true", help="JSON output")

    route_p = subparsers.add_parser("route", help="Route a document and register it")
    route_p.add_argument("file", help="Markdown file to route")
    route_p.add_argument("--json", action="store_true", help="JSON output")

    search_p = subparsers.add_parser("search", help="Find documents by id, path or summary")
    search_p.add_argument("term", help="Text to look for")
    search_p.add_argument("--json", action="store_true", help="JSON output")

    prune_p = subparsers.add_parser("prune", help="Remove entries for deleted files")
    prune_p.add_argument("--json", action="store_true", help="JSON output")

    serve_p = subparsers.add_parser("serve", help="Run the HTTP API server")
    serve_p.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_p.add_argument("--port", type=int, default=8000, help="Port")
    serve_p.add_argument("--reload", action="store_true", help="Reload on code changes")

    return parser


def load_config(args: argparse.Namespace) -> Config:
    """
    Load configuration and apply command line overrides.

    Raises:
        ConfigurationError: If the configuration cannot be loaded
    """
    if args.config and not os.path.exists(args.config):
        raise ConfigurationError(f"Config file not found: {args.config}")
    try:
        config = Config.from_env_or_yaml(args.config, env_file=args.env_file)
    except (OSError, ValueError, yaml.YAMLError, PydanticValidationError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if args.registry:
        config.registry.path = args.registry
    if args.root:
        config.registry.documents_root = args.root
    if args.tokenizer:
        config.tokenizer.provider = args.tokenizer
    if args.log_level:
        config.logging.level = args.log_level.upper()
    return config


def _emit(data: Any, as_json: bool, summary: str) -> None:
    if as_json:
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        print(json.dumps(data, indent=2, sort_keys=True))
    else:
        print(summary)


async def run_command(
    args: argparse.Namespace, manager: LifecycleManager, token: CancellationToken | None = None
) -> int:
    """Execute one command against a loaded engine. Returns the exit code."""
    token = token or CancellationToken()

    if args.command == "import":
        report = await manager.import_documents(args.path, cancel_token=token)
        lines = [
            f"Imported {report.imported} of {report.scanned} files "
            f"({report.skipped} skipped, {len(report.errors)} errors, "
            f"{len(report.conflicts)} conflicts) in {report.duration_ms:.0f}ms"
        ]
        lines += [f"  error: {e.path}: {e.error}" for e in report.errors]
        lines += [f"  conflict: {c.path}: {c.error}" for c in report.conflicts]
        _emit(report, args.json, "\n".join(lines))
        return EXIT_CANCELLED if report.cancelled else EXIT_OK

    if args.command == "validate":
        report = await manager.validate(cancel_token=token)
        lines = []
        for entry in report.entries:
            for issue in entry.issues:
                lines.append(f"  [{issue.status.value}] {entry.category}/{entry.id}: {issue.message}")
        lines.append(f"Health score: {report.score:.2f} ({report.healthy}/{report.total} healthy)")
        _emit(report, args.json, "\n".join(lines))
        if report.cancelled:
            return EXIT_CANCELLED
        return EXIT_FAILURE if report.missing_dependencies else EXIT_OK

    if args.command == "stats":
        stats = manager.stats()
        registry = stats.registry
        lines = [
            f"Registry v{registry.version}: {registry.document_count} documents",
            f"Tokens: {registry.total_md_tokens} md / {registry.total_json_tokens} json "
            f"(savings {registry.token_savings:.1%}, json coverage {registry.json_coverage:.1%})",
        ]
        for name, category in sorted(registry.categories.items()):
            lines.append(
                f"  {name}: {category.documents} docs, "
                f"{category.md_tokens} md / {category.json_tokens} json tokens"
            )
        _emit(stats, args.json, "\n".join(lines))
        return EXIT_OK

    if args.command == "map":
        report = await manager.validate(cancel_token=token) if args.status else None
        doc_map = manager.document_map(report)
        lines = []
        for category, docs in doc_map.items():
            lines.append(f"[{category}]")
            for doc in docs:
                status = f" [{doc['status']}]" if "status" in doc else ""
                lines.append(
                    f"  {doc['id']}: {doc['path']} "
                    f"({doc['tokens']['md']} md / {doc['tokens']['json']} json){status}"
                )
        _emit(doc_map, args.json, "\n".join(lines) or "No documents registered.")
        return EXIT_OK

    if args.command == "route":
        result = await manager.route_document(args.file)
        c = result.classification
        verb = "Registered" if result.registered else "Already registered"
        _emit(
            result,
            args.json,
            f"{verb}: {result.entry.path} -> {c.category}/{result.entry.id} "
            f"(tier {int(c.tier)} via {c.matched_by or 'n/a'}, confidence {c.confidence:.2f})",
        )
        return EXIT_OK

    if args.command == "search":
        entries = manager.search(args.term)
        lines = [
            f"{e.category}/{e.id}: {e.path}" + (f" - {e.summary}" if e.summary else "")
            for e in entries
        ]
        _emit(
            [e.model_dump(mode="json") for e in entries],
            args.json,
            "\n".join(lines) or f"No documents match {args.term!r}.",
        )
        return EXIT_OK

    if args.command == "prune":
        report = await manager.prune()
        lines = [f"Removed {len(report.removed)} entries"] + [f"  {k}" for k in report.removed]
        _emit(report, args.json, "\n".join(lines))
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


async def _run(args: argparse.Namespace, config: Config) -> int:
    manager = LifecycleManager.from_config(config)
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt, token)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # Ctrl-C then surfaces as KeyboardInterrupt in main()
        handler_installed = False
    try:
        return await run_command(args, manager, token)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await manager.close()


def _on_interrupt(token: CancellationToken) -> None:
    """First Ctrl-C cancels cooperatively, a second one aborts."""
    if token.cancelled:
        raise KeyboardInterrupt
    logger.warning("Interrupted: finishing the current file, press Ctrl-C again to abort")
    token.cancel()


def serve(args: argparse.Namespace) -> int:
    """Run the FastAPI app with uvicorn."""
    import uvicorn

    if args.config:
        os.environ["DOCREG_CONFIG"] = args.config
    uvicorn.run("app:app", host=args.host, port=args.port, reload=args.reload, log_level="info")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    if args.command == "serve":
        return serve(args)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(
        level=config.logging.level,
        log_to_file=config.logging.log_to_file,
        log_dir=config.logging.log_dir,
        file_rotation=config.logging.file_rotation,
        file_retention=config.logging.file_retention,
        compression=config.logging.compression,
        serialize=config.logging.serialize,
    )

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        print("cancelled", file=sys.stderr)
        return EXIT_CANCELLED
    except (ConfigurationError, DocumentReadError, NotFoundError) as e:
        print(f"error: {e.message}", file=sys.stderr)
        return EXIT_USAGE
    except DocRegistryError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        print(f"error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
