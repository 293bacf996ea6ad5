"""
Loguru setup for the document registry.

Context attached with ``logger.bind(path=..., model=...)`` is appended to
console lines as ``key=value`` pairs; the serialized file sink keeps it
under ``record.extra``.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def _console_format(record) -> str:
    context = {k: v for k, v in record["extra"].items() if k not in ("module", "context")}
    record["extra"].setdefault("module", record["name"])
    record["extra"]["context"] = " ".join(f"{k}={context[k]}" for k in sorted(context))
    suffix = " <dim>[{extra[context]}]</dim>" if context else ""
    return CONSOLE_FORMAT + suffix + "\n{exception}"


def setup_logging(
    level: str = "INFO",
    log_to_file: bool = False,
    log_dir: str = "logs",
    file_rotation: str = "10 MB",
    file_retention: str = "7 days",
    compression: str = "zip",
    serialize: bool = True,
) -> None:
    """
    Configure the console sink and the optional rotating file sink.

    Console output goes to stderr so that ``--json`` output on stdout stays
    machine-readable.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=_console_format, colorize=None)

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "docregistry_{time:YYYY-MM-DD}.log",
            level=level,
            format=FILE_FORMAT,
            rotation=file_rotation,
            retention=file_retention,
            compression=compression,
            serialize=serialize,
            enqueue=True,
        )


def get_logger(name: str):
    """Module logger; ``name`` shows up in console lines."""
    return logger.bind(module=name)
