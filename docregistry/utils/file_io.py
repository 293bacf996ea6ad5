"""
Safe file access helpers.

- Atomic writes (temp file in the same directory + fsync + rename)
- Advisory exclusive locks on a sidecar ``.lock`` file
- Text reads with a single error type for unreadable documents
"""

import fcntl
import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from docregistry.utils.exceptions import DocumentReadError


def lock_path_for(path: Path) -> Path:
    """Sidecar lock file used to serialize writers of ``path``."""
    return path.with_name(path.name + ".lock")


@contextmanager
def exclusive_lock(path: Path) -> Iterator[None]:
    """
    Hold an advisory exclusive lock for ``path``.

    Blocks until any other process holding the lock releases it.
    """
    lock_file = lock_path_for(Path(path))
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_file, "a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """
    Write ``text`` to ``path`` atomically.

    Readers see either the old or the new file, never a partial write.
    Leftover temp files are removed on failure.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding=encoding,
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_path = Path(f.name)
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


def atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Atomically write JSON with sorted keys and a trailing newline."""
    text = json.dumps(data, indent=indent, sort_keys=True, ensure_ascii=False)
    atomic_write_text(path, text + "\n")


def read_text(path: Path) -> str:
    """
    Read a UTF-8 document.

    Raises:
        DocumentReadError: If the file is missing, unreadable or not UTF-8
    """
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentReadError(f"Cannot read {path}: {e}", context={"path": str(path)}) from e


def file_mtime(path: Path) -> datetime:
    """Return the file's modification time as an aware UTC datetime."""
    return datetime.fromtimestamp(Path(path).stat().st_mtime, tz=timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
