"""JSON file helpers shared by the file-backed stores.

Writes go to a temporary file in the destination directory and are then
published with a single rename, so readers never observe a partially
written document.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from lifecycle_engine.errors import StorageError, StorageReason


def dump_json(data: Any) -> str:
    """Serialise *data* deterministically (sorted keys, 2-space indent)."""
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False, default=str)


def write_json_atomic(path: Path, data: Any, *, overwrite: bool = True) -> Path:
    """Write *data* as JSON to *path* via temp-file and rename.

    Parameters
    ----------
    path:
        Destination file.  Parent directories are created.
    data:
        JSON-compatible payload.
    overwrite:
        When ``False`` the publish step uses a hard link, which fails if
        *path* already exists instead of replacing it.

    Raises
    ------
    FileExistsError
        If *overwrite* is ``False`` and *path* exists.
    StorageError
        On any other I/O failure.
    """
    text = dump_json(data)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise StorageError(f"Cannot prepare write to {path}: {exc}") from exc

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        if overwrite:
            os.replace(tmp_path, path)
        else:
            os.link(tmp_path, path)
    except FileExistsError:
        raise
    except OSError as exc:
        raise StorageError(f"Failed to write {path}: {exc}") from exc
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
    return path


def read_json(path: Path) -> Any:
    """Load a JSON document, mapping failures onto :class:`StorageError`."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise StorageError(f"File not found: {path}", StorageReason.NOT_FOUND) from exc
    except UnicodeDecodeError as exc:
        raise StorageError(f"Not valid UTF-8: {path}: {exc}", StorageReason.CORRUPT) from exc
    except OSError as exc:
        raise StorageError(f"Cannot read {path}: {exc}") from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise StorageError(f"Malformed JSON in {path}: {exc}", StorageReason.CORRUPT) from exc
