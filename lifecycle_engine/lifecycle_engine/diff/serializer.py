"""Deterministic serialization and export for comparison results.

JSON output uses the camelCase field names of the documented format, sorted
keys and 2-space indentation so identical comparisons always produce
byte-identical files.  A plain-text rendering (counts followed by one line
per changed resource) is provided for exports that humans read.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from lifecycle_engine.errors import StorageError, StorageReason, ValidationError
from lifecycle_engine.models.diff import ComparisonResult
from lifecycle_engine.state._files import write_json_atomic


class ExportFormat(str, Enum):
    JSON = "json"
    TABLE = "table"


def serialize_comparison(result: ComparisonResult) -> str:
    """Serialize a comparison to a deterministic JSON string."""
    raw = result.model_dump(mode="json", by_alias=True)
    # Unchanged resources appear only when they were requested.
    if raw["changes"].get("unchanged") is None:
        raw["changes"].pop("unchanged", None)
    return json.dumps(raw, indent=2, sort_keys=True, ensure_ascii=False)


def deserialize_comparison(json_str: str) -> ComparisonResult:
    """Load a comparison previously produced by :func:`serialize_comparison`.

    Raises
    ------
    StorageError
        With reason ``CORRUPT`` if the JSON is malformed or does not match
        the schema.
    """
    try:
        return ComparisonResult.model_validate_json(json_str)
    except (PydanticValidationError, ValueError) as exc:
        raise StorageError(f"Invalid comparison document: {exc}", StorageReason.CORRUPT) from exc


def _short(value: object, limit: int = 60) -> str:
    text = json.dumps(value, sort_keys=True, default=str) if not isinstance(value, str) else value
    return text if len(text) <= limit else text[: limit - 3] + "..."


def format_comparison_text(result: ComparisonResult) -> str:
    """Render *result* as plain text: a counts header and per-resource lines."""
    s = result.summary
    lines = [
        f"Reference:  {result.reference_id} ({result.reference_time.isoformat()})",
        f"Difference: {result.difference_id} ({result.difference_time.isoformat()})",
        f"Added: {s.added}  Removed: {s.removed}  Modified: {s.modified}"
        + (f"  Unchanged: {s.unchanged}" if result.changes.unchanged is not None else ""),
        "",
    ]
    for ref in result.changes.added:
        lines.append(f"+ {ref.key}")
    for ref in result.changes.removed:
        lines.append(f"- {ref.key}")
    for mod in result.changes.modified:
        lines.append(f"~ {mod.resource.key}")
        for change in mod.field_changes:
            lines.append(f"    {change.property}: {_short(change.old_value)} -> {_short(change.new_value)}")
    for ref in result.changes.unchanged or []:
        lines.append(f"  {ref.key}")
    return "\n".join(lines).rstrip() + "\n"


def export_comparison(result: ComparisonResult, path: Path, fmt: ExportFormat | str = ExportFormat.JSON) -> Path:
    """Write *result* to *path* in the requested format."""
    try:
        fmt = ExportFormat(fmt)
    except ValueError as exc:
        raise ValidationError(f"Unsupported export format '{fmt}'") from exc

    path = Path(path)
    if fmt == ExportFormat.JSON:
        return write_json_atomic(path, json.loads(serialize_comparison(result)))

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(format_comparison_text(result), encoding="utf-8")
    except OSError as exc:
        raise StorageError(f"Failed to write {path}: {exc}") from exc
    return path
