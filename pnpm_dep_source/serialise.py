"""JSON serialisation helpers shared by the manifest and config stores.

Documents are rendered with two-space indentation, literal non-ASCII text and
a trailing newline so rewrites of hand-formatted files stay stable.
"""

from __future__ import annotations

import json
import typing as typ
from pathlib import Path

__all__ = ["_read_json_document", "_write_json_with_newline"]


def _read_json_document(path: Path) -> dict[str, typ.Any]:
    """Parse ``path`` as a JSON object, aborting with context on bad input."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        message = f"invalid JSON in {path}: {error.msg} (line {error.lineno})"
        raise SystemExit(message) from error
    if not isinstance(data, dict):
        message = f"expected a JSON object at the top level of {path}"
        raise SystemExit(message)
    return data


def _write_json_with_newline(document: typ.Mapping[str, typ.Any], path: Path) -> None:
    """Serialise ``document`` to ``path`` and ensure a trailing newline."""
    path = Path(path)
    rendered = json.dumps(document, indent=2, ensure_ascii=False)
    if not rendered.endswith("\n"):
        rendered = f"{rendered}\n"

    path.write_text(rendered, encoding="utf-8")
