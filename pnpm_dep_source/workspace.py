"""Line-oriented editor for the ``packages:`` list of ``pnpm-workspace.yaml``.

The workspace file may carry unrelated top-level keys (``catalog:``,
``onlyBuiltDependencies:`` and so on) that must survive byte-for-byte, so the
file is not round-tripped through a YAML library. Instead the ``packages:``
block is located as a region of lines and only that region is rewritten:

* surviving list items keep their original line text (quoting, comments);
* new items reuse the indentation of the existing items;
* blank or comment lines inside the block travel with the item they precede;
* everything before and after the block is emitted unchanged.

Both the block form (``packages:`` followed by ``- item`` lines) and the
single-line flow form (``packages: [a, b]``) are understood.
"""

from __future__ import annotations

import dataclasses as dc
import re
import typing as typ
from pathlib import Path

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "SELF_MEMBER",
    "WORKSPACE_FILE",
    "holds_other_content",
    "load_members",
    "parse_members",
    "render_members",
    "save_members",
    "workspace_path",
]

WORKSPACE_FILE: typ.Final = "pnpm-workspace.yaml"

SELF_MEMBER: typ.Final = "."

DEFAULT_ITEM_INDENT: typ.Final = "  "

_BLOCK_HEADER = re.compile(r"^packages:\s*(?:#.*)?$")
_FLOW_HEADER = re.compile(r"^packages:\s*\[(?P<body>.*)\]\s*(?:#.*)?$")
# Block sequences may sit at the header's own column.
_ITEM = re.compile(r"^(?P<indent>[ \t]*)-(?:\s+(?P<value>.*?))?\s*$")
_INDENTED_COMMENT = re.compile(r"^[ \t]+#")


@dc.dataclass
class _Item:
    value: str
    raw: str
    leading: list[str] = dc.field(default_factory=list)


@dc.dataclass
class _Block:
    start: int
    end: int
    items: list[_Item]
    flow: bool = False
    indent: str = DEFAULT_ITEM_INDENT
    header: str = "packages:\n"


def workspace_path(root: Path) -> Path:
    """Return the workspace file location under ``root``."""
    return Path(root) / WORKSPACE_FILE


def _strip_line_end(line: str) -> str:
    return line.rstrip("\r\n")


def _with_line_end(line: str) -> str:
    return line if line.endswith("\n") else f"{line}\n"


def _unquote(token: str) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in {"'", '"'}:
        return token[1:-1]
    return token


def _flow_block(lines: list[str], index: int, body: str) -> _Block:
    tokens = [token.strip() for token in body.split(",") if token.strip()]
    items = [_Item(value=_unquote(token), raw=token) for token in tokens]
    return _Block(start=index, end=index + 1, items=items, flow=True)


def _find_block(lines: list[str]) -> _Block | None:
    """Locate the ``packages:`` region within ``lines``."""
    for index, line in enumerate(lines):
        text = _strip_line_end(line)
        if flow := _FLOW_HEADER.match(text):
            return _flow_block(lines, index, flow.group("body"))
        if _BLOCK_HEADER.match(text):
            break
    else:
        return None

    block = _Block(start=index, end=index + 1, items=[], header=lines[index])
    pending: list[str] = []
    cursor = index + 1
    while cursor < len(lines):
        line = lines[cursor]
        text = _strip_line_end(line)
        if item := _ITEM.match(text):
            if not block.items:
                block.indent = item.group("indent")
            value = _unquote(item.group("value") or "")
            block.items.append(_Item(value=value, raw=line, leading=pending))
            pending = []
            cursor += 1
            block.end = cursor
            continue
        if not text.strip() or _INDENTED_COMMENT.match(text):
            pending.append(line)
            cursor += 1
            continue
        break
    return block


def parse_members(text: str) -> list[str] | None:
    """Return the ``packages:`` entries in ``text`` or ``None`` without a block."""
    block = _find_block(text.splitlines(keepends=True))
    if block is None:
        return None
    return [item.value for item in block.items]


def load_members(root: Path) -> list[str] | None:
    """Read the member list of the workspace file under ``root``."""
    path = workspace_path(root)
    if not path.exists():
        return None
    return parse_members(path.read_text(encoding="utf-8"))


def _render_flow(block: _Block, members: cabc.Sequence[str]) -> list[str]:
    existing = {item.value: item.raw for item in block.items}
    quote = ""
    if block.items and block.items[0].raw[:1] in {"'", '"'}:
        quote = block.items[0].raw[0]
    tokens = [existing.get(member, f"{quote}{member}{quote}") for member in members]
    return [f"packages: [{', '.join(tokens)}]\n"]


def _render_block(block: _Block | None, members: cabc.Sequence[str]) -> list[str]:
    if block is not None and block.flow:
        return _render_flow(block, members)

    header = _with_line_end(block.header) if block is not None else "packages:\n"
    indent = block.indent if block is not None else DEFAULT_ITEM_INDENT
    existing = {item.value: item for item in block.items} if block is not None else {}

    rendered = [header]
    for member in members:
        item = existing.get(member)
        if item is None:
            rendered.append(f"{indent}- {member}\n")
            continue
        rendered.extend(item.leading)
        rendered.append(_with_line_end(item.raw))
    return rendered


def render_members(text: str, members: cabc.Sequence[str] | None) -> str:
    """Return ``text`` with its ``packages:`` block replaced by ``members``.

    Passing ``None`` or an empty sequence removes the block. Content outside
    the block is returned unchanged.

    Examples
    --------
    >>> render_members("catalog:\\n  react: ^18\\n", [".", "../y"])
    'catalog:\\n  react: ^18\\npackages:\\n  - .\\n  - ../y\\n'
    >>> render_members("packages:\\n  - .\\n  - ../y\\ncatalog: {}\\n", None)
    'catalog: {}\\n'
    """
    lines = text.splitlines(keepends=True)
    block = _find_block(lines)

    if not members:
        if block is None:
            return text
        return "".join(lines[: block.start] + lines[block.end :])

    rendered = _render_block(block, members)
    if block is None:
        prefix = text if not text or text.endswith("\n") else f"{text}\n"
        return prefix + "".join(rendered)
    return "".join(lines[: block.start] + rendered + lines[block.end :])


def save_members(
    root: Path,
    members: cabc.Sequence[str] | None,
    *,
    allow_delete: bool = True,
) -> None:
    """Persist ``members`` as the workspace file's ``packages:`` list.

    Parameters
    ----------
    root : Path
        Directory holding (or about to hold) the workspace file.
    members : Sequence[str] | None
        Member paths to write. ``None`` or an empty sequence removes the
        ``packages:`` block.
    allow_delete : bool, default True
        When the block is removed and no other content remains, delete the
        file. Ancestor (monorepo) workspace files pass ``False`` so they are
        never deleted.
    """
    path = workspace_path(root)
    existed = path.exists()
    text = path.read_text(encoding="utf-8") if existed else ""
    updated = render_members(text, members)

    if not members and not updated.strip():
        if not existed:
            return
        if allow_delete:
            path.unlink()
            return

    if existed and updated == text:
        return
    path.write_text(updated, encoding="utf-8")


def holds_other_content(root: Path) -> bool:
    """Report whether the workspace file has anything besides ``packages:``.

    Examples
    --------
    >>> import tempfile
    >>> with tempfile.TemporaryDirectory() as tmp:
    ...     _ = workspace_path(Path(tmp)).write_text("packages:\\n  - .\\n")
    ...     holds_other_content(Path(tmp))
    False
    """
    path = workspace_path(root)
    if not path.exists():
        return False
    return bool(render_members(path.read_text(encoding="utf-8"), None).strip())
