"""Toggle a package name in the Vite ``optimizeDeps.exclude`` list.

Linked workspace packages must be excluded from Vite's dependency
pre-bundling or edits to them are not picked up by the dev server. The
config file is TypeScript or JavaScript, so it is edited as text: only the
``optimizeDeps`` object is touched, and removal undoes exactly what addition
inserted so a round trip leaves the file byte-identical.
"""

from __future__ import annotations

import logging
import re
import typing as typ
from pathlib import Path

__all__ = [
    "BUNDLER_CONFIG_FILES",
    "add_exclusion",
    "find_bundler_config",
    "remove_exclusion",
    "toggle_exclusion",
]

LOGGER = logging.getLogger(__name__)

BUNDLER_CONFIG_FILES: typ.Final[tuple[str, ...]] = (
    "vite.config.ts",
    "vite.config.mts",
    "vite.config.js",
    "vite.config.mjs",
)

DEFAULT_INDENT: typ.Final = "  "

_OPTIMIZE_DEPS = re.compile(r"optimizeDeps\s*:\s*\{")
_EXCLUDE = re.compile(r"exclude\s*:\s*\[")
_CONFIG_OPENING = re.compile(
    r"^[^\n]*(?:defineConfig\(\s*\{|export\s+default\s+\{)[ \t]*\n", re.MULTILINE
)
_STRING_QUOTES: typ.Final = frozenset({"'", '"', "`"})


def find_bundler_config(project_root: Path) -> Path | None:
    """Return the first existing Vite config under ``project_root``."""
    for filename in BUNDLER_CONFIG_FILES:
        candidate = Path(project_root) / filename
        if candidate.exists():
            return candidate
    return None


def _skip_comment(text: str, index: int) -> int:
    """Return the index just past a comment starting at ``index``, else ``index``."""
    if text.startswith("//", index):
        end = text.find("\n", index)
        return len(text) if end == -1 else end
    if text.startswith("/*", index):
        end = text.find("*/", index + 2)
        return len(text) if end == -1 else end + 2
    return index


def _matching_close(text: str, open_index: int) -> int:
    """Return the index of the bracket closing the one at ``open_index``."""
    opener = text[open_index]
    closer = {"{": "}", "[": "]"}[opener]
    depth = 0
    quote: str | None = None
    index = open_index
    while index < len(text):
        char = text[index]
        if quote is not None:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif (skipped := _skip_comment(text, index)) != index:
            index = skipped
            continue
        elif char in _STRING_QUOTES:
            quote = char
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index
        index += 1
    message = f"unbalanced {opener!r} in bundler config"
    raise ValueError(message)


def _optimize_deps_span(text: str) -> tuple[int, int] | None:
    """Return ``(body_start, body_end)`` of the ``optimizeDeps`` object."""
    match = _OPTIMIZE_DEPS.search(text)
    if match is None:
        return None
    open_index = match.end() - 1
    return open_index + 1, _matching_close(text, open_index)


def _exclude_span(text: str, start: int, end: int) -> tuple[int, int] | None:
    """Return ``(inner_start, inner_end)`` of the ``exclude`` array."""
    match = _EXCLUDE.search(text, start, end)
    if match is None:
        return None
    open_index = match.end() - 1
    return open_index + 1, _matching_close(text, open_index)


def _quoted(name: str) -> re.Pattern[str]:
    return re.compile(r"(['\"`])" + re.escape(name) + r"\1")


def _quote_style(text: str) -> str:
    return '"' if text.count('"') > text.count("'") else "'"


def _line_indent(text: str, index: int) -> str:
    line_start = text.rfind("\n", 0, index) + 1
    line = text[line_start:index]
    return line[: len(line) - len(line.lstrip())]


def _next_line_indent(text: str, index: int) -> str:
    for line in text[index:].splitlines():
        if line.strip():
            return line[: len(line) - len(line.lstrip())]
    return DEFAULT_INDENT


def _code(line: str) -> str:
    """Return ``line`` without its trailing ``//`` comment or whitespace."""
    quote: str | None = None
    index = 0
    while index < len(line):
        char = line[index]
        if quote is not None:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif line.startswith("//", index):
            return line[:index].rstrip()
        elif char in _STRING_QUOTES:
            quote = char
        index += 1
    return line.rstrip()


def _append_item(inner: str, item: str) -> str:
    """Append ``item`` to the array body ``inner`` in its existing layout.

    A comma is added to the last entry only when it has none, and goes
    before any trailing line comment. ``_remove_item`` undoes exactly this.
    """
    if "\n" not in inner:
        stripped = inner.strip()
        if not stripped:
            return f"{inner}{item}"
        padding_end = inner.rstrip()
        entry = f" {item}," if stripped.endswith(",") else f", {item}"
        return padding_end + entry + inner[len(padding_end) :]

    lines = inner.split("\n")
    rows = [index for index, line in enumerate(lines) if _code(line).strip()]
    if not rows:
        return f"{inner}{item}"
    last = rows[-1]
    row = lines[last]
    indent = row[: len(row) - len(row.lstrip())]
    code = _code(row)
    if code.endswith(","):
        lines.insert(last + 1, f"{indent}{item},")
    else:
        lines[last] = f"{code},{row[len(code) :]}"
        lines.insert(last + 1, f"{indent}{item}")
    return "\n".join(lines)


def add_exclusion(text: str, name: str) -> str:
    """Return ``text`` with ``name`` listed in ``optimizeDeps.exclude``.

    Examples
    --------
    >>> add_exclusion("defineConfig({\\n  a: 1,\\n})\\n", "x")
    "defineConfig({\\n  optimizeDeps: {\\n    exclude: ['x'],\\n  },\\n  a: 1,\\n})\\n"
    """
    quote = _quote_style(text)
    item = f"{quote}{name}{quote}"
    span = _optimize_deps_span(text)

    if span is None:
        opening = _CONFIG_OPENING.search(text)
        if opening is None:
            LOGGER.warning("no config object found in bundler config; skipping")
            return text
        indent = _next_line_indent(text, opening.end())
        block = (
            f"{indent}optimizeDeps: {{\n"
            f"{indent}{indent}exclude: [{item}],\n"
            f"{indent}}},\n"
        )
        return text[: opening.end()] + block + text[opening.end() :]

    body_start, body_end = span
    exclude = _exclude_span(text, body_start, body_end)
    if exclude is not None:
        inner_start, inner_end = exclude
        inner = text[inner_start:inner_end]
        if _quoted(name).search(inner):
            return text
        return text[:inner_start] + _append_item(inner, item) + text[inner_end:]

    body = text[body_start:body_end]
    if body.startswith("\n"):
        indent = _line_indent(text, body_start - 1)
        inner_indent = _next_line_indent(text, body_start)
        if inner_indent == indent:
            inner_indent = f"{indent}{DEFAULT_INDENT}"
        line = f"\n{inner_indent}exclude: [{item}],"
        return text[:body_start] + line + text[body_start:]
    addition = f" exclude: [{item}], " if body.strip() else f" exclude: [{item}] "
    return text[:body_start] + addition + text[body_start:].lstrip(" ")


def _remove_own_line(inner: str, name: str) -> str | None:
    """Drop the line holding only ``name``, or return ``None`` if none does."""
    entry = re.compile(r"(['\"`])" + re.escape(name) + r"\1,?")
    lines = inner.split("\n")
    for index, line in enumerate(lines):
        code = _code(line).strip()
        if entry.fullmatch(code):
            break
    else:
        return None

    del lines[index]
    last_entry = not any(_code(line).strip() for line in lines[index:])
    if not code.endswith(",") and last_entry:
        # The entry before it gained its comma when this one was appended.
        rows = [pos for pos in range(index) if _code(lines[pos]).strip()]
        if rows:
            row = lines[rows[-1]]
            previous = _code(row)
            if previous.endswith(","):
                lines[rows[-1]] = previous[:-1] + row[len(previous) :]
    return "\n".join(lines)


def _remove_item(inner: str, name: str) -> str:
    escaped = re.escape(name)
    if "\n" in inner and (remaining := _remove_own_line(inner, name)) is not None:
        return remaining
    trailing = re.compile(r"\s*,\s*(['\"`])" + escaped + r"\1")
    if trailing.search(inner):
        return trailing.sub("", inner, count=1)
    leading = re.compile(r"(['\"`])" + escaped + r"\1\s*,?\s*")
    return leading.sub("", inner, count=1)


def _drop_empty(text: str, keyword_start: int, pattern: str) -> str:
    """Remove the empty entry at ``keyword_start``, with its line if it owns one."""
    line_start = text.rfind("\n", 0, keyword_start) + 1
    own_line = re.compile(r"[ \t]*" + pattern + r"[ \t]*,?[ \t]*\n")
    match = own_line.match(text, line_start)
    if match is None:
        match = re.compile(pattern + r"\s*,?[ \t]*").match(text, keyword_start)
    if match is None:
        return text
    return text[: match.start()] + text[match.end() :]


def remove_exclusion(text: str, name: str) -> str:
    """Return ``text`` without ``name`` in ``optimizeDeps.exclude``.

    An emptied ``exclude`` array is removed, then an emptied
    ``optimizeDeps`` object.
    """
    span = _optimize_deps_span(text)
    if span is None:
        return text
    body_start, body_end = span
    exclude = _exclude_span(text, body_start, body_end)
    if exclude is None:
        return text

    inner_start, inner_end = exclude
    inner = text[inner_start:inner_end]
    if not _quoted(name).search(inner):
        return text
    remaining = _remove_item(inner, name)
    if remaining.strip():
        return text[:inner_start] + remaining + text[inner_end:]

    text = text[:inner_start] + text[inner_end:]
    exclude_match = _EXCLUDE.search(text, body_start)
    if exclude_match is not None:
        text = _drop_empty(text, exclude_match.start(), r"exclude\s*:\s*\[\s*\]")

    span = _optimize_deps_span(text)
    if span is None:
        return text
    body_start, body_end = span
    if text[body_start:body_end].strip():
        return text
    keyword_start = text.rfind("optimizeDeps", 0, body_start)
    return _drop_empty(text, keyword_start, r"optimizeDeps\s*:\s*\{\s*\}")


def toggle_exclusion(project_root: Path, name: str, *, exclude: bool) -> bool:
    """Add or remove ``name`` from the project's bundler exclusions.

    Parameters
    ----------
    project_root : Path
        Directory searched for a Vite config file.
    name : str
        Package name to toggle.
    exclude : bool
        ``True`` adds the name, ``False`` removes it.

    Returns
    -------
    bool
        ``True`` when the config file changed. Projects without a Vite config
        are left alone and report ``False``.
    """
    path = find_bundler_config(project_root)
    if path is None:
        return False

    original = path.read_text(encoding="utf-8")
    try:
        if exclude:
            updated = add_exclusion(original, name)
        else:
            updated = remove_exclusion(original, name)
    except ValueError:
        LOGGER.warning("could not parse %s; leaving it unchanged", path.name)
        return False

    if updated == original:
        return False
    path.write_text(updated, encoding="utf-8")
    LOGGER.debug("%s %s in %s", "excluded" if exclude else "unexcluded", name, path)
    return True
