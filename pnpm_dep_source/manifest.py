"""Accessors for the project's ``package.json`` manifest.

Only three regions of the manifest are ever touched: the specifier of a named
dependency in ``dependencies`` or ``devDependencies``, and the dependency's
entry in ``pnpm.overrides``. Everything else round-trips untouched through
the JSON serialiser.
"""

from __future__ import annotations

import collections.abc as cabc
import json
import typing as typ
from pathlib import Path

from pnpm_dep_source.errors import DependencyNotDeclaredError
from pnpm_dep_source.serialise import _read_json_document, _write_json_with_newline

__all__ = [
    "DEPENDENCY_GROUPS",
    "LOCAL_SPECIFIER",
    "MANIFEST_FILE",
    "add_dependency",
    "get_specifier",
    "group_of",
    "has_dependency",
    "installed_version",
    "load_manifest",
    "manifest_path",
    "remove_dependency",
    "remove_override",
    "save_manifest",
    "set_specifier",
]

MANIFEST_FILE: typ.Final = "package.json"

LOCAL_SPECIFIER: typ.Final = "workspace:*"

DEPENDENCY_GROUPS: typ.Final[tuple[str, ...]] = ("dependencies", "devDependencies")

Manifest = dict[str, typ.Any]


def manifest_path(project_root: Path) -> Path:
    """Return the manifest location for ``project_root``."""
    return Path(project_root) / MANIFEST_FILE


def load_manifest(project_root: Path) -> Manifest:
    """Read and parse the project manifest."""
    path = manifest_path(project_root)
    if not path.exists():
        message = f"{MANIFEST_FILE} not found in {project_root}"
        raise SystemExit(message)
    return _read_json_document(path)


def save_manifest(project_root: Path, manifest: Manifest) -> None:
    """Write ``manifest`` back to the project root."""
    _write_json_with_newline(manifest, manifest_path(project_root))


def _group(manifest: Manifest, key: str) -> cabc.MutableMapping[str, str] | None:
    group = manifest.get(key)
    if not isinstance(group, cabc.MutableMapping):
        return None
    return typ.cast("cabc.MutableMapping[str, str]", group)


def group_of(manifest: Manifest, name: str) -> str | None:
    """Return the dependency group declaring ``name``, primary group first."""
    for key in DEPENDENCY_GROUPS:
        group = _group(manifest, key)
        if group is not None and name in group:
            return key
    return None


def has_dependency(manifest: Manifest, name: str) -> bool:
    """Return ``True`` when either dependency group declares ``name``."""
    return group_of(manifest, name) is not None


def get_specifier(manifest: Manifest, name: str) -> str | None:
    """Return the declared specifier for ``name`` or ``None``."""
    key = group_of(manifest, name)
    if key is None:
        return None
    group = typ.cast("cabc.MutableMapping[str, str]", _group(manifest, key))
    return group[name]


def set_specifier(manifest: Manifest, name: str, specifier: str) -> None:
    """Replace the specifier of an already declared dependency.

    Raises
    ------
    DependencyNotDeclaredError
        Raised when neither dependency group declares ``name``; switching never
        adds a dependency implicitly.
    """
    key = group_of(manifest, name)
    if key is None:
        message = f"dependency {name!r} not found in {MANIFEST_FILE}"
        raise DependencyNotDeclaredError(message)
    group = typ.cast("cabc.MutableMapping[str, str]", _group(manifest, key))
    group[name] = specifier


def add_dependency(
    manifest: Manifest, name: str, specifier: str, *, dev: bool = False
) -> str:
    """Declare ``name`` in the requested group and return that group's key."""
    key = DEPENDENCY_GROUPS[1] if dev else DEPENDENCY_GROUPS[0]
    group = _group(manifest, key)
    if group is None:
        group = {}
        manifest[key] = group
    group[name] = specifier
    return key


def remove_dependency(manifest: Manifest, name: str) -> bool:
    """Drop ``name`` from whichever group declares it."""
    key = group_of(manifest, name)
    if key is None:
        return False
    group = typ.cast("cabc.MutableMapping[str, str]", _group(manifest, key))
    del group[name]
    return True


def remove_override(manifest: Manifest, name: str) -> bool:
    """Remove ``name`` from ``pnpm.overrides``, dropping the map when emptied.

    Sibling keys of the ``pnpm`` block (``onlyBuiltDependencies`` and so on)
    and other overrides are preserved.

    Examples
    --------
    >>> manifest = {"pnpm": {"overrides": {"a": "link:../a", "b": "link:../b"}}}
    >>> remove_override(manifest, "a")
    True
    >>> manifest
    {'pnpm': {'overrides': {'b': 'link:../b'}}}
    """
    pnpm = manifest.get("pnpm")
    if not isinstance(pnpm, cabc.MutableMapping):
        return False

    overrides = pnpm.get("overrides")
    if not isinstance(overrides, cabc.MutableMapping) or name not in overrides:
        return False

    del overrides[name]
    if not overrides:
        del pnpm["overrides"]
    return True


def installed_version(project_root: Path, name: str) -> str | None:
    """Return the version installed under ``node_modules`` if readable."""
    path = Path(project_root) / "node_modules" / name / MANIFEST_FILE
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    version = data.get("version") if isinstance(data, dict) else None
    return version if isinstance(version, str) else None
