"""Project and global dependency configuration documents.

Two JSON documents describe the dependencies ``pds`` manages: one in the
project root (``.pds.json``) and one in the user's config directory for
globally installed CLI tools. Both share the same schema::

    {
      "dependencies": {
        "@scope/name": {
          "localPath": "../name",
          "github": "owner/name",
          "gitlab": "group/sub/name",
          "npm": "@scope/name",
          "distBranch": "dist",
          "subdir": "/packages/name"
        }
      },
      "checkOn": "pre-push"
    }
"""

from __future__ import annotations

import dataclasses as dc
import enum
import os
import typing as typ
from pathlib import Path

from pnpm_dep_source.errors import AmbiguousSelectionError, NotFoundError
from pnpm_dep_source.serialise import _read_json_document, _write_json_with_newline

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "CONFIG_FILES",
    "DEFAULT_DIST_BRANCH",
    "CheckPolicy",
    "ConfigDocument",
    "DependencyConfig",
    "find_dependency",
    "global_config_dir",
    "global_config_path",
    "load_config",
    "load_global_config",
    "resolve_config_path",
    "save_config",
    "save_global_config",
    "split_query",
]

CONFIG_FILES: typ.Final[tuple[str, ...]] = (".pds.json", ".pnpm-dep-source.json")

DEFAULT_DIST_BRANCH: typ.Final = "dist"

GLOBAL_CONFIG_NAME: typ.Final = "pnpm-dep-source"

# JSON key order used when writing a dependency entry.
_FIELD_KEYS: typ.Final[tuple[tuple[str, str], ...]] = (
    ("local_path", "localPath"),
    ("github", "github"),
    ("gitlab", "gitlab"),
    ("npm", "npm"),
    ("dist_branch", "distBranch"),
    ("subdir", "subdir"),
)


class CheckPolicy(enum.StrEnum):
    """Which git hook runs the local-dependency check."""

    PRE_PUSH = "pre-push"
    PRE_COMMIT = "pre-commit"
    NONE = "none"


@dc.dataclass(frozen=True)
class DependencyConfig:
    """Known sources for one tracked dependency."""

    local_path: str | None = None
    github: str | None = None
    gitlab: str | None = None
    npm: str | None = None
    dist_branch: str | None = None
    subdir: str | None = None

    @property
    def branch(self) -> str:
        """Return the dist branch, falling back to ``dist``."""
        return self.dist_branch or DEFAULT_DIST_BRANCH

    def npm_name(self, name: str) -> str:
        """Return the registry package name, defaulting to ``name``."""
        return self.npm or name

    @classmethod
    def from_json(cls, data: cabc.Mapping[str, typ.Any]) -> DependencyConfig:
        """Build a config entry from its JSON object."""
        values = {
            field: data[key]
            for field, key in _FIELD_KEYS
            if isinstance(data.get(key), str)
        }
        return cls(**values)

    def to_json(self) -> dict[str, str]:
        """Render the entry with absent sources omitted."""
        rendered: dict[str, str] = {}
        for field, key in _FIELD_KEYS:
            value = getattr(self, field)
            if value is not None:
                rendered[key] = value
        return rendered


@dc.dataclass
class ConfigDocument:
    """A whole configuration document."""

    dependencies: dict[str, DependencyConfig] = dc.field(default_factory=dict)
    check_on: CheckPolicy | None = None
    skip_check: bool | None = None

    @property
    def check_policy(self) -> CheckPolicy:
        """Return the effective check policy, honouring legacy ``skipCheck``."""
        if self.check_on is not None:
            return self.check_on
        if self.skip_check:
            return CheckPolicy.NONE
        return CheckPolicy.PRE_PUSH

    @classmethod
    def from_json(cls, data: cabc.Mapping[str, typ.Any]) -> ConfigDocument:
        """Build a document from parsed JSON, ignoring malformed entries."""
        raw_dependencies = data.get("dependencies") or {}
        dependencies = {
            name: DependencyConfig.from_json(entry)
            for name, entry in raw_dependencies.items()
            if isinstance(entry, dict)
        }
        check_on = data.get("checkOn")
        skip_check = data.get("skipCheck")
        return cls(
            dependencies=dependencies,
            check_on=CheckPolicy(check_on) if check_on is not None else None,
            skip_check=skip_check if isinstance(skip_check, bool) else None,
        )

    def to_json(self) -> dict[str, typ.Any]:
        """Render the document for persistence."""
        rendered: dict[str, typ.Any] = {
            "dependencies": {
                name: entry.to_json() for name, entry in self.dependencies.items()
            }
        }
        if self.skip_check is not None:
            rendered["skipCheck"] = self.skip_check
        if self.check_on is not None:
            rendered["checkOn"] = self.check_on.value
        return rendered


def resolve_config_path(project_root: Path) -> Path:
    """Return the project config path, preferring an existing file."""
    project_root = Path(project_root)
    for filename in CONFIG_FILES:
        candidate = project_root / filename
        if candidate.exists():
            return candidate
    return project_root / CONFIG_FILES[0]


def global_config_dir() -> Path:
    """Return the directory holding the global config and hook files."""
    override = os.environ.get("PDS_CONFIG_DIR")
    if override:
        return Path(override)
    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_home) if xdg_home else Path.home() / ".config"
    return base / GLOBAL_CONFIG_NAME


def global_config_path() -> Path:
    """Return the global config document path."""
    return global_config_dir() / "config.json"


def _load_document(path: Path) -> ConfigDocument:
    if not path.exists():
        return ConfigDocument()
    try:
        return ConfigDocument.from_json(_read_json_document(path))
    except ValueError as error:
        message = f"invalid configuration in {path}: {error}"
        raise SystemExit(message) from error


def load_config(project_root: Path) -> ConfigDocument:
    """Load the project-scoped document, empty when absent."""
    return _load_document(resolve_config_path(project_root))


def save_config(project_root: Path, document: ConfigDocument) -> None:
    """Persist the project-scoped document."""
    _write_json_with_newline(document.to_json(), resolve_config_path(project_root))


def load_global_config() -> ConfigDocument:
    """Load the user-global document, empty when absent."""
    return _load_document(global_config_path())


def save_global_config(document: ConfigDocument) -> None:
    """Persist the user-global document, creating its directory."""
    path = global_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    _write_json_with_newline(document.to_json(), path)


def find_dependency(
    document: ConfigDocument, query: str | None = None
) -> tuple[str, DependencyConfig]:
    """Select one configured dependency by name.

    Parameters
    ----------
    document : ConfigDocument
        Configuration holding the candidate dependencies.
    query : str | None, optional
        Name or name fragment. When omitted the lone configured dependency is
        selected.

    Returns
    -------
    tuple[str, DependencyConfig]
        The manifest key and its configuration.

    Raises
    ------
    NotFoundError
        Raised when nothing is configured or nothing matches ``query``.
    AmbiguousSelectionError
        Raised when ``query`` is omitted with several dependencies configured,
        or when a substring query matches more than one name.

    Examples
    --------
    >>> doc = ConfigDocument({"use-kbd": DependencyConfig(github="o/use-kbd")})
    >>> find_dependency(doc, "KBD")[0]
    'use-kbd'
    """
    entries = list(document.dependencies.items())

    if not query:
        if not entries:
            message = 'no dependencies configured; use "pds init <path>" to add one'
            raise NotFoundError(message)
        if len(entries) == 1:
            return entries[0]
        names = [name for name, _ in entries]
        message = "multiple dependencies configured, specify one: " + ", ".join(names)
        raise AmbiguousSelectionError(message, names)

    folded = query.casefold()
    for name, entry in entries:
        if name.casefold() == folded:
            return name, entry

    matches = [(name, entry) for name, entry in entries if folded in name.casefold()]
    if not matches:
        message = f"no dependency matching {query!r} found in config"
        raise NotFoundError(message)
    if len(matches) > 1:
        names = [name for name, _ in matches]
        message = f"ambiguous match {query!r}, matches: " + ", ".join(names)
        raise AmbiguousSelectionError(message, names)
    return matches[0]


def split_query(
    document: ConfigDocument, first: str | None, second: str | None
) -> tuple[str | None, str | None]:
    """Split positional arguments into ``(query, ref_or_version)``.

    With exactly one dependency configured, a lone positional argument names
    the ref or version rather than the dependency.
    """
    if first and not second and len(document.dependencies) == 1:
        return None, first
    return first, second
